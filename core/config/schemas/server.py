"""HTTP / WebSocket server schema."""
from __future__ import annotations

from pydantic import BaseModel, Field, ConfigDict


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 3000
    cors_origin: str = "*"
    api_prefix: str = Field("/api", pattern="^(/[A-Za-z0-9_-]+)*$")
    ws_path: str = Field("/ws", pattern="^/[A-Za-z0-9_/-]*$")
    security_headers: bool = True
    environment: str = "development"

    model_config = ConfigDict(extra="forbid")
