"""Observability schema (logging)."""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class LoggingConfig(BaseModel):
    level: str = Field("info", pattern="^(debug|info|warn|warning|error)$")
    format: str = Field("json", pattern="^(json|text)$")
    # Optional directory for error.log / combined.log files
    dir: str | None = None
    service: str = "chatbot-backend"

    model_config = ConfigDict(extra="forbid")
