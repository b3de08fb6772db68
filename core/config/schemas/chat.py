"""Chat request handling and session lifecycle schemas."""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, field_validator


class ChatConfig(BaseModel):
    max_message_length: int = 4000
    history_default_limit: int = 50
    history_max_limit: int = 100
    # Queue overlapping requests for the same session id
    serialize_per_session: bool = True

    model_config = ConfigDict(extra="forbid")

    @field_validator("max_message_length", "history_max_limit")
    @classmethod
    def _positive(cls, v: int) -> int:  # noqa: D401
        if v <= 0:
            raise ValueError("must be >0")
        return v


class SessionConfig(BaseModel):
    # Idle sessions older than this are swept; 0 disables expiry
    ttl_seconds: int = 60 * 60
    sweep_interval_s: float = 300.0

    model_config = ConfigDict(extra="forbid")

    @field_validator("ttl_seconds")
    @classmethod
    def _ttl_non_negative(cls, v: int) -> int:  # noqa: D401
        if v < 0:
            raise ValueError("ttl_seconds must be >=0")
        return v

    @field_validator("sweep_interval_s")
    @classmethod
    def _interval_positive(cls, v: float) -> float:  # noqa: D401
        if v <= 0:
            raise ValueError("sweep_interval_s must be >0")
        return v
