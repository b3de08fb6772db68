"""Rate limit buckets (fixed window per client key)."""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator


class BucketConfig(BaseModel):
    window_s: float
    max_requests: int

    model_config = ConfigDict(extra="forbid")

    @field_validator("window_s")
    @classmethod
    def _window_positive(cls, v: float) -> float:  # noqa: D401
        if v <= 0:
            raise ValueError("window_s must be >0")
        return v

    @field_validator("max_requests")
    @classmethod
    def _max_positive(cls, v: int) -> int:  # noqa: D401
        if v <= 0:
            raise ValueError("max_requests must be >0")
        return v


class RateLimitsConfig(BaseModel):
    enabled: bool = True
    # general: every HTTP request, keyed by client ip
    general: BucketConfig = Field(
        default_factory=lambda: BucketConfig(window_s=15 * 60, max_requests=100)
    )
    # chat: message submissions over REST, keyed by client ip
    chat: BucketConfig = Field(
        default_factory=lambda: BucketConfig(window_s=60, max_requests=10)
    )
    # realtime: websocket events, keyed by connection id
    realtime: BucketConfig = Field(
        default_factory=lambda: BucketConfig(window_s=60, max_requests=20)
    )
    admin: BucketConfig = Field(
        default_factory=lambda: BucketConfig(window_s=5 * 60, max_requests=50)
    )
    health: BucketConfig = Field(
        default_factory=lambda: BucketConfig(window_s=60, max_requests=60)
    )
    # session: message submissions on any transport, keyed by session id
    session: BucketConfig = Field(
        default_factory=lambda: BucketConfig(window_s=60, max_requests=10)
    )

    model_config = ConfigDict(extra="forbid")

    def buckets(self) -> dict[str, BucketConfig]:
        return {
            "general": self.general,
            "chat": self.chat,
            "realtime": self.realtime,
            "admin": self.admin,
            "health": self.health,
            "session": self.session,
        }
