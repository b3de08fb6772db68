"""Shared route dependencies: component container access and rate gates."""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from fastapi import Request
from fastapi.requests import HTTPConnection

from core.config.loader import AggregatedConfig

from chatbot.api.connections import ConnectionRegistry
from chatbot.api.conversation import ConversationService
from chatbot.api.rate_limiter import RateDecision, RateLimiterRegistry
from chatbot.api.session_store import SessionStore
from chatbot.api.validation import InputValidator

RATE_LIMIT_MESSAGES = {
    "general": "Too many requests from this IP, please try again later",
    "chat": "Too many chat messages, please wait before sending another",
    "realtime": "Too much realtime activity, please try again later",
    "admin": "Too many administrative requests, please try again later",
    "health": "Too many health checks, please try again later",
    "session": "Too many messages for this session, please wait a moment",
}


@dataclass
class AppContainer:
    """Component graph built once per application instance."""

    config: AggregatedConfig
    store: SessionStore
    validator: InputValidator
    limiters: RateLimiterRegistry
    service: ConversationService
    connections: ConnectionRegistry
    started_at: float = field(default_factory=time.monotonic)

    def uptime_s(self) -> float:
        return round(time.monotonic() - self.started_at, 3)


class RateLimitExceeded(Exception):
    def __init__(self, bucket: str, decision: RateDecision) -> None:
        super().__init__(f"rate limit exceeded for bucket '{bucket}'")
        self.bucket = bucket
        self.decision = decision

    @property
    def message(self) -> str:
        return RATE_LIMIT_MESSAGES.get(self.bucket, "Too many requests")

    def to_payload(self) -> dict:
        return {
            "success": False,
            "error": self.message,
            "retryAfter": self.decision.retry_after_s,
        }


def get_container(conn: HTTPConnection) -> AppContainer:
    return conn.app.state.container


def client_ip(conn: HTTPConnection) -> str:
    return conn.client.host if conn.client else "unknown"


def enforce(container: AppContainer, bucket: str, key: str) -> None:
    """Count one hit; raise RateLimitExceeded when over the bucket limit."""
    decision = container.limiters.hit(bucket, key)
    if decision is not None and not decision.allowed:
        raise RateLimitExceeded(bucket, decision)


def rate_limit(bucket: str) -> Callable[[Request], Awaitable[None]]:
    """Dependency factory gating a route by client ip.

    Limiter state is only mutated on the event loop thread.
    """

    async def _dependency(request: Request) -> None:
        enforce(get_container(request), bucket, client_ip(request))

    _dependency.__name__ = f"rate_limit_{bucket}"
    return _dependency


__all__ = [
    "AppContainer",
    "RateLimitExceeded",
    "RATE_LIMIT_MESSAGES",
    "get_container",
    "client_ip",
    "enforce",
    "rate_limit",
]
