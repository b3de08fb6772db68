"""In-memory session store.

Single writer for sessions and messages: every mutation goes through
``SessionStore``. Idle sessions are removed by ``sweep_expired`` (driven by
the background sweeper in ``chatbot.api.app``).
"""
from __future__ import annotations

import itertools
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping

from core import metrics

ROLES = frozenset({"user", "assistant", "system"})

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class Message:
    id: str
    session_id: str
    role: str  # user|assistant|system
    content: str
    timestamp: datetime
    metadata: Mapping[str, Any] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def to_public(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }


class Session:
    __slots__ = (
        "session_id",
        "created_at",
        "last_activity",
        "context",
        "_messages",
    )

    def __init__(
        self,
        session_id: str,
        created_at: datetime,
        context: Dict[str, Any] | None = None,
    ) -> None:
        self.session_id = session_id
        self.created_at = created_at
        self.last_activity = created_at
        self.context: Dict[str, Any] = dict(context or {})
        self._messages: List[Message] = []

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __repr__(self) -> str:
        return (
            f"Session(session_id={self.session_id!r}, "
            f"messages={len(self._messages)})"
        )


class SessionStore:
    def __init__(
        self, ttl_seconds: float = 0, clock: Clock | None = None
    ) -> None:
        self._sessions: Dict[str, Session] = {}
        self._messages: Dict[str, Message] = {}
        self._ttl = ttl_seconds
        self._clock = clock or utcnow
        self._seq = itertools.count(1)

    # --- ids / time -------------------------------------------------------
    def _next_id(self) -> str:
        # fixed-width hex keeps lexical order == creation order
        return f"{next(self._seq):012x}{uuid.uuid4().hex[:8]}"

    def _touch(self, session: Session) -> datetime:
        now = self._clock()
        # never move last_activity backwards (clock adjustments)
        if now > session.last_activity:
            session.last_activity = now
        return session.last_activity

    # --- sessions ---------------------------------------------------------
    def create_or_update_session(
        self, session_id: str, context: Dict[str, Any] | None = None
    ) -> Session:
        existing = self._sessions.get(session_id)
        if existing is not None:
            self._touch(existing)
            return existing
        session = Session(session_id, self._clock(), context)
        self._sessions[session_id] = session
        return session

    def get_session(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def delete_session(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        for msg in session._messages:
            self._messages.pop(msg.id, None)
        session._messages = []
        return True

    # --- messages ---------------------------------------------------------
    def append_message(
        self,
        session_id: str,
        role: str,
        content: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> Message:
        if role not in ROLES:
            raise ValueError(f"invalid role '{role}'")
        session = self._sessions.get(session_id)
        if session is None:
            raise KeyError(f"session '{session_id}' does not exist")
        msg = Message(
            id=self._next_id(),
            session_id=session_id,
            role=role,
            content=content,
            timestamp=self._clock(),
            metadata=MappingProxyType(dict(metadata or {})),
        )
        session._messages.append(msg)
        self._messages[msg.id] = msg
        self._touch(session)
        metrics.inc("chat_messages_total", {"role": role})
        return msg

    def get_messages(
        self, session_id: str, limit: int | None = None
    ) -> List[Message]:
        session = self._sessions.get(session_id)
        if session is None:
            return []
        if limit is None:
            return list(session._messages)
        if limit <= 0:
            return []
        return session._messages[-limit:]

    def get_message(self, message_id: str) -> Message | None:
        return self._messages.get(message_id)

    # --- housekeeping -----------------------------------------------------
    def sweep_expired(self, now: datetime | None = None) -> List[str]:
        if not self._ttl:
            return []
        cutoff = (now or self._clock()) - timedelta(seconds=self._ttl)
        expired = [
            sid
            for sid, s in self._sessions.items()
            if s.last_activity < cutoff
        ]
        for sid in expired:
            self.delete_session(sid)
        if expired:
            metrics.inc("sessions_expired_total", value=len(expired))
        return expired

    def stats(self) -> dict:
        return {
            "sessionCount": len(self._sessions),
            "messageCount": len(self._messages),
        }


__all__ = ["SessionStore", "Session", "Message", "ROLES", "utcnow"]
