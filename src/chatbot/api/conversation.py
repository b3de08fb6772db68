"""Conversation orchestration.

Per request: validate → ensure session → persist user message → assemble
context window → call provider → persist reply → result. Upstream failures
never raise to the caller; they are persisted as an apology turn tagged
``metadata.error`` and returned as a failed result.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List

from core import metrics
from core.config.loader import AggregatedConfig
from core.errors import map_exception
from core.llm.provider import ChatProvider
from core.llm.types import ChatTurn, GenerationOptions

from chatbot.api.session_store import SessionStore
from chatbot.api.validation import InputValidator, clean_for_logging

logger = logging.getLogger(__name__)

SESSION_NOT_FOUND = "Session not found"


@dataclass(frozen=True, slots=True)
class ConversationSettings:
    system_prompt: str
    context_window: int
    defaults: GenerationOptions
    error_reply: str
    serialize_per_session: bool = True

    @classmethod
    def from_config(cls, cfg: AggregatedConfig) -> "ConversationSettings":
        return cls(
            system_prompt=cfg.llm.system_prompt,
            context_window=cfg.llm.context_window,
            defaults=GenerationOptions(
                model=cfg.llm.model,
                temperature=cfg.llm.temperature,
                max_tokens=cfg.llm.max_output_tokens,
            ),
            error_reply=cfg.llm.error_reply,
            serialize_per_session=cfg.chat.serialize_per_session,
        )


@dataclass(slots=True)
class ConversationResult:
    success: bool
    session_id: str | None
    message: str | None = None
    message_id: str | None = None
    timestamp: datetime | None = None
    # Internal error text (upstream failures); never serialized verbatim
    error: str | None = None
    error_type: str | None = None
    details: List[str] = field(default_factory=list)

    @property
    def is_validation_error(self) -> bool:
        return self.error_type == "validation-error"

    def to_payload(self) -> Dict[str, Any]:
        if self.is_validation_error:
            return {
                "success": False,
                "error": self.message,
                "details": list(self.details),
            }
        payload: Dict[str, Any] = {
            "success": self.success,
            "message": self.message,
            "sessionId": self.session_id,
            "messageId": self.message_id,
            "timestamp": (
                self.timestamp.isoformat() if self.timestamp else None
            ),
        }
        if not self.success:
            payload["error"] = self.error_type
        return payload


class SessionSerializer:
    """One asyncio.Lock per active session id; dropped once idle."""

    def __init__(self) -> None:
        self._locks: Dict[str, tuple[asyncio.Lock, int]] = {}

    @asynccontextmanager
    async def hold(self, session_id: str) -> AsyncIterator[None]:
        lock, users = self._locks.get(session_id, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._locks[session_id] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._locks[session_id]
            if users <= 1:
                del self._locks[session_id]
            else:
                self._locks[session_id] = (lock, users - 1)

    def __len__(self) -> int:
        return len(self._locks)


class ConversationService:
    def __init__(
        self,
        store: SessionStore,
        provider: ChatProvider,
        validator: InputValidator,
        settings: ConversationSettings,
    ) -> None:
        self.store = store
        self.provider = provider
        self.validator = validator
        self.settings = settings
        self._serializer = SessionSerializer()

    # --- context ----------------------------------------------------------
    def build_context(self, session_id: str) -> List[ChatTurn]:
        """System instruction followed by the last N stored messages."""
        recent = self.store.get_messages(
            session_id, self.settings.context_window
        )
        turns = [ChatTurn("system", self.settings.system_prompt)]
        turns.extend(ChatTurn(m.role, m.content) for m in recent)
        return turns

    # --- main flow --------------------------------------------------------
    async def process_message(
        self,
        session_id: Any,
        message: Any,
        options: Any = None,
    ) -> ConversationResult:
        sid_check = self.validator.validate_session_id(session_id)
        if not sid_check.valid:
            logger.warning(
                "Invalid sessionId: %s", ", ".join(sid_check.errors)
            )
            return ConversationResult(
                success=False,
                session_id=None,
                message="Invalid sessionId",
                error_type="validation-error",
                details=sid_check.errors,
            )
        msg_check = self.validator.validate_message(message)
        if not msg_check.valid:
            logger.warning(
                "Invalid message for session %s: %s",
                sid_check.sanitized,
                ", ".join(msg_check.errors),
            )
            return ConversationResult(
                success=False,
                session_id=sid_check.sanitized,
                message="Invalid message",
                error_type="validation-error",
                details=msg_check.errors,
            )
        return await self.respond(
            sid_check.sanitized, msg_check.sanitized, options
        )

    async def respond(
        self, session_id: str, text: str, options: Any = None
    ) -> ConversationResult:
        """Run one exchange for an already validated id and sanitized text."""
        opts = self.validator.validate_options(options)
        if self.settings.serialize_per_session:
            async with self._serializer.hold(session_id):
                return await self._exchange(session_id, text, opts)
        return await self._exchange(session_id, text, opts)

    def _session_gone(self, session_id: str) -> bool:
        # cleared while the upstream call was pending
        if self.store.get_session(session_id) is not None:
            return False
        logger.warning(
            "Session %s was cleared before its reply was stored", session_id
        )
        metrics.inc("chat_replies_dropped_total")
        return True

    async def _exchange(
        self, session_id: str, text: str, options: GenerationOptions
    ) -> ConversationResult:
        self.store.create_or_update_session(session_id)
        self.store.append_message(session_id, "user", text)
        logger.info("User message stored: session=%s", session_id)

        context = self.build_context(session_id)
        resolved = options.resolve(self.settings.defaults)
        try:
            completion = await self.provider.complete(context, resolved)
        except Exception as e:  # noqa: BLE001
            return self._recover(session_id, e)

        if self._session_gone(session_id):
            return ConversationResult(
                success=True,
                session_id=session_id,
                message=completion.text,
                timestamp=datetime.now(timezone.utc),
            )
        reply = self.store.append_message(
            session_id,
            "assistant",
            completion.text,
            {"model": completion.model, "latency_ms": completion.latency_ms},
        )
        logger.info(
            "Assistant reply stored: session=%s latency_ms=%s",
            session_id,
            completion.latency_ms,
        )
        return ConversationResult(
            success=True,
            session_id=session_id,
            message=reply.content,
            message_id=reply.id,
            timestamp=reply.timestamp,
        )

    def _recover(self, session_id: str, exc: Exception) -> ConversationResult:
        error_type = map_exception(exc, "llm")
        metrics.inc("llm_errors_total", {"error_type": error_type})
        logger.error(
            "Upstream call failed session=%s type=%s: %s",
            session_id,
            error_type,
            clean_for_logging(str(exc)),
            exc_info=error_type not in {"upstream-timeout", "upstream-empty"},
        )
        if self._session_gone(session_id):
            return ConversationResult(
                success=False,
                session_id=session_id,
                message=self.settings.error_reply,
                timestamp=datetime.now(timezone.utc),
                error=str(exc),
                error_type="upstream-error",
            )
        apology = self.store.append_message(
            session_id,
            "assistant",
            self.settings.error_reply,
            {"error": True, "original_error": str(exc)},
        )
        return ConversationResult(
            success=False,
            session_id=session_id,
            message=apology.content,
            message_id=apology.id,
            timestamp=apology.timestamp,
            error=str(exc),
            error_type="upstream-error",
        )

    # --- pass-throughs ----------------------------------------------------
    def get_session_history(
        self, session_id: str, limit: int = 50
    ) -> Dict[str, Any]:
        if self.store.get_session(session_id) is None:
            return {
                "success": False,
                "message": SESSION_NOT_FOUND,
                "messages": [],
            }
        messages = self.store.get_messages(session_id, limit)
        return {
            "success": True,
            "sessionId": session_id,
            "messages": [m.to_public() for m in messages],
            "totalMessages": len(messages),
        }

    def clear_session(self, session_id: str) -> Dict[str, Any]:
        if self.store.delete_session(session_id):
            logger.info("Session cleared: %s", session_id)
            return {"success": True, "message": "Session cleared"}
        return {"success": False, "message": SESSION_NOT_FOUND}

    def stats(self) -> Dict[str, Any]:
        store_stats = self.store.stats()
        defaults = self.settings.defaults
        return {
            "totalSessions": store_stats["sessionCount"],
            "totalMessages": store_stats["messageCount"],
            "llmAvailable": self.provider.is_available(),
            "defaultModel": defaults.model,
            "maxTokens": defaults.max_tokens,
            "temperature": defaults.temperature,
            "activeSessionLocks": len(self._serializer),
        }


__all__ = [
    "ConversationService",
    "ConversationSettings",
    "ConversationResult",
    "SessionSerializer",
    "SESSION_NOT_FOUND",
]
