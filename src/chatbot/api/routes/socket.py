"""WebSocket event channel.

Frames are JSON objects ``{"event": <name>, "data": {...}}`` in both
directions. ``user-message`` runs as a per-connection task so ``ping`` and
session events keep flowing while a reply is generated.
"""
from __future__ import annotations

import asyncio
import functools
import json
import logging
import time
from typing import Any, Awaitable, Callable, Dict

from fastapi import WebSocket

from core import metrics

from chatbot.api.connections import Connection
from chatbot.api.deps import RATE_LIMIT_MESSAGES, AppContainer, get_container
from chatbot.api.rate_limiter import RateDecision
from chatbot.api.validation import clean_for_logging

logger = logging.getLogger(__name__)

Handler = Callable[[AppContainer, Connection, Dict[str, Any]], Awaitable[None]]


def _decode_frame(message: Dict[str, Any]) -> tuple[str, Dict[str, Any]] | None:
    raw = message.get("text")
    if raw is None and message.get("bytes") is not None:
        try:
            raw = message["bytes"].decode("utf-8")
        except UnicodeDecodeError:
            return None
    if raw is None:
        return None
    try:
        frame = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(frame, dict):
        return None
    event = frame.get("event")
    data = frame.get("data")
    if data is None:
        data = {}
    if not isinstance(event, str) or not isinstance(data, dict):
        return None
    return event, data


async def _emit_error(
    conn: Connection, err_type: str, message: str, details: Any = None
) -> None:
    payload: Dict[str, Any] = {"type": err_type, "message": message}
    if details is not None:
        payload["details"] = details
    await conn.emit("error", payload)


async def _emit_rate_limited(
    conn: Connection, bucket: str, decision: RateDecision
) -> None:
    await conn.emit(
        "error",
        {
            "type": "rate_limit",
            "message": RATE_LIMIT_MESSAGES[bucket],
            "retryAfter": decision.retry_after_s,
        },
    )


async def _validated_session(
    container: AppContainer, conn: Connection, raw: Any
) -> str | None:
    check = container.validator.validate_session_id(raw)
    if not check.valid:
        await _emit_error(conn, "validation", "Invalid sessionId", check.errors)
        return None
    return check.sanitized


async def on_user_message(
    container: AppContainer, conn: Connection, data: Dict[str, Any]
) -> None:
    raw_sid = data.get("sessionId")
    logger.info(
        "Message received from %s for session: %s",
        conn.id,
        clean_for_logging(raw_sid),
    )
    try:
        sid = await _validated_session(container, conn, raw_sid)
        if sid is None:
            return
        msg_check = container.validator.validate_message(data.get("message"))
        if not msg_check.valid:
            await _emit_error(
                conn, "validation", "Invalid message", msg_check.errors
            )
            return
        decision = container.limiters.hit("session", sid)
        if decision is not None and not decision.allowed:
            await _emit_rate_limited(conn, "session", decision)
            return
        await conn.emit(
            "message-processing",
            {"sessionId": sid, "messageId": str(int(time.time() * 1000))},
        )
        result = await container.service.respond(
            sid, msg_check.sanitized, data.get("options")
        )
        payload = result.to_payload()
        sent = await conn.emit(
            "bot-reply",
            {
                "sessionId": payload["sessionId"],
                "message": payload["message"],
                "messageId": payload["messageId"],
                "timestamp": payload["timestamp"],
                "success": payload["success"],
            },
        )
        if sent:
            logger.info("Reply sent to %s for session: %s", conn.id, sid)
    except asyncio.CancelledError:
        raise
    except Exception:  # noqa: BLE001
        logger.exception("Failed processing message from %s", conn.id)
        await _emit_error(
            conn,
            "processing",
            "Error processing the message",
            "An internal server error occurred",
        )


async def on_join_session(
    container: AppContainer, conn: Connection, data: Dict[str, Any]
) -> None:
    raw = data.get("sessionId")
    if not raw:
        await _emit_error(conn, "validation", "sessionId is required")
        return
    sid = await _validated_session(container, conn, raw)
    if sid is None:
        return
    container.connections.join(conn, sid)
    logger.info("Socket %s joined session: %s", conn.id, sid)
    await conn.emit(
        "session-joined", {"sessionId": sid, "message": "Joined session"}
    )


async def on_leave_session(
    container: AppContainer, conn: Connection, data: Dict[str, Any]
) -> None:
    raw = data.get("sessionId")
    container.connections.leave(conn, raw if isinstance(raw, str) else None)
    logger.info("Socket %s left session", conn.id)
    await conn.emit("session-left", {"message": "Left session"})


async def on_get_history(
    container: AppContainer, conn: Connection, data: Dict[str, Any]
) -> None:
    sid = await _validated_session(container, conn, data.get("sessionId"))
    if sid is None:
        return
    chat_cfg = container.config.chat
    limit = data.get("limit", chat_cfg.history_default_limit)
    if (
        isinstance(limit, bool)
        or not isinstance(limit, int)
        or not (1 <= limit <= chat_cfg.history_max_limit)
    ):
        await _emit_error(
            conn,
            "validation",
            "Invalid limit",
            [f"limit must be a number between 1 and {chat_cfg.history_max_limit}"],
        )
        return
    await conn.emit(
        "history-response", container.service.get_session_history(sid, limit)
    )


async def on_clear_session(
    container: AppContainer, conn: Connection, data: Dict[str, Any]
) -> None:
    sid = await _validated_session(container, conn, data.get("sessionId"))
    if sid is None:
        return
    await conn.emit("session-cleared", container.service.clear_session(sid))


async def on_ping(
    container: AppContainer, conn: Connection, data: Dict[str, Any]
) -> None:
    await conn.emit("pong", {"timestamp": int(time.time() * 1000)})


HANDLERS: Dict[str, Handler] = {
    "join-session": on_join_session,
    "leave-session": on_leave_session,
    "get-history": on_get_history,
    "clear-session": on_clear_session,
    "ping": on_ping,
}
# error types reported when a synchronous handler fails unexpectedly
FAILURE_TYPES = {
    "join-session": ("session", "Error joining the session"),
    "get-history": ("history", "Error fetching the history"),
    "clear-session": ("clear", "Error clearing the session"),
}


def _task_done(conn: Connection, task: asyncio.Task) -> None:
    conn.tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(
            "Socket %s task failed",
            conn.id,
            exc_info=(type(exc), exc, exc.__traceback__),
        )


def _spawn(conn: Connection, coro: Awaitable[None]) -> asyncio.Task:
    task = asyncio.ensure_future(coro)
    conn.tasks.add(task)
    task.add_done_callback(functools.partial(_task_done, conn))
    return task


async def _dispatch(
    container: AppContainer, conn: Connection, event: str, data: Dict[str, Any]
) -> None:
    if event == "user-message":
        _spawn(conn, on_user_message(container, conn, data))
        return
    handler = HANDLERS.get(event)
    if handler is None:
        await _emit_error(conn, "protocol", f"Unknown event: {event}")
        return
    try:
        await handler(container, conn, data)
    except Exception:  # noqa: BLE001
        logger.exception("Socket %s failed handling %s", conn.id, event)
        err_type, message = FAILURE_TYPES.get(
            event, ("processing", "Error handling the event")
        )
        await _emit_error(conn, err_type, message)


async def websocket_endpoint(websocket: WebSocket) -> None:
    container = get_container(websocket)
    await websocket.accept()
    conn = container.connections.register(websocket)
    metrics.inc("ws_connections_total")
    logger.info("Client connected: %s", conn.id)
    reason = "client disconnect"
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            decision = container.limiters.hit("realtime", conn.id)
            if decision is not None and not decision.allowed:
                await _emit_rate_limited(conn, "realtime", decision)
                continue
            frame = _decode_frame(message)
            if frame is None:
                await _emit_error(conn, "protocol", "Malformed frame")
                continue
            event, data = frame
            metrics.inc("ws_events_total", {"event": event})
            await _dispatch(container, conn, event, data)
    except Exception as e:  # noqa: BLE001
        reason = type(e).__name__
        logger.warning("Socket %s closed with error: %s", conn.id, e)
    finally:
        for task in list(conn.tasks):
            task.cancel()
        container.connections.unregister(conn)
        container.limiters.forget(conn.id)
        logger.info("Client disconnected: %s, reason: %s", conn.id, reason)


__all__ = ["websocket_endpoint", "HANDLERS"]
