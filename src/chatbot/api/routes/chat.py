"""REST chat routes: submit message, history, clear session, health, stats."""
from __future__ import annotations

import logging
import resource
import sys
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from core import metrics

from chatbot.api.deps import (
    AppContainer,
    enforce,
    get_container,
    rate_limit,
)
from chatbot.api.validation import clean_for_logging

logger = logging.getLogger(__name__)

router = APIRouter()

ENDPOINTS = [
    ("POST", "/chat"),
    ("GET", "/chat/history/:sessionId"),
    ("DELETE", "/chat/session/:sessionId"),
    ("GET", "/health"),
    ("GET", "/stats"),
]


def endpoint_list(prefix: str) -> list[str]:
    return [f"{method} {prefix}{path}" for method, path in ENDPOINTS]


class ChatRequest(BaseModel):
    # field types are checked by InputValidator
    sessionId: Any = None
    message: Any = None
    options: Any = None


def _invalid_session(errors: list[str]) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": "Invalid sessionId",
            "details": errors,
        },
    )


def _internal_error(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal server error",
            "message": message,
        },
    )


def memory_snapshot() -> dict:
    usage = resource.getrusage(resource.RUSAGE_SELF)
    return {
        "maxRssKb": usage.ru_maxrss,
        "allocatedBlocks": sys.getallocatedblocks(),
    }


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.post("/chat", dependencies=[Depends(rate_limit("chat"))])
async def post_chat(
    body: ChatRequest,
    container: AppContainer = Depends(get_container),
):
    logger.info(
        "Processing message for session: %s",
        clean_for_logging(body.sessionId),
    )
    if isinstance(body.sessionId, str) and body.sessionId:
        enforce(container, "session", body.sessionId)
    try:
        result = await container.service.process_message(
            body.sessionId, body.message, body.options
        )
    except Exception:  # noqa: BLE001
        logger.exception("Unexpected failure while processing chat message")
        return _internal_error("An error occurred while processing your message")
    if result.is_validation_error:
        return JSONResponse(status_code=400, content=result.to_payload())
    logger.info(
        "Reply generated for session: %s success=%s",
        result.session_id,
        result.success,
    )
    return result.to_payload()


@router.get("/chat/history/{session_id}")
async def get_history(
    session_id: str,
    limit: str | None = None,
    container: AppContainer = Depends(get_container),
):
    check = container.validator.validate_session_id(session_id)
    if not check.valid:
        logger.warning(
            "Invalid sessionId for history: %s", ", ".join(check.errors)
        )
        return _invalid_session(check.errors)
    chat_cfg = container.config.chat
    limit_num = chat_cfg.history_default_limit
    if limit is not None:
        try:
            limit_num = int(limit)
        except ValueError:
            limit_num = 0
    if not (1 <= limit_num <= chat_cfg.history_max_limit):
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "error": "Invalid limit",
                "message": (
                    "limit must be a number between 1 and "
                    f"{chat_cfg.history_max_limit}"
                ),
            },
        )
    history = container.service.get_session_history(check.sanitized, limit_num)
    logger.info(
        "History fetched for session: %s messages=%d",
        check.sanitized,
        len(history["messages"]),
    )
    return history


@router.delete("/chat/session/{session_id}")
async def delete_session(
    session_id: str,
    container: AppContainer = Depends(get_container),
):
    check = container.validator.validate_session_id(session_id)
    if not check.valid:
        logger.warning(
            "Invalid sessionId for clear: %s", ", ".join(check.errors)
        )
        return _invalid_session(check.errors)
    return container.service.clear_session(check.sanitized)


@router.get("/health", dependencies=[Depends(rate_limit("health"))])
async def health(container: AppContainer = Depends(get_container)):
    store_stats = container.store.stats()
    return {
        "status": "healthy",
        "timestamp": _now_iso(),
        "uptime": container.uptime_s(),
        "memory": memory_snapshot(),
        "llmAvailable": container.service.provider.is_available(),
        "sessions": store_stats["sessionCount"],
        "messages": store_stats["messageCount"],
    }


@router.get("/stats", dependencies=[Depends(rate_limit("admin"))])
async def stats(container: AppContainer = Depends(get_container)):
    return {
        "success": True,
        "stats": {
            **container.service.stats(),
            "uptime": container.uptime_s(),
            "websockets": container.connections.stats(),
            "rateLimits": container.limiters.stats(),
            "metrics": metrics.snapshot()["counters"],
        },
    }


@router.get("/")
async def index(
    request: Request,
    container: AppContainer = Depends(get_container),
):
    return {
        "message": "Chatbot Backend API",
        "version": request.app.version,
        "status": "running",
        "timestamp": _now_iso(),
        "endpoints": endpoint_list(container.config.server.api_prefix),
    }
