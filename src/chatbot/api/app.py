"""FastAPI application factory for the chatbot backend.

``create_app`` builds the component graph once (store, validator, limiters,
conversation service, socket registry) and keeps it in
``app.state.container``. Routes reach it through ``deps.get_container``.
"""
from __future__ import annotations

import asyncio
import logging
import os
import platform
import sys
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from core import metrics
from core.config import AggregatedConfig, ConfigError, get_config, require_api_key
from core.llm import ChatProvider, OpenAIChatProvider
from core.log import configure_logging

from chatbot.api.connections import ConnectionRegistry
from chatbot.api.conversation import ConversationService, ConversationSettings
from chatbot.api.deps import (
    AppContainer,
    RateLimitExceeded,
    client_ip,
)
from chatbot.api.rate_limiter import RateLimiterRegistry
from chatbot.api.routes import chat as chat_routes
from chatbot.api.routes import socket as socket_routes
from chatbot.api.session_store import SessionStore
from chatbot.api.validation import InputValidator

logger = logging.getLogger(__name__)

VERSION = "0.1.0"

SECURITY_HEADERS = {
    "Content-Security-Policy": (
        "default-src 'self'; style-src 'self' 'unsafe-inline'; "
        "script-src 'self'; img-src 'self' data: https:"
    ),
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
}


def build_container(
    cfg: AggregatedConfig,
    provider: ChatProvider,
    store_clock: Callable[[], datetime] | None = None,
    limiter_clock: Callable[[], float] | None = None,
) -> AppContainer:
    store = SessionStore(cfg.session.ttl_seconds, clock=store_clock)
    validator = InputValidator(
        max_message_length=cfg.chat.max_message_length,
        allowed_models=cfg.llm.allowed_models,
        max_tokens_limit=cfg.llm.max_tokens_limit,
    )
    service = ConversationService(
        store, provider, validator, ConversationSettings.from_config(cfg)
    )
    return AppContainer(
        config=cfg,
        store=store,
        validator=validator,
        limiters=RateLimiterRegistry.from_config(
            cfg.rate_limits, clock=limiter_clock
        ),
        service=service,
        connections=ConnectionRegistry(),
    )


def run_sweep_once(container: AppContainer) -> dict:
    expired = container.store.sweep_expired()
    keys = container.limiters.sweep_all()
    if expired or keys:
        logger.info(
            "Housekeeping: expired_sessions=%d expired_rate_keys=%d",
            len(expired),
            keys,
        )
    return {"sessions": len(expired), "rateKeys": keys}


async def _sweeper(container: AppContainer, interval_s: float) -> None:
    while True:
        await asyncio.sleep(interval_s)
        try:
            run_sweep_once(container)
        except Exception:  # noqa: BLE001
            logger.exception("Housekeeping sweep failed")


def _fatal_loop_handler(loop: asyncio.AbstractEventLoop, context: dict) -> None:
    exc = context.get("exception")
    logger.critical(
        "Unhandled asyncio error: %s",
        context.get("message", "unknown"),
        exc_info=(type(exc), exc, exc.__traceback__) if exc else None,
    )
    logging.shutdown()
    os._exit(1)


def _fatal_excepthook(exc_type, exc, tb) -> None:
    logger.critical("Uncaught exception", exc_info=(exc_type, exc, tb))


@asynccontextmanager
async def lifespan(app: FastAPI):
    container: AppContainer = app.state.container
    if getattr(app.state, "fatal_handlers", False):
        asyncio.get_running_loop().set_exception_handler(_fatal_loop_handler)
    sweeper = asyncio.create_task(
        _sweeper(container, container.config.session.sweep_interval_s)
    )
    logger.info(
        "Chatbot backend started (env=%s, prefix=%s, ws=%s)",
        container.config.server.environment,
        container.config.server.api_prefix,
        container.config.server.ws_path,
    )
    try:
        yield
    finally:
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass
        await container.service.provider.aclose()
        logger.info("Chatbot backend stopped")


def available_endpoints(cfg: AggregatedConfig) -> list[str]:
    return [
        "GET /",
        "GET /info",
        *chat_routes.endpoint_list(cfg.server.api_prefix),
        f"WS {cfg.server.ws_path}",
    ]


def create_app(
    config: AggregatedConfig | None = None,
    provider: ChatProvider | None = None,
    *,
    store_clock: Callable[[], datetime] | None = None,
    limiter_clock: Callable[[], float] | None = None,
) -> FastAPI:
    cfg = config if config is not None else get_config()
    if provider is None:
        require_api_key(cfg)
        provider = OpenAIChatProvider(cfg.llm)
    app = FastAPI(
        title="Chatbot Backend API",
        version=VERSION,
        docs_url=None,
        redoc_url=None,
        lifespan=lifespan,
    )
    container = build_container(cfg, provider, store_clock, limiter_clock)
    app.state.container = container
    server = cfg.server

    # --- middleware (last added runs outermost) ---------------------------
    @app.middleware("http")
    async def _general_rate_limit_mw(request: Request, call_next):
        decision = container.limiters.hit("general", client_ip(request))
        if decision is not None and not decision.allowed:
            exc = RateLimitExceeded("general", decision)
            return JSONResponse(
                status_code=429,
                content=exc.to_payload(),
                headers={"Retry-After": str(decision.retry_after_s)},
            )
        return await call_next(request)

    @app.middleware("http")
    async def _metrics_mw(request: Request, call_next):
        start = time.perf_counter()
        labels = {"route": request.url.path, "method": request.method}
        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            return response
        finally:
            duration_ms = (time.perf_counter() - start) * 1000.0
            metrics.inc("api_request_total", labels)
            metrics.observe("api_request_latency_ms", duration_ms, labels)
            if status >= 400:
                metrics.inc(
                    "api_request_errors_total", labels | {"status": status}
                )
            logger.info(
                "%s %s -> %d (%.1f ms) ip=%s",
                request.method,
                request.url.path,
                status,
                duration_ms,
                client_ip(request),
            )

    if server.security_headers:

        @app.middleware("http")
        async def _security_headers_mw(request: Request, call_next):
            response = await call_next(request)
            for name, value in SECURITY_HEADERS.items():
                response.headers.setdefault(name, value)
            return response

    origins = [o.strip() for o in server.cors_origin.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    # --- error handlers ---------------------------------------------------
    @app.exception_handler(RateLimitExceeded)
    async def _rate_limited(request: Request, exc: RateLimitExceeded):
        return JSONResponse(
            status_code=429,
            content=exc.to_payload(),
            headers={"Retry-After": str(exc.decision.retry_after_s)},
        )

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return JSONResponse(
                status_code=404,
                content={
                    "success": False,
                    "error": "Endpoint not found",
                    "message": (
                        f"Route {request.method} {request.url.path} "
                        "does not exist"
                    ),
                    "availableEndpoints": available_endpoints(cfg),
                },
            )
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def _bad_request(request: Request, exc: RequestValidationError):
        details = [
            f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}"
            for err in exc.errors()
        ]
        logger.warning(
            "Rejected malformed request %s %s", request.method, request.url.path
        )
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "error": "Invalid request",
                "details": details,
            },
        )

    @app.exception_handler(Exception)
    async def _internal_error(request: Request, exc: Exception):
        logger.error(
            "Unhandled error on %s %s",
            request.method,
            request.url.path,
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": "Internal server error",
                "message": "Something went wrong",
            },
        )

    # --- routes -----------------------------------------------------------
    app.include_router(chat_routes.router, prefix=server.api_prefix)
    app.add_api_websocket_route(server.ws_path, socket_routes.websocket_endpoint)

    @app.get("/")
    async def root():
        return {
            "message": "Chatbot Backend",
            "version": VERSION,
            "status": "running",
            "environment": server.environment,
            "endpoints": available_endpoints(cfg),
        }

    @app.get("/info")
    async def info():
        return {
            "name": "chatbot-backend",
            "version": VERSION,
            "python": platform.python_version(),
            "platform": platform.platform(),
            "pid": os.getpid(),
            "uptime": container.uptime_s(),
            "memory": chat_routes.memory_snapshot(),
            "environment": server.environment,
            "rateLimitsEnabled": container.limiters.enabled,
        }

    return app


def main() -> None:  # pragma: no cover
    import uvicorn

    configure_logging()
    try:
        cfg = get_config()
        configure_logging(cfg.logging)
        require_api_key(cfg)
    except ConfigError as e:
        logger.critical("Configuration error: %s", e)
        sys.exit(1)
    sys.excepthook = _fatal_excepthook
    app = create_app(cfg)
    app.state.fatal_handlers = True
    logger.info(
        "Listening on %s:%d (model=%s)",
        cfg.server.host,
        cfg.server.port,
        cfg.llm.model,
    )
    uvicorn.run(app, host=cfg.server.host, port=cfg.server.port)


if __name__ == "__main__":  # pragma: no cover
    main()
