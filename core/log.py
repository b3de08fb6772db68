"""Logging setup.

Console handler always; ``error.log`` (ERROR and above) and ``combined.log``
files when ``logging.dir`` is configured. JSON format emits one object per
line with a fixed ``service`` field.
"""
from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone

from core.config.schemas.observability import LoggingConfig

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}
# Marker so repeated configure_logging() calls replace only our handlers
_HANDLER_ATTR = "_chatbot_handler"


class JsonFormatter(logging.Formatter):
    def __init__(self, service: str) -> None:
        super().__init__()
        self._service = service

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        payload = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
            "service": self._service,
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def _text_formatter(service: str) -> logging.Formatter:
    return logging.Formatter(
        f"[%(asctime)s] %(levelname)s {service} %(name)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def configure_logging(cfg: LoggingConfig | None = None) -> logging.Logger:
    """Install handlers on the root logger; returns the root logger."""
    cfg = cfg or LoggingConfig()
    root = logging.getLogger()
    for h in list(root.handlers):
        if getattr(h, _HANDLER_ATTR, False):
            root.removeHandler(h)
            h.close()
    root.setLevel(_LEVELS.get(cfg.level, logging.INFO))

    if cfg.format == "json":
        formatter: logging.Formatter = JsonFormatter(cfg.service)
    else:
        formatter = _text_formatter(cfg.service)

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if cfg.dir:
        os.makedirs(cfg.dir, exist_ok=True)
        err = logging.FileHandler(
            os.path.join(cfg.dir, "error.log"), encoding="utf-8"
        )
        err.setLevel(logging.ERROR)
        handlers.append(err)
        handlers.append(
            logging.FileHandler(
                os.path.join(cfg.dir, "combined.log"), encoding="utf-8"
            )
        )
    for h in handlers:
        h.setFormatter(formatter)
        setattr(h, _HANDLER_ATTR, True)
        root.addHandler(h)
    return root


__all__ = ["configure_logging", "JsonFormatter"]
