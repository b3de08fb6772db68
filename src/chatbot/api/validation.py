"""Input validation and sanitization for chat requests.

Sanitization escapes text for safe embedding in HTML and log contexts; it is
not semantic content filtering. The suspicious-content detector only flags
(logged + counted), it never rejects a request.
"""
from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Mapping

from core import metrics
from core.llm.types import GenerationOptions

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_MODELS = ("gpt-4o-mini", "gpt-4o", "gpt-3.5-turbo")
SESSION_ID_MAX_LENGTH = 100

_CONTROL_CHARS = re.compile(r"[\x00-\x1F\x7F]")
_SESSION_ID = re.compile(r"^[A-Za-z0-9_-]+$")
_WHITESPACE = re.compile(r"\s+")
# Order matters: "&" first so later entities are not double-escaped.
_HTML_ESCAPES = (
    ("&", "&amp;"),
    ("<", "&lt;"),
    (">", "&gt;"),
    ('"', "&quot;"),
    ("'", "&#x27;"),
    ("/", "&#x2F;"),
)
_SUSPICIOUS_PATTERNS = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"<script",
        r"javascript:",
        r"on\w+\s*=",
        r"eval\s*\(",
        r"expression\s*\(",
        r"vbscript:",
        r"data:text/html",
        r"data:application/javascript",
    )
)


@dataclass(slots=True)
class ValidationResult:
    valid: bool
    sanitized: str = ""
    errors: List[str] = field(default_factory=list)
    suspicious: bool = False


def sanitize_string(value: Any) -> str:
    """Trim, strip control characters, then HTML-escape."""
    if not isinstance(value, str):
        return ""
    text = _CONTROL_CHARS.sub("", value.strip())
    for needle, entity in _HTML_ESCAPES:
        text = text.replace(needle, entity)
    return text


def _sanitize_value(value: Any) -> Any:
    if isinstance(value, str):
        return sanitize_string(value)
    if isinstance(value, Mapping):
        return sanitize_input(value)
    if isinstance(value, (list, tuple)):
        return [_sanitize_value(v) for v in value]
    return value


def sanitize_input(data: Any) -> dict:
    """Recursively sanitize every string value of a mapping."""
    if not isinstance(data, Mapping):
        return {}
    return {key: _sanitize_value(value) for key, value in data.items()}


def contains_suspicious_content(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    return any(p.search(value) for p in _SUSPICIOUS_PATTERNS)


def clean_for_logging(value: Any, max_length: int = 200) -> str:
    text = value if isinstance(value, str) else str(value)
    text = _CONTROL_CHARS.sub("", text)
    text = _WHITESPACE.sub(" ", text).strip()
    return text[:max_length]


class InputValidator:
    def __init__(
        self,
        max_message_length: int = 4000,
        allowed_models: Iterable[str] = DEFAULT_ALLOWED_MODELS,
        max_tokens_limit: int = 4000,
    ) -> None:
        self.max_message_length = max_message_length
        self.allowed_models = frozenset(allowed_models)
        self.max_tokens_limit = max_tokens_limit

    def validate_session_id(self, raw: Any) -> ValidationResult:
        if raw is None or raw == "":
            return ValidationResult(False, errors=["sessionId is required"])
        if not isinstance(raw, str):
            return ValidationResult(
                False, errors=["sessionId must be a string"]
            )
        if not (1 <= len(raw) <= SESSION_ID_MAX_LENGTH):
            return ValidationResult(
                False,
                errors=[
                    "sessionId must be between 1 and "
                    f"{SESSION_ID_MAX_LENGTH} characters"
                ],
            )
        if not _SESSION_ID.match(raw):
            return ValidationResult(
                False,
                errors=[
                    "sessionId may only contain letters, digits, "
                    "hyphens and underscores"
                ],
            )
        return ValidationResult(True, sanitized=raw)

    def validate_message(self, raw: Any) -> ValidationResult:
        if raw is None or raw == "":
            return ValidationResult(False, errors=["message is required"])
        if not isinstance(raw, str):
            return ValidationResult(False, errors=["message must be a string"])
        if not raw.strip():
            return ValidationResult(False, errors=["message cannot be blank"])
        if len(raw) > self.max_message_length:
            return ValidationResult(
                False,
                errors=[
                    "message cannot exceed "
                    f"{self.max_message_length} characters"
                ],
            )
        sanitized = sanitize_string(raw)
        if not sanitized:
            return ValidationResult(
                False, errors=["message contains only invalid characters"]
            )
        suspicious = contains_suspicious_content(raw)
        if suspicious:
            metrics.inc("suspicious_content_total", {"field": "message"})
            logger.warning(
                "Suspicious content detected: %s", clean_for_logging(raw)
            )
        return ValidationResult(True, sanitized=sanitized, suspicious=suspicious)

    def validate_options(self, raw: Any) -> GenerationOptions:
        if not isinstance(raw, Mapping):
            return GenerationOptions()
        model = raw.get("model")
        if not (isinstance(model, str) and model in self.allowed_models):
            model = None
        temperature = _as_float(raw.get("temperature"))
        if temperature is not None and not (0 <= temperature <= 2):
            temperature = None
        max_tokens = _as_int(
            raw.get("maxTokens", raw.get("max_tokens"))
        )
        if max_tokens is not None and not (
            0 < max_tokens <= self.max_tokens_limit
        ):
            max_tokens = None
        return GenerationOptions(
            model=model, temperature=temperature, max_tokens=max_tokens
        )


def _as_float(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        out = float(value)
    except (TypeError, ValueError):
        return None
    return out if math.isfinite(out) else None


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


__all__ = [
    "InputValidator",
    "ValidationResult",
    "sanitize_string",
    "sanitize_input",
    "contains_suspicious_content",
    "clean_for_logging",
]
