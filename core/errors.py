"""Central error taxonomy.

Every error surfaced to a caller (REST body, socket ``error`` event, log
record, metric label) is tagged with one of the codes below.
"""
from __future__ import annotations

_ALLOWED_ERROR_TYPES = {
    # request
    "validation-error",
    "rate-limited",
    "not-found",
    "protocol-error",
    # upstream llm
    "upstream-error",
    "upstream-timeout",
    "upstream-empty",
    # infra
    "internal-error",
    # config
    "config-invalid",
    "config-out-of-range",
    "config-missing",
}


def validate_error_type(code: str) -> str:
    assert (
        code in _ALLOWED_ERROR_TYPES
    ), f"Unknown error_type '{code}' (not in taxonomy)"
    return code


def map_exception(e: Exception, phase: str) -> str:
    """Best-effort classification of an arbitrary exception.

    ``phase`` is ``"llm"`` for the upstream call, anything else is treated
    as request handling.
    """
    explicit = getattr(e, "error_type", None)
    if isinstance(explicit, str) and explicit in _ALLOWED_ERROR_TYPES:
        return explicit
    name = e.__class__.__name__.lower()
    msg = str(e).lower()
    if phase == "llm":
        if "timeout" in name or "timed out" in msg or "timeout" in msg:
            return "upstream-timeout"
        if "empty" in name:
            return "upstream-empty"
        return "upstream-error"
    if isinstance(e, KeyError) or "notfound" in name:
        return "not-found"
    if isinstance(e, ValueError):
        return "validation-error"
    return "internal-error"


__all__ = ["validate_error_type", "map_exception"]
