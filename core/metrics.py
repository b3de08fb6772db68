"""Minimal in-memory metrics collector.

Purpose:
    - Counters and simple latency samples for chat traffic, upstream calls
      and rate limiting.
    - Zero external deps; exposed read-only through the ``/stats`` route.

Core API (intentionally tiny):
    inc(name, labels=None, value=1)
    observe(name, value, labels=None)
    snapshot() -> dict (copy for safe reading)

Thread-safety: coarse RLock; overhead negligible for low event volume.

Metric names (documented for discoverability):
    - api_request_total{route,method}
    - api_request_latency_ms{route,method}
    - api_request_errors_total{route,method,status}
    - chat_messages_total{role}
    - llm_request_latency_ms{model}
    - llm_errors_total{error_type}
    - rate_limited_total{bucket}
    - suspicious_content_total{field}
    - sessions_expired_total
    - ws_connections_total
    - ws_events_total{event}
    - env_override_total{path}
"""
from __future__ import annotations

from threading import RLock
from time import time
from typing import Dict, Tuple, Any

_COUNTERS: Dict[Tuple[str, Tuple[Tuple[str, str], ...]], float] = {}
_HIST: Dict[Tuple[str, Tuple[Tuple[str, str], ...]], list] = {}
_LOCK = RLock()
# Latency samples kept per series; older samples are dropped.
_HIST_MAX_SAMPLES = 1024


def _norm_labels(labels: dict[str, Any] | None) -> Tuple[Tuple[str, str], ...]:
    if not labels:
        return tuple()
    return tuple(sorted((str(k), str(v)) for k, v in labels.items()))


def _series_name(name: str, labels: Tuple[Tuple[str, str], ...]) -> str:
    if not labels:
        return name
    return name + "{" + ",".join(f"{k}={v}" for k, v in labels) + "}"


def inc(
    name: str,
    labels: dict[str, Any] | None = None,
    value: float = 1.0,
) -> None:
    key = (name, _norm_labels(labels))
    with _LOCK:
        _COUNTERS[key] = _COUNTERS.get(key, 0.0) + value


def observe(
    name: str,
    value: float,
    labels: dict[str, Any] | None = None,
) -> None:
    key = (name, _norm_labels(labels))
    with _LOCK:
        samples = _HIST.setdefault(key, [])
        samples.append(value)
        if len(samples) > _HIST_MAX_SAMPLES:
            del samples[: len(samples) - _HIST_MAX_SAMPLES]


def snapshot() -> dict[str, Any]:
    with _LOCK:
        counters: dict[str, float] = {}
        for (name, labels), v in _COUNTERS.items():
            counters[_series_name(name, labels)] = v
        hist = {}
        for (name, labels), vals in _HIST.items():
            if not vals:
                continue
            ordered = sorted(vals)
            hist[_series_name(name, labels)] = {
                "count": len(vals),
                "min": ordered[0],
                "max": ordered[-1],
                "p50": ordered[len(ordered) // 2],
                "last": vals[-1],
            }
        return {
            "ts": time(),
            "counters": counters,
            "histograms": hist,
        }


def counter_value(name: str, labels: dict[str, Any] | None = None) -> float:
    """Return current value of a single counter series (0 when absent)."""
    with _LOCK:
        return _COUNTERS.get((name, _norm_labels(labels)), 0.0)


def reset_for_tests() -> None:  # pragma: no cover
    with _LOCK:
        _COUNTERS.clear()
        _HIST.clear()


__all__ = [
    "inc",
    "observe",
    "snapshot",
    "counter_value",
    "reset_for_tests",
]
