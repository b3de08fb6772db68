"""Fixed-window rate limiting keyed by client identity.

One ``FixedWindowRateLimiter`` per configured bucket. Each key holds a window
start and a counter; the window fully resets once it expires. Expired keys
are dropped by ``sweep`` so the key map stays bounded by active clients.
"""
from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict

from core import metrics
from core.config.schemas.rate_limits import RateLimitsConfig

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass(frozen=True, slots=True)
class RateDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after_s: int  # 0 when allowed
    reset_in_s: float


class _Window:
    __slots__ = ("started_at", "count")

    def __init__(self, started_at: float) -> None:
        self.started_at = started_at
        self.count = 0


class FixedWindowRateLimiter:
    def __init__(
        self,
        name: str,
        max_requests: int,
        window_s: float,
        clock: Clock | None = None,
    ) -> None:
        if max_requests <= 0 or window_s <= 0:
            raise ValueError("max_requests and window_s must be >0")
        self.name = name
        self.max_requests = max_requests
        self.window_s = window_s
        self._clock = clock or time.monotonic
        self._windows: Dict[str, _Window] = {}

    def _expired(self, w: _Window, now: float) -> bool:
        return now - w.started_at >= self.window_s

    def hit(self, key: str) -> RateDecision:
        now = self._clock()
        w = self._windows.get(key)
        if w is None or self._expired(w, now):
            w = _Window(now)
            self._windows[key] = w
        w.count += 1
        reset_in = max(0.0, w.started_at + self.window_s - now)
        if w.count > self.max_requests:
            metrics.inc("rate_limited_total", {"bucket": self.name})
            logger.warning(
                "Rate limit exceeded bucket=%s key=%s", self.name, key
            )
            return RateDecision(
                allowed=False,
                limit=self.max_requests,
                remaining=0,
                retry_after_s=max(1, math.ceil(reset_in)),
                reset_in_s=reset_in,
            )
        return RateDecision(
            allowed=True,
            limit=self.max_requests,
            remaining=self.max_requests - w.count,
            retry_after_s=0,
            reset_in_s=reset_in,
        )

    def reset(self, key: str) -> None:
        self._windows.pop(key, None)

    def sweep(self, now: float | None = None) -> int:
        ts = self._clock() if now is None else now
        expired = [k for k, w in self._windows.items() if self._expired(w, ts)]
        for k in expired:
            del self._windows[k]
        return len(expired)

    def stats(self) -> dict:
        return {
            "trackedKeys": len(self._windows),
            "maxRequests": self.max_requests,
            "windowSeconds": self.window_s,
        }


class RateLimiterRegistry:
    """Named limiters; ``get`` returns None for disabled limiting."""

    def __init__(
        self,
        limiters: Dict[str, FixedWindowRateLimiter] | None = None,
        enabled: bool = True,
    ) -> None:
        self._limiters = dict(limiters or {})
        self.enabled = enabled

    @classmethod
    def from_config(
        cls, cfg: RateLimitsConfig, clock: Clock | None = None
    ) -> "RateLimiterRegistry":
        limiters = {
            name: FixedWindowRateLimiter(
                name, bucket.max_requests, bucket.window_s, clock=clock
            )
            for name, bucket in cfg.buckets().items()
        }
        return cls(limiters, enabled=cfg.enabled)

    def get(self, name: str) -> FixedWindowRateLimiter | None:
        if not self.enabled:
            return None
        return self._limiters.get(name)

    def hit(self, name: str, key: str) -> RateDecision | None:
        """Count a hit; None means the bucket is not enforced."""
        limiter = self.get(name)
        if limiter is None:
            return None
        return limiter.hit(key)

    def forget(self, key: str) -> None:
        for limiter in self._limiters.values():
            limiter.reset(key)

    def sweep_all(self) -> int:
        return sum(lim.sweep() for lim in self._limiters.values())

    def stats(self) -> dict:
        return {name: lim.stats() for name, lim in self._limiters.items()}


__all__ = ["FixedWindowRateLimiter", "RateLimiterRegistry", "RateDecision"]
