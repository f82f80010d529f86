"""
RiskScope — Outbound Rate Limiting
Per-source token bucket, shared by every request in the process.

A caller reserves a token synchronously (no await between the read and the
update), then sleeps for however long its reservation is in the future.
Concurrent callers on the same loop therefore queue up in arrival order.
"""
import asyncio
import time
from typing import Dict, Any

import structlog

logger = structlog.get_logger()


class TokenBucket:
    """Refills `rate_per_sec` tokens per second up to `capacity`."""

    def __init__(self, rate_per_sec: float, capacity: float = 1.0) -> None:
        self.rate = rate_per_sec
        self.capacity = capacity
        self._tokens = capacity
        self._updated = time.monotonic()
        self._waits = 0

    @classmethod
    def from_interval_ms(cls, interval_ms: int) -> "TokenBucket":
        if interval_ms <= 0:
            return cls(rate_per_sec=0.0)
        return cls(rate_per_sec=1000.0 / interval_ms, capacity=1.0)

    def _refill(self) -> None:
        now = time.monotonic()
        self._tokens = min(self.capacity, self._tokens + (now - self._updated) * self.rate)
        self._updated = now

    def reserve(self) -> float:
        """Take one token; return seconds the caller must wait before using it."""
        if self.rate <= 0:
            return 0.0
        self._refill()
        self._tokens -= 1.0
        if self._tokens >= 0:
            return 0.0
        self._waits += 1
        return -self._tokens / self.rate

    async def acquire(self) -> None:
        wait = self.reserve()
        if wait > 0:
            await asyncio.sleep(wait)

    def stats(self) -> Dict[str, Any]:
        if self.rate > 0:
            self._refill()
        return {
            "rate_per_sec": round(self.rate, 3),
            "capacity": self.capacity,
            "tokens": round(self._tokens, 3),
            "throttled_calls": self._waits,
        }


_limiters: Dict[str, TokenBucket] = {}


def get_rate_limiter(source: str, interval_ms: int) -> TokenBucket:
    """One bucket per external source for the whole process."""
    bucket = _limiters.get(source)
    if bucket is None:
        bucket = TokenBucket.from_interval_ms(interval_ms)
        _limiters[source] = bucket
        logger.debug("rate_limiter_created", source=source, interval_ms=interval_ms)
    return bucket


def reset_rate_limiters() -> None:
    _limiters.clear()
