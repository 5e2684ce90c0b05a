"""Per-device fixed-window rate limiting for hardware ingestion.

Each device key gets a window of ``window_seconds`` that starts with its
first request. Up to ``max_requests`` are admitted per window; later requests
are rejected until the window expires and a fresh one begins.

The window is fixed, not sliding: a device that bursts at the end of one
window and again at the start of the next can get up to ``2 * max_requests``
requests through in a short span. Entries are never evicted, so the table
grows with the number of distinct device ids seen by the process.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

logger = logging.getLogger("solar.dashboard.rate_limit")


@dataclass(slots=True)
class RateLimitEntry:
    device_key: str
    count: int
    window_reset_at: float


@dataclass(frozen=True, slots=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after_seconds: int

    def headers(self) -> dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after_seconds)
        return headers


class FixedWindowRateLimiter:
    def __init__(
        self,
        *,
        window_seconds: float = 60.0,
        max_requests: int = 120,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        self.window_seconds = float(window_seconds)
        self.max_requests = int(max_requests)
        self._clock = clock
        self._entries: Dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()

    def check(self, key: str, *, now: Optional[float] = None) -> RateLimitDecision:
        """Count one request for ``key`` and report whether it is admitted."""
        current = self._clock() if now is None else now
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or current > entry.window_reset_at:
                entry = RateLimitEntry(device_key=key, count=1, window_reset_at=current + self.window_seconds)
                self._entries[key] = entry
                return self._decision(entry, allowed=True, now=current)

            if entry.count >= self.max_requests:
                decision = self._decision(entry, allowed=False, now=current)
                logger.warning(
                    "Rate limit exceeded for %s (limit=%d, retry_after=%ss)",
                    key,
                    self.max_requests,
                    decision.retry_after_seconds,
                )
                return decision

            entry.count += 1
            return self._decision(entry, allowed=True, now=current)

    def snapshot(self, key: str) -> Optional[RateLimitEntry]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            return RateLimitEntry(entry.device_key, entry.count, entry.window_reset_at)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def _decision(self, entry: RateLimitEntry, *, allowed: bool, now: float) -> RateLimitDecision:
        remaining = max(0, self.max_requests - entry.count) if allowed else 0
        retry_after = max(1, math.ceil(entry.window_reset_at - now))
        return RateLimitDecision(
            allowed=allowed,
            limit=self.max_requests,
            remaining=remaining,
            reset_at=entry.window_reset_at,
            retry_after_seconds=retry_after,
        )


__all__ = ["FixedWindowRateLimiter", "RateLimitDecision", "RateLimitEntry"]
