"""Per-player fixed-window submission limiting.

State is process-local and may be lost on restart; the worst case is a brief
relaxation of the limit, never a false rejection.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta

logger = logging.getLogger(__name__)

DEFAULT_LOCK_STRIPES = 64


@dataclass(slots=True)
class RateLimitWindow:
    window_start: datetime
    count: int


@dataclass(frozen=True, slots=True)
class RateLimitDecision:
    allowed: bool
    retry_after: int | None = None
    window_start: datetime | None = None


class RateLimiter:
    def __init__(
        self,
        limit: int,
        window: timedelta,
        name: str = "default",
        lock_stripes: int = DEFAULT_LOCK_STRIPES,
    ):
        if limit <= 0:
            raise ValueError("limit must be positive")
        if window <= timedelta(0):
            raise ValueError("window must be positive")
        if lock_stripes <= 0:
            raise ValueError("lock_stripes must be positive")
        self.limit = limit
        self.window = window
        self.name = name
        self._windows: dict[str, RateLimitWindow] = {}
        # A fixed pool of locks keyed by hash, so lock memory does not grow
        # with the number of players ever seen.
        self._locks = tuple(threading.Lock() for _ in range(lock_stripes))

    def _lock_for(self, key: str) -> threading.Lock:
        return self._locks[hash(key) % len(self._locks)]

    def consume(self, key: str, now: datetime) -> RateLimitDecision:
        with self._lock_for(key):
            current = self._windows.get(key)
            if current is None or now - current.window_start > self.window:
                self._windows[key] = RateLimitWindow(window_start=now, count=1)
                return RateLimitDecision(allowed=True, window_start=now)

            if current.count < self.limit:
                current.count += 1
                return RateLimitDecision(allowed=True, window_start=current.window_start)

            # Boundary comes from window_start, never from submission times.
            remaining = (current.window_start + self.window - now).total_seconds()
            retry_after = max(1, math.ceil(remaining))
            logger.debug(
                f"Rate limiter '{self.name}' rejected key={key} count={current.count} "
                f"retry_after={retry_after}s"
            )
            return RateLimitDecision(
                allowed=False,
                retry_after=retry_after,
                window_start=current.window_start,
            )

    def try_consume(self, key: str, now: datetime) -> bool:
        return self.consume(key, now).allowed

    def release(self, key: str, decision: RateLimitDecision) -> None:
        """Give back a slot taken by an allowed ``consume`` in the same window."""
        if not decision.allowed:
            return
        with self._lock_for(key):
            current = self._windows.get(key)
            if current is not None and current.window_start == decision.window_start and current.count > 0:
                current.count -= 1

    def window_for(self, key: str) -> RateLimitWindow | None:
        with self._lock_for(key):
            current = self._windows.get(key)
            if current is None:
                return None
            return RateLimitWindow(window_start=current.window_start, count=current.count)

    def tracked_keys(self) -> int:
        return len(self._windows)

    def purge_expired(self, now: datetime) -> int:
        """Drop windows that have expired; returns how many were removed."""
        removed = 0
        for key in list(self._windows.keys()):
            with self._lock_for(key):
                current = self._windows.get(key)
                if current is not None and now - current.window_start > self.window:
                    del self._windows[key]
                    removed += 1
        if removed:
            logger.debug(f"Rate limiter '{self.name}' purged {removed} expired windows")
        return removed
