"""Materialized top-N view with TTL, freshness tokens, and coalesced refresh."""

from __future__ import annotations

import asyncio
import hashlib
import logging
from datetime import timedelta
from typing import Sequence

from dropscore.clock import Clock
from dropscore.models.entries import CacheEntry, LeaderboardEntry
from dropscore.services.ranking import RankingEngine

logger = logging.getLogger(__name__)

EMPTY_TOKEN = '"empty"'


def compute_freshness_token(entries: Sequence[LeaderboardEntry]) -> str:
    """Hash only what readers see as ordering and membership."""
    if not entries:
        return EMPTY_TOKEN
    content = "\n".join(
        f"{entry.rank}|{entry.player_initials}|{entry.calculated_score}" for entry in entries
    )
    digest = hashlib.sha256(content.encode("utf-8")).hexdigest()
    return f'"{digest[:16]}"'


class LeaderboardCache:
    """Serves the top-N view and refreshes it at most once at a time.

    All state is touched only from the event loop and no method awaits
    between reading and updating it, so no lock is needed. Concurrent misses
    share one refresh task instead of each querying the store.
    """

    def __init__(self, ranking: RankingEngine, clock: Clock, top_n: int, ttl: timedelta):
        self.ranking = ranking
        self.clock = clock
        self.top_n = top_n
        self.ttl = ttl
        self._entry: CacheEntry | None = None
        self._entry_version = -1
        self._version = 0
        self._refresh_task: asyncio.Task[CacheEntry] | None = None

    def invalidate(self) -> None:
        # Lazy: the next get() recomputes, so write bursts cost one refresh.
        self._version += 1

    def peek(self) -> CacheEntry | None:
        return self._entry

    def is_fresh(self) -> bool:
        return (
            self._entry is not None
            and self._entry_version == self._version
            and self._entry.is_fresh(self.clock.now())
        )

    async def get(self) -> CacheEntry:
        if self.is_fresh():
            return self._entry
        task = self._refresh_task
        if task is None:
            task = asyncio.ensure_future(self._refresh(self._version))
            self._refresh_task = task
        # A cancelled reader must not cancel the refresh other readers share.
        return await asyncio.shield(task)

    async def _refresh(self, version: int) -> CacheEntry:
        try:
            entries = await self.ranking.refresh_top_n(self.top_n)
        except Exception:
            self._refresh_task = None
            if self._entry is None:
                raise
            logger.warning(
                "Leaderboard refresh failed; serving last known-good entry "
                f"generated at {self._entry.generated_at.isoformat()}",
                exc_info=True,
            )
            return self._entry

        entry = CacheEntry(
            entries=tuple(entries),
            generated_at=self.clock.now(),
            freshness_token=compute_freshness_token(entries),
            ttl=self.ttl,
        )
        self._entry = entry
        self._entry_version = version
        self._refresh_task = None
        if version != self._version:
            logger.debug("Leaderboard invalidated during refresh; next read will refresh again")
        return entry
