"""Process-local score store used by tests and single-node runs."""

from __future__ import annotations

import heapq
from collections import defaultdict
from datetime import datetime

from dropscore.models.entries import ScoreEntry
from dropscore.storage.scores import StoreConflict


class InMemoryScoreStore:
    # Every method finishes without awaiting, so each one is atomic with
    # respect to other tasks on the same event loop.

    def __init__(self):
        self._entries: dict[str, ScoreEntry] = {}
        self._by_player: dict[str, set[str]] = defaultdict(set)

    async def append(self, entry: ScoreEntry) -> None:
        if entry.id in self._entries:
            raise StoreConflict("append", entry.id, "score id already exists")
        self._entries[entry.id] = entry
        self._by_player[entry.player_initials].add(entry.id)

    async def query_by_player(self, initials: str) -> list[ScoreEntry]:
        ids = self._by_player.get(initials, ())
        return sorted((self._entries[i] for i in ids), key=ScoreEntry.ranking_key)

    async def query_top_n(self, n: int) -> list[ScoreEntry]:
        if n <= 0:
            return []
        return heapq.nsmallest(n, self._entries.values(), key=ScoreEntry.ranking_key)

    async def query_by_id(self, score_id: str) -> ScoreEntry | None:
        return self._entries.get(score_id)

    async def count_outranking(self, entry: ScoreEntry) -> int:
        return sum(
            1
            for other in self._entries.values()
            if other.id != entry.id and other.outranks(entry)
        )

    async def purge_older_than(self, cutoff: datetime) -> int:
        expired = [e for e in list(self._entries.values()) if e.submitted_at < cutoff]
        for entry in expired:
            self._entries.pop(entry.id, None)
            player_ids = self._by_player.get(entry.player_initials)
            if player_ids is not None:
                player_ids.discard(entry.id)
                if not player_ids:
                    del self._by_player[entry.player_initials]
        return len(expired)

    async def count(self) -> int:
        return len(self._entries)

    async def ping(self) -> bool:
        return True
