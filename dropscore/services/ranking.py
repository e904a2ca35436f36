"""Rank computation against the authoritative score store."""

from __future__ import annotations

from dataclasses import dataclass

from dropscore.models.entries import LeaderboardEntry, ScoreEntry
from dropscore.storage.scores import ScoreStore


@dataclass(frozen=True, slots=True)
class PlayerStanding:
    best: ScoreEntry
    rank: int
    total_submissions: int


def to_leaderboard_entry(entry: ScoreEntry, rank: int) -> LeaderboardEntry:
    return LeaderboardEntry(
        rank=rank,
        player_initials=entry.player_initials,
        calculated_score=entry.calculated_score,
        survival_time_seconds=entry.survival_time_seconds,
        achieved_at=entry.submitted_at,
        score_id=entry.id,
    )


class RankingEngine:
    def __init__(self, store: ScoreStore):
        self.store = store

    async def rank(self, entry: ScoreEntry) -> int:
        # Higher score wins; on equal score the earlier submission wins.
        return await self.store.count_outranking(entry) + 1

    async def refresh_top_n(self, n: int) -> list[LeaderboardEntry]:
        rows = await self.store.query_top_n(n)
        return [to_leaderboard_entry(entry, rank) for rank, entry in enumerate(rows, start=1)]

    async def standing(self, initials: str) -> PlayerStanding | None:
        history = await self.store.query_by_player(initials)
        if not history:
            return None
        best = history[0]
        return PlayerStanding(
            best=best,
            rank=await self.rank(best),
            total_submissions=len(history),
        )
