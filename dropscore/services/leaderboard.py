"""Core leaderboard operations: the submission write path and cached reads."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Sequence

from dropscore.clock import Clock
from dropscore.models.entries import CacheEntry, RawSubmission, ScoreEntry, build_score_entry
from dropscore.services.cache import LeaderboardCache
from dropscore.services.rate_limiter import RateLimiter
from dropscore.services.ranking import PlayerStanding, RankingEngine
from dropscore.services.scoring import ScoringFunction, calculate_score
from dropscore.services.validation import Rejected, ValidationPipeline
from dropscore.storage.scores import ScoreStore, StoreError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SubmissionReceipt:
    entry: ScoreEntry
    rank: int | None
    is_personal_best: bool
    previous_best: float | None
    total_submissions: int


@dataclass(slots=True)
class LeaderboardStats:
    total_entries: int
    highest_score: int | None
    lowest_score: int | None
    average_score: float | None
    freshness_token: str


@dataclass(slots=True)
class PurgeResult:
    purged: int
    cutoff: datetime


class SubmissionRejected(Exception):
    """Raised when a submission fails validation."""

    def __init__(self, rejection: Rejected):
        self.rejection = rejection
        super().__init__(f"{rejection.code.value}: {rejection.reason}")


class PlayerNotFoundError(Exception):
    """Raised when a player has no stored scores."""


class ScoreNotFoundError(Exception):
    """Raised when a score id is unknown."""


class LeaderboardService:
    def __init__(
        self,
        store: ScoreStore,
        pipeline: ValidationPipeline,
        cache: LeaderboardCache,
        ranking: RankingEngine,
        clock: Clock,
        scoring: ScoringFunction = calculate_score,
        retention: timedelta = timedelta(days=90),
        rate_limiters: Sequence[RateLimiter] = (),
    ):
        self.store = store
        self.pipeline = pipeline
        self.cache = cache
        self.ranking = ranking
        self.clock = clock
        self.scoring = scoring
        self.retention = retention
        self.rate_limiters = list(rate_limiters)

    async def submit_score(self, submission: RawSubmission) -> SubmissionReceipt:
        now = self.clock.now()
        result = self.pipeline.validate(submission, now)
        if isinstance(result, Rejected):
            raise SubmissionRejected(result)

        accepted = result.submission
        history = await self.store.query_by_player(accepted.player_initials)
        entry = build_score_entry(accepted, self.scoring(accepted.survival_time_seconds), now)

        try:
            await self.store.append(entry)
        except StoreError:
            logger.exception(
                f"Failed to persist score for player {entry.player_initials} (id={entry.id})"
            )
            raise
        # Conservatively assume every write can touch the top N.
        self.cache.invalidate()

        try:
            rank = await self.ranking.rank(entry)
        except StoreError:
            # The entry is stored; only the rank lookup failed.
            logger.warning(f"Rank lookup failed for persisted score {entry.id}", exc_info=True)
            rank = None

        previous_best = history[0].survival_time_seconds if history else None
        is_personal_best = previous_best is None or entry.survival_time_seconds > previous_best
        logger.info(
            f"Accepted score for player {entry.player_initials}: "
            f"{entry.survival_time_seconds:.2f}s -> {entry.calculated_score} points, rank={rank}"
        )
        return SubmissionReceipt(
            entry=entry,
            rank=rank,
            is_personal_best=is_personal_best,
            previous_best=previous_best,
            total_submissions=len(history) + 1,
        )

    async def get_leaderboard(self) -> CacheEntry:
        return await self.cache.get()

    async def get_stats(self) -> LeaderboardStats:
        snapshot = await self.cache.get()
        total = await self.store.count()
        scores = [entry.calculated_score for entry in snapshot.entries]
        return LeaderboardStats(
            total_entries=total,
            highest_score=max(scores) if scores else None,
            lowest_score=min(scores) if scores else None,
            average_score=round(sum(scores) / len(scores), 2) if scores else None,
            freshness_token=snapshot.freshness_token,
        )

    async def get_player_scores(self, initials: str) -> list[ScoreEntry]:
        return await self.store.query_by_player(initials)

    async def get_player_standing(self, initials: str) -> PlayerStanding:
        standing = await self.ranking.standing(initials)
        if standing is None:
            raise PlayerNotFoundError(initials)
        return standing

    async def get_score(self, score_id: str) -> ScoreEntry:
        entry = await self.store.query_by_id(score_id)
        if entry is None:
            raise ScoreNotFoundError(score_id)
        return entry

    async def purge_older_than(self, cutoff: datetime | None = None) -> PurgeResult:
        now = self.clock.now()
        cutoff = cutoff or now - self.retention
        purged = await self.store.purge_older_than(cutoff)
        if purged:
            self.cache.invalidate()
        for limiter in self.rate_limiters:
            limiter.purge_expired(now)
        logger.info(f"Retention sweep removed {purged} scores older than {cutoff.isoformat()}")
        return PurgeResult(purged=purged, cutoff=cutoff)

    async def ping(self) -> bool:
        return await self.store.ping()
