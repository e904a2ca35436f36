"""Redis-backed score store and client creation helpers.

Key layout, with ``p`` the configured prefix:

- ``p:score:{id}``        hash holding one entry
- ``p:rank``              sorted set, id -> calculated score (global top-N)
- ``p:player:{initials}`` sorted set, id -> calculated score (player history)
- ``p:time``              sorted set, id -> submitted_at epoch (retention)

Equal scores in a sorted set are ordered by member. Ids are inverted
timestamps, so reverse order puts the earlier submission first, which is the
leaderboard tie-break without any composite score encoding.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, TypeVar

from redis.asyncio import Redis
from redis.exceptions import RedisError, WatchError

from dropscore.config import Settings
from dropscore.models.entries import ScoreEntry
from dropscore.storage.scores import StoreConflict, StoreTimeout, StoreUnavailable

logger = logging.getLogger(__name__)

DEFAULT_REDIS_URL = "redis://localhost:6379/0"
PURGE_BATCH_SIZE = 500

T = TypeVar("T")


def create_redis_client(redis_url: str | None = None, timeout: float | None = None) -> Redis:
    return Redis.from_url(
        redis_url or DEFAULT_REDIS_URL,
        decode_responses=True,
        socket_connect_timeout=timeout,
        socket_timeout=timeout,
    )


def create_redis_client_from_settings(settings: Settings) -> Redis:
    return create_redis_client(settings.redis_url, settings.store_timeout_seconds)


def entry_to_hash(entry: ScoreEntry) -> dict[str, str]:
    return {
        "id": entry.id,
        "player_initials": entry.player_initials,
        "survival_time_seconds": repr(entry.survival_time_seconds),
        "calculated_score": str(entry.calculated_score),
        "submitted_at": entry.submitted_at.isoformat(),
        "client_claimed_at": entry.client_claimed_at.isoformat(),
        "session_signature": entry.session_signature,
    }


def entry_from_hash(data: dict[str, Any]) -> ScoreEntry | None:
    if not data:
        return None
    return ScoreEntry(
        id=data["id"],
        player_initials=data["player_initials"],
        survival_time_seconds=float(data["survival_time_seconds"]),
        calculated_score=int(data["calculated_score"]),
        submitted_at=datetime.fromisoformat(data["submitted_at"]),
        client_claimed_at=datetime.fromisoformat(data["client_claimed_at"]),
        session_signature=data.get("session_signature", ""),
    )


class RedisScoreStore:
    def __init__(self, redis_client: Redis, prefix: str = "dropscore", timeout: float = 2.0):
        self.redis = redis_client
        self.prefix = prefix
        self.timeout = timeout

    def score_key(self, score_id: str) -> str:
        return f"{self.prefix}:score:{score_id}"

    def player_key(self, initials: str) -> str:
        return f"{self.prefix}:player:{initials}"

    @property
    def rank_key(self) -> str:
        return f"{self.prefix}:rank"

    @property
    def time_key(self) -> str:
        return f"{self.prefix}:time"

    async def _run(self, operation: str, key: str | None, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise StoreTimeout(operation, key, f"timed out after {self.timeout}s") from exc
        except RedisError as exc:
            raise StoreUnavailable(operation, key, str(exc)) from exc

    async def append(self, entry: ScoreEntry) -> None:
        await self._run("append", entry.id, self._append(entry))

    async def _append(self, entry: ScoreEntry) -> None:
        key = self.score_key(entry.id)
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                await pipe.watch(key)
                if await pipe.exists(key):
                    raise StoreConflict("append", entry.id, "score id already exists")
                pipe.multi()
                pipe.hset(key, mapping=entry_to_hash(entry))
                pipe.zadd(self.rank_key, {entry.id: entry.calculated_score})
                pipe.zadd(self.player_key(entry.player_initials), {entry.id: entry.calculated_score})
                pipe.zadd(self.time_key, {entry.id: entry.submitted_at.timestamp()})
                await pipe.execute()
        except WatchError as exc:
            raise StoreConflict("append", entry.id, "score id written concurrently") from exc

    async def _fetch_many(self, ids: list[str]) -> list[ScoreEntry]:
        if not ids:
            return []
        async with self.redis.pipeline(transaction=False) as pipe:
            for score_id in ids:
                pipe.hgetall(self.score_key(score_id))
            rows = await pipe.execute()
        # A purge can remove a hash between the index read and this fetch.
        return [entry for entry in (entry_from_hash(row) for row in rows) if entry is not None]

    async def query_by_player(self, initials: str) -> list[ScoreEntry]:
        return await self._run("query_by_player", initials, self._query_by_player(initials))

    async def _query_by_player(self, initials: str) -> list[ScoreEntry]:
        ids = await self.redis.zrevrange(self.player_key(initials), 0, -1)
        return await self._fetch_many(ids)

    async def query_top_n(self, n: int) -> list[ScoreEntry]:
        if n <= 0:
            return []
        return await self._run("query_top_n", self.rank_key, self._query_top_n(n))

    async def _query_top_n(self, n: int) -> list[ScoreEntry]:
        ids = await self.redis.zrevrange(self.rank_key, 0, n - 1)
        return await self._fetch_many(ids)

    async def query_by_id(self, score_id: str) -> ScoreEntry | None:
        data = await self._run("query_by_id", score_id, self.redis.hgetall(self.score_key(score_id)))
        return entry_from_hash(data)

    async def count_outranking(self, entry: ScoreEntry) -> int:
        return await self._run("count_outranking", entry.id, self._count_outranking(entry))

    async def _count_outranking(self, entry: ScoreEntry) -> int:
        stored_rank = await self.redis.zrevrank(self.rank_key, entry.id)
        if stored_rank is not None:
            return int(stored_rank)
        higher = await self.redis.zcount(self.rank_key, f"({entry.calculated_score}", "+inf")
        tied = await self.redis.zrangebyscore(
            self.rank_key, entry.calculated_score, entry.calculated_score
        )
        # Among equal scores a larger id is an earlier submission.
        earlier = sum(1 for other_id in tied if other_id > entry.id)
        return int(higher) + earlier

    async def purge_older_than(self, cutoff: datetime) -> int:
        # Each batch gets its own timeout so a long sweep is not cut off
        # after it has already deleted entries.
        purged = 0
        while True:
            scanned, removed = await self._run(
                "purge_older_than", self.time_key, self._purge_batch(cutoff)
            )
            if not scanned:
                return purged
            purged += removed

    async def _purge_batch(self, cutoff: datetime) -> tuple[int, int]:
        ids = await self.redis.zrangebyscore(
            self.time_key, "-inf", f"({cutoff.timestamp()}", start=0, num=PURGE_BATCH_SIZE
        )
        if not ids:
            return 0, 0
        async with self.redis.pipeline(transaction=False) as pipe:
            for score_id in ids:
                pipe.hget(self.score_key(score_id), "player_initials")
            owners = await pipe.execute()
        async with self.redis.pipeline(transaction=True) as pipe:
            for score_id, initials in zip(ids, owners):
                pipe.delete(self.score_key(score_id))
                pipe.zrem(self.rank_key, score_id)
                if initials:
                    pipe.zrem(self.player_key(initials), score_id)
                pipe.zrem(self.time_key, score_id)
            await pipe.execute()
        logger.debug(f"Purged batch of {len(ids)} score ids older than {cutoff.isoformat()}")
        return len(ids), sum(1 for initials in owners if initials)

    async def count(self) -> int:
        return int(await self._run("count", self.rank_key, self.redis.zcard(self.rank_key)))

    async def ping(self) -> bool:
        return bool(await self._run("ping", None, self.redis.ping()))
