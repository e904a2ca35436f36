from __future__ import annotations

import os
import uuid
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from redis.exceptions import RedisError

from dropscore.clock import ManualClock
from dropscore.config import Settings
from dropscore.main import build_service, create_app
from dropscore.models.entries import ScoreEntry, new_score_id
from dropscore.services.scoring import calculate_score
from dropscore.services.validation import sign_submission
from dropscore.storage.memory import InMemoryScoreStore
from dropscore.storage.redis import RedisScoreStore, create_redis_client

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
SECRET = "test-secret"


def make_entry(
    initials: str,
    survival: float,
    submitted_at: datetime = NOW,
) -> ScoreEntry:
    return ScoreEntry(
        id=new_score_id(submitted_at),
        player_initials=initials,
        survival_time_seconds=survival,
        calculated_score=calculate_score(survival),
        submitted_at=submitted_at,
        client_claimed_at=submitted_at,
    )


@pytest.fixture(scope="session")
def redis_url() -> str:
    return os.getenv("REDIS_URL", "redis://localhost:6379/0")


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock(NOW)


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        _env_file=None,
        store_backend="memory",
        signature_secret=SECRET,
        top_n=10,
        cache_ttl_seconds=30,
    )


@pytest.fixture()
def service(settings, clock):
    return build_service(settings, InMemoryScoreStore(), clock)


@pytest.fixture()
def payload(clock):
    """Build a signed submission body stamped with the test clock's time."""

    def build(
        initials: str = "ABC",
        survival: float = 15.75,
        timestamp: str | None = None,
        secret: str = SECRET,
        skew: timedelta = timedelta(0),
    ) -> dict:
        client_timestamp = timestamp or (clock.now() + skew).isoformat()
        return {
            "playerInitials": initials,
            "survivalTimeSeconds": survival,
            "sessionSignature": sign_submission(secret, initials, survival, client_timestamp),
            "clientTimestamp": client_timestamp,
        }

    return build


@pytest.fixture()
def client(settings, clock):
    store = InMemoryScoreStore()
    app = create_app(settings=settings, store=store, clock=clock)

    with TestClient(app) as test_client:
        yield test_client, clock, store


@pytest_asyncio.fixture(params=["memory", "redis"])
async def store(request, redis_url: str):
    if request.param == "memory":
        yield InMemoryScoreStore()
        return

    redis_client = create_redis_client(redis_url, timeout=1.0)
    try:
        await redis_client.ping()
    except (RedisError, OSError):
        await redis_client.aclose()
        pytest.skip("Redis is not reachable")

    prefix = f"dropscore_test_{uuid.uuid4().hex}"
    yield RedisScoreStore(redis_client, prefix=prefix, timeout=2.0)

    async for key in redis_client.scan_iter(match=f"{prefix}:*"):
        await redis_client.delete(key)
    await redis_client.aclose()
