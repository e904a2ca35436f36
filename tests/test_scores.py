from __future__ import annotations

import asyncio
from datetime import timedelta

from fastapi.testclient import TestClient

from dropscore.main import create_app
from dropscore.storage.memory import InMemoryScoreStore
from dropscore.storage.scores import StoreConflict, StoreUnavailable
from tests.conftest import NOW, make_entry


def seed(store, entries):
    async def append_all():
        for entry in entries:
            await store.append(entry)

    asyncio.run(append_all())


def test_accepted_submission_returns_score_and_rank(client, payload):
    api, _, store = client

    response = api.post("/v1/scores", json=payload())

    assert response.status_code == 201
    body = response.json()
    assert body["accepted"] is True
    assert body["calculatedScore"] == 2325
    assert body["rank"] == 1
    assert body["isPersonalBest"] is True
    assert body["totalSubmissions"] == 1
    assert "previousBest" not in body or body["previousBest"] is None
    assert asyncio.run(store.query_by_id(body["scoreId"])) is not None


def test_rank_counts_ties_against_later_submission(client, payload):
    api, _, store = client
    seeded = []
    for k in range(1, 71):
        initials = f"{chr(65 + k // 26)}{chr(65 + k % 26)}"
        seeded.append(make_entry(initials, 0.25 * k, NOW - timedelta(hours=1, seconds=k)))
    seed(store, seeded)

    response = api.post("/v1/scores", json=payload(initials="ABC", survival=15.75))

    assert response.status_code == 201
    # Seven players scored higher and one earlier submission tied at 15.75.
    assert response.json()["rank"] == 9


def test_negative_survival_time_is_malformed(client, payload):
    api, _, store = client

    response = api.post("/v1/scores", json=payload(survival=-1))

    assert response.status_code == 400
    body = response.json()
    assert body["accepted"] is False
    assert body["code"] == "MALFORMED_INPUT"
    assert body["field"] == "survivalTimeSeconds"
    assert asyncio.run(store.count()) == 0


def test_missing_fields_name_the_first_bad_field(client):
    api, _, _ = client

    response = api.post("/v1/scores", json={"playerInitials": "ABC"})

    assert response.status_code == 400
    assert response.json()["field"] == "survivalTimeSeconds"


def test_implausible_survival_time(client, payload):
    api, _, _ = client

    response = api.post("/v1/scores", json=payload(survival=20.01))

    assert response.status_code == 400
    assert response.json()["code"] == "IMPLAUSIBLE_VALUE"


def test_oversized_survival_time_is_malformed(client):
    api, _, _ = client
    body = {
        "playerInitials": "ABC",
        "survivalTimeSeconds": 10**400,
        "sessionSignature": "deadbeef",
        "clientTimestamp": NOW.isoformat(),
    }

    response = api.post("/v1/scores", json=body)

    assert response.status_code == 400
    assert response.json()["code"] == "MALFORMED_INPUT"
    assert response.json()["field"] == "survivalTimeSeconds"


def test_survival_just_below_minimum_is_implausible(client, payload):
    api, _, _ = client

    response = api.post("/v1/scores", json=payload(survival=0.049))

    assert response.status_code == 400
    assert response.json()["code"] == "IMPLAUSIBLE_VALUE"


def test_out_of_range_timestamp_is_malformed(client, payload):
    api, _, _ = client

    response = api.post("/v1/scores", json=payload(timestamp="0001-01-01T00:00:00+14:00"))

    assert response.status_code == 400
    assert response.json()["code"] == "MALFORMED_INPUT"
    assert response.json()["field"] == "clientTimestamp"


def test_clock_skew_is_rejected(client, payload):
    api, _, _ = client

    response = api.post("/v1/scores", json=payload(skew=timedelta(minutes=20)))

    assert response.status_code == 400
    assert response.json()["code"] == "CLOCK_SKEW_EXCEEDED"
    assert response.json()["field"] == "clientTimestamp"


def test_bad_signature_is_rejected(client, payload):
    api, _, _ = client
    body = payload()
    body["survivalTimeSeconds"] = 19.5

    response = api.post("/v1/scores", json=body)

    assert response.status_code == 400
    assert response.json()["code"] == "SIGNATURE_MISMATCH"
    assert response.json()["field"] == "sessionSignature"


def test_rate_limit_rejects_sixth_submission_with_retry_after(client, payload):
    api, clock, store = client

    for _ in range(5):
        assert api.post("/v1/scores", json=payload(survival=3.0)).status_code == 201
        clock.advance(2)

    sixth = api.post("/v1/scores", json=payload(survival=3.0))

    assert sixth.status_code == 429
    assert sixth.headers["Retry-After"] == "50"
    assert sixth.json()["code"] == "RATE_LIMITED"
    assert sixth.json()["retryAfter"] == 50
    assert asyncio.run(store.count()) == 5

    clock.advance(51)
    assert api.post("/v1/scores", json=payload(survival=3.0)).status_code == 201


def test_rate_limit_is_per_player(client, payload):
    api, _, _ = client

    for _ in range(5):
        api.post("/v1/scores", json=payload(initials="AAA", survival=3.0))

    assert api.post("/v1/scores", json=payload(initials="AAA", survival=3.0)).status_code == 429
    assert api.post("/v1/scores", json=payload(initials="BBB", survival=3.0)).status_code == 201


def test_non_object_body_is_a_validation_error(client):
    api, _, _ = client

    response = api.post("/v1/scores", json=["ABC", 15.75])

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


class DownStore(InMemoryScoreStore):
    async def query_by_player(self, initials):
        raise StoreUnavailable("query_by_player", initials, "connection refused")


class CollidingStore(InMemoryScoreStore):
    async def append(self, entry):
        raise StoreConflict("append", entry.id, "score id already exists")


def test_store_outage_maps_to_503(settings, clock, payload):
    app = create_app(settings=settings, store=DownStore(), clock=clock)

    with TestClient(app) as api:
        response = api.post("/v1/scores", json=payload())

    assert response.status_code == 503
    assert response.json()["error"]["code"] == "STORE_UNAVAILABLE"
    assert response.json()["error"]["details"] == {"operation": "query_by_player"}


def test_store_conflict_maps_to_500(settings, clock, payload):
    app = create_app(settings=settings, store=CollidingStore(), clock=clock)

    with TestClient(app) as api:
        response = api.post("/v1/scores", json=payload())

    assert response.status_code == 500
    assert response.json()["error"]["code"] == "STORE_CONFLICT"
