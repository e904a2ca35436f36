from __future__ import annotations

import threading
from datetime import timedelta

import pytest

from dropscore.services.rate_limiter import RateLimiter
from tests.conftest import NOW


def at(seconds: float):
    return NOW + timedelta(seconds=seconds)


def test_sixth_submission_in_window_is_rejected_and_fresh_window_accepts():
    limiter = RateLimiter(5, timedelta(seconds=60))

    for second in (0, 2, 4, 6, 8):
        assert limiter.try_consume("ABC", at(second)) is True

    sixth = limiter.consume("ABC", at(10))
    assert sixth.allowed is False
    assert sixth.retry_after == 50

    # Still inside the window measured from window_start, not from the last hit.
    assert limiter.try_consume("ABC", at(60)) is False

    assert limiter.try_consume("ABC", at(61)) is True
    window = limiter.window_for("ABC")
    assert window.window_start == at(61)
    assert window.count == 1


def test_rejections_do_not_increment_past_the_limit():
    limiter = RateLimiter(2, timedelta(seconds=60))
    limiter.try_consume("ABC", at(0))
    limiter.try_consume("ABC", at(1))

    for second in range(2, 20):
        assert limiter.try_consume("ABC", at(second)) is False

    assert limiter.window_for("ABC").count == 2


def test_players_have_independent_windows():
    limiter = RateLimiter(1, timedelta(seconds=60))

    assert limiter.try_consume("ABC", at(0)) is True
    assert limiter.try_consume("XYZ", at(0)) is True
    assert limiter.try_consume("ABC", at(1)) is False
    assert limiter.try_consume("XYZ", at(1)) is False


def test_retry_after_is_at_least_one_second():
    limiter = RateLimiter(1, timedelta(seconds=60))
    limiter.try_consume("ABC", at(0))

    assert limiter.consume("ABC", at(59.6)).retry_after == 1
    assert limiter.consume("ABC", at(60)).retry_after == 1


def test_purge_expired_drops_only_stale_windows():
    limiter = RateLimiter(5, timedelta(seconds=60))
    limiter.try_consume("OLD", at(0))
    limiter.try_consume("NEW", at(50))

    assert limiter.purge_expired(at(90)) == 1
    assert limiter.window_for("OLD") is None
    assert limiter.window_for("NEW") is not None


def test_purge_releases_all_per_key_state():
    limiter = RateLimiter(5, timedelta(seconds=60), lock_stripes=8)

    for n in range(1000):
        limiter.try_consume(f"K{n}", at(0))
    assert limiter.tracked_keys() == 1000

    assert limiter.purge_expired(at(61)) == 1000
    assert limiter.tracked_keys() == 0
    assert len(limiter._locks) == 8


def test_release_returns_a_slot_in_the_same_window():
    limiter = RateLimiter(2, timedelta(seconds=60))
    first = limiter.consume("ABC", at(0))
    second = limiter.consume("ABC", at(1))

    limiter.release("ABC", second)
    assert limiter.window_for("ABC").count == 1
    assert limiter.try_consume("ABC", at(2)) is True

    # A slot from an expired window is not returned to the new one.
    limiter.consume("ABC", at(70))
    limiter.release("ABC", first)
    assert limiter.window_for("ABC").count == 1


@pytest.mark.parametrize("limit, window", [(0, 60), (-1, 60), (5, 0)])
def test_invalid_configuration_is_rejected(limit, window):
    with pytest.raises(ValueError):
        RateLimiter(limit, timedelta(seconds=window))


def test_concurrent_consumers_never_exceed_limit():
    limiter = RateLimiter(5, timedelta(seconds=60))
    barrier = threading.Barrier(32)
    results: list[bool] = []
    results_lock = threading.Lock()

    def submit():
        barrier.wait()
        allowed = limiter.try_consume("ABC", at(1))
        with results_lock:
            results.append(allowed)

    threads = [threading.Thread(target=submit) for _ in range(32)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert results.count(True) == 5
    assert limiter.window_for("ABC").count == 5
