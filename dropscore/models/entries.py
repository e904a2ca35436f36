"""Domain records shared by the validation, storage, and ranking layers."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
# Nineteen nines keeps every inverted value positive and the same width.
MAX_MICROS = 9_999_999_999_999_999_999


def epoch_micros(moment: datetime) -> int:
    return (moment - EPOCH) // timedelta(microseconds=1)


def new_score_id(submitted_at: datetime) -> str:
    """Build an id whose ascending lexical order is newest-first.

    The random suffix keeps two ids minted in the same microsecond distinct
    without any coordination between writers.
    """
    inverted = MAX_MICROS - epoch_micros(submitted_at)
    return f"{inverted:019d}_{uuid.uuid4().hex}"


def parse_client_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string into an aware UTC datetime, or ``None``."""
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    # fromisoformat only accepts a trailing "Z" from 3.11 on.
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=timezone.utc)
        # Extreme offsets near year 1 or 9999 fall outside datetime's range.
        return parsed.astimezone(timezone.utc)
    except (ValueError, OverflowError):
        return None


@dataclass(slots=True)
class RawSubmission:
    """A submission exactly as the client sent it; nothing is trusted yet."""

    player_initials: Any = None
    survival_time_seconds: Any = None
    session_signature: Any = None
    client_timestamp: Any = None


@dataclass(frozen=True, slots=True)
class NormalizedSubmission:
    player_initials: str
    survival_time_seconds: float
    session_signature: str
    client_timestamp: str
    client_claimed_at: datetime


@dataclass(frozen=True, slots=True)
class ScoreEntry:
    id: str
    player_initials: str
    survival_time_seconds: float
    calculated_score: int
    submitted_at: datetime
    client_claimed_at: datetime
    session_signature: str = ""

    def ranking_key(self) -> tuple[int, datetime, tuple[int, ...]]:
        # Sorting ascending by this key puts the best entry first. The last
        # element orders same-instant ties by id descending, matching how a
        # Redis sorted set orders equal scores under ZREVRANGE.
        return (-self.calculated_score, self.submitted_at, tuple(-ord(c) for c in self.id))

    def outranks(self, other: ScoreEntry) -> bool:
        return self.ranking_key() < other.ranking_key()


@dataclass(frozen=True, slots=True)
class LeaderboardEntry:
    rank: int
    player_initials: str
    calculated_score: int
    survival_time_seconds: float
    achieved_at: datetime
    score_id: str


@dataclass(frozen=True, slots=True)
class CacheEntry:
    entries: tuple[LeaderboardEntry, ...]
    generated_at: datetime
    freshness_token: str
    ttl: timedelta

    def is_fresh(self, now: datetime) -> bool:
        return now - self.generated_at < self.ttl


def build_score_entry(
    submission: NormalizedSubmission,
    calculated_score: int,
    submitted_at: datetime,
) -> ScoreEntry:
    return ScoreEntry(
        id=new_score_id(submitted_at),
        player_initials=submission.player_initials,
        survival_time_seconds=submission.survival_time_seconds,
        calculated_score=calculated_score,
        submitted_at=submitted_at,
        client_claimed_at=submission.client_claimed_at,
        session_signature=submission.session_signature,
    )
