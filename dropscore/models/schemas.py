"""Pydantic request/response schemas for the public leaderboard API.

Field names are snake_case in Python and camelCase on the wire. Submission
fields are deliberately loose: the validation pipeline, not pydantic, decides
whether a submission is well formed so every rejection names its field.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, StringConstraints
from pydantic.alias_generators import to_camel

INITIALS_PATTERN = r"^[A-Z0-9]{1,3}$"
SCORE_ID_PATTERN = r"^[0-9]{19}_[0-9a-f]{32}$"
Initials = Annotated[str, StringConstraints(pattern=INITIALS_PATTERN)]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ErrorBody(BaseModel):
    code: str
    message: str
    details: dict[str, Any] | None = None


class ErrorResponse(BaseModel):
    error: ErrorBody


class ScoreSubmission(CamelModel):
    player_initials: Any = None
    survival_time_seconds: Any = None
    session_signature: Any = None
    client_timestamp: Any = None


class SubmissionAccepted(CamelModel):
    accepted: Literal[True] = True
    score_id: str
    calculated_score: int
    rank: int | None
    is_personal_best: bool
    previous_best: float | None = None
    total_submissions: int


class SubmissionRejectedBody(CamelModel):
    accepted: Literal[False] = False
    code: str
    reason: str
    field: str
    retry_after: int | None = None


class LeaderboardRow(CamelModel):
    rank: int
    player_initials: Initials
    calculated_score: int
    survival_time_seconds: float
    achieved_at: datetime


class LeaderboardResponse(CamelModel):
    entries: list[LeaderboardRow]
    freshness_token: str
    generated_at: datetime
    ttl_seconds: float


class LeaderboardStatsResponse(CamelModel):
    total_entries: int
    highest_score: int | None = None
    lowest_score: int | None = None
    average_score: float | None = None
    freshness_token: str


class ScoreRecord(CamelModel):
    score_id: str
    player_initials: Initials
    survival_time_seconds: float
    calculated_score: int
    submitted_at: datetime


class PlayerScoresResponse(CamelModel):
    player_initials: Initials
    scores: list[ScoreRecord]


class PlayerRankResponse(CamelModel):
    player_initials: Initials
    rank: int
    best: ScoreRecord
    total_submissions: int


class PurgeRequest(CamelModel):
    older_than: datetime | None = None


class PurgeResponse(CamelModel):
    purged: int
    cutoff: datetime


class HealthResponse(BaseModel):
    status: Literal["ok"]


class ReadyResponse(BaseModel):
    status: Literal["ok"]
