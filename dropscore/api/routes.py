"""HTTP route handlers for score submission, leaderboard reads, and health checks."""

from __future__ import annotations

from datetime import timezone

from fastapi import APIRouter, Depends, Header, Path, Request, Response

from dropscore.api.errors import APIError, store_api_error
from dropscore.models.entries import RawSubmission, ScoreEntry
from dropscore.models.schemas import (
    INITIALS_PATTERN,
    SCORE_ID_PATTERN,
    HealthResponse,
    LeaderboardResponse,
    LeaderboardRow,
    LeaderboardStatsResponse,
    PlayerRankResponse,
    PlayerScoresResponse,
    PurgeRequest,
    PurgeResponse,
    ReadyResponse,
    ScoreRecord,
    ScoreSubmission,
    SubmissionAccepted,
    SubmissionRejectedBody,
)
from dropscore.services.leaderboard import (
    LeaderboardService,
    PlayerNotFoundError,
    ScoreNotFoundError,
)
from dropscore.storage.scores import StoreError

router = APIRouter(prefix="/v1")


def get_service(request: Request) -> LeaderboardService:
    return request.app.state.leaderboard_service


def to_score_record(entry: ScoreEntry) -> ScoreRecord:
    return ScoreRecord(
        score_id=entry.id,
        player_initials=entry.player_initials,
        survival_time_seconds=entry.survival_time_seconds,
        calculated_score=entry.calculated_score,
        submitted_at=entry.submitted_at,
    )


def etag_matches(if_none_match: str | None, token: str) -> bool:
    if not if_none_match:
        return False
    candidates = [part.strip() for part in if_none_match.split(",")]
    return any(c == "*" or c.removeprefix("W/") == token for c in candidates)


@router.post(
    "/scores",
    response_model=SubmissionAccepted,
    status_code=201,
    responses={400: {"model": SubmissionRejectedBody}, 429: {"model": SubmissionRejectedBody}},
)
async def submit_score(
    payload: ScoreSubmission,
    service: LeaderboardService = Depends(get_service),
) -> SubmissionAccepted:
    submission = RawSubmission(
        player_initials=payload.player_initials,
        survival_time_seconds=payload.survival_time_seconds,
        session_signature=payload.session_signature,
        client_timestamp=payload.client_timestamp,
    )
    try:
        receipt = await service.submit_score(submission)
    except StoreError as exc:
        raise store_api_error(exc) from exc

    return SubmissionAccepted(
        score_id=receipt.entry.id,
        calculated_score=receipt.entry.calculated_score,
        rank=receipt.rank,
        is_personal_best=receipt.is_personal_best,
        previous_best=receipt.previous_best,
        total_submissions=receipt.total_submissions,
    )


@router.get("/leaderboard", response_model=LeaderboardResponse, responses={304: {}})
async def get_leaderboard(
    response: Response,
    if_none_match: str | None = Header(default=None),
    service: LeaderboardService = Depends(get_service),
):
    try:
        snapshot = await service.get_leaderboard()
    except StoreError as exc:
        raise store_api_error(exc) from exc

    ttl_seconds = snapshot.ttl.total_seconds()
    headers = {
        "ETag": snapshot.freshness_token,
        "Cache-Control": f"max-age={int(ttl_seconds)}",
    }
    if etag_matches(if_none_match, snapshot.freshness_token):
        return Response(status_code=304, headers=headers)

    response.headers.update(headers)
    return LeaderboardResponse(
        entries=[
            LeaderboardRow(
                rank=row.rank,
                player_initials=row.player_initials,
                calculated_score=row.calculated_score,
                survival_time_seconds=row.survival_time_seconds,
                achieved_at=row.achieved_at,
            )
            for row in snapshot.entries
        ],
        freshness_token=snapshot.freshness_token,
        generated_at=snapshot.generated_at,
        ttl_seconds=ttl_seconds,
    )


@router.get("/leaderboard/stats", response_model=LeaderboardStatsResponse)
async def get_leaderboard_stats(
    service: LeaderboardService = Depends(get_service),
) -> LeaderboardStatsResponse:
    try:
        stats = await service.get_stats()
    except StoreError as exc:
        raise store_api_error(exc) from exc
    return LeaderboardStatsResponse(
        total_entries=stats.total_entries,
        highest_score=stats.highest_score,
        lowest_score=stats.lowest_score,
        average_score=stats.average_score,
        freshness_token=stats.freshness_token,
    )


@router.get("/players/{initials}/scores", response_model=PlayerScoresResponse)
async def get_player_scores(
    initials: str = Path(pattern=INITIALS_PATTERN),
    service: LeaderboardService = Depends(get_service),
) -> PlayerScoresResponse:
    try:
        history = await service.get_player_scores(initials)
    except StoreError as exc:
        raise store_api_error(exc) from exc
    return PlayerScoresResponse(
        player_initials=initials,
        scores=[to_score_record(entry) for entry in history],
    )


@router.get("/players/{initials}/rank", response_model=PlayerRankResponse)
async def get_player_rank(
    initials: str = Path(pattern=INITIALS_PATTERN),
    service: LeaderboardService = Depends(get_service),
) -> PlayerRankResponse:
    try:
        standing = await service.get_player_standing(initials)
    except PlayerNotFoundError as exc:
        raise APIError(
            code="PLAYER_NOT_FOUND",
            message="Player has no scores",
            status_code=404,
        ) from exc
    except StoreError as exc:
        raise store_api_error(exc) from exc

    return PlayerRankResponse(
        player_initials=initials,
        rank=standing.rank,
        best=to_score_record(standing.best),
        total_submissions=standing.total_submissions,
    )


@router.get("/scores/{score_id}", response_model=ScoreRecord)
async def get_score(
    score_id: str = Path(pattern=SCORE_ID_PATTERN),
    service: LeaderboardService = Depends(get_service),
) -> ScoreRecord:
    try:
        entry = await service.get_score(score_id)
    except ScoreNotFoundError as exc:
        raise APIError(
            code="SCORE_NOT_FOUND",
            message="No score with this id",
            status_code=404,
        ) from exc
    except StoreError as exc:
        raise store_api_error(exc) from exc
    return to_score_record(entry)


# Retention is scheduled externally; this only exposes the sweep.
@router.post("/maintenance/purge", response_model=PurgeResponse)
async def purge_scores(
    payload: PurgeRequest | None = None,
    service: LeaderboardService = Depends(get_service),
) -> PurgeResponse:
    cutoff = payload.older_than if payload else None
    if cutoff is not None and cutoff.tzinfo is None:
        cutoff = cutoff.replace(tzinfo=timezone.utc)
    try:
        result = await service.purge_older_than(cutoff)
    except StoreError as exc:
        raise store_api_error(exc) from exc
    return PurgeResponse(purged=result.purged, cutoff=result.cutoff)


# These probes are intended for infrastructure and do not need to appear in API docs.
@router.get("/healthz", response_model=HealthResponse, include_in_schema=False)
async def healthz() -> HealthResponse:
    return HealthResponse(status="ok")


@router.get("/readyz", response_model=ReadyResponse, include_in_schema=False)
async def readyz(service: LeaderboardService = Depends(get_service)) -> ReadyResponse:
    try:
        # Readiness verifies the backing store, not just process liveness.
        is_ready = await service.ping()
    except StoreError as exc:
        raise APIError(
            code="STORE_UNAVAILABLE",
            message="Score store readiness check failed",
            status_code=503,
        ) from exc

    if not is_ready:
        raise APIError(
            code="STORE_UNAVAILABLE",
            message="Score store readiness check failed",
            status_code=503,
        )
    return ReadyResponse(status="ok")
