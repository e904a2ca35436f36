"""FastAPI application wiring for routes, error handlers, and lifespan."""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from dropscore.api.errors import APIError, rejection_status
from dropscore.api.routes import router
from dropscore.clock import Clock, SystemClock
from dropscore.config import Settings, get_settings
from dropscore.models.schemas import ErrorBody, ErrorResponse, SubmissionRejectedBody
from dropscore.services.cache import LeaderboardCache
from dropscore.services.leaderboard import LeaderboardService, SubmissionRejected
from dropscore.services.ranking import RankingEngine
from dropscore.services.validation import build_pipeline, build_rate_limiters
from dropscore.storage.memory import InMemoryScoreStore
from dropscore.storage.redis import RedisScoreStore, create_redis_client_from_settings
from dropscore.storage.scores import ScoreStore

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def build_service(settings: Settings, store: ScoreStore, clock: Clock) -> LeaderboardService:
    limiters = build_rate_limiters(settings)
    ranking = RankingEngine(store)
    cache = LeaderboardCache(
        ranking,
        clock,
        top_n=settings.top_n,
        ttl=timedelta(seconds=settings.cache_ttl_seconds),
    )
    return LeaderboardService(
        store=store,
        pipeline=build_pipeline(settings, limiters),
        cache=cache,
        ranking=ranking,
        clock=clock,
        retention=timedelta(days=settings.retention_days),
        rate_limiters=limiters,
    )


def create_app(
    settings: Settings | None = None,
    store: ScoreStore | None = None,
    clock: Clock | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    clock = clock or SystemClock()

    @asynccontextmanager
    async def app_lifespan(app: FastAPI):
        redis_client = None
        score_store = store
        if score_store is None and settings.store_backend == "redis":
            redis_client = create_redis_client_from_settings(settings)
            score_store = RedisScoreStore(
                redis_client,
                prefix=settings.redis_key_prefix,
                timeout=settings.store_timeout_seconds,
            )
        elif score_store is None:
            score_store = InMemoryScoreStore()
        logger.info(f"Starting dropscore with {type(score_store).__name__}")

        app.state.settings = settings
        app.state.redis = redis_client
        app.state.leaderboard_service = build_service(settings, score_store, clock)
        try:
            yield
        finally:
            if redis_client is not None:
                await redis_client.aclose()

    app = FastAPI(title="Dropscore Leaderboard API", version="1.0.0", lifespan=app_lifespan)

    @app.exception_handler(APIError)
    async def api_error_handler(_: Request, exc: APIError) -> JSONResponse:
        payload = ErrorResponse(
            error=ErrorBody(code=exc.code, message=exc.message, details=exc.details),
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=payload.model_dump(exclude_none=True),
        )

    @app.exception_handler(SubmissionRejected)
    async def rejection_handler(_: Request, exc: SubmissionRejected) -> JSONResponse:
        rejection = exc.rejection
        body = SubmissionRejectedBody(
            code=rejection.code.value,
            reason=rejection.reason,
            field=rejection.field,
            retry_after=rejection.retry_after,
        )
        headers = None
        if rejection.retry_after is not None:
            headers = {"Retry-After": str(rejection.retry_after)}
        return JSONResponse(
            status_code=rejection_status(rejection.code),
            content=body.model_dump(by_alias=True, exclude_none=True),
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
        payload = ErrorResponse(
            error=ErrorBody(
                code="VALIDATION_ERROR",
                message="Request validation failed",
                details={"errors": jsonable_encoder(exc.errors())},
            ),
        )
        return JSONResponse(status_code=400, content=payload.model_dump(exclude_none=True))

    app.include_router(router)
    return app


configure_logging(get_settings().log_level)
app = create_app()
