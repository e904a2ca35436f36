from __future__ import annotations

from typing import Any

from dropscore.services.validation import RejectionCode
from dropscore.storage.scores import StoreConflict, StoreError


class APIError(Exception):
    def __init__(
        self,
        code: str,
        message: str,
        status_code: int,
        details: dict[str, Any] | None = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(message)


def rejection_status(code: RejectionCode) -> int:
    return 429 if code is RejectionCode.RATE_LIMITED else 400


def store_api_error(exc: StoreError) -> APIError:
    details = {"operation": exc.operation}
    if isinstance(exc, StoreConflict):
        # Ids are unique by construction; a collision is a server bug.
        return APIError(
            code="STORE_CONFLICT",
            message="Score could not be stored",
            status_code=500,
            details=details,
        )
    return APIError(
        code="STORE_UNAVAILABLE",
        message="Score store is unavailable, try again",
        status_code=503,
        details=details,
    )
