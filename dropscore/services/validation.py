"""Anti-cheat validation pipeline for raw score submissions.

Each validator is a small object with a ``validate(ctx)`` method that returns
``None`` to pass or a ``Rejected`` to stop the chain. The pipeline is just an
ordered list of them: cheap structural checks first, stateful ones last.
Validators parse the fields they need themselves, so any non-rate-limit
validator can be removed or moved without changing the verdict on an input
that the full chain accepts.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Protocol, Sequence

from dropscore.config import Settings
from dropscore.models.entries import (
    NormalizedSubmission,
    RawSubmission,
    parse_client_timestamp,
)
from dropscore.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

INITIALS_PATTERN = re.compile(r"^[A-Z0-9]{1,3}$")
SURVIVAL_DECIMALS = 2
PRECISION_TOLERANCE = 1e-4

FIELD_INITIALS = "playerInitials"
FIELD_SURVIVAL = "survivalTimeSeconds"
FIELD_SIGNATURE = "sessionSignature"
FIELD_TIMESTAMP = "clientTimestamp"


class RejectionCode(str, Enum):
    MALFORMED_INPUT = "MALFORMED_INPUT"
    IMPLAUSIBLE_VALUE = "IMPLAUSIBLE_VALUE"
    RATE_LIMITED = "RATE_LIMITED"
    SIGNATURE_MISMATCH = "SIGNATURE_MISMATCH"
    CLOCK_SKEW_EXCEEDED = "CLOCK_SKEW_EXCEEDED"


@dataclass(frozen=True, slots=True)
class Accepted:
    submission: NormalizedSubmission

    @property
    def accepted(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class Rejected:
    code: RejectionCode
    reason: str
    field: str
    retry_after: int | None = None

    @property
    def accepted(self) -> bool:
        return False


ValidationResult = Accepted | Rejected


@dataclass(frozen=True, slots=True)
class ValidationContext:
    submission: RawSubmission
    now: datetime


class Validator(Protocol):
    def validate(self, ctx: ValidationContext) -> Rejected | None: ...


def coerce_survival_time(value: Any) -> float | None:
    # bool is an int subclass; a JSON true is not a duration.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        number = float(value)
    except OverflowError:
        return None
    if not math.isfinite(number):
        return None
    return number


def sign_submission(
    secret: str,
    player_initials: str,
    survival_time_seconds: float,
    client_timestamp: str,
) -> str:
    """Signature a well-behaved client attaches to a submission."""
    message = f"{player_initials}|{survival_time_seconds:.{SURVIVAL_DECIMALS}f}|{client_timestamp}"
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


class ContractValidator:
    def validate(self, ctx: ValidationContext) -> Rejected | None:
        raw = ctx.submission

        initials = raw.player_initials
        if not isinstance(initials, str) or not initials:
            return _malformed(FIELD_INITIALS, "Player initials are required")
        if not INITIALS_PATTERN.fullmatch(initials):
            return _malformed(
                FIELD_INITIALS,
                "Player initials must be 1-3 uppercase alphanumeric characters",
            )

        if raw.survival_time_seconds is None:
            return _malformed(FIELD_SURVIVAL, "Survival time is required")
        survival = coerce_survival_time(raw.survival_time_seconds)
        if survival is None:
            return _malformed(FIELD_SURVIVAL, "Survival time must be a finite number")
        if survival <= 0:
            return _malformed(FIELD_SURVIVAL, "Survival time must be greater than 0")

        signature = raw.session_signature
        if not isinstance(signature, str) or not signature.strip():
            return _malformed(FIELD_SIGNATURE, "Session signature is required")

        if raw.client_timestamp is None or raw.client_timestamp == "":
            return _malformed(FIELD_TIMESTAMP, "Client timestamp is required")
        if parse_client_timestamp(raw.client_timestamp) is None:
            return _malformed(FIELD_TIMESTAMP, "Client timestamp must be ISO-8601")
        return None


class PlausibilityValidator:
    def __init__(self, min_seconds: float, max_seconds: float):
        if min_seconds > max_seconds:
            raise ValueError("min_seconds must not exceed max_seconds")
        self.min_seconds = min_seconds
        self.max_seconds = max_seconds

    def validate(self, ctx: ValidationContext) -> Rejected | None:
        survival = coerce_survival_time(ctx.submission.survival_time_seconds)
        if survival is None:
            return _malformed(FIELD_SURVIVAL, "Survival time must be a finite number")
        if survival < self.min_seconds:
            return Rejected(
                code=RejectionCode.IMPLAUSIBLE_VALUE,
                reason=f"Survival time below the minimum of {self.min_seconds}s",
                field=FIELD_SURVIVAL,
            )
        if survival > self.max_seconds:
            return Rejected(
                code=RejectionCode.IMPLAUSIBLE_VALUE,
                reason=f"Survival time exceeds the maximum of {self.max_seconds}s",
                field=FIELD_SURVIVAL,
            )
        return None


class PrecisionValidator:
    """Runs after the bounds so an out-of-range value reports as implausible."""

    def validate(self, ctx: ValidationContext) -> Rejected | None:
        survival = coerce_survival_time(ctx.submission.survival_time_seconds)
        if survival is None:
            return _malformed(FIELD_SURVIVAL, "Survival time must be a finite number")
        if abs(survival - round(survival, SURVIVAL_DECIMALS)) > PRECISION_TOLERANCE:
            return _malformed(
                FIELD_SURVIVAL,
                f"Survival time must have at most {SURVIVAL_DECIMALS} decimal places",
            )
        return None


class RateLimitValidator:
    def __init__(self, limiters: Sequence[RateLimiter]):
        self.limiters = list(limiters)

    def validate(self, ctx: ValidationContext) -> Rejected | None:
        initials = ctx.submission.player_initials
        if not isinstance(initials, str) or not initials:
            return _malformed(FIELD_INITIALS, "Player initials are required")
        taken = []
        for limiter in self.limiters:
            decision = limiter.consume(initials, ctx.now)
            if not decision.allowed:
                # A rejected submission must not spend budget in any window.
                for earlier, slot in taken:
                    earlier.release(initials, slot)
                return Rejected(
                    code=RejectionCode.RATE_LIMITED,
                    reason=(
                        f"Too many submissions: limit is {limiter.limit} per "
                        f"{int(limiter.window.total_seconds())}s"
                    ),
                    field=FIELD_INITIALS,
                    retry_after=decision.retry_after,
                )
            taken.append((limiter, decision))
        return None


class SignatureValidator:
    def __init__(self, secret: str):
        self.secret = secret

    def validate(self, ctx: ValidationContext) -> Rejected | None:
        raw = ctx.submission
        survival = coerce_survival_time(raw.survival_time_seconds)
        if (
            not isinstance(raw.player_initials, str)
            or survival is None
            or not isinstance(raw.client_timestamp, str)
            or not isinstance(raw.session_signature, str)
        ):
            return _mismatch()
        expected = sign_submission(self.secret, raw.player_initials, survival, raw.client_timestamp)
        supplied = raw.session_signature.strip().lower()
        if not hmac.compare_digest(expected, supplied):
            return _mismatch()
        return None


class ClockSkewValidator:
    def __init__(self, max_skew: timedelta):
        self.max_skew = max_skew

    def validate(self, ctx: ValidationContext) -> Rejected | None:
        claimed = parse_client_timestamp(ctx.submission.client_timestamp)
        if claimed is None:
            return _malformed(FIELD_TIMESTAMP, "Client timestamp must be ISO-8601")
        skew = abs(ctx.now - claimed)
        if skew > self.max_skew:
            return Rejected(
                code=RejectionCode.CLOCK_SKEW_EXCEEDED,
                reason=(
                    f"Client timestamp differs from server time by {int(skew.total_seconds())}s "
                    f"(tolerance {int(self.max_skew.total_seconds())}s)"
                ),
                field=FIELD_TIMESTAMP,
            )
        return None


class ValidationPipeline:
    def __init__(self, validators: Sequence[Validator]):
        self.validators = list(validators)

    def validate(self, submission: RawSubmission, now: datetime) -> ValidationResult:
        ctx = ValidationContext(submission=submission, now=now)
        for validator in self.validators:
            rejection = validator.validate(ctx)
            if rejection is not None:
                logger.warning(
                    f"Submission rejected by {type(validator).__name__}: "
                    f"code={rejection.code.value} field={rejection.field} "
                    f"player={submission.player_initials!r}"
                )
                return rejection
        return Accepted(submission=normalize(submission))


def normalize(raw: RawSubmission) -> NormalizedSubmission:
    """Build the trusted form of a submission that passed validation."""
    survival = coerce_survival_time(raw.survival_time_seconds)
    claimed = parse_client_timestamp(raw.client_timestamp)
    if survival is None or claimed is None:
        raise ValueError("cannot normalize a submission that failed validation")
    return NormalizedSubmission(
        player_initials=raw.player_initials,
        survival_time_seconds=round(survival, SURVIVAL_DECIMALS),
        session_signature=raw.session_signature.strip().lower(),
        client_timestamp=raw.client_timestamp,
        client_claimed_at=claimed,
    )


def build_rate_limiters(settings: Settings) -> list[RateLimiter]:
    limiters = [
        RateLimiter(
            settings.rate_limit_max_submissions,
            timedelta(seconds=settings.rate_limit_window_seconds),
            name="per-window",
        )
    ]
    if settings.rate_limit_hourly_max_submissions:
        limiters.append(
            RateLimiter(
                settings.rate_limit_hourly_max_submissions,
                timedelta(hours=1),
                name="hourly",
            )
        )
    return limiters


def build_pipeline(settings: Settings, limiters: Sequence[RateLimiter]) -> ValidationPipeline:
    return ValidationPipeline(
        [
            ContractValidator(),
            PlausibilityValidator(settings.min_survival_seconds, settings.max_survival_seconds),
            PrecisionValidator(),
            RateLimitValidator(limiters),
            SignatureValidator(settings.signature_secret),
            ClockSkewValidator(timedelta(seconds=settings.max_clock_skew_seconds)),
        ]
    )


def _malformed(field: str, reason: str) -> Rejected:
    return Rejected(code=RejectionCode.MALFORMED_INPUT, reason=reason, field=field)


def _mismatch() -> Rejected:
    return Rejected(
        code=RejectionCode.SIGNATURE_MISMATCH,
        reason="Session signature does not match submission",
        field=FIELD_SIGNATURE,
    )
