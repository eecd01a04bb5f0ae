"""HTTP-facing wrappers that turn rate limiter decisions into responses."""

from __future__ import annotations

from datetime import datetime, timedelta
import math
from typing import Optional

from fastapi import HTTPException

from .metrics import RATE_LIMIT_DECISIONS_TOTAL
from .rate_limit import AttemptResult, RateLimiter


def too_many_attempts(limiter: RateLimiter, blocked_until: Optional[datetime]) -> HTTPException:
    now = limiter.now()
    until = blocked_until or now + timedelta(seconds=1)
    retry_after = max(1, math.ceil((until - now).total_seconds()))
    return HTTPException(
        status_code=429,
        detail=f"Too many attempts, try again after {until.isoformat()}",
        headers={"Retry-After": str(retry_after)},
    )


def ensure_not_blocked(limiter: RateLimiter, identifier: str) -> None:
    if limiter.is_blocked(identifier):
        RATE_LIMIT_DECISIONS_TOTAL.labels(scope=limiter.name, outcome="blocked").inc()
        record = limiter.snapshot(identifier)
        raise too_many_attempts(limiter, record.blocked_until if record else None)


def record_attempt_or_raise(limiter: RateLimiter, identifier: str) -> AttemptResult:
    result = limiter.record_attempt(identifier)
    if not result.allowed:
        RATE_LIMIT_DECISIONS_TOTAL.labels(scope=limiter.name, outcome="denied").inc()
        raise too_many_attempts(limiter, result.blocked_until)
    RATE_LIMIT_DECISIONS_TOTAL.labels(scope=limiter.name, outcome="allowed").inc()
    return result
