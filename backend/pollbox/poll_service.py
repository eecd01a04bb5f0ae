from __future__ import annotations

import logging
from typing import Any
import uuid

from fastapi import HTTPException
from sqlalchemy import select

from .db import get_db
from .metrics import POLLS_CREATED_TOTAL
from .models import Poll, as_utc, utcnow
from .rate_limit import RateLimiter
from .schemas import NewPollRequest
from .throttle import ensure_not_blocked, record_attempt_or_raise

logger = logging.getLogger("pollbox.polls")


def _poll_to_dict(poll: Poll) -> dict[str, Any]:
    return {
        "id": poll.id,
        "user_id": poll.user_id,
        "title": poll.title,
        "description": poll.description,
        "options": list(poll.options),
        "allow_multiple": poll.allow_multiple,
        "closes_at": as_utc(poll.closes_at).isoformat() if poll.closes_at else None,
        "created_at": as_utc(poll.created_at).isoformat(),
    }


class PollService:
    def __init__(self, create_limiter: RateLimiter) -> None:
        self.create_limiter = create_limiter

    def create_poll(self, user_id: str, payload: NewPollRequest) -> dict[str, Any]:
        identifier = f"poll:{user_id}"
        ensure_not_blocked(self.create_limiter, identifier)
        record_attempt_or_raise(self.create_limiter, identifier)

        poll = Poll(
            id=str(uuid.uuid4()),
            user_id=user_id,
            title=payload.title,
            description=payload.description,
            options=list(payload.options),
            allow_multiple=payload.allow_multiple,
            closes_at=payload.closes_at,
            created_at=utcnow(),
        )
        with get_db() as session:
            session.add(poll)
            session.flush()
            result = _poll_to_dict(poll)

        POLLS_CREATED_TOTAL.inc()
        logger.info("Poll created", extra={"event": "poll_created", "poll_id": poll.id, "user_id": user_id})
        return result

    def list_polls(self) -> list[dict[str, Any]]:
        with get_db() as session:
            polls = session.scalars(select(Poll).order_by(Poll.created_at.desc(), Poll.id)).all()
            return [_poll_to_dict(poll) for poll in polls]

    def get_poll(self, poll_id: str) -> dict[str, Any]:
        with get_db() as session:
            poll = session.get(Poll, poll_id)
            if poll is None:
                raise HTTPException(status_code=404, detail="Poll not found")
            return _poll_to_dict(poll)

    def delete_poll(self, poll_id: str, user_id: str) -> None:
        with get_db() as session:
            poll = session.get(Poll, poll_id)
            if poll is None:
                raise HTTPException(status_code=404, detail="Poll not found")
            if poll.user_id != user_id:
                raise HTTPException(status_code=403, detail="Forbidden: You can only delete your own polls")
            session.delete(poll)

        logger.info("Poll deleted", extra={"event": "poll_deleted", "poll_id": poll_id, "user_id": user_id})
