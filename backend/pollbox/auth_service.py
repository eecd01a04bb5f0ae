from __future__ import annotations

import logging
from typing import Any
import uuid

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from .db import get_db
from .models import User, as_utc, utcnow
from .rate_limit import RateLimiter
from .security import create_access_token, hash_password, verify_password
from .throttle import ensure_not_blocked, record_attempt_or_raise

logger = logging.getLogger("pollbox.auth")


class AuthService:
    """Email/password accounts guarded by per-operation rate limiters.

    Emails reaching this service are already normalized by the request
    schemas, so they are used verbatim as limiter identifiers.
    """

    def __init__(self, login_limiter: RateLimiter, register_limiter: RateLimiter) -> None:
        self.login_limiter = login_limiter
        self.register_limiter = register_limiter

    def _session_payload(self, user_id: str, email: str, remaining_attempts: int | None = None) -> dict[str, Any]:
        return {
            "user_id": user_id,
            "email": email,
            "access_token": create_access_token(user_id=user_id, email=email),
            "token_type": "bearer",
            "remaining_attempts": remaining_attempts,
        }

    def register(self, email: str, password: str, ip: str) -> dict[str, Any]:
        identifier = f"register:{ip}"
        ensure_not_blocked(self.register_limiter, identifier)
        # Account creation has side effects, so the attempt is counted before it runs.
        record_attempt_or_raise(self.register_limiter, identifier)

        user_id = str(uuid.uuid4())
        password_hash = hash_password(password)
        with get_db() as session:
            existing = session.scalar(select(User.id).where(User.email == email))
            if existing:
                raise HTTPException(status_code=409, detail="Email already registered")
            session.add(User(id=user_id, email=email, password_hash=password_hash, created_at=utcnow()))
            try:
                session.flush()
            except IntegrityError as exc:
                raise HTTPException(status_code=409, detail="Email already registered") from exc

        logger.info("User registered", extra={"event": "user_registered", "user_id": user_id, "ip": ip})
        return self._session_payload(user_id, email)

    def login(self, email: str, password: str) -> dict[str, Any]:
        identifier = f"login:{email}"
        ensure_not_blocked(self.login_limiter, identifier)

        with get_db() as session:
            user = session.scalars(select(User).where(User.email == email)).first()
            credentials_ok = user is not None and verify_password(password, user.password_hash)

        result = record_attempt_or_raise(self.login_limiter, identifier)
        if not credentials_ok:
            logger.info(
                "Sign-in rejected",
                extra={"event": "login_failed", "identifier": identifier, "reason": "bad_credentials"},
            )
            raise HTTPException(
                status_code=401,
                detail="Invalid email or password",
                headers={"X-RateLimit-Remaining": str(result.remaining_attempts)},
            )

        logger.info("User signed in", extra={"event": "login", "user_id": user.id})
        return self._session_payload(user.id, user.email, remaining_attempts=result.remaining_attempts)

    def get_user(self, user_id: str) -> dict[str, Any]:
        with get_db() as session:
            user = session.get(User, user_id)
            if user is None:
                raise HTTPException(status_code=401, detail="Account not found")
            return {
                "user_id": user.id,
                "email": user.email,
                "created_at": as_utc(user.created_at).isoformat(),
            }
