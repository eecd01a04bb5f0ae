"""Input normalization and sanitization shared by schemas and services."""

from __future__ import annotations

import re
from typing import Any, Optional

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128
PASSWORD_SPECIALS = "@$!%*?&"
EMAIL_MAX_LENGTH = 254
SANITIZED_MAX_LENGTH = 1000

_PASSWORD_COMPLEXITY = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&])")
_ANGLE_BRACKETS = re.compile(r"[<>]")


def normalize_email(value: str) -> str:
    return value.strip().lower()


def password_problem(password: str) -> Optional[str]:
    """Return a user-facing message when the password is too weak, else None."""
    if len(password) < PASSWORD_MIN_LENGTH:
        return "Password must be at least 8 characters long"
    if len(password) > PASSWORD_MAX_LENGTH:
        return "Password must be less than 128 characters"
    if not _PASSWORD_COMPLEXITY.match(password):
        return (
            "Password must contain at least one uppercase letter, one lowercase letter, "
            "one number, and one special character"
        )
    return None


def sanitize_input(value: str) -> str:
    return _ANGLE_BRACKETS.sub("", value.strip())[:SANITIZED_MAX_LENGTH]


def sanitize_poll_input(data: dict[str, Any]) -> dict[str, Any]:
    cleaned = dict(data)
    for key in ("title", "description"):
        if isinstance(cleaned.get(key), str):
            cleaned[key] = sanitize_input(cleaned[key])
    if isinstance(cleaned.get("options"), list):
        cleaned["options"] = [
            sanitize_input(option) if isinstance(option, str) else option
            for option in cleaned["options"]
        ]
    return cleaned
