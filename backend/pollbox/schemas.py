from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from .validation import EMAIL_MAX_LENGTH, normalize_email, password_problem, sanitize_poll_input

POLL_TITLE_MIN = 3
POLL_TITLE_MAX = 120
POLL_DESCRIPTION_MAX = 500
POLL_OPTIONS_MIN = 2
POLL_OPTIONS_MAX = 10


class _Credentials(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: EmailStr
    password: str = Field(min_length=1, max_length=1024)

    @field_validator("email", mode="before")
    @classmethod
    def _normalize_email(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = normalize_email(value)
            if len(value) > EMAIL_MAX_LENGTH:
                raise ValueError("Email address is too long")
        return value


class RegisterRequest(_Credentials):
    @field_validator("password")
    @classmethod
    def _strong_password(cls, value: str) -> str:
        problem = password_problem(value)
        if problem:
            raise ValueError(problem)
        return value


class LoginRequest(_Credentials):
    pass


class SessionResponse(BaseModel):
    user_id: str
    email: str
    access_token: str
    token_type: str = "bearer"
    remaining_attempts: Optional[int] = None


class UserResponse(BaseModel):
    user_id: str
    email: str
    created_at: str


class NewPollRequest(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
        json_schema_extra={
            "example": {
                "title": "What should we have for lunch?",
                "description": "Please choose your preferred option",
                "options": ["Pizza", "Burger", "Salad"],
                "allow_multiple": False,
                "closes_at": "2030-12-31T23:59:59Z",
            }
        },
    )

    title: str
    description: Optional[str] = None
    options: list[str]
    allow_multiple: bool = False
    closes_at: Optional[datetime] = None

    @model_validator(mode="before")
    @classmethod
    def _sanitize(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return sanitize_poll_input(data)
        return data

    @field_validator("title")
    @classmethod
    def _title_length(cls, value: str) -> str:
        if len(value) < POLL_TITLE_MIN:
            raise ValueError("Title must be at least 3 characters")
        if len(value) > POLL_TITLE_MAX:
            raise ValueError("Title is too long")
        return value

    @field_validator("description")
    @classmethod
    def _description_length(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and len(value) > POLL_DESCRIPTION_MAX:
            raise ValueError("Description is too long")
        return value

    @field_validator("options")
    @classmethod
    def _options_shape(cls, value: list[str]) -> list[str]:
        if len(value) < POLL_OPTIONS_MIN:
            raise ValueError("Provide at least 2 options")
        if len(value) > POLL_OPTIONS_MAX:
            raise ValueError("Maximum of 10 options allowed")
        if any(not option for option in value):
            raise ValueError("Option cannot be empty")
        return value

    @field_validator("closes_at")
    @classmethod
    def _closes_in_future(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        if value <= datetime.now(timezone.utc):
            raise ValueError("Closing date must be in the future")
        return value


class PollItem(BaseModel):
    id: str
    user_id: str
    title: str
    description: Optional[str] = None
    options: list[str]
    allow_multiple: bool
    closes_at: Optional[str] = None
    created_at: str


class PollResponse(BaseModel):
    poll: PollItem


class PollListResponse(BaseModel):
    polls: list[PollItem]


class MessageResponse(BaseModel):
    message: str
