from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv


def _as_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _as_int(value: str | None, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _normalize_database_url(value: str | None, fallback: str) -> str:
    raw = (value or fallback).strip() or fallback
    # Some dashboards accidentally store quoted values.
    if (raw.startswith('"') and raw.endswith('"')) or (raw.startswith("'") and raw.endswith("'")):
        raw = raw[1:-1].strip()

    if "://" not in raw:
        return raw

    scheme, suffix = raw.split("://", 1)
    scheme = scheme.lower()

    if scheme in {
        "postgres",
        "postgresql",
        "postgresql+psycopg",
        "postgresql+asyncpg",
        "postgresql+pg8000",
        "postgresql+psycopg2",
    }:
        url = f"postgresql+psycopg2://{suffix}"
        if "sslmode" not in url:
            separator = "&" if "?" in url else "?"
            url = f"{url}{separator}sslmode=require"
        return url

    return raw


@dataclass(frozen=True)
class Settings:
    env: str
    secret_key: str
    jwt_algorithm: str
    jwt_exp_minutes: int
    port: int
    database_url: str
    db_pool_size: int
    db_max_overflow: int
    db_pool_timeout: int
    db_pool_recycle: int
    cors_origins: list[str]
    frontend_url: str
    debug: bool
    rate_limit_requests_per_min: int
    login_max_attempts: int
    login_window_seconds: int
    login_block_seconds: int
    register_max_attempts: int
    register_window_seconds: int
    register_block_seconds: int
    poll_create_max_attempts: int
    poll_create_window_seconds: int
    poll_create_block_seconds: int
    rate_limit_sweep_seconds: int
    session_cookie_name: str
    session_cookie_secure: bool
    enable_prometheus_metrics: bool
    log_level: str

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def is_production(self) -> bool:
        return self.env.lower() not in {"development", "dev", "test", "testing"}

    def validate(self) -> None:
        """Raise early on dangerous mis-configurations in non-dev environments."""
        if self.is_production and self.secret_key == _DEFAULT_SECRET_KEY:
            raise RuntimeError(
                "SECRET_KEY must be explicitly set in production. "
                "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(48))\""
            )


_DEFAULT_SECRET_KEY = "change-me-in-production-min-32-bytes-key"


load_dotenv()

settings = Settings(
    env=os.getenv("ENV", "development"),
    secret_key=os.getenv("SECRET_KEY", _DEFAULT_SECRET_KEY),
    jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
    jwt_exp_minutes=_as_int(os.getenv("JWT_EXP_MINUTES"), 60 * 12),
    port=_as_int(os.getenv("PORT"), 8000),
    database_url=_normalize_database_url(
        os.getenv("DATABASE_URL"),
        "sqlite:///./pollbox.db",
    ),
    db_pool_size=max(1, _as_int(os.getenv("DB_POOL_SIZE"), 5)),
    db_max_overflow=max(0, _as_int(os.getenv("DB_MAX_OVERFLOW"), 10)),
    db_pool_timeout=max(1, _as_int(os.getenv("DB_POOL_TIMEOUT"), 30)),
    db_pool_recycle=max(60, _as_int(os.getenv("DB_POOL_RECYCLE"), 1800)),
    cors_origins=[
        origin.strip()
        for origin in os.getenv("CORS_ORIGINS", os.getenv("FRONTEND_URL", "http://localhost:3000")).split(",")
        if origin.strip()
    ],
    frontend_url=os.getenv("FRONTEND_URL", "http://localhost:3000").strip(),
    debug=_as_bool(os.getenv("DEBUG"), False),
    rate_limit_requests_per_min=_as_int(os.getenv("RATE_LIMIT_REQUESTS_PER_MIN"), 120),
    login_max_attempts=max(1, _as_int(os.getenv("LOGIN_MAX_ATTEMPTS"), 5)),
    login_window_seconds=max(1, _as_int(os.getenv("LOGIN_WINDOW_SECONDS"), 15 * 60)),
    login_block_seconds=max(1, _as_int(os.getenv("LOGIN_BLOCK_SECONDS"), 15 * 60)),
    register_max_attempts=max(1, _as_int(os.getenv("REGISTER_MAX_ATTEMPTS"), 5)),
    register_window_seconds=max(1, _as_int(os.getenv("REGISTER_WINDOW_SECONDS"), 15 * 60)),
    register_block_seconds=max(1, _as_int(os.getenv("REGISTER_BLOCK_SECONDS"), 15 * 60)),
    poll_create_max_attempts=max(1, _as_int(os.getenv("POLL_CREATE_MAX_ATTEMPTS"), 10)),
    poll_create_window_seconds=max(1, _as_int(os.getenv("POLL_CREATE_WINDOW_SECONDS"), 15 * 60)),
    poll_create_block_seconds=max(1, _as_int(os.getenv("POLL_CREATE_BLOCK_SECONDS"), 15 * 60)),
    rate_limit_sweep_seconds=max(1, _as_int(os.getenv("RATE_LIMIT_SWEEP_SECONDS"), 60)),
    session_cookie_name=os.getenv("SESSION_COOKIE_NAME", "session").strip() or "session",
    session_cookie_secure=_as_bool(os.getenv("SESSION_COOKIE_SECURE"), False),
    enable_prometheus_metrics=_as_bool(os.getenv("ENABLE_PROMETHEUS_METRICS"), True),
    log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper(),
)

settings.validate()
