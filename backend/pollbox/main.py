from __future__ import annotations

import asyncio
import contextlib
from datetime import datetime, timezone
import logging

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.middleware.cors import CORSMiddleware

from .auth_service import AuthService
from .config import settings
from .db import check_db_connection, get_db, init_db
from .logging_utils import configure_logging
from .metrics import CONTENT_TYPE_LATEST, RATE_LIMIT_TRACKED, REQUESTS_TOTAL, generate_latest
from .poll_service import PollService
from .rate_limit import Clock, RateLimiter, RateLimitPolicy, SlidingWindowLimiter, utc_now
from .schemas import (
    LoginRequest,
    MessageResponse,
    NewPollRequest,
    PollListResponse,
    PollResponse,
    RegisterRequest,
    SessionResponse,
    UserResponse,
)
from .security import AuthContext, auth_context_from_request

configure_logging()
logger = logging.getLogger("pollbox.app")

app = FastAPI(title="Pollbox API", version="1.0.0")
api_router = APIRouter(prefix="/api")


def build_limiters(clock: Clock = utc_now) -> dict[str, RateLimiter]:
    return {
        "login": RateLimiter(
            RateLimitPolicy.from_seconds(
                settings.login_max_attempts,
                settings.login_window_seconds,
                settings.login_block_seconds,
            ),
            clock=clock,
            name="login",
        ),
        "register": RateLimiter(
            RateLimitPolicy.from_seconds(
                settings.register_max_attempts,
                settings.register_window_seconds,
                settings.register_block_seconds,
            ),
            clock=clock,
            name="register",
        ),
        "poll_create": RateLimiter(
            RateLimitPolicy.from_seconds(
                settings.poll_create_max_attempts,
                settings.poll_create_window_seconds,
                settings.poll_create_block_seconds,
            ),
            clock=clock,
            name="poll_create",
        ),
    }


def install_services(target: FastAPI, clock: Clock = utc_now) -> None:
    """Build fresh limiters and services and attach them to ``target.state``."""
    limiters = build_limiters(clock)
    target.state.limiters = limiters
    target.state.request_limiter = SlidingWindowLimiter(clock=clock)
    target.state.auth_service = AuthService(
        login_limiter=limiters["login"],
        register_limiter=limiters["register"],
    )
    target.state.poll_service = PollService(create_limiter=limiters["poll_create"])


install_services(app)


async def _sweep_rate_limiters(target: FastAPI) -> None:
    while True:
        await asyncio.sleep(settings.rate_limit_sweep_seconds)
        for name, limiter in target.state.limiters.items():
            evicted = await asyncio.to_thread(limiter.sweep)
            RATE_LIMIT_TRACKED.labels(scope=name).set(len(limiter))
            if evicted:
                logger.debug(
                    "Evicted expired rate limit records",
                    extra={"event": "rate_limit_sweep", "scope": name, "evicted": evicted},
                )
        await asyncio.to_thread(target.state.request_limiter.sweep, 60)


@app.on_event("startup")
async def startup_event() -> None:
    check_db_connection()
    init_db()
    app.state.sweeper_task = asyncio.create_task(_sweep_rate_limiters(app))
    logger.info(
        "Backend startup complete",
        extra={
            "event": "startup",
            "db_backend": "sqlite" if settings.is_sqlite else "postgres",
        },
    )


@app.on_event("shutdown")
async def shutdown_event() -> None:
    task = getattr(app.state, "sweeper_task", None)
    if task is not None:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _client_ip_from_request(request: Request) -> str:
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


@app.middleware("http")
async def request_guard_middleware(request: Request, call_next):
    path = request.url.path
    method = request.method
    ip = _client_ip_from_request(request)

    limiter: SlidingWindowLimiter = request.app.state.request_limiter
    if not limiter.allow(f"http:{ip}", settings.rate_limit_requests_per_min, 60):
        REQUESTS_TOTAL.labels(method=method, path=path, status="429").inc()
        return JSONResponse(status_code=429, content={"detail": "Rate limit exceeded"})

    response = await call_next(request)
    REQUESTS_TOTAL.labels(method=method, path=path, status=str(response.status_code)).inc()
    return response


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_poll_service(request: Request) -> PollService:
    return request.app.state.poll_service


def current_user(request: Request) -> AuthContext:
    auth = auth_context_from_request(request)
    # Rejects sessions whose account was removed after the token was issued.
    get_auth_service(request).get_user(auth.user_id)
    return auth


def _set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        max_age=settings.jwt_exp_minutes * 60,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
    )


@api_router.get("/")
async def root() -> dict[str, str]:
    return {"message": "Pollbox API"}


@api_router.post("/auth/register", response_model=SessionResponse, status_code=201)
def register(
    payload: RegisterRequest,
    request: Request,
    response: Response,
    service: AuthService = Depends(get_auth_service),
) -> SessionResponse:
    result = service.register(payload.email, payload.password, ip=_client_ip_from_request(request))
    _set_session_cookie(response, result["access_token"])
    return SessionResponse(**result)


@api_router.post("/auth/login", response_model=SessionResponse)
def login(
    payload: LoginRequest,
    response: Response,
    service: AuthService = Depends(get_auth_service),
) -> SessionResponse:
    result = service.login(payload.email, payload.password)
    _set_session_cookie(response, result["access_token"])
    return SessionResponse(**result)


@api_router.post("/auth/logout", response_model=MessageResponse)
async def logout(response: Response) -> MessageResponse:
    response.delete_cookie(settings.session_cookie_name)
    return MessageResponse(message="Signed out")


@api_router.get("/auth/me", response_model=UserResponse)
def me(
    auth: AuthContext = Depends(current_user),
    service: AuthService = Depends(get_auth_service),
) -> UserResponse:
    return UserResponse(**service.get_user(auth.user_id))


@api_router.get("/polls", response_model=PollListResponse, dependencies=[Depends(current_user)])
def list_polls(service: PollService = Depends(get_poll_service)) -> PollListResponse:
    return PollListResponse(polls=service.list_polls())


@api_router.post("/polls", response_model=PollResponse, status_code=201)
def create_poll(
    payload: NewPollRequest,
    auth: AuthContext = Depends(current_user),
    service: PollService = Depends(get_poll_service),
) -> PollResponse:
    return PollResponse(poll=service.create_poll(auth.user_id, payload))


@api_router.get("/polls/{poll_id}", response_model=PollResponse, dependencies=[Depends(current_user)])
def get_poll(poll_id: str, service: PollService = Depends(get_poll_service)) -> PollResponse:
    return PollResponse(poll=service.get_poll(poll_id))


@api_router.delete("/polls/{poll_id}", response_model=MessageResponse)
def delete_poll(
    poll_id: str,
    auth: AuthContext = Depends(current_user),
    service: PollService = Depends(get_poll_service),
) -> MessageResponse:
    service.delete_poll(poll_id, auth.user_id)
    return MessageResponse(message="Poll deleted successfully")


@api_router.get("/health")
async def api_healthcheck() -> dict[str, str]:
    with get_db() as session:
        session.execute(text("SELECT 1"))
    return {"status": "ok", "ts": datetime.now(timezone.utc).isoformat()}


@app.get("/health")
async def healthcheck() -> dict[str, str]:
    with get_db() as session:
        session.execute(text("SELECT 1"))
    return {"status": "ok", "ts": datetime.now(timezone.utc).isoformat()}


@app.get("/metrics")
async def metrics() -> Response:
    if not settings.enable_prometheus_metrics:
        raise HTTPException(status_code=404, detail="Metrics disabled")
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(api_router)
