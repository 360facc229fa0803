import logging
from contextlib import asynccontextmanager
from typing import Annotated

import socketio
from fastapi import FastAPI, Response, Request, Depends, HTTPException, status
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from groupchat.auth import IdentityClaim, get_current_identity, issue_token
from groupchat.config import settings
from groupchat.errors import PersistenceFailure, ValidationFailure
from groupchat.logging_utils import setup_logging, RequestLoggingMiddleware, log_history_data
from groupchat.metrics import get_metrics, get_metrics_content_type
from groupchat.realtime import chat, sio
from groupchat.schemas import (
    CurrentUserResponse,
    ErrorResponse,
    HealthResponse,
    HistoryMessageResponse,
    LoginRequest,
    ProfileResponse,
    ProfileUpdateRequest,
    SignupRequest,
    StatusResponse,
)
from groupchat.storage import (
    UserDisplay,
    check_db_health,
    create_user,
    get_db,
    get_user_by_login,
    init_db,
    list_messages,
    touch_last_login,
    update_user_profile,
)
from groupchat.utils import hash_password, verify_password


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

CurrentIdentity = Annotated[IdentityClaim, Depends(get_current_identity)]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: Initialize database and create tables
    """
    init_db()
    yield


app = FastAPI(
    title="Group Chat API",
    description="Rooms, realtime messaging and chat history",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)


def _set_token_cookie(response: Response, user_id: int) -> None:
    response.set_cookie(
        key=settings.COOKIE_NAME,
        value=issue_token(user_id),
        max_age=settings.TOKEN_TTL_SECONDS,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="strict",
    )


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """
    Liveness check - always returns 200 once the app is running.
    """
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(response: Response) -> HealthResponse:
    """
    Readiness check - returns 200 only if:
    1. JWT_SECRET is set (non-empty)
    2. DB is reachable and schema is applied

    Otherwise returns 503 (Service Unavailable).
    """
    if not settings.JWT_SECRET:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="JWT_SECRET not configured"
        )

    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


# =============================================================================
# Account Routes
# =============================================================================

@app.post(
    "/signup",
    response_model=ProfileResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorResponse, "description": "Username or email taken"}},
)
def signup(body: SignupRequest, response: Response, db: Session = Depends(get_db)) -> ProfileResponse:
    """
    Create an account and log it in by setting the credential cookie.
    """
    try:
        user = create_user(
            db=db,
            username=body.username,
            email=body.email,
            password_hash=hash_password(body.password),
            profile_picture=body.profile_picture,
        )
    except ValidationFailure as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.detail)
    except PersistenceFailure:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error"
        )

    _set_token_cookie(response, user.id)
    return ProfileResponse(user_id=user.id, username=user.username, avatar_ref=user.profile_picture)


@app.post(
    "/login",
    response_model=StatusResponse,
    responses={401: {"model": ErrorResponse, "description": "Unknown user or wrong password"}},
)
def login(body: LoginRequest, response: Response, db: Session = Depends(get_db)) -> StatusResponse:
    """
    Verify credentials and set the ``token`` cookie used by both HTTP routes
    and the realtime handshake.
    """
    if not body.email and not body.username:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="email or username is required"
        )

    user = get_user_by_login(db, email=body.email, username=body.username)
    if user is None:
        logger.info("Login failed: user not found")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")

    if not verify_password(body.password, user.password_hash):
        logger.info(f"Login failed: bad password for user {user.id}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid password")

    touch_last_login(db, user)
    _set_token_cookie(response, user.id)
    logger.info(f"User {user.id} logged in")
    return StatusResponse(status="ok")


@app.get("/logout", response_model=StatusResponse)
async def logout(response: Response) -> StatusResponse:
    response.delete_cookie(settings.COOKIE_NAME)
    return StatusResponse(status="ok")


@app.get("/api/get-current-user", response_model=CurrentUserResponse)
async def get_current_user(identity: CurrentIdentity) -> CurrentUserResponse:
    """Let the page learn its own user id to tell its messages from others'."""
    return CurrentUserResponse(current_user_id=identity.user_id)


@app.put(
    "/api/profile",
    response_model=ProfileResponse,
    responses={409: {"model": ErrorResponse, "description": "Username taken"}},
)
async def update_profile(
    body: ProfileUpdateRequest,
    identity: CurrentIdentity,
    db: Session = Depends(get_db),
) -> ProfileResponse:
    """
    Change the username and/or avatar reference.

    Live realtime sessions of the user pick up the new display data right
    away, so subsequent messages carry it.
    """
    try:
        user = await run_in_threadpool(
            update_user_profile,
            db,
            identity.user_id,
            username=body.username,
            profile_picture=body.profile_picture,
        )
    except ValidationFailure as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.detail)

    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    # Live sessions are only touched from the event loop
    refreshed = chat.sessions.refresh_user(
        user.id,
        UserDisplay(username=user.username, avatar_ref=user.profile_picture),
    )
    logger.debug(f"Refreshed display data of {refreshed} live sessions")
    return ProfileResponse(user_id=user.id, username=user.username, avatar_ref=user.profile_picture)


# =============================================================================
# History Route
# =============================================================================

@app.get(
    "/messages/{room_id}",
    response_model=list[HistoryMessageResponse],
)
def room_history(
    room_id: str,
    request: Request,
    identity: CurrentIdentity,
    db: Session = Depends(get_db),
) -> list[HistoryMessageResponse]:
    """
    Full history of a room, oldest first.

    Ordering: createdAt ASC, id ASC, the same order live messages were
    persisted in.
    """
    logger.info(f"GET /messages/{room_id} by user {identity.user_id}")

    try:
        rows = list_messages(db, room_id)
    except Exception as e:
        logger.error(f"Error fetching messages: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal Server Error"
        )

    log_history_data(request, room_id=room_id, count=len(rows))

    return [
        HistoryMessageResponse(
            id=row.id,
            content=row.content,
            sender_id=row.sender_id,
            username=row.username,
            avatar_ref=row.avatar_ref,
            created_at=row.created_at,
        )
        for row in rows
    ]


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """
    Expose Prometheus-style metrics.
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )


# Socket.IO sits in front of FastAPI: it needs both the long-polling HTTP
# requests and the WebSocket upgrades under its path.
asgi_app = socketio.ASGIApp(
    sio,
    other_asgi_app=app,
    socketio_path=settings.SOCKETIO_PATH,
)
