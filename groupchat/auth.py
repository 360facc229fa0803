"""
Credential verification shared by the HTTP and realtime layers.

Tokens are HS256 JWTs carrying a ``userId`` claim. They are delivered to the
browser as an http-only cookie and ride along on the Socket.IO handshake.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import unquote

import jwt
from fastapi import HTTPException, Request, status

from groupchat.config import settings
from groupchat.errors import (
    AuthFailure,
    InvalidToken,
    MissingToken,
    TokenExpired,
    TokenNotYetValid,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IdentityClaim:
    user_id: int


def issue_token(
    user_id: int,
    *,
    expires_in: Optional[timedelta] = None,
    not_before: Optional[datetime] = None,
) -> str:
    now = datetime.now(timezone.utc)
    if expires_in is None:
        expires_in = timedelta(seconds=settings.TOKEN_TTL_SECONDS)

    payload = {"userId": int(user_id), "iat": now, "exp": now + expires_in}
    if not_before is not None:
        payload["nbf"] = not_before
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def verify_token(token: Optional[str]) -> IdentityClaim:
    """
    Validate a signed token and return the identity it carries.

    Raises:
        MissingToken: no token supplied
        TokenExpired: ``exp`` is in the past
        TokenNotYetValid: ``nbf`` is in the future
        InvalidToken: malformed token, bad signature or no usable ``userId``
    """
    if not token:
        raise MissingToken()

    try:
        decoded = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            options={"require": ["exp"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise TokenExpired() from exc
    except jwt.ImmatureSignatureError as exc:
        raise TokenNotYetValid() from exc
    except jwt.InvalidTokenError as exc:
        logger.debug(f"Token verification failed: {exc}")
        raise InvalidToken() from exc

    user_id = decoded.get("userId")
    if isinstance(user_id, bool) or not isinstance(user_id, int):
        raise InvalidToken()
    return IdentityClaim(user_id=user_id)


def parse_cookies(cookie_header: Optional[str]) -> dict[str, str]:
    """Split a raw ``Cookie`` header into name/value pairs."""
    cookies: dict[str, str] = {}
    if not cookie_header:
        return cookies
    for part in cookie_header.split(";"):
        name, sep, value = part.strip().partition("=")
        if not sep or not name:
            continue
        cookies[name.strip()] = unquote(value.strip())
    return cookies


def token_from_cookie_header(cookie_header: Optional[str]) -> Optional[str]:
    return parse_cookies(cookie_header).get(settings.COOKIE_NAME) or None


def get_current_identity(request: Request) -> IdentityClaim:
    """FastAPI dependency: verified identity from the credential cookie, or 401."""
    try:
        return verify_token(request.cookies.get(settings.COOKIE_NAME))
    except AuthFailure as exc:
        logger.info(f"HTTP authentication failed: {exc.detail}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=exc.detail,
        )
