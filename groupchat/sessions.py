"""
Realtime session state.

A Session exists only for a connection whose credential verified and whose
user still exists. The bound user id never changes for the lifetime of the
connection and is the only sender identity used for writes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Optional

from groupchat.auth import token_from_cookie_header, verify_token
from groupchat.errors import UnknownUser
from groupchat.registry import RoomRegistry
from groupchat.storage import PersistenceGateway, UserDisplay

logger = logging.getLogger(__name__)


@dataclass
class Session:
    sid: str
    user_id: int
    display: UserDisplay

    @property
    def username(self) -> str:
        return self.display.username


def extract_token(cookie_header: Optional[str], auth: Any | None = None) -> Optional[str]:
    """Credential from the handshake cookie, falling back to Socket.IO ``auth.token``."""
    token = token_from_cookie_header(cookie_header)
    if token:
        return token

    if isinstance(auth, dict):
        auth_token = auth.get("token")
        if isinstance(auth_token, str) and auth_token:
            return auth_token

    return None


class SessionManager:
    """Owns the live sessions and their room memberships."""

    def __init__(self, registry: RoomRegistry, gateway: PersistenceGateway):
        self.registry = registry
        self._gateway = gateway
        self._sessions: Dict[str, Session] = {}

    async def authenticate(
        self,
        sid: str,
        cookie_header: Optional[str],
        auth: Any | None = None,
    ) -> Session:
        """
        Verify the handshake credential and create the session.

        Raises:
            AuthFailure: missing/invalid/expired token or unknown user
            PersistenceFailure: the user lookup failed
        """
        claim = verify_token(extract_token(cookie_header, auth))

        display = await self._gateway.get_user_display(claim.user_id)
        if display is None:
            raise UnknownUser()

        session = Session(sid=sid, user_id=claim.user_id, display=display)
        self._sessions[sid] = session
        logger.info(f"Session authenticated: user={claim.user_id}")
        return session

    def get(self, sid: str) -> Optional[Session]:
        return self._sessions.get(sid)

    def join(self, session: Session, room_id: str) -> bool:
        """Idempotent. Returns True if this was a new membership."""
        added = self.registry.add(room_id, session.sid)
        if added:
            logger.info(f"User {session.user_id} joined room {room_id}")
        return added

    def leave(self, session: Session, room_id: str) -> bool:
        removed = self.registry.remove(room_id, session.sid)
        if removed:
            logger.info(f"User {session.user_id} left room {room_id}")
        return removed

    def joined_rooms(self, session: Session) -> FrozenSet[str]:
        return self.registry.rooms_of(session.sid)

    def close(self, sid: str) -> Optional[Session]:
        """Drop the session and every room membership it held."""
        session = self._sessions.pop(sid, None)
        self.registry.remove_session(sid)
        if session is not None:
            logger.info(f"Session closed: user={session.user_id}")
        return session

    async def refresh_display(self, session: Session) -> UserDisplay:
        """Reload the cached username/avatar of one session from the store."""
        display = await self._gateway.get_user_display(session.user_id)
        if display is not None:
            session.display = display
        return session.display

    def refresh_user(self, user_id: int, display: UserDisplay) -> int:
        """Push new display data to every live session of a user."""
        count = 0
        for session in self._sessions.values():
            if session.user_id == user_id:
                session.display = display
                count += 1
        return count

    def sessions_for_user(self, user_id: int) -> list[Session]:
        return [s for s in self._sessions.values() if s.user_id == user_id]
