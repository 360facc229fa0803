"""
Message fan-out engine.

send_message/send_image persist first and broadcast only after the write
succeeds; a failed write is logged and acknowledged as a failure, nothing is
broadcast. Room membership is read from the registry after the write
completes, so sessions that joined or left during the await are honoured.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol

from groupchat.config import settings
from groupchat.errors import PersistenceFailure, ValidationFailure
from groupchat.metrics import record_broadcast
from groupchat.registry import RoomRegistry
from groupchat.schemas import Ack, ChatMessageEvent, TypingEvent
from groupchat.sessions import Session
from groupchat.storage import PersistenceGateway
from groupchat.typing_indicator import TypingTracker

logger = logging.getLogger(__name__)

CHAT_MESSAGE_EVENT = "chatMessage"
IMAGE_MESSAGE_EVENT = "sendImage"
TYPING_EVENT = "typing"


class Emitter(Protocol):
    async def emit(self, event: str, data: dict[str, Any], to: str) -> None:
        ...


class FanoutEngine:

    def __init__(
        self,
        registry: RoomRegistry,
        gateway: PersistenceGateway,
        emitter: Emitter,
        typing_tracker: Optional[TypingTracker] = None,
        max_content_length: Optional[int] = None,
    ):
        self._registry = registry
        self._gateway = gateway
        self._emitter = emitter
        self.typing_tracker = typing_tracker or TypingTracker()
        self.max_content_length = max_content_length or settings.MAX_MESSAGE_LENGTH

    async def send_message(self, session: Session, room_id: str, content: str) -> Ack:
        return await self._publish(session, room_id, content, CHAT_MESSAGE_EVENT)

    async def send_image(self, session: Session, room_id: str, image_ref: str) -> Ack:
        # Stored exactly like text; only the broadcast event name differs
        return await self._publish(session, room_id, image_ref, IMAGE_MESSAGE_EVENT)

    async def relay_typing(self, session: Session, room_id: str, typing: bool) -> Ack:
        """Tell everyone else in the room that this session started/stopped typing."""
        self.typing_tracker.mark(room_id, session.sid, typing)
        await self._broadcast_typing(room_id, session.username, typing, exclude=session.sid)
        return Ack(ok=True, room_id=room_id)

    async def clear_typing(self, session: Session, room_id: str) -> None:
        """Send typing:false for a session that leaves a room mid-type."""
        if self.typing_tracker.clear(room_id, session.sid):
            await self._broadcast_typing(room_id, session.username, False, exclude=session.sid)

    async def session_closed(self, session: Session) -> None:
        """Send typing:false for every room a disconnected session was typing in."""
        for room_id in self.typing_tracker.clear_session(session.sid):
            await self._broadcast_typing(room_id, session.username, False, exclude=session.sid)

    async def _publish(self, session: Session, room_id: str, content: str, event: str) -> Ack:
        try:
            content = self._check_content(room_id, content)
        except ValidationFailure as exc:
            logger.info(f"Rejected {event} from user {session.user_id}: {exc.detail}")
            return Ack(ok=False, error=exc.reason, detail=exc.detail, room_id=room_id or None)

        try:
            stored = await self._gateway.create_message(content, session.user_id, room_id)
        except PersistenceFailure as exc:
            logger.error(f"Dropping {event} for room {room_id}: {exc.detail}")
            return Ack(ok=False, error=exc.reason, detail="message was not stored", room_id=room_id)

        # Display data comes from the session cache, not a per-message lookup
        payload = ChatMessageEvent(
            id=stored.id,
            room_id=stored.room_id,
            sender_id=stored.sender_id,
            content=stored.content,
            username=session.display.username,
            avatar_ref=session.display.avatar_ref,
            timestamp=stored.created_at,
        ).model_dump(by_alias=True)

        delivered = await self._broadcast(room_id, event, payload)
        logger.info(f"{event} id={stored.id} room={room_id} delivered to {delivered} sessions")
        return Ack(ok=True, id=stored.id, created_at=stored.created_at, room_id=room_id)

    def _check_content(self, room_id: str, content: Any) -> str:
        if not isinstance(room_id, str) or not room_id.strip():
            raise ValidationFailure("roomId must not be empty")
        if not isinstance(content, str):
            raise ValidationFailure("content must be a string")
        content = content.strip()
        if not content:
            raise ValidationFailure("content must not be empty")
        if len(content) > self.max_content_length:
            raise ValidationFailure(f"content exceeds {self.max_content_length} characters")
        return content

    async def _broadcast_typing(
        self,
        room_id: str,
        username: Optional[str],
        typing: bool,
        exclude: Optional[str] = None,
    ) -> int:
        payload = TypingEvent(room_id=room_id, username=username, typing=typing).model_dump(by_alias=True)
        return await self._broadcast(room_id, TYPING_EVENT, payload, exclude=exclude)

    async def _broadcast(
        self,
        room_id: str,
        event: str,
        payload: dict[str, Any],
        exclude: Optional[str] = None,
    ) -> int:
        recipients = [sid for sid in self._registry.members(room_id) if sid != exclude]
        delivered = 0
        for sid in recipients:
            try:
                await self._emitter.emit(event, payload, to=sid)
            except Exception:
                # One broken peer must not stop delivery to the rest of the room
                logger.exception(f"Failed to deliver {event} to {sid}")
                continue
            delivered += 1
        record_broadcast(event, delivered)
        return delivered
