"""Socket.IO server for the chat frontend.

Connection handshake:
- the browser sends the ``token`` cookie set by /login on the handshake
  request; ``auth: { token }`` is accepted as a fallback for non-browser clients
- an invalid/expired/missing credential refuses the connection before any
  event is handled
- on success the server emits ``identity`` ({userId}) to that socket only

Client -> server events: joinRoom, leaveRoom, sendMessage, sendImage, typing,
refreshProfile. Every handler returns an acknowledgment dict.

Server -> client events: identity, chatMessage, sendImage, typing.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import socketio
from pydantic import ValidationError

from groupchat.config import settings
from groupchat.errors import AuthFailure
from groupchat.fanout import FanoutEngine
from groupchat.logging_utils import realtime_context
from groupchat.metrics import (
    realtime_connections,
    record_auth_failure,
    record_realtime_event,
)
from groupchat.registry import RoomRegistry
from groupchat.schemas import (
    Ack,
    IdentityEvent,
    RoomPayload,
    SendImagePayload,
    SendMessagePayload,
    TypingPayload,
)
from groupchat.sessions import Session, SessionManager
from groupchat.storage import PersistenceGateway
from groupchat.typing_indicator import TypingTracker

logger = logging.getLogger(__name__)

IDENTITY_EVENT = "identity"


sio = socketio.AsyncServer(
    async_mode="asgi",
    cors_allowed_origins=settings.cors_origins,
    logger=False,
    engineio_logger=False,
)


class SocketIOEmitter:
    """Delivers one event to one connected socket."""

    def __init__(self, server: socketio.AsyncServer):
        self._server = server

    async def emit(self, event: str, data: dict[str, Any], to: str) -> None:
        await self._server.emit(event, data, to=to)


def extract_cookie_header(environ: dict[str, Any]) -> Optional[str]:
    """Raw ``Cookie`` header from a Socket.IO environ.

    python-socketio passes a WSGI-style environ with ``HTTP_COOKIE``; under
    ASGI the original scope is also available as ``asgi.scope``.
    """
    if not isinstance(environ, dict):
        return None

    cookie = environ.get("HTTP_COOKIE")
    if isinstance(cookie, str) and cookie:
        return cookie

    scope = environ.get("asgi.scope")
    if isinstance(scope, dict):
        for name, value in scope.get("headers", ()):
            if name.lower() == b"cookie":
                return value.decode("latin-1")

    return None


def _room_payload(data: Any) -> RoomPayload:
    """joinRoom/leaveRoom carry the bare room id; {roomId} is accepted too."""
    if isinstance(data, dict):
        data = data.get("roomId", data.get("room_id"))
    return RoomPayload(room_id=data)


def _validation_ack(exc: ValidationError) -> dict[str, Any]:
    errors = exc.errors()
    detail = errors[0]["msg"] if errors else "invalid payload"
    return Ack(ok=False, error="validation_error", detail=detail).to_wire()


class ChatRealtime:
    """Realtime session manager: authentication, rooms, event dispatch."""

    def __init__(
        self,
        emitter,
        gateway: PersistenceGateway,
        registry: Optional[RoomRegistry] = None,
    ):
        self.emitter = emitter
        self.registry = registry or RoomRegistry()
        self.sessions = SessionManager(self.registry, gateway)
        self.fanout = FanoutEngine(self.registry, gateway, emitter, TypingTracker())

    # -- connection lifecycle -------------------------------------------------

    async def on_connect(self, sid: str, environ: dict[str, Any], auth: Any | None = None):
        with realtime_context(sid):
            try:
                session = await self.sessions.authenticate(sid, extract_cookie_header(environ), auth)
            except AuthFailure as exc:
                logger.info(f"Socket.IO authentication failed: {exc.detail}")
                record_auth_failure(exc.reason)
                raise socketio.exceptions.ConnectionRefusedError(exc.reason) from exc
            except Exception as exc:
                logger.exception("Socket.IO connect error")
                record_auth_failure("server_error")
                raise socketio.exceptions.ConnectionRefusedError("server_error") from exc

            realtime_connections.inc()
            identity = IdentityEvent(user_id=session.user_id).model_dump(by_alias=True)
            await self.emitter.emit(IDENTITY_EVENT, identity, to=sid)

    async def on_disconnect(self, sid: str, reason: Any = None):
        with realtime_context(sid):
            session = self.sessions.close(sid)
            if session is None:
                return
            realtime_connections.dec()
            logger.info(f"User {session.user_id} disconnected ({reason})")
            try:
                await self.fanout.session_closed(session)
            except Exception:
                logger.exception("Failed to clear typing state on disconnect")

    # -- client events ---------------------------------------------------------

    async def on_join_room(self, sid: str, data: Any) -> dict[str, Any]:
        return await self._dispatch("joinRoom", sid, data, self._join_room)

    async def on_leave_room(self, sid: str, data: Any) -> dict[str, Any]:
        return await self._dispatch("leaveRoom", sid, data, self._leave_room)

    async def on_send_message(self, sid: str, data: Any) -> dict[str, Any]:
        return await self._dispatch("sendMessage", sid, data, self._send_message)

    async def on_send_image(self, sid: str, data: Any) -> dict[str, Any]:
        return await self._dispatch("sendImage", sid, data, self._send_image)

    async def on_typing(self, sid: str, data: Any) -> dict[str, Any]:
        return await self._dispatch("typing", sid, data, self._typing)

    async def on_refresh_profile(self, sid: str, data: Any = None) -> dict[str, Any]:
        return await self._dispatch("refreshProfile", sid, data, self._refresh_profile)

    async def _dispatch(self, event: str, sid: str, data: Any, handler) -> dict[str, Any]:
        """Run one event handler in isolation and turn its outcome into an ack."""
        with realtime_context(sid):
            session = self.sessions.get(sid)
            if session is None:
                logger.warning(f"Dropping {event} from unauthenticated socket")
                record_realtime_event(event, "unauthenticated")
                return Ack(ok=False, error="unauthenticated").to_wire()

            try:
                ack = await handler(session, data)
            except ValidationError as exc:
                logger.info(f"Invalid {event} payload from user {session.user_id}")
                record_realtime_event(event, "validation_error")
                return _validation_ack(exc)
            except Exception:
                logger.exception(f"Unhandled error in {event} handler")
                record_realtime_event(event, "error")
                return Ack(ok=False, error="server_error").to_wire()

            record_realtime_event(event, "ok" if ack.ok else ack.error or "error")
            return ack.to_wire()

    async def _join_room(self, session: Session, data: Any) -> Ack:
        payload = _room_payload(data)
        self.sessions.join(session, payload.room_id)
        return Ack(ok=True, room_id=payload.room_id)

    async def _leave_room(self, session: Session, data: Any) -> Ack:
        payload = _room_payload(data)
        await self.fanout.clear_typing(session, payload.room_id)
        self.sessions.leave(session, payload.room_id)
        return Ack(ok=True, room_id=payload.room_id)

    async def _send_message(self, session: Session, data: Any) -> Ack:
        payload = SendMessagePayload.model_validate(data)
        return await self.fanout.send_message(session, payload.room_id, payload.content)

    async def _send_image(self, session: Session, data: Any) -> Ack:
        payload = SendImagePayload.model_validate(data)
        return await self.fanout.send_image(session, payload.room_id, payload.image_ref)

    async def _typing(self, session: Session, data: Any) -> Ack:
        payload = TypingPayload.model_validate(data)
        return await self.fanout.relay_typing(session, payload.room_id, payload.typing)

    async def _refresh_profile(self, session: Session, data: Any) -> Ack:
        await self.sessions.refresh_display(session)
        return Ack(ok=True)


def register_handlers(server: socketio.AsyncServer, chat: ChatRealtime) -> None:
    server.on("connect", chat.on_connect)
    server.on("disconnect", chat.on_disconnect)
    server.on("joinRoom", chat.on_join_room)
    server.on("leaveRoom", chat.on_leave_room)
    server.on("sendMessage", chat.on_send_message)
    server.on("sendImage", chat.on_send_image)
    server.on("typing", chat.on_typing)
    server.on("refreshProfile", chat.on_refresh_profile)


chat = ChatRealtime(SocketIOEmitter(sio), PersistenceGateway())
register_handlers(sio, chat)
