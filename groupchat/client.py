"""
Python client for the realtime chat.

Mirrors what the browser page does: connect with the ``token`` cookie,
remember the identity pushed by the server, join a room, send text/image
messages and turn keystrokes into debounced typing signals. Incoming typing
signals are aggregated into the "X, Y are typing..." line.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable, Optional

import socketio

from groupchat.typing_indicator import (
    DEFAULT_TYPING_EXPIRY,
    TYPING_TIMER_LENGTH,
    TypingAggregator,
    TypingDebouncer,
)

logger = logging.getLogger(__name__)

_IMAGE_URL_RE = re.compile(r"\.(gif|jpe?g|tiff?|png|webp|bmp)$", re.IGNORECASE)


def is_image_url(url: str) -> bool:
    """True if the URL path ends with a known image extension (query string ignored)."""
    return bool(_IMAGE_URL_RE.search(url.split("?", 1)[0]))


def message_kind(content: str) -> str:
    return "image" if is_image_url(content) else "text"


class ChatClient:

    def __init__(
        self,
        url: str,
        token: str,
        *,
        socketio_path: str = "socket.io",
        typing_window: float = TYPING_TIMER_LENGTH,
        typing_expiry: float = DEFAULT_TYPING_EXPIRY,
        on_message: Optional[Callable[[dict[str, Any]], None]] = None,
        sio: Optional[socketio.AsyncClient] = None,
    ):
        self.url = url
        self.token = token
        self.socketio_path = socketio_path
        self.sio = sio if sio is not None else socketio.AsyncClient(reconnection=False)
        self.user_id: Optional[int] = None
        self.messages: list[dict[str, Any]] = []
        self.typing = TypingAggregator(expiry=typing_expiry)
        self._debouncer = TypingDebouncer(self._emit_typing, window=typing_window)
        self._on_message = on_message

        self.sio.on("identity", self._on_identity)
        self.sio.on("chatMessage", self._on_chat_message)
        self.sio.on("sendImage", self._on_chat_message)
        self.sio.on("typing", self._on_typing)

    async def connect(self) -> None:
        await self.sio.connect(
            self.url,
            headers={"Cookie": f"token={self.token}"},
            socketio_path=self.socketio_path,
        )

    async def disconnect(self) -> None:
        self._debouncer.cancel()
        await self.sio.disconnect()

    async def join_room(self, room_id: str) -> dict[str, Any]:
        return await self.sio.call("joinRoom", room_id)

    async def leave_room(self, room_id: str) -> dict[str, Any]:
        await self._debouncer.stop(room_id)
        self.typing.clear(room_id)
        return await self.sio.call("leaveRoom", room_id)

    async def send_message(self, room_id: str, content: str) -> dict[str, Any]:
        """Send text; returns the server ack ({ok, id, createdAt} or {ok: False, error})."""
        content = content.strip()
        if not content:
            return {"ok": False, "error": "validation_error", "detail": "content must not be empty"}
        await self._debouncer.stop(room_id)
        return await self.sio.call("sendMessage", {"content": content, "roomId": room_id})

    async def send_image(self, room_id: str, image_ref: str) -> dict[str, Any]:
        """Announce an already uploaded image by its public reference."""
        return await self.sio.call("sendImage", {"imageRef": image_ref, "roomId": room_id})

    async def keystroke(self, room_id: str) -> None:
        await self._debouncer.keystroke(room_id)

    async def refresh_profile(self) -> dict[str, Any]:
        return await self.sio.call("refreshProfile", None)

    def typing_text(self, room_id: str) -> str:
        return self.typing.render(room_id)

    def is_own(self, message: dict[str, Any]) -> bool:
        return self.user_id is not None and message.get("senderId") == self.user_id

    def room_messages(self, room_id: str) -> list[dict[str, Any]]:
        return [m for m in self.messages if m.get("roomId") == room_id]

    async def _emit_typing(self, room_id: str, typing: bool) -> None:
        await self.sio.emit("typing", {"roomId": room_id, "typing": typing})

    async def _on_identity(self, data: dict[str, Any]) -> None:
        self.user_id = data.get("userId")
        logger.info(f"Connected as user {self.user_id}")

    async def _on_chat_message(self, data: dict[str, Any]) -> None:
        # Text and image events are rendered alike; the content decides
        self._record(data)

    async def _on_typing(self, data: dict[str, Any]) -> None:
        room_id = data.get("roomId")
        username = data.get("username")
        if room_id is None or not username:
            return
        self.typing.apply(room_id, username, bool(data.get("typing")))

    def _record(self, data: dict[str, Any]) -> None:
        message = dict(data, kind=message_kind(data.get("content", "")))
        self.messages.append(message)
        if self._on_message is not None:
            self._on_message(message)
