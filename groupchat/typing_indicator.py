"""
Typing indicator state.

Server side, TypingTracker remembers which sessions last said "typing: true"
in which room, so a session that disconnects or leaves mid-type can be
cleared for the others.

Client side, TypingDebouncer turns keystrokes into start/stop signals with a
fixed 2 second window and TypingAggregator keeps the "X, Y are typing..."
state for one observer. Aggregator entries expire on their own, so a peer
whose stop signal never arrives does not stay on screen forever.
"""

import asyncio
import time
from collections import defaultdict
from typing import Awaitable, Callable, Dict, FrozenSet, List, Set

TYPING_TIMER_LENGTH = 2.0
DEFAULT_TYPING_EXPIRY = 5.0


class TypingTracker:
    """Set of (room_id, sid) pairs currently typing."""

    def __init__(self) -> None:
        self._typing: Dict[str, Set[str]] = defaultdict(set)

    def mark(self, room_id: str, sid: str, typing: bool) -> None:
        if typing:
            self._typing[sid].add(room_id)
            return
        rooms = self._typing.get(sid)
        if rooms is not None:
            rooms.discard(room_id)
            if not rooms:
                del self._typing[sid]

    def is_typing(self, room_id: str, sid: str) -> bool:
        return room_id in self._typing.get(sid, ())

    def clear(self, room_id: str, sid: str) -> bool:
        """Forget sid's typing state in room_id. True if it was typing."""
        was_typing = self.is_typing(room_id, sid)
        self.mark(room_id, sid, False)
        return was_typing

    def clear_session(self, sid: str) -> FrozenSet[str]:
        """Forget every room sid was typing in and return them."""
        return frozenset(self._typing.pop(sid, ()))


class TypingDebouncer:
    """
    Keystroke -> typing signals for one input field.

    Every keystroke emits typing:true and restarts the window; typing:false
    is emitted once the window elapses without further input.
    """

    def __init__(
        self,
        emit: Callable[[str, bool], Awaitable[None]],
        window: float = TYPING_TIMER_LENGTH,
    ):
        self._emit = emit
        self.window = window
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._pending: Set[asyncio.Task] = set()

    async def keystroke(self, room_id: str) -> None:
        self._cancel_timer(room_id)
        await self._emit(room_id, True)
        loop = asyncio.get_running_loop()
        self._timers[room_id] = loop.call_later(self.window, self._expire, room_id)

    async def stop(self, room_id: str) -> None:
        """Emit typing:false now if a window is open (e.g. the message was sent)."""
        if self._cancel_timer(room_id):
            await self._emit(room_id, False)

    def cancel(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

    def is_active(self, room_id: str) -> bool:
        return room_id in self._timers

    def _cancel_timer(self, room_id: str) -> bool:
        handle = self._timers.pop(room_id, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def _expire(self, room_id: str) -> None:
        self._timers.pop(room_id, None)
        task = asyncio.get_running_loop().create_task(self._emit(room_id, False))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)


class TypingAggregator:
    """Per-room set of usernames currently typing, as seen by one observer."""

    def __init__(
        self,
        expiry: float = DEFAULT_TYPING_EXPIRY,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.expiry = expiry
        self._clock = clock
        # room_id -> {username: deadline}, insertion ordered
        self._rooms: Dict[str, Dict[str, float]] = defaultdict(dict)

    def apply(self, room_id: str, username: str, typing: bool) -> None:
        if not username:
            return
        entries = self._rooms[room_id]
        if typing:
            entries[username] = self._clock() + self.expiry
        else:
            entries.pop(username, None)

    def typing_users(self, room_id: str) -> List[str]:
        entries = self._rooms.get(room_id)
        if not entries:
            return []
        now = self._clock()
        expired = [name for name, deadline in entries.items() if deadline <= now]
        for name in expired:
            del entries[name]
        return list(entries)

    def render(self, room_id: str) -> str:
        return render_typing(self.typing_users(room_id))

    def clear(self, room_id: str) -> None:
        self._rooms.pop(room_id, None)


def render_typing(usernames: List[str]) -> str:
    """'' | 'alice is typing...' | 'alice, bob are typing...'"""
    if not usernames:
        return ""
    verb = "is" if len(usernames) == 1 else "are"
    return f"{', '.join(usernames)} {verb} typing..."
