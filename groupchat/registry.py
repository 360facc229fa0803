"""
Room registry: which sessions are currently joined to which room.

Owned by the realtime server process. Mutated only from the event loop
thread, so no locking is needed; callers must read membership right before
broadcasting instead of holding a snapshot across an await.
"""

import logging
from collections import defaultdict
from typing import Dict, FrozenSet, Set

logger = logging.getLogger(__name__)


class RoomRegistry:
    """Mapping room key -> set of session ids, with the reverse index."""

    def __init__(self) -> None:
        self._rooms: Dict[str, Set[str]] = defaultdict(set)
        self._session_rooms: Dict[str, Set[str]] = defaultdict(set)

    def add(self, room_id: str, sid: str) -> bool:
        """Register sid under room_id. Returns False if it was already there."""
        members = self._rooms[room_id]
        if sid in members:
            return False
        members.add(sid)
        self._session_rooms[sid].add(room_id)
        logger.debug(f"Session {sid} joined room {room_id} ({len(members)} members)")
        return True

    def remove(self, room_id: str, sid: str) -> bool:
        """Unregister sid from room_id. Empty rooms are dropped."""
        members = self._rooms.get(room_id)
        if not members or sid not in members:
            return False
        members.discard(sid)
        if not members:
            del self._rooms[room_id]
        rooms = self._session_rooms.get(sid)
        if rooms is not None:
            rooms.discard(room_id)
            if not rooms:
                del self._session_rooms[sid]
        logger.debug(f"Session {sid} left room {room_id}")
        return True

    def remove_session(self, sid: str) -> FrozenSet[str]:
        """Drop sid from every room. Returns the rooms it was in."""
        rooms = frozenset(self._session_rooms.pop(sid, ()))
        for room_id in rooms:
            members = self._rooms.get(room_id)
            if members is None:
                continue
            members.discard(sid)
            if not members:
                del self._rooms[room_id]
        return rooms

    def members(self, room_id: str) -> FrozenSet[str]:
        return frozenset(self._rooms.get(room_id, ()))

    def rooms_of(self, sid: str) -> FrozenSet[str]:
        return frozenset(self._session_rooms.get(sid, ()))

    def is_member(self, room_id: str, sid: str) -> bool:
        return sid in self._rooms.get(room_id, ())

    def room_count(self) -> int:
        return len(self._rooms)

    def __contains__(self, room_id: str) -> bool:
        return room_id in self._rooms
