"""
Tests for the room registry.
"""

from groupchat.registry import RoomRegistry


class TestRoomRegistry:

    def test_add_is_idempotent(self):
        registry = RoomRegistry()

        assert registry.add("42", "s1") is True
        assert registry.add("42", "s1") is False
        assert registry.members("42") == frozenset({"s1"})

    def test_session_in_several_rooms(self):
        registry = RoomRegistry()
        registry.add("42", "s1")
        registry.add("7", "s1")
        registry.add("42", "s2")

        assert registry.rooms_of("s1") == frozenset({"42", "7"})
        assert registry.members("42") == frozenset({"s1", "s2"})
        assert registry.is_member("7", "s1")
        assert not registry.is_member("7", "s2")
        assert registry.room_count() == 2

    def test_remove_drops_empty_rooms(self):
        registry = RoomRegistry()
        registry.add("42", "s1")

        assert registry.remove("42", "s1") is True
        assert registry.remove("42", "s1") is False
        assert "42" not in registry
        assert registry.rooms_of("s1") == frozenset()

    def test_remove_session_everywhere(self):
        registry = RoomRegistry()
        registry.add("42", "s1")
        registry.add("7", "s1")
        registry.add("7", "s2")

        assert registry.remove_session("s1") == frozenset({"42", "7"})
        assert registry.members("7") == frozenset({"s2"})
        assert "42" not in registry
        assert registry.remove_session("s1") == frozenset()

    def test_members_is_a_snapshot(self):
        registry = RoomRegistry()
        registry.add("42", "s1")
        members = registry.members("42")

        registry.add("42", "s2")

        assert members == frozenset({"s1"})

    def test_unknown_room(self):
        registry = RoomRegistry()
        assert registry.members("nope") == frozenset()
        assert "nope" not in registry
        assert registry.room_count() == 0
