"""
Unit tests for safechat.registry module.

Created by SafeChat contributors

Tests room creation and destruction, membership, member id minting and the
abandoned-room reaper.
"""

import itertools
import threading

import pytest

from safechat.errors import ErrorCode, ValidationError
from safechat.registry import MemberInfo, RoomRegistry


class TestJoin:
    """Joining rooms."""

    def test_first_join_creates_room(self, registry, sample_public_key):
        result = registry.join("room-a", "conn-1", sample_public_key, "Alice")

        assert result.room_created is True
        assert result.room_id == "room-a"
        assert result.existing_members == ()
        assert result.recipients == ()
        assert result.previous is None
        assert result.member.display_name == "Alice"
        assert result.member.public_key == sample_public_key
        assert len(result.member.member_id) == 8
        assert registry.has_room("room-a")

    def test_second_join_sees_first_member(self, registry, sample_public_key):
        first = registry.join("room-a", "conn-1", sample_public_key, "Alice")
        second = registry.join("room-a", "conn-2", sample_public_key, "Bob")

        assert second.room_created is False
        assert second.existing_members == (first.member,)
        assert second.recipients == ("conn-1",)
        assert first.member not in (second.member,)
        assert len(registry.members_of("room-a")) == 2

    def test_default_display_name(self, registry, sample_public_key):
        first = registry.join("room-a", "conn-1", sample_public_key)
        second = registry.join("room-a", "conn-2", sample_public_key, "   ")

        assert first.member.display_name == "User1"
        assert second.member.display_name == "User2"

    def test_display_name_cleaned(self, sample_public_key):
        registry = RoomRegistry(max_display_name_length=5)
        result = registry.join("room-a", "conn-1", sample_public_key, "  Al\x00ice\n the great ")
        assert result.member.display_name == "Alice"

    @pytest.mark.parametrize(
        "room_id, public_key",
        [("", "key"), ("room", ""), (None, "key"), ("room", None)],
    )
    def test_missing_fields_rejected(self, registry, room_id, public_key):
        with pytest.raises(ValidationError) as exc_info:
            registry.join(room_id, "conn-1", public_key)

        assert exc_info.value.code == ErrorCode.E003_MISSING_FIELD
        assert exc_info.value.message == "Missing roomId or publicKey"
        assert registry.room_count() == 0

    def test_rejected_join_keeps_existing_membership(self, registry, sample_public_key):
        registry.join("room-a", "conn-1", sample_public_key)
        with pytest.raises(ValidationError):
            registry.join("room-b", "conn-1", "")

        assert registry.room_of("conn-1") == "room-a"

    def test_join_other_room_leaves_first(self, registry, sample_public_key):
        registry.join("room-a", "conn-1", sample_public_key, "Alice")
        registry.join("room-a", "conn-2", sample_public_key, "Bob")

        result = registry.join("room-b", "conn-1", sample_public_key, "Alice")

        assert result.previous is not None
        assert result.previous.room_id == "room-a"
        assert result.previous.recipients == ("conn-2",)
        assert registry.room_of("conn-1") == "room-b"
        assert [m.display_name for m in registry.members_of("room-a")] == ["Bob"]

    def test_rejoin_same_room_mints_new_id(self, registry, sample_public_key):
        registry.join("room-a", "conn-2", sample_public_key)
        first = registry.join("room-a", "conn-1", sample_public_key)
        second = registry.join("room-a", "conn-1", sample_public_key)

        assert second.previous.member == first.member
        assert second.member.member_id != first.member.member_id
        assert len(registry.members_of("room-a")) == 2

    def test_member_ids_unique_despite_collisions(self, sample_public_key):
        # Factory returns each id twice in a row
        ids = itertools.chain.from_iterable((f"id{i}", f"id{i}") for i in itertools.count())
        registry = RoomRegistry(id_factory=lambda: next(ids))

        members = [
            registry.join("room-a", f"conn-{n}", sample_public_key).member.member_id
            for n in range(5)
        ]
        assert len(set(members)) == 5

    def test_ids_not_reused_after_leave(self, sample_public_key):
        ids = iter(["first", "second", "second", "third"])
        registry = RoomRegistry(id_factory=lambda: next(ids))

        registry.join("room-a", "conn-keep", sample_public_key)
        registry.join("room-a", "conn-1", sample_public_key)
        registry.leave("conn-1")
        result = registry.join("room-a", "conn-2", sample_public_key)

        assert result.member.member_id == "third"


class TestLeave:
    """Leaving rooms."""

    def test_leave_notifies_remaining(self, registry, sample_public_key):
        registry.join("room-a", "conn-1", sample_public_key, "Alice")
        bob = registry.join("room-a", "conn-2", sample_public_key, "Bob")

        result = registry.leave("conn-2")

        assert result.member == bob.member
        assert result.recipients == ("conn-1",)
        assert result.room_destroyed is False
        assert registry.room_of("conn-2") is None

    def test_last_leave_destroys_room(self, registry, sample_public_key):
        registry.join("room-a", "conn-1", sample_public_key)
        result = registry.leave("conn-1")

        assert result.room_destroyed is True
        assert result.recipients == ()
        assert not registry.has_room("room-a")
        assert registry.room_count() == 0

    def test_leave_when_not_in_room(self, registry):
        assert registry.leave("nobody") is None

    def test_leave_twice(self, registry, sample_public_key):
        registry.join("room-a", "conn-1", sample_public_key)
        assert registry.leave("conn-1") is not None
        assert registry.leave("conn-1") is None

    def test_room_recreated_after_destruction(self, registry, sample_public_key):
        registry.join("room-a", "conn-1", sample_public_key)
        registry.leave("conn-1")

        result = registry.join("room-a", "conn-2", sample_public_key)
        assert result.room_created is True
        assert result.existing_members == ()
        assert result.member.display_name == "User1"


class TestQueries:
    """Snapshots and lookups."""

    def test_members_of_unknown_room(self, registry):
        assert registry.members_of("missing") == ()

    def test_member_for_and_find_member(self, registry, sample_public_key):
        joined = registry.join("room-a", "conn-1", sample_public_key, "Alice")

        assert registry.member_for("conn-1") == joined.member
        assert registry.member_for("conn-2") is None
        assert registry.find_member("room-a", joined.member.member_id) == joined.member
        assert registry.find_member("room-a", "missing") is None
        assert registry.find_member("room-b", joined.member.member_id) is None

    def test_view_for(self, registry, sample_public_key):
        alice = registry.join("room-a", "conn-1", sample_public_key, "Alice")
        bob = registry.join("room-a", "conn-2", sample_public_key, "Bob")
        carol = registry.join("room-a", "conn-3", sample_public_key, "Carol")

        view = registry.view_for("conn-1")

        assert view.sender == alice.member
        assert set(view.peer_connections()) == {"conn-2", "conn-3"}
        assert view.connection_of(bob.member.member_id) == "conn-2"
        assert view.connection_of(carol.member.member_id) == "conn-3"
        assert view.connection_of(alice.member.member_id) is None
        assert registry.view_for("conn-9") is None

    def test_snapshots_are_immutable(self, registry, sample_public_key):
        registry.join("room-a", "conn-1", sample_public_key)
        snapshot = registry.members_of("room-a")

        registry.join("room-a", "conn-2", sample_public_key)

        assert len(snapshot) == 1
        assert isinstance(snapshot, tuple)

    def test_stats(self, registry, sample_public_key):
        registry.join("room-a", "conn-1", sample_public_key)
        registry.join("room-a", "conn-2", sample_public_key)
        registry.join("room-b", "conn-3", sample_public_key)

        assert registry.stats() == {"rooms": 2, "members": 3}

    def test_member_info_round_trip(self):
        info = MemberInfo("abc", "key", "Alice")
        assert MemberInfo.from_dict(info.to_dict()) == info

    def test_member_info_missing_name(self):
        info = MemberInfo.from_dict({"member_id": "abc", "public_key": "key"})
        assert info.display_name == "abc"


class TestReapEmpty:
    """Abandoned-room reaping."""

    def _orphan_room(self, registry, room_id, public_key):
        # Leave the room registered but empty, as if the last leave was missed
        registry.join(room_id, "conn-x", public_key)
        room = registry._rooms[room_id]
        room.members.clear()
        registry._connection_rooms.pop("conn-x")

    def test_old_empty_room_reaped(self, registry, clock, sample_public_key):
        self._orphan_room(registry, "room-a", sample_public_key)
        clock.advance(25 * 3600)

        assert registry.reap_empty(24 * 3600) == ["room-a"]
        assert not registry.has_room("room-a")

    def test_young_empty_room_kept(self, registry, clock, sample_public_key):
        self._orphan_room(registry, "room-a", sample_public_key)
        clock.advance(3600)

        assert registry.reap_empty(24 * 3600) == []
        assert registry.has_room("room-a")

    def test_occupied_room_never_reaped(self, registry, clock, sample_public_key):
        registry.join("room-a", "conn-1", sample_public_key)
        clock.advance(48 * 3600)

        assert registry.reap_empty(24 * 3600) == []
        assert registry.room_of("conn-1") == "room-a"

    def test_explicit_now(self, registry, clock, sample_public_key):
        self._orphan_room(registry, "room-a", sample_public_key)
        assert registry.reap_empty(10, now=clock.now + 11) == ["room-a"]


def test_concurrent_joins_and_leaves(sample_public_key):
    """Membership stays consistent when many threads churn the same room."""
    registry = RoomRegistry()
    errors = []

    def churn(worker: int):
        try:
            for i in range(50):
                connection = f"w{worker}-{i}"
                registry.join("busy-room", connection, sample_public_key)
                registry.leave(connection)
        except Exception as e:  # pragma: no cover - surfaced by the assert below
            errors.append(e)

    threads = [threading.Thread(target=churn, args=(n,)) for n in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert registry.room_count() == 0
    assert registry.stats() == {"rooms": 0, "members": 0}
