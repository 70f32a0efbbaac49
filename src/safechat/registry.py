"""
SafeChat - In-memory room registry.

Created by SafeChat contributors

Owns every Room and RoomMember record on the relay. A room exists only while
it has members: it is created by the first join that names an unknown room id
and destroyed the moment its last member leaves. A connection belongs to at
most one room at a time; joining a second room leaves the first.

All state lives in process memory and is lost on restart. Every mutation and
every snapshot happens under a single registry lock, and snapshots are
returned as immutable tuples so callers never observe a half-applied change.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Hashable, List, Optional, Set, Tuple

from . import crypto
from .constants import DEFAULT_DISPLAY_NAME_PREFIX, MAX_DISPLAY_NAME_LENGTH
from .errors import ErrorCode, ValidationError
from .utils import clean_display_name

logger = logging.getLogger(__name__)

Connection = Hashable


@dataclass(frozen=True)
class MemberInfo:
    """Public view of a member, as shared with other members."""

    member_id: str
    public_key: str
    display_name: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "member_id": self.member_id,
            "public_key": self.public_key,
            "display_name": self.display_name,
        }

    @staticmethod
    def from_dict(data: Dict[str, str]) -> "MemberInfo":
        return MemberInfo(
            member_id=data["member_id"],
            public_key=data["public_key"],
            display_name=data.get("display_name") or data["member_id"],
        )


class RoomMember:
    """Server-side record of one participant in one room."""

    def __init__(self, member_id: str, public_key: str, display_name: str, connection: Connection):
        self.member_id = member_id
        self.public_key = public_key  # opaque; never parsed by the relay
        self.display_name = display_name
        self.connection = connection
        self.joined_at = time.time()

    def info(self) -> MemberInfo:
        return MemberInfo(self.member_id, self.public_key, self.display_name)


class Room:
    """A named group of connected members."""

    def __init__(self, room_id: str, created_at: float):
        self.room_id = room_id
        self.created_at = created_at
        self.members: Dict[Connection, RoomMember] = {}
        # Every member id handed out during this room's lifetime
        self.issued_ids: Set[str] = set()

    @property
    def member_count(self) -> int:
        return len(self.members)

    def is_empty(self) -> bool:
        return not self.members

    def age(self, now: float) -> float:
        return now - self.created_at


@dataclass(frozen=True)
class LeaveResult:
    """Outcome of removing a member from its room."""

    room_id: str
    member: MemberInfo
    recipients: Tuple[Connection, ...]  # connections still in the room
    room_destroyed: bool


@dataclass(frozen=True)
class JoinResult:
    """Outcome of a join: the new member, who was already there, and any auto-leave."""

    room_id: str
    member: MemberInfo
    existing_members: Tuple[MemberInfo, ...]
    recipients: Tuple[Connection, ...]  # connections of the existing members
    room_created: bool
    previous: Optional[LeaveResult] = None


@dataclass(frozen=True)
class RoomView:
    """Atomic routing snapshot taken from the sender's point of view."""

    room_id: str
    sender: MemberInfo
    peers: Tuple[Tuple[Connection, MemberInfo], ...] = field(default_factory=tuple)

    def connection_of(self, member_id: str) -> Optional[Connection]:
        for connection, info in self.peers:
            if info.member_id == member_id:
                return connection
        return None

    def peer_connections(self) -> Tuple[Connection, ...]:
        return tuple(connection for connection, _ in self.peers)


class RoomRegistry:
    """
    Mapping of room id to members, guarded by one lock.

    Attributes:
        max_display_name_length: Display names are trimmed to this length
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        id_factory: Callable[[], str] = crypto.generate_member_id,
        max_display_name_length: int = MAX_DISPLAY_NAME_LENGTH,
    ):
        self._rooms: Dict[str, Room] = {}
        self._connection_rooms: Dict[Connection, str] = {}
        self._lock = threading.RLock()
        self._clock = clock
        self._id_factory = id_factory
        self.max_display_name_length = max_display_name_length

    def join(
        self,
        room_id: str,
        connection: Connection,
        public_key: str,
        display_name: Optional[str] = None,
    ) -> JoinResult:
        """
        Add a connection to a room, creating the room if it does not exist.

        Any membership the connection already holds is torn down first.

        Raises:
            ValidationError: If room_id or public_key is missing; nothing is mutated
        """
        if not room_id or not isinstance(room_id, str):
            raise ValidationError(ErrorCode.E003_MISSING_FIELD, "Missing roomId or publicKey")
        if not public_key or not isinstance(public_key, str):
            raise ValidationError(ErrorCode.E003_MISSING_FIELD, "Missing roomId or publicKey")

        with self._lock:
            previous = self._leave_locked(connection)

            room = self._rooms.get(room_id)
            room_created = room is None
            if room is None:
                room = Room(room_id, created_at=self._clock())
                self._rooms[room_id] = room
                logger.info(f"Room created: {room_id}")

            existing = tuple(m.info() for m in room.members.values())
            recipients = tuple(room.members.keys())

            name = clean_display_name(display_name, self.max_display_name_length)
            if not name:
                name = f"{DEFAULT_DISPLAY_NAME_PREFIX}{room.member_count + 1}"

            member = RoomMember(self._mint_member_id(room), public_key, name, connection)
            room.members[connection] = member
            self._connection_rooms[connection] = room_id

            logger.info(
                f"{member.display_name} joined room {room_id} ({room.member_count} members)"
            )

            return JoinResult(
                room_id=room_id,
                member=member.info(),
                existing_members=existing,
                recipients=recipients,
                room_created=room_created,
                previous=previous,
            )

    def leave(self, connection: Connection) -> Optional[LeaveResult]:
        """
        Remove a connection from whatever room it is in.

        Used for explicit leave requests and transport disconnects alike.

        Returns:
            LeaveResult, or None if the connection was not in a room
        """
        with self._lock:
            return self._leave_locked(connection)

    def members_of(self, room_id: str) -> Tuple[MemberInfo, ...]:
        """Snapshot of a room's members (empty if the room does not exist)."""
        with self._lock:
            room = self._rooms.get(room_id)
            if room is None:
                return ()
            return tuple(m.info() for m in room.members.values())

    def room_of(self, connection: Connection) -> Optional[str]:
        with self._lock:
            return self._connection_rooms.get(connection)

    def member_for(self, connection: Connection) -> Optional[MemberInfo]:
        with self._lock:
            room_id = self._connection_rooms.get(connection)
            if room_id is None:
                return None
            return self._rooms[room_id].members[connection].info()

    def find_member(self, room_id: str, member_id: str) -> Optional[MemberInfo]:
        with self._lock:
            room = self._rooms.get(room_id)
            if room is None:
                return None
            for member in room.members.values():
                if member.member_id == member_id:
                    return member.info()
            return None

    def view_for(self, connection: Connection) -> Optional[RoomView]:
        """
        Routing snapshot for a sender: its own record plus every other member.

        Returns:
            RoomView, or None if the connection is not currently in a room
        """
        with self._lock:
            room_id = self._connection_rooms.get(connection)
            if room_id is None:
                return None
            room = self._rooms[room_id]
            sender = room.members[connection].info()
            peers = tuple(
                (conn, member.info())
                for conn, member in room.members.items()
                if conn != connection
            )
            return RoomView(room_id=room_id, sender=sender, peers=peers)

    def has_room(self, room_id: str) -> bool:
        with self._lock:
            return room_id in self._rooms

    def room_count(self) -> int:
        with self._lock:
            return len(self._rooms)

    def reap_empty(self, max_age: float, now: Optional[float] = None) -> List[str]:
        """
        Delete rooms that are empty and older than max_age seconds.

        Returns:
            Ids of the rooms removed
        """
        with self._lock:
            now = self._clock() if now is None else now
            stale = [
                room_id
                for room_id, room in self._rooms.items()
                if room.is_empty() and room.age(now) > max_age
            ]
            for room_id in stale:
                del self._rooms[room_id]
                logger.info(f"Cleaned up old room: {room_id}")
            return stale

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "rooms": len(self._rooms),
                "members": len(self._connection_rooms),
            }

    def _leave_locked(self, connection: Connection) -> Optional[LeaveResult]:
        room_id = self._connection_rooms.pop(connection, None)
        if room_id is None:
            return None

        room = self._rooms.get(room_id)
        if room is None:
            return None
        member = room.members.pop(connection, None)
        if member is None:
            return None

        logger.info(
            f"{member.display_name} left room {room_id} ({room.member_count} members remaining)"
        )

        destroyed = room.is_empty()
        if destroyed:
            del self._rooms[room_id]
            logger.info(f"Room {room_id} destroyed (empty)")

        return LeaveResult(
            room_id=room_id,
            member=member.info(),
            recipients=tuple(room.members.keys()),
            room_destroyed=destroyed,
        )

    def _mint_member_id(self, room: Room) -> str:
        member_id = self._id_factory()
        while member_id in room.issued_ids:
            member_id = self._id_factory()
        room.issued_ids.add(member_id)
        return member_id
