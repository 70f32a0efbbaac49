"""
SafeChat - Relay routing.

Created by SafeChat contributors

Turns client requests into deliveries. The router holds no state of its own:
each call takes one atomic snapshot from the registry, resolves recipients,
and returns a list of Delivery records. Sending them is the server's job and
happens after the registry lock has been released.

Addressing rules, shared by every message class:
- with a target member id, deliver to that member only;
- without one, deliver to every member of the sender's room except the sender.

A sender that is not in a room, or a target that has already left, yields no
deliveries. Those are expected races under churn, not errors.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional

from .protocol import Event
from .registry import Connection, JoinResult, LeaveResult, RoomRegistry, RoomView
from .utils import timestamp_ms

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Delivery:
    """One event addressed to one connection."""

    connection: Connection
    event: Event
    data: Dict[str, Any]


class RelayRouter:
    """Resolves recipients for chat, presence and call-signaling events."""

    def __init__(self, registry: RoomRegistry, clock_ms: Callable[[], int] = timestamp_ms):
        self.registry = registry
        self._clock_ms = clock_ms

    def announce_join(self, result: JoinResult, connection: Connection) -> List[Delivery]:
        """Deliveries for a completed join, including any implicit leave before it."""
        deliveries = self.announce_leave(result.previous)

        deliveries.append(
            Delivery(
                connection,
                Event.JOINED,
                {
                    "member_id": result.member.member_id,
                    "room_id": result.room_id,
                    "existing_members": [m.to_dict() for m in result.existing_members],
                },
            )
        )

        joined = result.member.to_dict()
        deliveries.extend(Delivery(peer, Event.MEMBER_JOINED, joined) for peer in result.recipients)
        return deliveries

    def announce_leave(self, result: Optional[LeaveResult]) -> List[Delivery]:
        """Deliveries telling the remaining members that someone left."""
        if result is None:
            return []

        data = {
            "member_id": result.member.member_id,
            "display_name": result.member.display_name,
        }
        return [Delivery(peer, Event.MEMBER_LEFT, data) for peer in result.recipients]

    def route_chat(
        self,
        envelope: Mapping[str, Any],
        sender: Connection,
        target_member_id: Optional[str] = None,
    ) -> List[Delivery]:
        """
        Route an encrypted chat envelope.

        Args:
            envelope: Mapping with ciphertext, nonce and message_id (opaque to the relay)
            sender: Sender's connection
            target_member_id: Deliver to this member only (optional)
        """
        view = self.registry.view_for(sender)
        if view is None:
            return []

        data = {
            "sender_member_id": view.sender.member_id,
            "sender_display_name": view.sender.display_name,
            "ciphertext": envelope["ciphertext"],
            "nonce": envelope["nonce"],
            "message_id": envelope["message_id"],
            "server_timestamp": self._clock_ms(),
        }
        return self._address(view, Event.CHAT_DELIVER, data, target_member_id)

    def route_typing(self, is_typing: bool, sender: Connection) -> List[Delivery]:
        """Broadcast a typing indicator to the rest of the room."""
        view = self.registry.view_for(sender)
        if view is None:
            return []

        data = {
            "member_id": view.sender.member_id,
            "display_name": view.sender.display_name,
            "is_typing": bool(is_typing),
        }
        return self._address(view, Event.TYPING, data)

    def route_call_start(self, media_type: str, sender: Connection) -> List[Delivery]:
        """Announce an incoming call to the rest of the room."""
        view = self.registry.view_for(sender)
        if view is None:
            return []

        data = {
            "sender_member_id": view.sender.member_id,
            "sender_display_name": view.sender.display_name,
            "media_type": media_type,
        }
        return self._address(view, Event.CALL_INCOMING, data)

    def route_call_signal(
        self, target_member_id: str, signal_payload: Any, sender: Connection
    ) -> List[Delivery]:
        """Forward an opaque call-signaling payload to one member."""
        view = self.registry.view_for(sender)
        if view is None:
            return []

        data = {"sender_member_id": view.sender.member_id, "signal_payload": signal_payload}
        return self._address(view, Event.CALL_SIGNAL, data, target_member_id)

    def route_call_end(self, sender: Connection) -> List[Delivery]:
        """Tell the rest of the room the call is over."""
        view = self.registry.view_for(sender)
        if view is None:
            return []

        data = {"sender_member_id": view.sender.member_id}
        return self._address(view, Event.CALL_ENDED, data)

    def _address(
        self,
        view: RoomView,
        event: Event,
        data: Dict[str, Any],
        target_member_id: Optional[str] = None,
    ) -> List[Delivery]:
        if target_member_id:
            connection = view.connection_of(target_member_id)
            if connection is None:
                logger.debug(f"{event.value}: member {target_member_id} not in room {view.room_id}")
                return []
            return [Delivery(connection, event, data)]

        return [Delivery(peer, event, data) for peer in view.peer_connections()]
