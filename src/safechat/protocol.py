"""
SafeChat - Relay wire protocol definitions.

Created by SafeChat contributors

Every frame is one JSON object terminated by a newline:

    {"event": "<name>", "data": {...}}

The same framing is used in both directions. Binary fields (public keys,
ciphertext, nonces) travel base64 encoded. Call-signal payloads are opaque
and never inspected by the relay.
"""

import json
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .constants import MAX_FRAME_SIZE, MAX_ROOM_ID_LENGTH
from .errors import ErrorCode, NetworkError, ValidationError


class Event(str, Enum):
    """Event name definitions."""

    # Membership
    JOIN = "join"
    JOINED = "joined"
    MEMBER_JOINED = "member_joined"
    LEAVE = "leave"
    MEMBER_LEFT = "member_left"

    # Chat
    CHAT_SEND = "chat_send"
    CHAT_DELIVER = "chat_deliver"

    # Presence
    TYPING = "typing"

    # Call signaling
    CALL_START = "call_start"
    CALL_INCOMING = "call_incoming"
    CALL_SIGNAL = "call_signal"
    CALL_END = "call_end"
    CALL_ENDED = "call_ended"

    # Errors
    ERROR = "error"


# Events a client may send to the relay
CLIENT_EVENTS = frozenset(
    {
        Event.JOIN,
        Event.LEAVE,
        Event.CHAT_SEND,
        Event.TYPING,
        Event.CALL_START,
        Event.CALL_SIGNAL,
        Event.CALL_END,
    }
)

# Required fields and their types, per event
REQUIRED_FIELDS: Dict[Event, Dict[str, Any]] = {
    Event.JOIN: {"room_id": str, "public_key": str},
    Event.JOINED: {"member_id": str, "room_id": str, "existing_members": list},
    Event.MEMBER_JOINED: {"member_id": str, "public_key": str, "display_name": str},
    Event.MEMBER_LEFT: {"member_id": str, "display_name": str},
    Event.CHAT_SEND: {"ciphertext": str, "nonce": str, "message_id": str},
    Event.CHAT_DELIVER: {
        "sender_member_id": str,
        "sender_display_name": str,
        "ciphertext": str,
        "nonce": str,
        "message_id": str,
        "server_timestamp": int,
    },
    Event.TYPING: {"is_typing": bool},
    Event.CALL_START: {"media_type": str},
    Event.CALL_INCOMING: {"sender_member_id": str, "sender_display_name": str, "media_type": str},
    Event.CALL_SIGNAL: {"signal_payload": object},
    Event.ERROR: {"code": str, "message": str},
}

# Fields that are optional but must have the right type when present
OPTIONAL_FIELDS: Dict[Event, Dict[str, Any]] = {
    Event.JOIN: {"display_name": str},
    Event.CHAT_SEND: {"target_member_id": str},
    Event.CALL_SIGNAL: {"target_member_id": str, "sender_member_id": str},
}

# Fields that must not be empty strings
NON_EMPTY_FIELDS = frozenset({"room_id", "public_key", "message_id", "target_member_id"})


class Protocol:
    """Newline-delimited JSON protocol handler."""

    DELIMITER = b"\n"
    MAX_FRAME_SIZE = MAX_FRAME_SIZE

    @staticmethod
    def pack_message(
        event: Event, data: Optional[Dict[str, Any]] = None, max_size: Optional[int] = None
    ) -> bytes:
        """
        Pack an event into a single frame.

        Args:
            event: Event to send
            data: Event fields
            max_size: Frame size limit in bytes (defaults to MAX_FRAME_SIZE)

        Raises:
            NetworkError: If the encoded frame is too large
        """
        limit = Protocol.MAX_FRAME_SIZE if max_size is None else max_size
        frame = json.dumps({"event": Event(event).value, "data": data or {}}).encode("utf-8")

        if len(frame) > limit:
            raise NetworkError(
                ErrorCode.E207_MESSAGE_TOO_LARGE,
                f"Frame too large: {len(frame)} bytes",
                {"size": len(frame), "max_size": limit},
            )

        return frame + Protocol.DELIMITER

    @staticmethod
    def unpack_message(line: bytes) -> Tuple[Event, Dict[str, Any]]:
        """
        Unpack one frame (without its trailing newline) and validate it.

        Returns:
            Event and its data dictionary

        Raises:
            NetworkError: If the frame is not a well-formed event
            ValidationError: If required fields are missing or mistyped
        """
        try:
            message = json.loads(line.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise NetworkError(
                ErrorCode.E206_INVALID_MESSAGE, f"Failed to parse message: {e}", {"error": str(e)}
            )

        if not isinstance(message, dict):
            raise NetworkError(ErrorCode.E206_INVALID_MESSAGE, "Message must be a JSON object")

        name = message.get("event")
        try:
            event = Event(name)
        except ValueError:
            raise NetworkError(
                ErrorCode.E804_INVALID_COMMAND,
                f"Unknown event: {name}",
                {"event": name},
            )

        data = message.get("data")
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise NetworkError(
                ErrorCode.E206_INVALID_MESSAGE, "Event data must be a JSON object", {"event": name}
            )

        Protocol.validate_message(event, data)
        return event, data

    @staticmethod
    def validate_message(event: Event, data: Dict[str, Any]) -> None:
        """
        Validate event fields.

        Raises:
            ValidationError: If validation fails
        """
        for field, expected in REQUIRED_FIELDS.get(event, {}).items():
            if field not in data or data[field] is None:
                raise ValidationError(
                    ErrorCode.E003_MISSING_FIELD,
                    f"Missing required field: {field}",
                    {"event": event.value, "field": field},
                )
            Protocol._check_field(event, field, data[field], expected)

        for field, expected in OPTIONAL_FIELDS.get(event, {}).items():
            if data.get(field) is not None:
                Protocol._check_field(event, field, data[field], expected)

        if event == Event.JOIN and len(data["room_id"]) > MAX_ROOM_ID_LENGTH:
            raise ValidationError(
                ErrorCode.E002_INVALID_ARGUMENT,
                f"Room id too long: {len(data['room_id'])} > {MAX_ROOM_ID_LENGTH}",
                {"event": event.value, "field": "room_id"},
            )

    @staticmethod
    def _check_field(event: Event, field: str, value: Any, expected: Any) -> None:
        # bool is a subclass of int; a timestamp of True is still malformed
        wrong_type = not isinstance(value, expected) or (
            expected is int and isinstance(value, bool)
        )
        if wrong_type:
            raise ValidationError(
                ErrorCode.E002_INVALID_ARGUMENT,
                f"Invalid type for field: {field}",
                {"event": event.value, "field": field},
            )
        if field in NON_EMPTY_FIELDS and value == "":
            raise ValidationError(
                ErrorCode.E003_MISSING_FIELD,
                f"Missing required field: {field}",
                {"event": event.value, "field": field},
            )

    @staticmethod
    def create_join(room_id: str, public_key: str, display_name: Optional[str] = None) -> bytes:
        """Create join request."""
        payload = {"room_id": room_id, "public_key": public_key}
        if display_name:
            payload["display_name"] = display_name
        return Protocol.pack_message(Event.JOIN, payload)

    @staticmethod
    def create_leave() -> bytes:
        """Create leave request."""
        return Protocol.pack_message(Event.LEAVE)

    @staticmethod
    def create_chat_send(
        ciphertext: str, nonce: str, message_id: str, target_member_id: Optional[str] = None
    ) -> bytes:
        """Create chat message. Without a target the relay broadcasts it."""
        payload = {"ciphertext": ciphertext, "nonce": nonce, "message_id": message_id}
        if target_member_id:
            payload["target_member_id"] = target_member_id
        return Protocol.pack_message(Event.CHAT_SEND, payload)

    @staticmethod
    def create_typing(is_typing: bool) -> bytes:
        """Create typing indicator."""
        return Protocol.pack_message(Event.TYPING, {"is_typing": is_typing})

    @staticmethod
    def create_call_start(media_type: str) -> bytes:
        """Create call start announcement."""
        return Protocol.pack_message(Event.CALL_START, {"media_type": media_type})

    @staticmethod
    def create_call_signal(target_member_id: str, signal_payload: Any) -> bytes:
        """Create call signaling envelope for one member."""
        return Protocol.pack_message(
            Event.CALL_SIGNAL,
            {"target_member_id": target_member_id, "signal_payload": signal_payload},
        )

    @staticmethod
    def create_call_end() -> bytes:
        """Create call end announcement."""
        return Protocol.pack_message(Event.CALL_END)

    @staticmethod
    def create_error(error_code: ErrorCode, message: str) -> bytes:
        """Create error response."""
        return Protocol.pack_message(Event.ERROR, {"code": error_code.value, "message": message})
