"""
SafeChat - Relay client using asyncio.

Created by SafeChat contributors

Connects to a relay server, joins a room and exchanges end-to-end encrypted
messages with the other members. The client keeps its own view of the room
(members, typing indicators, message history) from the events it receives.

Outgoing chat messages are encrypted separately for every peer and sent as
one direct-addressed frame per peer, all sharing the same message id. If
encryption fails for any peer, nothing is sent.
"""

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set

from . import crypto
from .config import Config
from .constants import CONNECT_TIMEOUT, DEFAULT_SERVER_PORT, JOIN_TIMEOUT, LOCALHOST, READ_CHUNK_SIZE
from .errors import ErrorCode, JoinTimeout, NetworkError, SafeChatError, ValidationError
from .protocol import Event, Protocol
from .registry import MemberInfo
from .session import SessionManager
from .utils import format_timestamp_ms, timestamp_ms

logger = logging.getLogger(__name__)


@dataclass
class ChatMessage:
    """One chat message in the local history.

    ``content`` is None when the message could not be authenticated; such
    messages are kept with ``undeliverable`` set so the gap is visible.
    """

    message_id: str
    sender_member_id: str
    sender_display_name: str
    content: Optional[str]
    timestamp: int
    is_own: bool = False
    undeliverable: bool = False

    @property
    def formatted_time(self) -> str:
        return format_timestamp_ms(self.timestamp)


# Error replies that answer a join request; any other error is unrelated to it
JOIN_ERROR_CODES = frozenset({ErrorCode.E002_INVALID_ARGUMENT, ErrorCode.E003_MISSING_FIELD})


def _error_code(value: Any) -> ErrorCode:
    try:
        return ErrorCode(value)
    except ValueError:
        return ErrorCode.E001_UNKNOWN_ERROR


class RelayClient:
    """Async client for one relay connection and one room at a time."""

    def __init__(
        self,
        host: str = LOCALHOST,
        port: int = DEFAULT_SERVER_PORT,
        display_name: Optional[str] = None,
        join_timeout: float = JOIN_TIMEOUT,
    ):
        """
        Initialize client.

        Args:
            host: Relay server host
            port: Relay server port
            display_name: Name shown to other members (server assigns one if omitted)
            join_timeout: Seconds to wait for the server to confirm a join
        """
        self.host = host
        self.port = port
        self.display_name = display_name
        self.join_timeout = join_timeout

        self.reader: Optional[asyncio.StreamReader] = None
        self.writer: Optional[asyncio.StreamWriter] = None
        self.connected = False

        # Receive task
        self.receive_task: Optional[asyncio.Task] = None
        self.running = False
        self.buffer = b""

        self.session = SessionManager()

        # Room state
        self.room_id: Optional[str] = None
        self.member_id: Optional[str] = None
        self.members: Dict[str, MemberInfo] = {}
        self.typing: Set[str] = set()
        self.messages: List[ChatMessage] = []
        self._received_ids: Set[str] = set()

        # Event callbacks
        self.event_callbacks: Dict[str, List[Callable]] = {}

        self._join_future: Optional[asyncio.Future] = None

    @classmethod
    def from_config(
        cls,
        config: Config,
        host: str = LOCALHOST,
        port: Optional[int] = None,
        display_name: Optional[str] = None,
    ) -> "RelayClient":
        """Create a client using the port and join timeout from a Config."""
        return cls(
            host=host,
            port=port if port is not None else config.get("server", "port"),
            display_name=display_name,
            join_timeout=config.get("client", "join_timeout"),
        )

    @property
    def in_room(self) -> bool:
        return self.room_id is not None and self.member_id is not None

    async def connect(self) -> bool:
        """Connect to the relay server."""
        try:
            self.reader, self.writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port), timeout=CONNECT_TIMEOUT
            )
        except asyncio.TimeoutError:
            logger.error("Connection timeout")
            self.connected = False
            return False
        except OSError as e:
            logger.error(f"Connection failed: {e}")
            self.connected = False
            return False

        self.connected = True
        self.running = True
        self.buffer = b""
        self.receive_task = asyncio.create_task(self._receive_loop())

        logger.info(f"Connected to relay at {self.host}:{self.port}")
        return True

    async def disconnect(self) -> None:
        """Disconnect from the relay and discard all session keys."""
        self.running = False
        self.connected = False

        if self.receive_task and not self.receive_task.done():
            self.receive_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self.receive_task
        self.receive_task = None

        if self.writer:
            try:
                self.writer.close()
                await self.writer.wait_closed()
            except (ConnectionError, OSError) as e:
                logger.debug(f"Error closing writer: {e}")
            self.writer = None

        self.reader = None
        self._fail_pending_join(NetworkError(ErrorCode.E203_CONNECTION_CLOSED, "Disconnected"))
        self._reset_room()
        self.session.clear()

    # Event callbacks

    def on(self, event_name: str, callback: Callable) -> None:
        """
        Register callback for event.

        Chat callbacks receive a ChatMessage, all others the event data.

        Args:
            event_name: Event name, e.g. "chat_deliver" or "member_joined"
            callback: Function or coroutine function to call when the event occurs
        """
        self.event_callbacks.setdefault(event_name, []).append(callback)

    def off(self, event_name: str, callback: Callable) -> None:
        """Unregister callback for event."""
        if event_name in self.event_callbacks:
            with contextlib.suppress(ValueError):
                self.event_callbacks[event_name].remove(callback)

    async def _emit(self, event_name: str, payload: Any) -> None:
        for callback in list(self.event_callbacks.get(event_name, [])):
            try:
                # Handle both sync and async callbacks
                if asyncio.iscoroutinefunction(callback):
                    await callback(payload)
                else:
                    callback(payload)
            except Exception as e:
                logger.error(f"Error in event callback: {e}", exc_info=True)

    # Room membership

    async def join(self, room_id: str) -> str:
        """
        Join a room and wait for the server to confirm.

        A new session key pair is created if none is active.

        Returns:
            Member id assigned by the server

        Raises:
            JoinTimeout: If no confirmation arrives within join_timeout seconds
            ValidationError: If the server rejects the request
            NetworkError: If not connected or the connection drops
        """
        if not self.session.is_active:
            self.session.create_session()

        loop = asyncio.get_running_loop()
        future = loop.create_future()
        self._join_future = future

        try:
            await self._send(
                Protocol.create_join(room_id, self.session.public_key, self.display_name)
            )
            try:
                return await asyncio.wait_for(future, timeout=self.join_timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Join timeout for room {room_id}")
                raise JoinTimeout(details={"room_id": room_id, "timeout": self.join_timeout})
        finally:
            if self._join_future is future:
                self._join_future = None

    async def leave(self) -> None:
        """Leave the current room and end the session."""
        if self.connected and self.in_room:
            await self._send(Protocol.create_leave())
        self._reset_room()
        self.session.clear()

    # Chat

    async def send_chat(self, text: str, target_member_id: Optional[str] = None) -> str:
        """
        Encrypt and send a chat message.

        Args:
            text: Message text
            target_member_id: Send to this member only (default: every peer)

        Returns:
            Message id shared by every per-peer frame

        Raises:
            EncryptionFailure: If encryption fails for any recipient; nothing is sent
            ValidationError: If the target is not a member of the room
        """
        self._require_room()

        if target_member_id is not None:
            member = self.members.get(target_member_id)
            if member is None:
                raise ValidationError(
                    ErrorCode.E002_INVALID_ARGUMENT, f"Unknown member: {target_member_id}"
                )
            recipients = {member.member_id: member.public_key}
        else:
            recipients = {m.member_id: m.public_key for m in self.members.values()}

        fragments = self.session.encrypt_for_group(text, recipients)
        message_id = crypto.generate_message_id()

        for member_id, fragment in fragments.items():
            await self._send(
                Protocol.create_chat_send(fragment.ciphertext, fragment.nonce, message_id, member_id)
            )

        self.messages.append(
            ChatMessage(
                message_id=message_id,
                sender_member_id=self.member_id,
                sender_display_name=self.display_name or "You",
                content=text,
                timestamp=timestamp_ms(),
                is_own=True,
            )
        )
        logger.debug(f"Sent message {message_id} to {len(fragments)} member(s)")
        return message_id

    async def set_typing(self, is_typing: bool) -> None:
        self._require_room()
        await self._send(Protocol.create_typing(is_typing))

    def safety_number(self, member_id: str) -> str:
        """
        Safety number shared with one member, for out-of-band comparison.

        Raises:
            ValidationError: If the member is not in the room
        """
        member = self.members.get(member_id)
        if member is None:
            raise ValidationError(ErrorCode.E002_INVALID_ARGUMENT, f"Unknown member: {member_id}")
        return self.session.safety_number(member.public_key)

    # Calls

    async def start_call(self, media_type: str = "audio") -> None:
        self._require_room()
        await self._send(Protocol.create_call_start(media_type))

    async def send_call_signal(self, target_member_id: str, signal_payload: Any) -> None:
        """Forward an opaque signaling payload (offer, answer, candidate) to one member."""
        self._require_room()
        await self._send(Protocol.create_call_signal(target_member_id, signal_payload))

    async def end_call(self) -> None:
        self._require_room()
        await self._send(Protocol.create_call_end())

    # Internals

    async def _send(self, frame: bytes) -> None:
        if not self.connected or self.writer is None:
            raise NetworkError(ErrorCode.E203_CONNECTION_CLOSED, "Not connected to server")
        try:
            self.writer.write(frame)
            await self.writer.drain()
        except (ConnectionError, OSError) as e:
            raise NetworkError(
                ErrorCode.E203_CONNECTION_CLOSED, f"Send failed: {e}", {"error": str(e)}
            ) from e

    def _require_room(self) -> None:
        if not self.in_room:
            raise SafeChatError(ErrorCode.E901_NOT_IN_ROOM, "Not in a room")

    def _reset_room(self) -> None:
        self.room_id = None
        self.member_id = None
        self.members.clear()
        self.typing.clear()
        self.messages.clear()
        self._received_ids.clear()

    def _fail_pending_join(self, error: SafeChatError) -> None:
        if self._join_future is not None and not self._join_future.done():
            self._join_future.set_exception(error)

    async def _receive_loop(self) -> None:
        """Background task for receiving events."""
        logger.debug("Receive loop started")

        try:
            while self.running and self.connected:
                try:
                    data = await asyncio.wait_for(self.reader.read(READ_CHUNK_SIZE), timeout=1.0)
                    if not data:
                        logger.warning("Server closed connection")
                        break

                    self.buffer += data

                    while Protocol.DELIMITER in self.buffer:
                        line, self.buffer = self.buffer.split(Protocol.DELIMITER, 1)
                        if not line.strip():
                            continue
                        try:
                            event, payload = Protocol.unpack_message(line)
                        except SafeChatError as e:
                            logger.warning(f"Invalid frame from server: {e}")
                            continue
                        await self._handle_event(event, payload)

                except asyncio.TimeoutError:
                    continue
                except asyncio.CancelledError:
                    break
                except (ConnectionError, OSError) as e:
                    logger.warning(f"Connection lost: {e}")
                    break
        finally:
            self.connected = False
            self._fail_pending_join(
                NetworkError(ErrorCode.E203_CONNECTION_CLOSED, "Connection closed")
            )
            logger.debug("Receive loop ended")

    async def _handle_event(self, event: Event, data: Dict[str, Any]) -> None:
        """Update local room state for one event and notify callbacks."""
        if event == Event.JOINED:
            self._reset_room()
            self.room_id = data["room_id"]
            self.member_id = data["member_id"]
            for entry in data["existing_members"]:
                info = MemberInfo.from_dict(entry)
                self.members[info.member_id] = info
            logger.info(f"Joined room {self.room_id} as {self.member_id}")
            if self._join_future is not None and not self._join_future.done():
                self._join_future.set_result(self.member_id)

        elif event == Event.MEMBER_JOINED:
            info = MemberInfo.from_dict(data)
            self.members[info.member_id] = info

        elif event == Event.MEMBER_LEFT:
            self.members.pop(data["member_id"], None)
            self.typing.discard(data["member_id"])

        elif event == Event.CHAT_DELIVER:
            message = self._open_message(data)
            if message is None:
                return
            self.messages.append(message)
            await self._emit(event.value, message)
            return

        elif event == Event.TYPING:
            member_id = data.get("member_id")
            if member_id:
                if data["is_typing"]:
                    self.typing.add(member_id)
                else:
                    self.typing.discard(member_id)

        elif event == Event.ERROR:
            error = ValidationError(_error_code(data["code"]), data["message"])
            pending = self._join_future is not None and not self._join_future.done()
            if pending and error.code in JOIN_ERROR_CODES:
                self._join_future.set_exception(error)
            else:
                logger.warning(f"Server error: {error}")

        await self._emit(event.value, data)

    def _open_message(self, data: Dict[str, Any]) -> Optional[ChatMessage]:
        """Decrypt one delivery. Returns None for duplicates."""
        message_id = data["message_id"]
        sender_id = data["sender_member_id"]

        dedupe_key = f"{sender_id}:{message_id}"
        if dedupe_key in self._received_ids:
            logger.debug(f"Duplicate message {message_id} ignored")
            return None
        self._received_ids.add(dedupe_key)

        message = ChatMessage(
            message_id=message_id,
            sender_member_id=sender_id,
            sender_display_name=data["sender_display_name"],
            content=None,
            timestamp=data["server_timestamp"],
        )

        sender = self.members.get(sender_id)
        if sender is None:
            logger.warning(f"Message {message_id} from unknown member {sender_id}")
            message.undeliverable = True
            return message

        result = self.session.try_decrypt(data["ciphertext"], data["nonce"], sender.public_key)
        if result.ok:
            message.content = result.value
        else:
            message.undeliverable = True
        return message
