"""
SafeChat - Zero-knowledge relay server using asyncio.

Created by SafeChat contributors

The relay forwards already-encrypted payloads between members of a room. It
never holds a key that could read them and stores nothing: all state is in
memory and lost on restart.

Each client connection gets:
- a receive loop reading newline-delimited JSON frames,
- an outbound queue drained by its own send task, so deliveries never block
  the registry or other connections.

Errors caused by one connection's input are answered on that connection only.
Disconnects go through exactly the same leave path as an explicit leave.
"""

import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel

from . import __version__
from .config import Config
from .constants import APP_NAME, DELIVERY_OVERHEAD, LOG_DATE_FORMAT, READ_CHUNK_SIZE
from .errors import ErrorCode, NetworkError, SafeChatError, ServerError, ValidationError
from .protocol import CLIENT_EVENTS, Event, Protocol
from .registry import RoomRegistry
from .router import Delivery, RelayRouter
from .sweeper import RoomSweeper

logger = logging.getLogger(__name__)


class ClientConnection:
    """One connected client and its outbound queue."""

    def __init__(
        self,
        handle: int,
        writer: asyncio.StreamWriter,
        queue_size: int,
    ):
        self.handle = handle
        self.writer = writer
        self.address = writer.get_extra_info("peername")
        self.send_queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.send_task: Optional[asyncio.Task] = None
        self.closed = False

    def start(self) -> None:
        self.send_task = asyncio.create_task(self._send_loop())

    def enqueue(self, frame: bytes) -> bool:
        """Queue a frame for sending without waiting. Drops it if the queue is full."""
        if self.closed:
            return False
        try:
            self.send_queue.put_nowait(frame)
            return True
        except asyncio.QueueFull:
            logger.warning(f"Send queue full for connection {self.handle}, delivery dropped")
            return False

    async def _send_loop(self) -> None:
        """Background task for sending queued frames."""
        try:
            while not self.closed:
                frame = await self.send_queue.get()
                self.writer.write(frame)
                await self.writer.drain()
        except asyncio.CancelledError:
            pass
        except (ConnectionError, OSError) as e:
            logger.debug(f"Send loop for connection {self.handle} ended: {e}")

    async def close(self) -> None:
        self.closed = True

        if self.send_task and not self.send_task.done():
            self.send_task.cancel()
            try:
                await self.send_task
            except asyncio.CancelledError:
                pass

        try:
            self.writer.close()
            await self.writer.wait_closed()
        except (ConnectionError, OSError) as e:
            logger.debug(f"Error closing writer: {e}")


class RelayServer:
    """Room relay server using asyncio streams."""

    def __init__(
        self,
        config: Optional[Config] = None,
        host: Optional[str] = None,
        port: Optional[int] = None,
        registry: Optional[RoomRegistry] = None,
    ):
        """
        Initialize server.

        Args:
            config: Configuration (defaults are used when omitted)
            host: Listen address, overrides config
            port: Listen port, overrides config (0 picks a free port)
            registry: Room registry to serve (a fresh one when omitted)
        """
        self.config = config or Config(env={})
        self.host = host if host is not None else self.config.get("server", "host")
        self.port = port if port is not None else self.config.get("server", "port")
        self.max_frame_size = self.config.get("server", "max_frame_size")
        self.queue_size = self.config.get("server", "outbound_queue_size")

        self.registry = registry or RoomRegistry(
            max_display_name_length=self.config.get("rooms", "max_display_name_length")
        )
        self.router = RelayRouter(self.registry)
        self.sweeper = RoomSweeper(
            self.registry,
            interval=self.config.get("rooms", "sweep_interval"),
            retention=self.config.get("rooms", "retention"),
        )

        self.server: Optional[asyncio.AbstractServer] = None
        self.running = False

        self.connections: Dict[int, ClientConnection] = {}
        self.next_connection_id = 1

    async def start(self) -> bool:
        """
        Start listening and launch the room sweeper.

        Returns:
            True if the server started, False on error

        Raises:
            ServerError: If the server is already running
        """
        if self.running:
            raise ServerError(ErrorCode.E802_SERVER_ALREADY_RUNNING, "Server already running")

        try:
            self.server = await asyncio.start_server(self._handle_client, self.host, self.port)
        except OSError as e:
            logger.error(f"Failed to start server on {self.host}:{self.port}: {e}")
            return False

        sockets = self.server.sockets or ()
        if sockets:
            self.port = sockets[0].getsockname()[1]

        self.sweeper.start()
        self.running = True
        logger.info(f"{APP_NAME} relay listening on {self.host}:{self.port}")
        return True

    async def stop(self) -> None:
        """Stop accepting connections, drop every client and cancel the sweeper."""
        logger.info("Stopping server...")
        self.running = False

        if self.server:
            self.server.close()

        for connection in list(self.connections.values()):
            self._disconnect(connection.handle)
            await connection.close()

        if self.server:
            await self.server.wait_closed()
            self.server = None

        await self.sweeper.stop()
        logger.info("Server stopped")

    async def run(self) -> None:
        """Block until the server is stopped, then clean up."""
        try:
            while self.running:
                await asyncio.sleep(1)
        finally:
            await self.stop()

    async def _handle_client(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        """
        Handle one client connection for its whole lifetime.

        Every exit path (EOF, reset, oversized frame, cancellation) ends in the
        same leave-and-announce step.
        """
        handle = self.next_connection_id
        self.next_connection_id += 1

        connection = ClientConnection(handle, writer, self.queue_size)
        self.connections[handle] = connection
        connection.start()
        logger.info(f"Client connected: {handle} from {connection.address}")

        buffer = b""
        try:
            while self.running:
                data = await reader.read(READ_CHUNK_SIZE)
                if not data:
                    break

                buffer += data

                oversized = False
                while Protocol.DELIMITER in buffer:
                    line, buffer = buffer.split(Protocol.DELIMITER, 1)
                    if len(line) > self.max_frame_size:
                        oversized = True
                        break
                    if line.strip():
                        self._handle_frame(handle, line)

                if oversized or len(buffer) > self.max_frame_size:
                    logger.warning(
                        f"Frame from connection {handle} exceeds {self.max_frame_size} bytes, "
                        f"disconnecting"
                    )
                    break
        except asyncio.CancelledError:
            pass
        except (ConnectionError, OSError) as e:
            logger.debug(f"Connection {handle} lost: {e}")
        finally:
            self._disconnect(handle)
            self.connections.pop(handle, None)
            await connection.close()
            logger.info(f"Client disconnected: {handle}")

    def _handle_frame(self, handle: int, line: bytes) -> None:
        """Decode, validate and act on one frame. Errors stay on this connection."""
        try:
            event, data = Protocol.unpack_message(line)
            if event not in CLIENT_EVENTS:
                raise NetworkError(
                    ErrorCode.E804_INVALID_COMMAND,
                    f"Event not accepted from clients: {event.value}",
                )
            if event == Event.CHAT_SEND and len(line) > self.max_frame_size - DELIVERY_OVERHEAD:
                raise NetworkError(
                    ErrorCode.E207_MESSAGE_TOO_LARGE,
                    "Message too large to relay",
                    {"size": len(line), "max_size": self.max_frame_size - DELIVERY_OVERHEAD},
                )
            deliveries = self._process_event(handle, event, data)
        except SafeChatError as e:
            logger.warning(f"Rejected frame from connection {handle}: {e}")
            self._send_error(handle, e.code, e.message)
            return
        except Exception as e:
            logger.error(f"Error handling frame from connection {handle}: {e}", exc_info=True)
            self._send_error(handle, ErrorCode.E001_UNKNOWN_ERROR, "Internal server error")
            return

        self._dispatch(deliveries, origin=handle)

    def _process_event(self, handle: int, event: Event, data: Dict[str, Any]) -> List[Delivery]:
        """
        Route one validated client event.

        Returns:
            Deliveries to send once the registry is no longer being touched
        """
        if event == Event.JOIN:
            result = self.registry.join(
                data["room_id"], handle, data["public_key"], data.get("display_name")
            )
            return self.router.announce_join(result, handle)

        if event == Event.LEAVE:
            return self.router.announce_leave(self.registry.leave(handle))

        if event == Event.CHAT_SEND:
            if self.registry.room_of(handle) is None:
                raise SafeChatError(ErrorCode.E901_NOT_IN_ROOM, "Not in a room")
            return self.router.route_chat(data, handle, data.get("target_member_id"))

        if event == Event.TYPING:
            return self.router.route_typing(data["is_typing"], handle)

        if event == Event.CALL_START:
            return self.router.route_call_start(data["media_type"], handle)

        if event == Event.CALL_SIGNAL:
            target = data.get("target_member_id")
            if not target:
                raise ValidationError(
                    ErrorCode.E003_MISSING_FIELD, "Missing required field: target_member_id"
                )
            return self.router.route_call_signal(target, data["signal_payload"], handle)

        if event == Event.CALL_END:
            return self.router.route_call_end(handle)

        raise NetworkError(ErrorCode.E804_INVALID_COMMAND, f"Unhandled event: {event.value}")

    def _disconnect(self, handle: int) -> None:
        """Leave the current room (if any) and tell the remaining members."""
        self._dispatch(self.router.announce_leave(self.registry.leave(handle)))

    def _dispatch(self, deliveries: Iterable[Delivery], origin: Optional[int] = None) -> None:
        """
        Queue deliveries on their connections. Missing connections are skipped.

        A delivery that cannot be packed within the frame limit is dropped and
        reported to the originating connection once.
        """
        reported = False
        for delivery in deliveries:
            connection = self.connections.get(delivery.connection)
            if connection is None:
                continue
            try:
                frame = Protocol.pack_message(delivery.event, delivery.data, self.max_frame_size)
            except NetworkError as e:
                logger.warning(f"Dropping {delivery.event.value} for {delivery.connection}: {e}")
                if origin is not None and not reported:
                    self._send_error(origin, e.code, "Message too large to relay")
                    reported = True
                continue
            connection.enqueue(frame)

    def _send_error(self, handle: int, code: ErrorCode, message: str) -> None:
        connection = self.connections.get(handle)
        if connection is not None:
            connection.enqueue(Protocol.create_error(code, message))

    def _signal_handler(self, signum, frame):
        """Handle termination signals."""
        logger.info(f"Received signal {signum}, shutting down...")
        self.running = False


def setup_logging(level: str = "INFO") -> None:
    """Route all SafeChat logging through a rich console handler."""
    logging.basicConfig(
        level=level.upper(),
        format="%(name)s: %(message)s",
        datefmt=LOG_DATE_FORMAT,
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )


def print_banner(server: RelayServer, console: Optional[Console] = None) -> None:
    console = console or Console()
    console.print(
        Panel.fit(
            f"[bold]{APP_NAME} Server[/bold] v{__version__} - zero knowledge relay\n"
            f"Listening on {server.host}:{server.port}\n"
            f"Rooms are kept in memory only; the server cannot decrypt messages.",
            border_style="green",
        )
    )


async def async_main(argv: Optional[List[str]] = None) -> int:
    """Async main entry point for the relay server."""
    import argparse

    parser = argparse.ArgumentParser(
        description=f"{APP_NAME} Server - zero-knowledge relay for ephemeral encrypted rooms"
    )
    parser.add_argument("--version", action="version", version=f"{APP_NAME} {__version__}")
    parser.add_argument("--host", type=str, default=None, help="Listen address")
    parser.add_argument("--port", type=int, default=None, help="Listen port")
    parser.add_argument("--config", type=str, default=None, help="Path to config.toml")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    args = parser.parse_args(argv)

    try:
        config = Config(Path(args.config).expanduser() if args.config else None)
    except SafeChatError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    setup_logging("DEBUG" if args.debug else config.get("logging", "level"))

    server = RelayServer(config, host=args.host, port=args.port)
    if not await server.start():
        logger.error("Server failed to start")
        return 1

    signal.signal(signal.SIGINT, server._signal_handler)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, server._signal_handler)

    print_banner(server)
    await server.run()
    return 0


def main():
    """Main entry point - runs async_main."""
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()
