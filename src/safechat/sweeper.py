"""
SafeChat - Room lifecycle sweeper.

Created by SafeChat contributors

Periodically deletes rooms that are empty and older than the retention
window. Rooms are normally destroyed the moment their last member leaves, so
this is a backstop that bounds memory if that ever gets skipped.

The sweep goes through RoomRegistry.reap_empty(), which takes the same lock as
every other registry operation and never does I/O while holding it.
"""

import asyncio
import logging
from typing import List, Optional

from .constants import ROOM_RETENTION, ROOM_SWEEP_INTERVAL
from .registry import RoomRegistry

logger = logging.getLogger(__name__)


class RoomSweeper:
    """Background task that reaps abandoned rooms.

    Attributes:
        interval: Seconds between sweeps
        retention: Minimum age in seconds before an empty room is reaped
    """

    def __init__(
        self,
        registry: RoomRegistry,
        interval: float = ROOM_SWEEP_INTERVAL,
        retention: float = ROOM_RETENTION,
    ):
        self.registry = registry
        self.interval = interval
        self.retention = retention
        self.task: Optional[asyncio.Task] = None
        self.total_reaped = 0

    def sweep_once(self, now: Optional[float] = None) -> List[str]:
        """Run one sweep and return the ids of the rooms removed."""
        reaped = self.registry.reap_empty(self.retention, now)
        if reaped:
            self.total_reaped += len(reaped)
            logger.info(f"Sweep removed {len(reaped)} abandoned room(s)")
        else:
            logger.debug("Sweep found no abandoned rooms")
        return reaped

    async def run(self) -> None:
        """Sweep every interval seconds until cancelled."""
        logger.info(
            f"Room sweeper running: every {self.interval}s, retention {self.retention}s"
        )

        while True:
            try:
                await asyncio.sleep(self.interval)
                self.sweep_once()
            except asyncio.CancelledError:
                logger.info("Room sweeper cancelled")
                break
            except Exception as e:
                logger.error(f"Room sweep failed: {e}", exc_info=True)

    def start(self) -> None:
        """Start the sweeper as an asyncio task on the running loop."""
        if self.task and not self.task.done():
            logger.warning("Room sweeper already running")
            return
        self.task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        """Cancel the sweeper task and wait for it to finish."""
        if self.task is None:
            return
        if not self.task.done():
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
        self.task = None

    @property
    def running(self) -> bool:
        return self.task is not None and not self.task.done()
