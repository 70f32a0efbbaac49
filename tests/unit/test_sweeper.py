"""
Unit tests for safechat.sweeper module.

Created by SafeChat contributors
"""

import asyncio

import pytest

from safechat.registry import RoomRegistry
from safechat.sweeper import RoomSweeper


def _orphan(registry: RoomRegistry, room_id: str, public_key: str) -> None:
    registry.join(room_id, f"conn-{room_id}", public_key)
    registry._rooms[room_id].members.clear()
    registry._connection_rooms.pop(f"conn-{room_id}")


class TestSweepOnce:
    """Single sweep passes."""

    def test_reaps_only_old_empty_rooms(self, registry, clock, sample_public_key):
        _orphan(registry, "old", sample_public_key)
        clock.advance(100)
        _orphan(registry, "young", sample_public_key)
        registry.join("busy", "conn-1", sample_public_key)

        sweeper = RoomSweeper(registry, interval=10, retention=100)
        clock.advance(60)

        assert sweeper.sweep_once() == ["old"]
        assert sweeper.total_reaped == 1
        assert registry.has_room("young")
        assert registry.has_room("busy")

    def test_nothing_to_reap(self, registry):
        sweeper = RoomSweeper(registry)
        assert sweeper.sweep_once() == []
        assert sweeper.total_reaped == 0


@pytest.mark.asyncio
class TestSweeperTask:
    """Background task lifecycle."""

    async def test_periodic_sweep(self, sample_public_key):
        registry = RoomRegistry()
        _orphan(registry, "stale", sample_public_key)

        sweeper = RoomSweeper(registry, interval=0.05, retention=0)
        sweeper.start()
        try:
            for _ in range(40):
                if not registry.has_room("stale"):
                    break
                await asyncio.sleep(0.05)
        finally:
            await sweeper.stop()

        assert not registry.has_room("stale")
        assert sweeper.total_reaped >= 1

    async def test_start_and_stop(self, registry):
        sweeper = RoomSweeper(registry, interval=3600)
        sweeper.start()
        assert sweeper.running

        sweeper.start()  # second start is ignored
        assert sweeper.running

        await sweeper.stop()
        assert not sweeper.running
        assert sweeper.task is None

    async def test_stop_without_start(self, registry):
        sweeper = RoomSweeper(registry)
        await sweeper.stop()
        assert not sweeper.running
