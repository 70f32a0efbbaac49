"""
Pytest configuration and fixtures for SafeChat tests.

Created by SafeChat contributors

Provides common fixtures and test utilities for unit and integration tests.
"""

import shutil
import tempfile
from pathlib import Path
from typing import AsyncGenerator, Generator

import pytest
import pytest_asyncio

from safechat.config import Config
from safechat.registry import RoomRegistry
from safechat.server import RelayServer
from safechat.session import SessionManager


class FakeClock:
    """Manually advanced clock for lifecycle tests."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """
    Create a temporary directory for test data.

    Yields:
        Path: Temporary directory path
    """
    tmp = Path(tempfile.mkdtemp(prefix="safechat_test_"))
    try:
        yield tmp
    finally:
        shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def registry(clock: FakeClock) -> RoomRegistry:
    """Registry driven by the fake clock."""
    return RoomRegistry(clock=clock)


@pytest.fixture
def session_pair() -> Generator[tuple, None, None]:
    """Two active session managers, cleared after the test."""
    alice = SessionManager()
    bob = SessionManager()
    alice.create_session()
    bob.create_session()
    try:
        yield alice, bob
    finally:
        alice.clear()
        bob.clear()


@pytest.fixture
def sample_public_key() -> str:
    """A syntactically valid base64 public key (the relay never parses it)."""
    return "A" * 43 + "="


@pytest.fixture
def test_config(temp_dir: Path) -> Config:
    """Config with defaults only, isolated from the user's files and environment."""
    return Config(temp_dir / "config.toml", env={})


@pytest_asyncio.fixture
async def relay_server(test_config: Config) -> AsyncGenerator[RelayServer, None]:
    """A running relay on an ephemeral localhost port."""
    server = RelayServer(test_config, host="127.0.0.1", port=0)
    assert await server.start()
    try:
        yield server
    finally:
        await server.stop()


# Pytest marks
def pytest_configure(config):
    """
    Configure pytest markers.

    Args:
        config: Pytest configuration object
    """
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")


# Test collection hooks
def pytest_collection_modifyitems(config, items):
    """
    Modify test collection to add markers based on test location.

    Args:
        config: Pytest configuration
        items: List of collected test items
    """
    for item in items:
        # Add unit marker to tests in unit/ directory
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)

        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
