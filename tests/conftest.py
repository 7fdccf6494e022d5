"""Pytest fixtures shared by the test suite.

All tests are network-isolated - socket connections are blocked by default.
"""

from __future__ import annotations

import socket
from pathlib import Path

import pytest

from bsky_cli.infrastructure.session_store import EncryptedSessionStore
from tests.fakes import (
    TEST_KEY,
    FixedClock,
    InMemorySessionStore,
    RecordingSleep,
    StubClientFactory,
)
from tests.support.errors import NetworkIsolationError


def _blocked_socket_connect(self: socket.socket, *args: object, **kwargs: object) -> None:
    """Raise an error if any test tries to make a real network connection."""
    _ = (self, kwargs)
    raise NetworkIsolationError(str(args))


@pytest.fixture(autouse=True)
def block_network_access(monkeypatch: pytest.MonkeyPatch) -> None:
    """Block all network access in tests.

    If you need E2E tests with real network access, mark them with:
        @pytest.mark.e2e
    and run them separately with: pytest -m e2e
    """
    monkeypatch.setattr(socket.socket, "connect", _blocked_socket_connect)


@pytest.fixture(autouse=True)
def isolate_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep BSKY_* settings from the developer's shell out of tests."""
    for name in (
        "BSKY_SERVICE_URL",
        "BSKY_COLOR",
        "BSKY_VERBOSE",
        "BSKY_DEBUG",
        "BSKY_DEFAULT_USERNAME",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("BSKY_CONFIG_DIR", str(tmp_path / "config"))


@pytest.fixture
def session_path(tmp_path: Path) -> Path:
    return tmp_path / "config" / "session.json"


@pytest.fixture
def encrypted_store(session_path: Path) -> EncryptedSessionStore:
    return EncryptedSessionStore(session_path, key=TEST_KEY)


@pytest.fixture
def memory_store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def client_factory() -> StubClientFactory:
    return StubClientFactory()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()
