"""Exports for test fakes."""

from .clock import FixedClock, ManualMonotonic, RecordingSleep
from .remote import (
    TEST_ACCESS_JWT,
    TEST_DID,
    TEST_HANDLE,
    TEST_PASSWORD,
    TEST_REFRESH_JWT,
    FakeApiError,
    FakeResponse,
    StubClientFactory,
    StubRemoteClient,
)
from .store import TEST_KEY, InMemorySessionStore

__all__ = [
    "TEST_ACCESS_JWT",
    "TEST_DID",
    "TEST_HANDLE",
    "TEST_KEY",
    "TEST_PASSWORD",
    "TEST_REFRESH_JWT",
    "FakeApiError",
    "FakeResponse",
    "FixedClock",
    "InMemorySessionStore",
    "ManualMonotonic",
    "RecordingSleep",
    "StubClientFactory",
    "StubRemoteClient",
]
