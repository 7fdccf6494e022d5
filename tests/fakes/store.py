"""Session store fakes for tests."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import override

from bsky_cli.domain import SessionRecord
from bsky_cli.protocols import SessionStore

# Fixed key so tests skip the scrypt derivation.
TEST_KEY = bytes(range(32))


@dataclass
class InMemorySessionStore(SessionStore):
    """Session store that keeps the record in memory and counts operations."""

    record: SessionRecord | None = None
    writes: list[SessionRecord] = field(default_factory=list)
    reads: int = 0
    clears: int = 0
    write_error: BaseException | None = None

    @override
    def read(self) -> SessionRecord | None:
        self.reads += 1
        return self.record

    @override
    def write(self, record: SessionRecord) -> None:
        if self.write_error is not None:
            raise self.write_error
        self.writes.append(record)
        self.record = record

    @override
    def clear(self) -> None:
        self.clears += 1
        self.record = None
