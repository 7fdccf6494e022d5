"""Session domain types.

Usage example:
    from datetime import UTC, datetime

    from bsky_cli.domain.session import AuthTokens, SessionRecord

    tokens = AuthTokens(did="did:plc:abc", handle="me.bsky.social", access_jwt="a", refresh_jwt="r")
    record = SessionRecord.from_tokens(tokens, service="https://bsky.social", now=datetime.now(UTC))
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import StrEnum
from typing import Self


class SessionState(StrEnum):
    """Lifecycle states of the single logged-in session."""

    NO_SESSION = "no_session"
    AUTHENTICATING = "authenticating"
    ACTIVE = "active"
    REFRESHING = "refreshing"
    EXPIRED = "expired"


@dataclass(frozen=True)
class AuthTokens:
    """Identity and credentials as held by the remote client."""

    did: str
    handle: str
    access_jwt: str
    refresh_jwt: str


@dataclass(frozen=True)
class SessionRecord:
    """Persisted identity and credentials for the logged-in account.

    `did` is the permanent account key; `handle` may change between
    sessions and is refreshed from the remote client on resume.
    """

    did: str
    handle: str
    access_jwt: str
    refresh_jwt: str
    last_used: datetime
    service: str

    @classmethod
    def from_tokens(cls, tokens: AuthTokens, *, service: str, now: datetime) -> Self:
        return cls(
            did=tokens.did,
            handle=tokens.handle,
            access_jwt=tokens.access_jwt,
            refresh_jwt=tokens.refresh_jwt,
            last_used=now,
            service=service,
        )

    def tokens(self) -> AuthTokens:
        return AuthTokens(
            did=self.did,
            handle=self.handle,
            access_jwt=self.access_jwt,
            refresh_jwt=self.refresh_jwt,
        )

    def touched(self, now: datetime) -> Self:
        """Return a copy with `last_used` bumped."""
        return replace(self, last_used=now)

    def with_tokens(self, tokens: AuthTokens, now: datetime) -> Self:
        """Return a copy carrying rotated credentials and a bumped timestamp.

        The stable identifier never changes for a record; only the handle
        and the two credentials are taken from `tokens`.
        """
        return replace(
            self,
            handle=tokens.handle,
            access_jwt=tokens.access_jwt,
            refresh_jwt=tokens.refresh_jwt,
            last_used=now,
        )


@dataclass(frozen=True)
class ConvoSummary:
    """A direct-message conversation as listed by the chat service."""

    id: str
    member_handles: tuple[str, ...]
    unread_count: int = 0
    last_message_text: str | None = None


@dataclass(frozen=True)
class ChatMessage:
    """A single message in a conversation."""

    id: str
    sender_did: str
    text: str
    sent_at: str
    deleted: bool = False


@dataclass(frozen=True)
class Page[T]:
    """One page of a cursor-paginated listing."""

    items: tuple[T, ...]
    cursor: str | None = None
