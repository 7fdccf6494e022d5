"""Protocol definitions for dependency injection.

These protocols define the abstract interfaces the session core depends on,
enabling isolated unit testing with stub implementations.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Protocol, runtime_checkable

from .domain import AuthTokens, ChatMessage, ConvoSummary, Page, SessionRecord


@runtime_checkable
class RemoteClient(Protocol):
    """Authenticated handle onto the remote social-network service.

    Implementations raise their own (SDK or transport) exceptions; callers
    classify them with `from_raw_error`.
    """

    @property
    def service_url(self) -> str:
        """Origin of the service this client talks to."""
        ...

    @property
    def has_session(self) -> bool:
        """Whether credentials are currently attached."""
        ...

    async def authenticate(self, identifier: str, password: str) -> AuthTokens:
        """Create a new session from a handle/email and password."""
        ...

    async def resume(self, tokens: AuthTokens) -> AuthTokens:
        """Attach stored credentials; raise if the service rejects them.

        Returns the credentials the client holds afterwards, which may have
        been rotated during the call.
        """
        ...

    async def refresh(self) -> AuthTokens:
        """Exchange the refresh credential for a new access credential."""
        ...

    async def probe(self) -> None:
        """Issue a lightweight authenticated call."""
        ...

    def current_tokens(self) -> AuthTokens | None:
        """Return the credentials currently attached, if any."""
        ...

    async def delete_session(self) -> None:
        """Revoke the current session on the server."""
        ...

    async def list_convos(
        self, *, limit: int, cursor: str | None = None
    ) -> Page[ConvoSummary]:
        """List direct-message conversations."""
        ...

    async def get_messages(
        self, convo_id: str, *, limit: int, cursor: str | None = None
    ) -> Page[ChatMessage]:
        """List messages in a conversation, newest first."""
        ...

    async def aclose(self) -> None:
        """Release transport resources."""
        ...


class ClientFactory(Protocol):
    """Build a remote client bound to a service origin."""

    def __call__(self, service_url: str) -> RemoteClient:
        """Return a new unauthenticated client."""
        ...


@runtime_checkable
class SessionStore(Protocol):
    """Durable storage for exactly one session record."""

    def read(self) -> SessionRecord | None:
        """Return the stored record, or None when absent/cleared."""
        ...

    def write(self, record: SessionRecord) -> None:
        """Replace the stored record."""
        ...

    def clear(self) -> None:
        """Leave the store in the absent state (idempotent)."""
        ...


class RetryObserver(Protocol):
    """Callback notified before each retry sleep."""

    def __call__(self, attempt: int, error: Exception, delay_ms: int) -> None:
        """Observe a scheduled retry."""
        ...


class RetryClassifier(Protocol):
    """Decide whether a classified error is worth retrying."""

    def __call__(self, error: Exception) -> bool:
        """Return True when the failure is transient."""
        ...


type Sleep = Callable[[float], Awaitable[None]]
type Clock = Callable[[], datetime]


@runtime_checkable
class RateLimiter(Protocol):
    """Pre-emptive local throttle for outbound requests."""

    def check(self) -> None:
        """Record a request, or raise RateLimitError if the window is full."""
        ...

