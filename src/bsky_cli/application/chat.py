"""Direct-message listing with a local request throttle.

Usage example:
    from bsky_cli.application.chat import ChatService

    chat = ChatService(auth.client)
    page = await chat.list_convos(limit=20, unread_only=True)

The chat service enforces stricter limits than the main API, so every call
first passes a sliding-window throttle and is then retried on transient
failures with the "standard" profile.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from ..domain import ChatMessage, ConvoSummary, Page
from ..exceptions import AuthError, BskyError, ErrorCode, NotFoundError
from ..infrastructure.resilience import (
    RetryPolicy,
    SlidingWindowRateLimiter,
    resolve_policy,
    with_retry,
)
from ..observability import get_logger
from ..protocols import RateLimiter, RemoteClient, RetryObserver, Sleep

logger = get_logger("bsky_cli.application.chat")

_CHAT_PROFILE = "standard"
_FIND_PAGE_SIZE = 20


class ChatService:
    """Throttled, retried access to the chat endpoints of a remote client."""

    def __init__(
        self,
        client: RemoteClient,
        *,
        limiter: RateLimiter | None = None,
        on_retry: RetryObserver | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._client = client
        self._limiter = limiter or SlidingWindowRateLimiter()
        self._policy: RetryPolicy = resolve_policy(_CHAT_PROFILE).with_observer(on_retry)
        self._sleep = sleep

    async def list_convos(
        self, *, limit: int = 20, cursor: str | None = None, unread_only: bool = False
    ) -> Page[ConvoSummary]:
        if limit < 1:
            raise ValueError("limit must be >= 1")
        page = await self._call(lambda: self._client.list_convos(limit=limit, cursor=cursor))
        if not unread_only:
            return page
        unread = tuple(convo for convo in page.items if convo.unread_count > 0)
        return Page(items=unread, cursor=page.cursor)

    async def get_messages(
        self, convo_id: str, *, limit: int = 50, cursor: str | None = None
    ) -> Page[ChatMessage]:
        if limit < 1:
            raise ValueError("limit must be >= 1")
        try:
            return await self._call(
                lambda: self._client.get_messages(convo_id, limit=limit, cursor=cursor)
            )
        except NotFoundError as exc:
            raise NotFoundError(
                "Conversation not found",
                code=ErrorCode.NOT_FOUND,
                status_code=exc.status_code,
                cause=exc,
            ) from exc

    async def find_convo_by_handle(
        self, handle: str, *, max_pages: int = 5
    ) -> ConvoSummary | None:
        """Return the first conversation that includes `handle`, or None.

        At most `max_pages` pages are fetched.
        """
        wanted = handle.strip().removeprefix("@")
        cursor: str | None = None
        for _ in range(max_pages):
            page = await self.list_convos(limit=_FIND_PAGE_SIZE, cursor=cursor)
            for convo in page.items:
                if any(member.removeprefix("@") == wanted for member in convo.member_handles):
                    return convo
            if not page.cursor:
                break
            cursor = page.cursor
        return None

    async def _call[T](self, operation: Callable[[], Awaitable[T]]) -> T:
        self._limiter.check()
        try:
            return await with_retry(operation, self._policy, sleep=self._sleep)
        except BskyError as exc:
            if exc.status_code == 403:
                raise AuthError(
                    "Direct messaging is not enabled for your account",
                    code=ErrorCode.DM_NOT_ENABLED,
                    status_code=403,
                    cause=exc,
                ) from exc
            raise
