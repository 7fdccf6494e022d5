"""Remote client speaking XRPC over HTTP.

Usage example:
    from bsky_cli.infrastructure.xrpc_client import XrpcRemoteClient

    client = XrpcRemoteClient("https://bsky.social")
    tokens = await client.authenticate("me.bsky.social", "app-password")

Requests are blocking, so each call runs on a worker thread to keep the
event loop free. Non-success responses raise `XrpcResponseError` and
transport failures propagate as raised by requests; `from_raw_error`
classifies both.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import override

import requests
from pydantic import BaseModel, ConfigDict, Field

from ..domain import AuthTokens, ChatMessage, ConvoSummary, Page
from ..exceptions import AuthError
from ..observability import get_logger
from ..protocols import RemoteClient

logger = get_logger("bsky_cli.infrastructure.xrpc_client")

CHAT_PROXY = "did:web:api.bsky.chat#bsky_chat"
DEFAULT_TIMEOUT_SECONDS = 30.0

# Access-token errors the server reports with HTTP 400 rather than 401.
_EXPIRED_TOKEN_ERRORS = frozenset({"ExpiredToken"})


class XrpcResponseError(requests.HTTPError):
    """Non-success XRPC response carrying the server's error name and message."""

    def __init__(self, response: requests.Response) -> None:
        error, message = _error_body(response)
        text = ": ".join(part for part in (error, message) if part)
        super().__init__(text or f"HTTP {response.status_code}", response=response)
        self.error = error
        self.status_code = response.status_code


class _IncomingModel(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)


class _SessionBody(_IncomingModel):
    did: str = Field(min_length=1)
    handle: str = Field(min_length=1)
    access_jwt: str = Field(alias="accessJwt", min_length=1)
    refresh_jwt: str = Field(alias="refreshJwt", min_length=1)


class _SessionInfoBody(_IncomingModel):
    did: str
    handle: str


class _MemberBody(_IncomingModel):
    did: str
    handle: str


class _LastMessageBody(_IncomingModel):
    text: str | None = None


class _ConvoBody(_IncomingModel):
    id: str
    members: list[_MemberBody] = Field(default_factory=list)
    unread_count: int = Field(default=0, alias="unreadCount")
    last_message: _LastMessageBody | None = Field(default=None, alias="lastMessage")


class _ConvoListBody(_IncomingModel):
    convos: list[_ConvoBody] = Field(default_factory=list)
    cursor: str | None = None


class _SenderBody(_IncomingModel):
    did: str


class _MessageBody(_IncomingModel):
    id: str
    sender: _SenderBody
    text: str | None = None
    sent_at: str = Field(default="", alias="sentAt")


class _MessageListBody(_IncomingModel):
    messages: list[_MessageBody] = Field(default_factory=list)
    cursor: str | None = None


class XrpcRemoteClient(RemoteClient):
    """RemoteClient over a `requests.Session`.

    Holds at most one set of credentials. Callers own the session lifetime
    and release it with `aclose()`.
    """

    def __init__(
        self,
        service_url: str,
        *,
        session: requests.Session | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._service_url = service_url.rstrip("/")
        self._session = session or requests.Session()
        self._timeout_seconds = timeout_seconds
        self._tokens: AuthTokens | None = None

    @property
    @override
    def service_url(self) -> str:
        return self._service_url

    @property
    @override
    def has_session(self) -> bool:
        return self._tokens is not None

    @override
    def current_tokens(self) -> AuthTokens | None:
        return self._tokens

    @override
    async def authenticate(self, identifier: str, password: str) -> AuthTokens:
        payload = await self._call(
            "POST",
            "com.atproto.server.createSession",
            body={"identifier": identifier, "password": password},
        )
        self._tokens = _tokens(_SessionBody.model_validate(payload))
        return self._tokens

    @override
    async def resume(self, tokens: AuthTokens) -> AuthTokens:
        self._tokens = tokens
        try:
            payload = await self._call(
                "GET", "com.atproto.server.getSession", auth=tokens.access_jwt
            )
        except XrpcResponseError as exc:
            if exc.error not in _EXPIRED_TOKEN_ERRORS:
                self._tokens = None
                raise
            logger.debug("Stored access token expired; refreshing during resume")
            return await self.refresh()
        info = _SessionInfoBody.model_validate(payload)
        self._tokens = AuthTokens(
            did=tokens.did,
            handle=info.handle,
            access_jwt=tokens.access_jwt,
            refresh_jwt=tokens.refresh_jwt,
        )
        return self._tokens

    @override
    async def refresh(self) -> AuthTokens:
        current = self._require_tokens()
        try:
            payload = await self._call(
                "POST", "com.atproto.server.refreshSession", auth=current.refresh_jwt
            )
        except XrpcResponseError:
            self._tokens = None
            raise
        self._tokens = _tokens(_SessionBody.model_validate(payload))
        return self._tokens

    @override
    async def probe(self) -> None:
        tokens = self._require_tokens()
        await self._call(
            "GET",
            "app.bsky.actor.getProfile",
            auth=tokens.access_jwt,
            params={"actor": tokens.did},
        )

    @override
    async def delete_session(self) -> None:
        tokens = self._require_tokens()
        await self._call("POST", "com.atproto.server.deleteSession", auth=tokens.refresh_jwt)
        self._tokens = None

    @override
    async def list_convos(self, *, limit: int, cursor: str | None = None) -> Page[ConvoSummary]:
        tokens = self._require_tokens()
        payload = await self._call(
            "GET",
            "chat.bsky.convo.listConvos",
            auth=tokens.access_jwt,
            params={"limit": limit, "cursor": cursor},
            headers={"atproto-proxy": CHAT_PROXY},
        )
        body = _ConvoListBody.model_validate(payload)
        return Page(items=tuple(_convo_summary(convo) for convo in body.convos), cursor=body.cursor)

    @override
    async def get_messages(
        self, convo_id: str, *, limit: int, cursor: str | None = None
    ) -> Page[ChatMessage]:
        tokens = self._require_tokens()
        payload = await self._call(
            "GET",
            "chat.bsky.convo.getMessages",
            auth=tokens.access_jwt,
            params={"convoId": convo_id, "limit": limit, "cursor": cursor},
            headers={"atproto-proxy": CHAT_PROXY},
        )
        body = _MessageListBody.model_validate(payload)
        return Page(
            items=tuple(_chat_message(message) for message in body.messages), cursor=body.cursor
        )

    @override
    async def aclose(self) -> None:
        self._session.close()

    async def _call(
        self,
        method: str,
        nsid: str,
        *,
        auth: str | None = None,
        params: Mapping[str, object] | None = None,
        body: Mapping[str, object] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> object:
        return await asyncio.to_thread(self._send, method, nsid, auth, params, body, headers)

    def _send(
        self,
        method: str,
        nsid: str,
        auth: str | None,
        params: Mapping[str, object] | None,
        body: Mapping[str, object] | None,
        headers: Mapping[str, str] | None,
    ) -> object:
        request_headers = {"Accept": "application/json", **(headers or {})}
        if auth is not None:
            request_headers["Authorization"] = f"Bearer {auth}"
        query = {key: value for key, value in (params or {}).items() if value is not None}
        response = self._session.request(
            method,
            f"{self._service_url}/xrpc/{nsid}",
            params=query or None,
            json=dict(body) if body is not None else None,
            headers=request_headers,
            timeout=self._timeout_seconds,
        )
        if not response.ok:
            logger.debug("%s %s -> %s", method, nsid, response.status_code)
            raise XrpcResponseError(response)
        if not response.content:
            return {}
        return response.json()

    def _require_tokens(self) -> AuthTokens:
        if self._tokens is None:
            raise AuthError.not_authenticated()
        return self._tokens


def _error_body(response: requests.Response) -> tuple[str | None, str | None]:
    try:
        payload = response.json()
    except ValueError:
        return None, None
    if not isinstance(payload, dict):
        return None, None
    error = payload.get("error")
    message = payload.get("message")
    return (
        error if isinstance(error, str) else None,
        message if isinstance(message, str) else None,
    )


def _tokens(body: _SessionBody) -> AuthTokens:
    return AuthTokens(
        did=body.did,
        handle=body.handle,
        access_jwt=body.access_jwt,
        refresh_jwt=body.refresh_jwt,
    )


def _convo_summary(convo: _ConvoBody) -> ConvoSummary:
    return ConvoSummary(
        id=convo.id,
        member_handles=tuple(member.handle for member in convo.members),
        unread_count=convo.unread_count,
        last_message_text=convo.last_message.text if convo.last_message else None,
    )


def _chat_message(message: _MessageBody) -> ChatMessage:
    return ChatMessage(
        id=message.id,
        sender_did=message.sender.did,
        text=message.text or "",
        sent_at=message.sent_at,
        deleted=message.text is None,
    )
