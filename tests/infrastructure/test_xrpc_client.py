"""Tests for the XRPC remote client."""

from __future__ import annotations

import asyncio
import json
from typing import Any
from unittest.mock import MagicMock

import pytest
import requests

from bsky_cli.domain import AuthTokens, ChatMessage, ConvoSummary
from bsky_cli.exceptions import AuthError, ErrorCode, RateLimitError
from bsky_cli.infrastructure.classify import from_raw_error, is_retryable
from bsky_cli.infrastructure.xrpc_client import CHAT_PROXY, XrpcRemoteClient, XrpcResponseError

_SERVICE = "https://pds.example.com"
_SESSION_BODY = {
    "did": "did:plc:alice",
    "handle": "alice.test",
    "accessJwt": "access-1",
    "refreshJwt": "refresh-1",
    "email": "alice@example.com",
}
_STORED = AuthTokens(
    did="did:plc:alice", handle="alice.test", access_jwt="access-0", refresh_jwt="refresh-0"
)


def _response(
    status: int, payload: object | None = None, *, headers: dict[str, str] | None = None
) -> requests.Response:
    response = requests.Response()
    response.status_code = status
    response._content = b"" if payload is None else json.dumps(payload).encode()
    response.headers.update(headers or {})
    return response


def _client(*responses: requests.Response) -> tuple[XrpcRemoteClient, MagicMock]:
    session = MagicMock(spec=requests.Session)
    session.request.side_effect = list(responses)
    return XrpcRemoteClient(f"{_SERVICE}/", session=session), session


def _call(session: MagicMock, index: int = 0) -> tuple[tuple[Any, ...], dict[str, Any]]:
    call = session.request.call_args_list[index]
    return call.args, call.kwargs


class TestAuthentication:
    """Tests for session creation and resumption."""

    def test_authenticate_posts_credentials_and_keeps_tokens(self) -> None:
        client, session = _client(_response(200, _SESSION_BODY))

        tokens = asyncio.run(client.authenticate("alice.test", "app-password"))

        assert tokens == AuthTokens(
            did="did:plc:alice", handle="alice.test", access_jwt="access-1", refresh_jwt="refresh-1"
        )
        assert client.has_session is True
        assert client.current_tokens() == tokens
        args, kwargs = _call(session)
        assert args == ("POST", f"{_SERVICE}/xrpc/com.atproto.server.createSession")
        assert kwargs["json"] == {"identifier": "alice.test", "password": "app-password"}
        assert "Authorization" not in kwargs["headers"]
        assert kwargs["timeout"] == 30.0

    def test_rejected_credentials_raise_response_error(self) -> None:
        client, _ = _client(
            _response(
                401,
                {"error": "AuthenticationRequired", "message": "Invalid identifier or password"},
            )
        )

        with pytest.raises(XrpcResponseError) as exc_info:
            asyncio.run(client.authenticate("alice.test", "wrong"))

        assert exc_info.value.status_code == 401
        assert exc_info.value.error == "AuthenticationRequired"
        assert "Invalid identifier or password" in str(exc_info.value)
        assert from_raw_error(exc_info.value).code is ErrorCode.SESSION_EXPIRED
        assert client.has_session is False

    def test_resume_checks_session_and_refreshes_handle(self) -> None:
        client, session = _client(
            _response(200, {"did": "did:plc:alice", "handle": "alice.renamed"})
        )

        tokens = asyncio.run(client.resume(_STORED))

        assert tokens.handle == "alice.renamed"
        assert tokens.access_jwt == "access-0"
        assert tokens.did == "did:plc:alice"
        args, kwargs = _call(session)
        assert args == ("GET", f"{_SERVICE}/xrpc/com.atproto.server.getSession")
        assert kwargs["headers"]["Authorization"] == "Bearer access-0"

    def test_resume_with_expired_access_token_rotates_credentials(self) -> None:
        client, session = _client(
            _response(400, {"error": "ExpiredToken", "message": "Token has expired"}),
            _response(200, _SESSION_BODY),
        )

        tokens = asyncio.run(client.resume(_STORED))

        assert tokens.access_jwt == "access-1"
        assert tokens.refresh_jwt == "refresh-1"
        args, kwargs = _call(session, 1)
        assert args == ("POST", f"{_SERVICE}/xrpc/com.atproto.server.refreshSession")
        assert kwargs["headers"]["Authorization"] == "Bearer refresh-0"

    def test_resume_with_revoked_token_detaches_credentials(self) -> None:
        client, _ = _client(_response(401, {"error": "InvalidToken", "message": "Token revoked"}))

        with pytest.raises(XrpcResponseError):
            asyncio.run(client.resume(_STORED))

        assert client.has_session is False

    def test_refresh_without_session_makes_no_request(self) -> None:
        client, session = _client()

        with pytest.raises(AuthError) as exc_info:
            asyncio.run(client.refresh())

        assert exc_info.value.code is ErrorCode.NOT_AUTHENTICATED
        session.request.assert_not_called()

    def test_failed_refresh_detaches_credentials(self) -> None:
        client, _ = _client(
            _response(200, {"did": "did:plc:alice", "handle": "alice.test"}),
            _response(400, {"error": "ExpiredToken", "message": "Refresh token expired"}),
        )
        asyncio.run(client.resume(_STORED))

        with pytest.raises(XrpcResponseError):
            asyncio.run(client.refresh())

        assert client.has_session is False

    def test_probe_fetches_own_profile(self) -> None:
        client, session = _client(
            _response(200, {"did": "did:plc:alice", "handle": "alice.test"}),
            _response(200, {"did": "did:plc:alice"}),
        )
        asyncio.run(client.resume(_STORED))

        asyncio.run(client.probe())

        args, kwargs = _call(session, 1)
        assert args == ("GET", f"{_SERVICE}/xrpc/app.bsky.actor.getProfile")
        assert kwargs["params"] == {"actor": "did:plc:alice"}

    def test_probe_without_session_is_not_authenticated(self) -> None:
        client, _ = _client()

        with pytest.raises(AuthError) as exc_info:
            asyncio.run(client.probe())

        assert exc_info.value.code is ErrorCode.NOT_AUTHENTICATED

    def test_delete_session_revokes_with_refresh_token(self) -> None:
        client, session = _client(_response(200, _SESSION_BODY), _response(200))
        asyncio.run(client.authenticate("alice.test", "app-password"))

        asyncio.run(client.delete_session())

        args, kwargs = _call(session, 1)
        assert args == ("POST", f"{_SERVICE}/xrpc/com.atproto.server.deleteSession")
        assert kwargs["headers"]["Authorization"] == "Bearer refresh-1"
        assert client.has_session is False

    def test_aclose_closes_http_session(self) -> None:
        client, session = _client()

        asyncio.run(client.aclose())

        session.close.assert_called_once_with()


class TestChat:
    """Tests for the chat endpoints."""

    def test_list_convos_goes_through_chat_proxy(self) -> None:
        client, session = _client(
            _response(200, _SESSION_BODY),
            _response(
                200,
                {
                    "convos": [
                        {
                            "id": "convo-1",
                            "rev": "abc",
                            "members": [
                                {"did": "did:plc:alice", "handle": "alice.test"},
                                {"did": "did:plc:bob", "handle": "bob.test"},
                            ],
                            "unreadCount": 3,
                            "lastMessage": {"text": "hello"},
                        }
                    ],
                    "cursor": "next-page",
                },
            ),
        )
        asyncio.run(client.authenticate("alice.test", "app-password"))

        page = asyncio.run(client.list_convos(limit=20))

        assert page.items == (
            ConvoSummary(
                id="convo-1",
                member_handles=("alice.test", "bob.test"),
                unread_count=3,
                last_message_text="hello",
            ),
        )
        assert page.cursor == "next-page"
        args, kwargs = _call(session, 1)
        assert args == ("GET", f"{_SERVICE}/xrpc/chat.bsky.convo.listConvos")
        assert kwargs["params"] == {"limit": 20}
        assert kwargs["headers"]["atproto-proxy"] == CHAT_PROXY
        assert kwargs["headers"]["Authorization"] == "Bearer access-1"

    def test_get_messages_marks_deleted_messages(self) -> None:
        client, session = _client(
            _response(200, _SESSION_BODY),
            _response(
                200,
                {
                    "messages": [
                        {
                            "id": "m2",
                            "sender": {"did": "did:plc:bob"},
                            "text": "hi",
                            "sentAt": "2026-01-02T03:04:05Z",
                        },
                        {
                            "$type": "chat.bsky.convo.defs#deletedMessageView",
                            "id": "m1",
                            "sender": {"did": "did:plc:alice"},
                            "sentAt": "2026-01-02T03:00:00Z",
                        },
                    ]
                },
            ),
        )
        asyncio.run(client.authenticate("alice.test", "app-password"))

        page = asyncio.run(client.get_messages("convo-1", limit=50, cursor="c1"))

        assert page.items == (
            ChatMessage(
                id="m2", sender_did="did:plc:bob", text="hi", sent_at="2026-01-02T03:04:05Z"
            ),
            ChatMessage(
                id="m1",
                sender_did="did:plc:alice",
                text="",
                sent_at="2026-01-02T03:00:00Z",
                deleted=True,
            ),
        )
        assert page.cursor is None
        _, kwargs = _call(session, 1)
        assert kwargs["params"] == {"convoId": "convo-1", "limit": 50, "cursor": "c1"}


class TestErrorResponses:
    """Tests for how failed responses reach the classifier."""

    def test_rate_limit_carries_retry_after(self) -> None:
        client, _ = _client(
            _response(
                429,
                {"error": "RateLimitExceeded", "message": "Rate Limit Exceeded"},
                headers={"Retry-After": "2"},
            )
        )

        with pytest.raises(XrpcResponseError) as exc_info:
            asyncio.run(client.authenticate("alice.test", "app-password"))

        error = from_raw_error(exc_info.value)
        assert isinstance(error, RateLimitError)
        assert error.retry_after_ms == 2000

    def test_non_json_server_error_is_retryable(self) -> None:
        response = _response(502)
        response._content = b"<html>Bad Gateway</html>"
        client, _ = _client(response)

        with pytest.raises(XrpcResponseError) as exc_info:
            asyncio.run(client.authenticate("alice.test", "app-password"))

        assert str(exc_info.value) == "HTTP 502"
        assert exc_info.value.error is None
        assert is_retryable(from_raw_error(exc_info.value)) is True
