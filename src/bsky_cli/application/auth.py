"""Session lifecycle: login, resume, validate, refresh and logout.

Usage example:
    from bsky_cli.application.auth import require_auth

    auth = await require_auth(store, client_factory=build_client, service_url=url)
    profile = await auth.client.probe()

`AuthManager` owns the remote client it authenticates. Every transition that
changes credentials rewrites the store only after the corresponding remote
call has succeeded, so the file on disk always reflects a session the server
actually accepted. Concurrent CLI processes are not coordinated; the last
writer of the session file wins.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime

from ..config import DEFAULT_SERVICE_URL
from ..domain import SessionRecord, SessionState
from ..exceptions import AuthError, BskyError, ErrorCode
from ..infrastructure.classify import from_raw_error
from ..infrastructure.resilience import RetryPolicy, resolve_policy, with_retry
from ..observability import get_logger
from ..protocols import ClientFactory, Clock, RemoteClient, RetryObserver, SessionStore, Sleep

logger = get_logger("bsky_cli.application.auth")

type SessionObserver = Callable[[SessionRecord], None]

_AUTH_PROFILE = "fast"


def _utc_now() -> datetime:
    return datetime.now(UTC)


class AuthManager:
    """Drive the single logged-in session against the remote service."""

    def __init__(
        self,
        store: SessionStore,
        client_factory: ClientFactory,
        *,
        service_url: str = DEFAULT_SERVICE_URL,
        on_retry: RetryObserver | None = None,
        on_session_saved: SessionObserver | None = None,
        clock: Clock | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._store = store
        self._client_factory = client_factory
        self._service_url = service_url.rstrip("/")
        self._policy: RetryPolicy = resolve_policy(_AUTH_PROFILE).with_observer(on_retry)
        self._on_session_saved = on_session_saved
        self._clock = clock or _utc_now
        self._sleep = sleep
        self._client: RemoteClient | None = None
        self._state = SessionState.NO_SESSION

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def service_url(self) -> str:
        return self._service_url

    @property
    def client(self) -> RemoteClient:
        """The authenticated client; raises if no session is active."""
        if self._client is None or self._state is not SessionState.ACTIVE:
            raise AuthError.not_authenticated()
        return self._client

    async def login(
        self, identifier: str, password: str, service: str | None = None
    ) -> SessionRecord:
        """Authenticate and persist a new session record.

        Raises:
            AuthError: INVALID_CREDENTIALS when the server rejects the pair.
            BskyError: any other classified failure; nothing is written.
        """
        service_url = (service or self._service_url).rstrip("/")
        client = self._client_factory(service_url)
        self._state = SessionState.AUTHENTICATING
        logger.info("Logging in as %s at %s", identifier, service_url)
        try:
            tokens = await with_retry(
                lambda: client.authenticate(identifier, password),
                self._policy,
                sleep=self._sleep,
            )
        except BskyError as exc:
            self._state = SessionState.NO_SESSION
            await client.aclose()
            if exc.code is ErrorCode.SESSION_EXPIRED and exc.status_code == 401:
                raise AuthError(
                    "Invalid credentials",
                    code=ErrorCode.INVALID_CREDENTIALS,
                    status_code=401,
                    cause=exc,
                ) from exc
            raise

        record = SessionRecord.from_tokens(tokens, service=service_url, now=self._clock())
        try:
            self._save(record)
        except BskyError:
            self._state = SessionState.NO_SESSION
            await client.aclose()
            raise
        await self._adopt(client)
        self._service_url = service_url
        logger.info("Logged in as %s (%s)", record.handle, record.did)
        return record

    async def resume_session(self) -> SessionRecord | None:
        """Re-attach the stored session, or return None when logged out.

        A session the server will not resume is discarded: the store is
        cleared and SESSION_EXPIRED is raised.
        """
        record = self._store.read()
        if record is None:
            self._state = SessionState.NO_SESSION
            return None

        client = self._client_factory(record.service)
        stored = record.tokens()
        try:
            tokens = await with_retry(
                lambda: client.resume(stored), self._policy, sleep=self._sleep
            )
        except BskyError as exc:
            logger.info("Discarding stored session for %s: %s", record.did, exc.code)
            self._store.clear()
            self._state = SessionState.EXPIRED
            await client.aclose()
            raise AuthError.session_expired(cause=exc) from exc

        updated = record.with_tokens(tokens, self._clock())
        self._save(updated)
        await self._adopt(client)
        self._service_url = record.service
        logger.debug("Resumed session for %s", updated.handle)
        return updated

    async def validate_session(self) -> bool:
        """Probe the server; on a 401 attempt exactly one refresh.

        Returns False when there is no attached session or the refresh
        fails. Failures other than an expired session propagate.
        """
        client = self._client
        if client is None or not client.has_session:
            return False
        try:
            await client.probe()
        except Exception as exc:
            error = from_raw_error(exc)
            if not _is_expired(error):
                if error is exc:
                    raise
                raise error from exc
            logger.info("Session rejected by server; attempting one refresh")
            try:
                await self.refresh_session()
            except AuthError:
                return False
        return True

    async def refresh_session(self) -> SessionRecord:
        """Exchange the refresh credential and rewrite the stored record.

        Raises:
            AuthError: NOT_AUTHENTICATED when there is nothing to refresh;
                SESSION_EXPIRED (caused by a TOKEN_REFRESH_FAILED error) when
                the exchange fails, after clearing the store.
        """
        client = self._client
        record = self._store.read()
        if client is None or record is None:
            raise AuthError.not_authenticated()

        self._state = SessionState.REFRESHING
        try:
            tokens = await with_retry(client.refresh, self._policy, sleep=self._sleep)
        except BskyError as exc:
            failure = AuthError(
                "Token refresh failed",
                code=ErrorCode.TOKEN_REFRESH_FAILED,
                status_code=exc.status_code,
                cause=exc,
            )
            logger.info("Token refresh failed for %s: %s", record.did, exc.code)
            self._store.clear()
            self._state = SessionState.EXPIRED
            raise AuthError.session_expired(cause=failure) from failure

        updated = record.with_tokens(tokens, self._clock())
        self._save(updated)
        self._state = SessionState.ACTIVE
        logger.debug("Refreshed session for %s", updated.handle)
        return updated

    async def logout(self) -> None:
        """Clear the local session; revoke it on the server when possible."""
        try:
            await self._revoke_remote()
        finally:
            self._store.clear()
            await self._release()
            self._state = SessionState.NO_SESSION
            logger.info("Logged out")

    def get_current_session(self) -> SessionRecord | None:
        return self._store.read()

    def is_authenticated(self) -> bool:
        return (
            self._store.read() is not None
            and self._client is not None
            and self._client.has_session
        )

    async def aclose(self) -> None:
        """Release the owned client without touching the store."""
        await self._release()
        if self._state is not SessionState.EXPIRED:
            self._state = SessionState.NO_SESSION

    async def _revoke_remote(self) -> None:
        client = self._client
        try:
            if client is None or not client.has_session:
                record = self._store.read()
                if record is None:
                    return
                client = self._client_factory(record.service)
                self._client = client
                await client.resume(record.tokens())
            await client.delete_session()
        except Exception as exc:
            error = from_raw_error(exc)
            logger.warning("Server-side logout failed (%s); clearing local session", error.code)

    def _save(self, record: SessionRecord) -> None:
        self._store.write(record)
        self._state = SessionState.ACTIVE
        if self._on_session_saved is not None:
            self._on_session_saved(record)

    async def _adopt(self, client: RemoteClient) -> None:
        previous = self._client
        self._client = client
        if previous is not None and previous is not client:
            await previous.aclose()

    async def _release(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.aclose()


def _is_expired(error: BskyError) -> bool:
    return error.status_code == 401 or (
        isinstance(error, AuthError) and error.code is ErrorCode.SESSION_EXPIRED
    )


async def require_auth(
    store: SessionStore,
    *,
    client_factory: ClientFactory,
    service_url: str = DEFAULT_SERVICE_URL,
    on_retry: RetryObserver | None = None,
    sleep: Sleep = asyncio.sleep,
) -> AuthManager:
    """Return an AuthManager with the stored session resumed.

    Raises:
        AuthError: NOT_AUTHENTICATED, without any network call, when the
            store holds no session; SESSION_EXPIRED when resume fails.
    """
    if store.read() is None:
        raise AuthError.not_authenticated()
    manager = AuthManager(
        store, client_factory, service_url=service_url, on_retry=on_retry, sleep=sleep
    )
    record = await manager.resume_session()
    if record is None:
        raise AuthError.not_authenticated()
    return manager
