"""Classification of raw failures into the closed error taxonomy.

Usage example:
    from bsky_cli.infrastructure.classify import from_raw_error, is_retryable

    try:
        await client.probe()
    except Exception as exc:
        error = from_raw_error(exc)
        if is_retryable(error):
            ...

`from_raw_error` is shared by the retry engine (retryability) and the CLI
formatter (message and exit code), so both always see the same
classification.
"""

from __future__ import annotations

import errno
import socket
from collections.abc import Iterator, Mapping
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime

import requests

from ..exceptions import (
    AuthError,
    BskyError,
    ErrorCode,
    NetworkError,
    NotFoundError,
    RateLimitError,
    ValidationError,
)

_MAX_CHAIN_DEPTH = 8

_NETWORK_CODES: dict[str, tuple[ErrorCode, str]] = {
    "ENOTFOUND": (ErrorCode.DNS_LOOKUP_FAILED, "DNS lookup failed"),
    "EAI_AGAIN": (ErrorCode.DNS_LOOKUP_FAILED, "DNS lookup failed"),
    "ECONNREFUSED": (ErrorCode.CONNECTION_REFUSED, "Connection refused"),
    "ETIMEDOUT": (ErrorCode.TIMEOUT, "Request timed out"),
    "ESOCKETTIMEDOUT": (ErrorCode.TIMEOUT, "Request timed out"),
    "ECONNRESET": (ErrorCode.SOCKET_HANG_UP, "Connection lost"),
}

_ERRNO_CODES: dict[int, str] = {
    errno.ECONNREFUSED: "ECONNREFUSED",
    errno.ETIMEDOUT: "ETIMEDOUT",
    errno.ECONNRESET: "ECONNRESET",
    errno.EPIPE: "ECONNRESET",
}

_RETRYABLE_NETWORK_CODES = frozenset(
    {
        ErrorCode.TIMEOUT,
        ErrorCode.CONNECTION_REFUSED,
        ErrorCode.DNS_LOOKUP_FAILED,
        ErrorCode.SOCKET_HANG_UP,
    }
)


def from_raw_error(raw: object) -> BskyError:
    """Map any raised value onto exactly one classified error.

    Accepts exceptions (including chained ones), mappings shaped like
    ``{"status": 429, "headers": {...}, "message": "..."}`` or
    ``{"code": "ECONNREFUSED"}``, and arbitrary objects. Never raises.
    """
    if isinstance(raw, BskyError):
        return raw

    network = _classify_network(raw)
    if network is not None:
        return network

    status = _status_of(raw)
    message = _message_of(raw)
    lowered = message.lower()
    if status == 401:
        return AuthError(
            "Unauthorized", code=ErrorCode.SESSION_EXPIRED, status_code=status, cause=raw
        )
    if "expiredtoken" in lowered or "token has expired" in lowered:
        return AuthError(
            "Token expired", code=ErrorCode.SESSION_EXPIRED, status_code=status, cause=raw
        )
    if status == 429:
        retry_after = parse_retry_after(_headers_of(raw))
        return RateLimitError(
            "Too many requests",
            retry_after_ms=retry_after * 1000 if retry_after is not None else None,
            status_code=status,
            cause=raw,
        )
    if status == 404:
        return NotFoundError(
            "Resource not found", code=ErrorCode.NOT_FOUND, status_code=status, cause=raw
        )
    if status == 400:
        return ValidationError(
            message or "Invalid request",
            code=ErrorCode.INVALID_REQUEST,
            status_code=status,
            cause=raw,
        )

    # Message heuristics only apply when there is no status to go on.
    if status is None and "invalid identifier or password" in lowered:
        return AuthError(
            "Invalid credentials",
            code=ErrorCode.INVALID_CREDENTIALS,
            status_code=status,
            cause=raw,
        )
    if status is None and ("network" in lowered or "fetch failed" in lowered):
        return NetworkError(
            message, code=ErrorCode.CONNECTION_FAILED, status_code=status, cause=raw
        )

    return BskyError(
        message or "An unexpected error occurred",
        code=ErrorCode.UNKNOWN,
        status_code=status,
        cause=raw,
    )


def is_retryable(error: Exception) -> bool:
    """Return True for failures that are transient.

    Connection refused, timeouts, DNS failures, connection resets, 5xx (except
    501) and rate limits are retried; everything else fails fast.
    """
    classified = from_raw_error(error)
    if isinstance(classified, RateLimitError):
        return True
    if isinstance(classified, NetworkError) and classified.code in _RETRYABLE_NETWORK_CODES:
        return True
    status = classified.status_code
    return status is not None and 500 <= status < 600 and status != 501


def parse_retry_after(headers: Mapping[str, str] | None) -> int | None:
    """Parse a Retry-After header (delta-seconds or HTTP-date) into seconds."""
    if not headers:
        return None
    value = _header(headers, "retry-after")
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return int(value)
    try:
        dt = parsedate_to_datetime(value)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=UTC)
        delta = (dt - datetime.now(UTC)).total_seconds()
        return max(0, int(delta))
    except (AttributeError, OverflowError, TypeError, ValueError):
        return None


def _classify_network(raw: object) -> NetworkError | None:
    for link in _chain(raw):
        code = _network_code(link)
        if code is not None:
            error_code, message = _NETWORK_CODES[code]
            return NetworkError(message, code=error_code, cause=raw)
        if isinstance(link, requests.Timeout | TimeoutError):
            return NetworkError("Request timed out", code=ErrorCode.TIMEOUT, cause=raw)
        if isinstance(link, socket.gaierror):
            return NetworkError("DNS lookup failed", code=ErrorCode.DNS_LOOKUP_FAILED, cause=raw)
        if isinstance(link, ConnectionRefusedError):
            return NetworkError(
                "Connection refused", code=ErrorCode.CONNECTION_REFUSED, cause=raw
            )
        if isinstance(link, ConnectionResetError | BrokenPipeError):
            return NetworkError("Connection lost", code=ErrorCode.SOCKET_HANG_UP, cause=raw)

    message = _message_of(raw).lower()
    if "socket hang up" in message or "connection reset" in message:
        return NetworkError("Connection lost", code=ErrorCode.SOCKET_HANG_UP, cause=raw)
    if "etimedout" in message:
        return NetworkError("Request timed out", code=ErrorCode.TIMEOUT, cause=raw)
    if any(isinstance(link, requests.ConnectionError) for link in _chain(raw)):
        return NetworkError("Connection failed", code=ErrorCode.CONNECTION_FAILED, cause=raw)
    return None


def _chain(raw: object) -> Iterator[object]:
    """Yield `raw` followed by its explicit and implicit causes."""
    seen: set[int] = set()
    current: object | None = raw
    depth = 0
    while current is not None and id(current) not in seen and depth < _MAX_CHAIN_DEPTH:
        seen.add(id(current))
        yield current
        if not isinstance(current, BaseException):
            return
        current = current.__cause__ or current.__context__ or _reason_of(current)
        depth += 1


def _reason_of(raw: BaseException) -> BaseException | None:
    # urllib3 keeps the underlying socket error on `reason`.
    reason = getattr(raw, "reason", None)
    return reason if isinstance(reason, BaseException) else None


def _network_code(raw: object) -> str | None:
    code: object
    if isinstance(raw, Mapping):
        code = raw.get("code")
    else:
        code = getattr(raw, "code", None)
    if isinstance(code, str) and code in _NETWORK_CODES:
        return code
    if isinstance(raw, OSError) and raw.errno in _ERRNO_CODES:
        return _ERRNO_CODES[raw.errno]
    return None


def _status_of(raw: object) -> int | None:
    if isinstance(raw, Mapping):
        candidates = [raw.get("status"), raw.get("statusCode"), raw.get("status_code")]
    else:
        response = getattr(raw, "response", None)
        candidates = [
            getattr(raw, "status", None),
            getattr(raw, "status_code", None),
            getattr(response, "status_code", None),
        ]
    for candidate in candidates:
        if isinstance(candidate, int) and not isinstance(candidate, bool):
            return candidate
        if isinstance(candidate, str) and candidate.isdigit():
            return int(candidate)
    return None


def _headers_of(raw: object) -> Mapping[str, str] | None:
    if isinstance(raw, Mapping):
        headers = raw.get("headers")
    else:
        headers = getattr(raw, "headers", None)
        if headers is None:
            headers = getattr(getattr(raw, "response", None), "headers", None)
    return headers if isinstance(headers, Mapping) else None


def _message_of(raw: object) -> str:
    if isinstance(raw, Mapping):
        message = raw.get("message")
        return message if isinstance(message, str) else ""
    content = getattr(getattr(raw, "response", None), "content", None)
    content_message = getattr(content, "message", None)
    if isinstance(content_message, str) and content_message:
        return content_message
    if isinstance(raw, BaseException):
        return str(raw)
    message = getattr(raw, "message", None)
    return message if isinstance(message, str) else ""


def _header(headers: Mapping[str, str], name: str) -> str | None:
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None
