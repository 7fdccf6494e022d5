"""Classified errors for the Bluesky CLI.

Every failure that crosses a component boundary is normalised into one of
these exceptions before it reaches a caller. The CLI layer renders them with
`user_message()` (normal mode) or `debug_output()` (debug mode) and maps them
to a stable process exit code.
"""

from __future__ import annotations

import json
import traceback
from collections.abc import Mapping
from enum import StrEnum


class ErrorCode(StrEnum):
    """Machine-readable error codes."""

    # Authentication
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    NOT_AUTHENTICATED = "NOT_AUTHENTICATED"
    TOKEN_REFRESH_FAILED = "TOKEN_REFRESH_FAILED"
    DM_NOT_ENABLED = "DM_NOT_ENABLED"

    # Network
    CONNECTION_FAILED = "CONNECTION_FAILED"
    TIMEOUT = "TIMEOUT"
    DNS_LOOKUP_FAILED = "DNS_LOOKUP_FAILED"
    CONNECTION_REFUSED = "CONNECTION_REFUSED"
    SOCKET_HANG_UP = "SOCKET_HANG_UP"

    # Request outcome
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    INVALID_REQUEST = "INVALID_REQUEST"
    NOT_FOUND = "NOT_FOUND"

    # Local state
    SESSION_CORRUPT = "SESSION_CORRUPT"
    INSECURE_PERMISSIONS = "INSECURE_PERMISSIONS"
    STORAGE_FAILED = "STORAGE_FAILED"
    CONFIG_INVALID = "CONFIG_INVALID"

    UNKNOWN = "UNKNOWN"


class BskyError(Exception):
    """Base exception for all classified CLI errors."""

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode = ErrorCode.UNKNOWN,
        status_code: int | None = None,
        cause: BaseException | object | None = None,
        details: Mapping[str, object] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.cause = cause
        self.details = dict(details) if details else None
        if isinstance(cause, BaseException):
            self.__cause__ = cause

    @property
    def kind(self) -> str:
        return type(self).__name__

    def user_message(self) -> str:
        """Return a user-facing message with actionable advice."""
        return self.message

    def debug_output(self) -> str:
        """Return the full classification, status and cause chain."""
        parts = [f"{self.kind}: {self.message}", f"Code: {self.code}"]
        if self.status_code is not None:
            parts.append(f"Status: {self.status_code}")
        if self.details:
            parts.append(f"Details: {json.dumps(self.details, indent=2, default=str)}")
        cause = self.cause
        depth = 0
        while cause is not None and depth < 5:
            if isinstance(cause, BaseException):
                parts.append(f"Caused by: {type(cause).__name__}: {cause}")
                cause = cause.__cause__
            else:
                parts.append(f"Caused by: {cause!r}")
                cause = None
            depth += 1
        if self.__traceback__ is not None:
            stack = "".join(traceback.format_tb(self.__traceback__)).rstrip()
            parts.append(f"Stack:\n{stack}")
        return "\n".join(parts)


class AuthError(BskyError):
    """Authentication and authorisation failures."""

    _MESSAGES: dict[ErrorCode, str] = {
        ErrorCode.INVALID_CREDENTIALS: (
            "Invalid handle or password. Please check your credentials and try again."
        ),
        ErrorCode.SESSION_EXPIRED: (
            'Your session has expired. Please run "bsky login" to log in again.'
        ),
        ErrorCode.NOT_AUTHENTICATED: 'Not logged in. Run "bsky login" to authenticate.',
        ErrorCode.TOKEN_REFRESH_FAILED: (
            'Failed to refresh authentication token. Please run "bsky login" again.'
        ),
        ErrorCode.DM_NOT_ENABLED: "Direct messaging is not enabled for your account.",
    }

    def user_message(self) -> str:
        return self._MESSAGES.get(self.code, self.message)

    @classmethod
    def not_authenticated(cls) -> AuthError:
        return cls('Not logged in. Run "bsky login" first.', code=ErrorCode.NOT_AUTHENTICATED)

    @classmethod
    def session_expired(cls, cause: BaseException | None = None) -> AuthError:
        return cls(
            "Session expired - please login again",
            code=ErrorCode.SESSION_EXPIRED,
            cause=cause,
        )


class NetworkError(BskyError):
    """Connectivity and transport failures."""

    _MESSAGES: dict[ErrorCode, str] = {
        ErrorCode.CONNECTION_FAILED: (
            "Could not connect to Bluesky. Please check your internet connection and try again."
        ),
        ErrorCode.TIMEOUT: (
            "Request timed out. Please check your internet connection and try again."
        ),
        ErrorCode.DNS_LOOKUP_FAILED: (
            "Failed to resolve Bluesky server. Please check your internet connection."
        ),
        ErrorCode.CONNECTION_REFUSED: (
            "Connection refused by server. The service may be down or unreachable."
        ),
        ErrorCode.SOCKET_HANG_UP: "Connection lost. Please try again.",
    }

    def user_message(self) -> str:
        default = f"Network error: {self.message}. Please check your internet connection."
        return self._MESSAGES.get(self.code, default)


class RateLimitError(BskyError):
    """Server-side (or local) rate limit was hit."""

    def __init__(
        self,
        message: str = "Too many requests",
        *,
        retry_after_ms: int | None = None,
        status_code: int | None = None,
        cause: BaseException | object | None = None,
        details: Mapping[str, object] | None = None,
    ) -> None:
        super().__init__(
            message,
            code=ErrorCode.RATE_LIMIT_EXCEEDED,
            status_code=status_code,
            cause=cause,
            details=details,
        )
        self.retry_after_ms = retry_after_ms

    def user_message(self) -> str:
        if self.retry_after_ms:
            seconds = -(-self.retry_after_ms // 1000)
            return f"Rate limit exceeded. Please wait {seconds} seconds before trying again."
        return "Rate limit exceeded. Please wait a moment before trying again."


class ValidationError(BskyError):
    """The request was rejected as invalid."""

    def user_message(self) -> str:
        return f"Validation error: {self.message}"


class NotFoundError(BskyError):
    """The requested resource does not exist."""

    def user_message(self) -> str:
        return f"Not found: {self.message}"


# --- Local state ------------------------------------------------------------


class SessionStoreError(BskyError):
    """Raised when the session file cannot be read or written."""

    def __init__(self, action: str, path: str, cause: BaseException) -> None:
        super().__init__(
            f"Failed to {action} session at {path}: {cause}",
            code=ErrorCode.STORAGE_FAILED,
            cause=cause,
        )


class SessionDecodeError(BskyError):
    """Raised when a non-empty session file cannot be authenticated or parsed."""

    def __init__(self, path: str, reason: str, cause: BaseException | None = None) -> None:
        super().__init__(
            f"Failed to read session at {path}: {reason}",
            code=ErrorCode.SESSION_CORRUPT,
            cause=cause,
        )
        self.path = path

    def user_message(self) -> str:
        return (
            f"{self.message}\n"
            'The stored session is unreadable. Run "bsky logout" then "bsky login" to reset it.'
        )


class InsecurePermissionsError(BskyError):
    """Raised when a credential or config file is readable by group/other."""

    def __init__(self, path: str, mode: int) -> None:
        super().__init__(
            f"Insecure permissions {mode:o} on {path}. Run: chmod 600 {path}",
            code=ErrorCode.INSECURE_PERMISSIONS,
            details={"path": path, "mode": f"{mode:o}"},
        )
        self.path = path
        self.mode = mode


# --- Configuration ----------------------------------------------------------


class ConfigValueError(BskyError):
    """Raised when an environment variable holds an unsupported value."""

    def __init__(self, env_name: str, expected: str) -> None:
        super().__init__(f"{env_name} must be {expected}.", code=ErrorCode.CONFIG_INVALID)


class ConfigFileParseError(BskyError):
    """Raised when the config file is not valid JSON."""

    def __init__(self, path: str, detail: str) -> None:
        super().__init__(
            f"Config file {path} could not be parsed: {detail}",
            code=ErrorCode.CONFIG_INVALID,
        )


class ConfigFileValidationError(BskyError):
    """Raised when the config file does not match the expected schema."""

    def __init__(self, path: str, detail: str) -> None:
        super().__init__(
            f"Config file {path} is invalid: {detail}",
            code=ErrorCode.CONFIG_INVALID,
        )
