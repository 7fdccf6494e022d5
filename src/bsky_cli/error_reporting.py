"""Rendering of classified errors and their process exit codes.

Exit codes are stable so scripts can branch on them without parsing text.
"""

from __future__ import annotations

import traceback
from enum import IntEnum

from .exceptions import (
    AuthError,
    BskyError,
    ErrorCode,
    NetworkError,
    NotFoundError,
    RateLimitError,
    ValidationError,
)


class ExitCode(IntEnum):
    """Process exit statuses for CLI commands."""

    SUCCESS = 0
    ERROR = 1
    INVALID_CREDENTIALS = 1
    SESSION_EXPIRED = 2
    NOT_AUTHENTICATED = 3
    NETWORK = 4
    RATE_LIMIT = 5
    VALIDATION = 6
    NOT_FOUND = 7
    INTERRUPTED = 130


_AUTH_EXIT_CODES: dict[ErrorCode, ExitCode] = {
    ErrorCode.INVALID_CREDENTIALS: ExitCode.INVALID_CREDENTIALS,
    ErrorCode.SESSION_EXPIRED: ExitCode.SESSION_EXPIRED,
    ErrorCode.NOT_AUTHENTICATED: ExitCode.NOT_AUTHENTICATED,
}


def exit_code_for(error: BaseException) -> ExitCode:
    """Map an error onto its fixed exit code."""
    if isinstance(error, KeyboardInterrupt):
        return ExitCode.INTERRUPTED
    if isinstance(error, AuthError):
        return _AUTH_EXIT_CODES.get(error.code, ExitCode.ERROR)
    if isinstance(error, NetworkError):
        return ExitCode.NETWORK
    if isinstance(error, RateLimitError):
        return ExitCode.RATE_LIMIT
    if isinstance(error, ValidationError):
        return ExitCode.VALIDATION
    if isinstance(error, NotFoundError):
        return ExitCode.NOT_FOUND
    return ExitCode.ERROR


def format_error(error: BaseException, *, debug: bool = False) -> str:
    """Return the text shown to the user for `error`.

    Normal mode shows only the human message; debug mode adds the
    classification, status, cause chain and stack.
    """
    if isinstance(error, BskyError):
        return error.debug_output() if debug else error.user_message()
    if debug:
        stack = "".join(traceback.format_exception(error)).rstrip()
        return stack or f"{type(error).__name__}: {error}"
    return str(error) or type(error).__name__
