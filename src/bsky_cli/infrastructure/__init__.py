"""Concrete infrastructure implementations and shared helpers."""

from .classify import from_raw_error, is_retryable, parse_retry_after
from .resilience import (
    RETRY_PROFILES,
    RetryPolicy,
    SlidingWindowRateLimiter,
    compute_delay,
    resolve_policy,
    with_retry,
)
from .session_store import EncryptedSessionStore
from .xrpc_client import XrpcRemoteClient, XrpcResponseError

__all__ = [
    "RETRY_PROFILES",
    "EncryptedSessionStore",
    "RetryPolicy",
    "SlidingWindowRateLimiter",
    "XrpcRemoteClient",
    "XrpcResponseError",
    "compute_delay",
    "from_raw_error",
    "is_retryable",
    "parse_retry_after",
    "resolve_policy",
    "with_retry",
]
