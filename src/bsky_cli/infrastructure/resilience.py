"""Retry and throttling utilities for remote calls.

Usage example:
    from bsky_cli.infrastructure.resilience import with_retry

    profile = await with_retry(lambda: client.get_profile(actor), "standard")

Named profiles keep retry behaviour consistent across commands:
fast (3 attempts, 1s/5s), standard (3, 2s/10s), long (5, 3s/30s) and
critical (5, 2s/30s with a gentler 1.5x multiplier).
"""

from __future__ import annotations

import asyncio
import random
import time
from collections import deque
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field, replace
from typing import Literal, Self, override

from ..exceptions import RateLimitError
from ..observability import get_logger
from ..protocols import RateLimiter as RateLimiterProtocol
from ..protocols import RetryClassifier, RetryObserver, Sleep
from .classify import from_raw_error, is_retryable

logger = get_logger("bsky_cli.infrastructure.resilience")

ProfileName = Literal["fast", "standard", "long", "critical"]


@dataclass(frozen=True)
class RetryPolicy:
    """Parameters for one retry sequence.

    Delays are in milliseconds. `classifier` decides retryability of a
    classified error; `on_retry` is notified before each sleep.
    """

    max_attempts: int = 3
    initial_delay_ms: int = 1000
    max_delay_ms: int = 30000
    backoff_multiplier: float = 2.0
    jitter_ratio: float = 0.25
    classifier: RetryClassifier = field(default=is_retryable, compare=False)
    on_retry: RetryObserver | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_delay_ms < 0 or self.max_delay_ms < 0:
            raise ValueError("delays must be >= 0")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")
        if not 0 <= self.jitter_ratio < 1:
            raise ValueError("jitter_ratio must be in [0, 1)")

    def with_observer(self, on_retry: RetryObserver | None) -> Self:
        return replace(self, on_retry=on_retry)


RETRY_PROFILES: Mapping[ProfileName, RetryPolicy] = {
    "fast": RetryPolicy(max_attempts=3, initial_delay_ms=1000, max_delay_ms=5000),
    "standard": RetryPolicy(max_attempts=3, initial_delay_ms=2000, max_delay_ms=10000),
    "long": RetryPolicy(max_attempts=5, initial_delay_ms=3000, max_delay_ms=30000),
    "critical": RetryPolicy(
        max_attempts=5, initial_delay_ms=2000, max_delay_ms=30000, backoff_multiplier=1.5
    ),
}


def resolve_policy(policy: RetryPolicy | str) -> RetryPolicy:
    """Return `policy` itself or the named profile."""
    if isinstance(policy, RetryPolicy):
        return policy
    try:
        return RETRY_PROFILES[policy]  # type: ignore[index]
    except KeyError:
        known = ", ".join(RETRY_PROFILES)
        raise ValueError(f"Unknown retry profile {policy!r} (expected one of: {known})") from None


def compute_delay(attempt: int, policy: RetryPolicy, rng: random.Random | None = None) -> int:
    """Exponential backoff with symmetric jitter, in whole milliseconds.

    `attempt` is 1-based: the first retry waits around `initial_delay_ms`.
    The result never exceeds `max_delay_ms`.
    """
    source = rng or random
    exponential = policy.initial_delay_ms * policy.backoff_multiplier ** (attempt - 1)
    capped = min(exponential, policy.max_delay_ms)
    jitter = capped * policy.jitter_ratio * source.uniform(-1.0, 1.0)
    return int(max(0.0, min(capped + jitter, policy.max_delay_ms)))


async def with_retry[T](
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | str = "standard",
    *,
    sleep: Sleep = asyncio.sleep,
    rng: random.Random | None = None,
) -> T:
    """Run `operation`, retrying transient failures.

    Raises:
        BskyError: the classified form of the last failure, once it is
            non-retryable or attempts are exhausted.
    """
    resolved = resolve_policy(policy)
    attempt = 1
    while True:
        try:
            return await operation()
        except Exception as exc:
            error = from_raw_error(exc)
            if attempt >= resolved.max_attempts or not resolved.classifier(error):
                if error is exc:
                    raise
                raise error from exc

            if isinstance(error, RateLimitError) and error.retry_after_ms is not None:
                delay_ms = error.retry_after_ms
            else:
                delay_ms = compute_delay(attempt, resolved, rng)

            logger.info(
                "Retrying after %s (attempt %d/%d, waiting %dms)",
                error.code,
                attempt,
                resolved.max_attempts,
                delay_ms,
            )
            if resolved.on_retry is not None:
                resolved.on_retry(attempt, error, delay_ms)
            await sleep(delay_ms / 1000)
            attempt += 1


@dataclass
class SlidingWindowRateLimiter(RateLimiterProtocol):
    """Client-side throttle over a sliding time window.

    Rejects a request once `max_requests` have been made within the last
    `window_seconds`, so callers avoid provoking server-side 429s. This is a
    pre-emptive throttle, not a retry mechanism.
    """

    max_requests: int = 30
    window_seconds: float = 60.0
    clock: Callable[[], float] = time.monotonic
    requests: deque[float] = field(default_factory=deque, init=False)

    @override
    def check(self) -> None:
        """Record a request, or raise RateLimitError if the window is full."""
        now = self.clock()
        window_start = now - self.window_seconds
        while self.requests and self.requests[0] <= window_start:
            self.requests.popleft()

        if len(self.requests) >= self.max_requests:
            reset_at = self.requests[0] + self.window_seconds
            wait_ms = max(0, int((reset_at - now) * 1000))
            seconds = -(-wait_ms // 1000)
            logger.info("Local throttle rejected request; window resets in %dms", wait_ms)
            raise RateLimitError(
                f"Rate limit exceeded. Please wait {seconds} seconds before trying again.",
                retry_after_ms=wait_ms,
                details={"scope": "local", "max_requests": self.max_requests},
            )

        self.requests.append(now)
