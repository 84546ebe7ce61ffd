"""
Retry utilities.

Two flavours live here:

1. RetryPolicy / RetrySchedule - deterministic exponential backoff used by the
   notification dispatcher. The schedule is an explicit state object
   (attempt counter + next delay) that the caller drives; waiting is done by
   whatever sleep/scheduler callable the caller injects.

2. retry_async - retry wrapper for transient infrastructure failures
   (database pool acquisition, HTTP calls). Exponential backoff with jitter.

Retry policy for retry_async:
- Only retries on transient failures
- Domain exceptions are raised immediately
- Preserves original exception on final failure
- No logging inside utility (caller handles logging)
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Callable, Type, Tuple, Any, Optional

import asyncpg
import httpx


# Default retry configuration for infrastructure calls
DEFAULT_RETRIES = 2
DEFAULT_BASE_DELAY = 1.0
DEFAULT_MAX_DELAY = 10.0


# Transient exceptions that should be retried
TRANSIENT_EXCEPTIONS: Tuple[Type[Exception], ...] = (
    asyncpg.PostgresError,
    asyncio.TimeoutError,
    httpx.TransportError,  # network errors and timeouts
    ConnectionError,
    OSError,
)


# ====================================================================================
# Deterministic backoff schedule
# ====================================================================================

@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff policy"""
    max_retries: int = 3
    initial_delay_ms: int = 1000
    max_delay_ms: int = 30000
    backoff_multiplier: float = 2.0

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.initial_delay_ms < 0 or self.max_delay_ms < 0:
            raise ValueError("delays must be >= 0")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def schedule(self) -> "RetrySchedule":
        return RetrySchedule(self)


class RetrySchedule:
    """
    State machine for one retry loop.

    attempt counts attempts already made. After a failed attempt the caller
    asks next_delay_ms(): a number means "wait this long, then try again",
    None means the attempts are exhausted (no wait after the final attempt).
    """

    def __init__(self, policy: RetryPolicy):
        self.policy = policy
        self.attempt = 0
        self._delay_ms = float(min(policy.initial_delay_ms, policy.max_delay_ms))

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.policy.max_attempts

    def record_attempt(self) -> int:
        """Register that an attempt is being made. Returns its 1-based number."""
        if self.exhausted:
            raise RuntimeError("retry schedule exhausted")
        self.attempt += 1
        return self.attempt

    def next_delay_ms(self) -> Optional[float]:
        """Delay before the next attempt, advancing the backoff; None when exhausted."""
        if self.exhausted:
            return None
        delay = self._delay_ms
        self._delay_ms = min(self._delay_ms * self.policy.backoff_multiplier, float(self.policy.max_delay_ms))
        return delay


# ====================================================================================
# Transient-failure retry wrapper
# ====================================================================================

async def retry_async(
    fn: Callable[[], Any],
    *,
    retries: int = DEFAULT_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    retry_on: Tuple[Type[Exception], ...] = TRANSIENT_EXCEPTIONS,
    sleep: Callable[[float], Any] = asyncio.sleep,
) -> Any:
    """
    Retry an async function with exponential backoff.

    Args:
        fn: Callable returning an awaitable (or a plain value)
        retries: Number of retry attempts (default: 2, total attempts: 3)
        base_delay: Base delay in seconds for exponential backoff
        max_delay: Maximum delay in seconds
        retry_on: Exception types to retry on (default: transient exceptions)
        sleep: Awaitable sleep function (injectable for tests)

    Returns:
        Result of the function call

    Raises:
        Original exception if all retries fail.
        Non-retryable exceptions are raised immediately.
    """
    for attempt in range(retries + 1):
        try:
            result = fn()
            if asyncio.iscoroutine(result) or isinstance(result, asyncio.Future):
                result = await result
            return result
        except retry_on:
            if attempt >= retries:
                raise
            delay = min(base_delay * (2 ** attempt), max_delay)
            # jitter +-20%
            jitter = delay * 0.2 * (random.random() * 2 - 1)
            await sleep(max(0.0, delay + jitter))

    raise RuntimeError("retry_async: unexpected end of retry loop")
