"""
Bounded retry combinator for async calls.

Usage:
    policy = RetryPolicy(max_retries=2, delay_seconds=2.0)
    result = await retry_async(
        lambda: client.complete(messages),
        policy=policy,
        is_retryable=lambda exc: getattr(exc, "status", None) == 503,
    )

The wrapped callable is invoked at most ``1 + max_retries`` times. Errors the
predicate rejects propagate immediately; the last retryable error propagates
once the budget is exhausted.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 2
    delay_seconds: float = 2.0
    backoff_factor: float = 1.0  # 1.0 = fixed delay
    max_delay_seconds: float = 30.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.delay_seconds < 0:
            raise ValueError("delay_seconds must be >= 0")
        if self.backoff_factor < 1.0:
            raise ValueError("backoff_factor must be >= 1.0")

    def delay_for(self, retry_number: int) -> float:
        """Delay before retry ``retry_number`` (1-based)."""
        delay = self.delay_seconds * (self.backoff_factor ** (retry_number - 1))
        return min(delay, self.max_delay_seconds)


class RetryExhausted(Exception):
    """Wraps the final retryable error once every attempt has failed."""

    def __init__(self, attempts: int, last_error: BaseException):
        super().__init__(f"gave up after {attempts} attempt(s): {last_error}")
        self.attempts = attempts
        self.last_error = last_error


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    is_retryable: Callable[[BaseException], bool],
    on_retry: Optional[Callable[[int, BaseException], None]] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run ``fn`` with bounded retries.

    Raises:
        RetryExhausted: every attempt failed with a retryable error
        Exception: the first non-retryable error, unchanged
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await fn()
        except Exception as exc:
            if not is_retryable(exc):
                raise
            if attempt > policy.max_retries:
                raise RetryExhausted(attempt, exc) from exc
            delay = policy.delay_for(attempt)
            logger.warning(
                "retryable_error",
                extra={
                    "attempt": attempt,
                    "retries_left": policy.max_retries - attempt + 1,
                    "delay_seconds": delay,
                    "error": str(exc),
                },
            )
            if on_retry is not None:
                on_retry(attempt, exc)
            await sleep(delay)
