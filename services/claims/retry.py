"""
Async retry wrapper for idempotent remote calls

Used for the bookkeeping step of a claim (marking a note claimed in the
note store) where the on-chain sweep has already landed and the only safe
response to a transient failure is to try again.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from services.api.logging_config import get_logger

logger = get_logger("retry")

T = TypeVar("T")


class RetryError(Exception):
    """Raised when a call still fails after all retries"""

    def __init__(self, message: str, last_error: Optional[BaseException] = None):
        super().__init__(message)
        self.last_error = last_error


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 8.0,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    description: str = "Call",
    on_attempt: Optional[Callable[[int, str], None]] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Await fn() with automatic retry logic.

    Features:
    - Exponential backoff between retries (base, 2*base, 4*base ... capped at max_delay)
    - Only exceptions in retry_on are retried; anything else propagates at once
    - Optional callback on each attempt

    Args:
        fn: Zero-argument coroutine factory (called once per attempt)
        max_retries: Maximum attempts, including the first (default: 3)
        base_delay: Delay before the second attempt, in seconds
        max_delay: Upper bound for any single delay
        retry_on: Exception types that warrant another attempt
        description: Human-readable description for logging
        on_attempt: Optional callback called on each attempt: (attempt_num, status_msg)
        sleep: Awaitable sleep (tests pass a no-op)

    Returns:
        Whatever fn() returns on the first successful attempt

    Raises:
        RetryError: If every attempt failed with a retryable exception
    """
    if max_retries < 1:
        raise ValueError("max_retries must be >= 1")

    last_error: Optional[BaseException] = None
    for attempt in range(max_retries):
        status_msg = f"{description} (attempt {attempt + 1}/{max_retries})"
        logger.debug(status_msg)
        if on_attempt:
            on_attempt(attempt + 1, status_msg)

        try:
            return await fn()
        except retry_on as e:
            last_error = e
            logger.warning("%s failed: %s", status_msg, e)

        if attempt < max_retries - 1:
            delay = min(base_delay * (2 ** attempt), max_delay)
            await sleep(delay)

    raise RetryError(f"{description} failed after {max_retries} attempts: {last_error}", last_error)


__all__ = ["RetryError", "call_with_retry"]
