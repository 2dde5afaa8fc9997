"""Retry logic with exponential backoff and jitter.

Used for export deliveries, which may fail transiently (connection resets,
5xx from the receiving service).

Example:
    >>> from fieldcapture.resilience.retry import retry_with_backoff, RetryConfig
    >>> config = RetryConfig(max_attempts=3, initial_delay_seconds=0.5)
    >>> status = await retry_with_backoff(
    ...     client.post_once,
    ...     config,
    ...     (ExportError,),
    ...     payload,
    ... )
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Tuple, Type

from fieldcapture.core.config import (
    EXPORT_BACKOFF_MULTIPLIER,
    EXPORT_INITIAL_BACKOFF,
    EXPORT_MAX_ATTEMPTS,
)

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """Configuration for retry logic.

    Attributes:
        max_attempts: Maximum number of attempts (including initial)
        initial_delay_seconds: Initial delay before first retry
        max_delay_seconds: Maximum delay between retries
        exponential_base: Base for exponential backoff (delay *= base ** attempt)
        jitter: Whether to add random jitter to delays
    """

    max_attempts: int = EXPORT_MAX_ATTEMPTS
    initial_delay_seconds: float = EXPORT_INITIAL_BACKOFF
    max_delay_seconds: float = 30.0
    exponential_base: float = EXPORT_BACKOFF_MULTIPLIER
    jitter: bool = True

    def delay_for(self, attempt: int) -> float:
        """Delay before the retry following ``attempt`` (0-based), jitter excluded."""
        return min(
            self.initial_delay_seconds * (self.exponential_base ** attempt),
            self.max_delay_seconds,
        )


async def retry_with_backoff(
    func: Callable[..., Awaitable[Any]],
    config: RetryConfig,
    retryable_exceptions: Tuple[Type[Exception], ...],
    *args,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    **kwargs,
) -> Any:
    """Retry a coroutine function with exponential backoff and jitter.

    Args:
        func: Coroutine function to await
        config: Retry configuration
        retryable_exceptions: Tuple of exception types that trigger retry
        *args: Positional arguments for func
        sleep: Awaited with each delay; replaced in tests
        **kwargs: Keyword arguments for func

    Returns:
        Result from successful function call

    Raises:
        Last exception if all retry attempts fail. Exceptions that carry
        ``retryable = False`` are re-raised immediately.
    """
    for attempt in range(config.max_attempts):
        try:
            return await func(*args, **kwargs)
        except retryable_exceptions as e:
            if getattr(e, "retryable", True) is False:
                raise

            if attempt == config.max_attempts - 1:
                logger.error(
                    f"All {config.max_attempts} retry attempts failed",
                    extra={"retry_attempt": attempt + 1},
                )
                raise

            delay = config.delay_for(attempt)
            if config.jitter:
                delay = delay * (0.5 + random.random())

            logger.warning(
                f"Attempt {attempt + 1}/{config.max_attempts} failed: {type(e).__name__}: {e}. "
                f"Retrying in {delay:.2f}s...",
                extra={"retry_attempt": attempt + 1},
            )
            await sleep(delay)

    raise ValueError("RetryConfig.max_attempts must be at least 1")
