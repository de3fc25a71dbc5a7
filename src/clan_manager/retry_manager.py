"""
Retry Manager for the clan manager.

This module provides the retry loop used by the fetch engine:
- Linear backoff between attempts (``attempt_index * base_delay``)
- A fixed maximum number of attempts
- A caller-supplied predicate deciding which exceptions are retryable
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from .config import RetryConfig

T = TypeVar("T")

Sleeper = Callable[[float], Awaitable[None]]


@dataclass
class RetryResult(Generic[T]):
    """Result of a retry operation."""

    success: bool
    result: Optional[T]
    attempts: int
    last_error: Optional[Exception]


class RetryManager:
    """Runs an async operation with linearly increasing waits between attempts."""

    def __init__(self, config: RetryConfig, sleep: Optional[Sleeper] = None) -> None:
        """
        Initialize the retry manager.

        Args:
            config: Retry configuration with max_attempts and base delay
            sleep: Awaitable sleep function (defaults to asyncio.sleep)
        """
        self._config = config
        self._sleep = sleep or asyncio.sleep

    @property
    def max_attempts(self) -> int:
        return max(1, self._config.max_attempts)

    def calculate_delay(self, attempt: int) -> float:
        """
        Wait time after the ``attempt``-th failed attempt (1-indexed).

        Args:
            attempt: Number of attempts made so far

        Returns:
            ``attempt * base_delay_seconds``
        """
        return max(0, attempt) * self._config.base_delay_seconds

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        is_retryable: Optional[Callable[[Exception], bool]] = None,
    ) -> RetryResult[T]:
        """
        Execute an operation with retry logic and linear backoff.

        Args:
            operation: The async operation to execute
            is_retryable: Optional function to determine if an exception is retryable.
                         If not provided, all exceptions are considered retryable.

        Returns:
            RetryResult containing success status, result, attempts, and last error
        """
        last_error: Optional[Exception] = None
        attempts = 0

        while attempts < self.max_attempts:
            try:
                result = await operation()
                return RetryResult(
                    success=True,
                    result=result,
                    attempts=attempts + 1,
                    last_error=None,
                )
            except Exception as e:
                last_error = e
                attempts += 1

                should_retry = is_retryable(e) if is_retryable else True
                if not should_retry or attempts >= self.max_attempts:
                    break

                await self._sleep(self.calculate_delay(attempts))

        return RetryResult(
            success=False,
            result=None,
            attempts=attempts,
            last_error=last_error,
        )
