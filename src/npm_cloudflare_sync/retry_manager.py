"""
Retry Manager for the sync service.

This module provides the retry policy shared by the Cloudflare, NPM and
public IP clients: a bounded number of attempts, exponential (or fixed)
backoff capped at a maximum delay, and server-provided delays for
rate-limited responses.

Each attempt reports an explicit Attempt value instead of raising, so the
policy can tell fatal failures (never retried) from retryable ones.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from .config import RetryConfig
from .enums import RetryDecision

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[None]]
RetryHook = Callable[[int, Exception, float], None]


@dataclass
class Attempt(Generic[T]):
    """Outcome of a single attempt."""

    value: Optional[T] = None
    error: Optional[Exception] = None
    decision: RetryDecision = RetryDecision.BACKOFF
    retry_after: Optional[float] = None

    @property
    def success(self) -> bool:
        return self.error is None

    @classmethod
    def ok(cls, value: T) -> "Attempt[T]":
        return cls(value=value)

    @classmethod
    def fail(
        cls,
        error: Exception,
        decision: RetryDecision = RetryDecision.BACKOFF,
        retry_after: Optional[float] = None,
    ) -> "Attempt[T]":
        return cls(error=error, decision=decision, retry_after=retry_after)


@dataclass
class RetryResult(Generic[T]):
    """Result of a retry operation."""

    success: bool
    result: Optional[T]
    attempts: int
    last_error: Optional[Exception]


class RetryManager:
    """
    Manages retry logic with exponential backoff.

    A RetryResult is always returned; callers decide whether a failure
    propagates or degrades.
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        """
        Initialize the retry manager.

        Args:
            config: Retry configuration with attempts and delays
            sleep: Awaitable used to wait between attempts
        """
        self._config = config or RetryConfig()
        self._sleep = sleep

    @property
    def config(self) -> RetryConfig:
        return self._config

    def _calculate_delay(self, attempt: int) -> float:
        """
        Calculate wait time before the next attempt.

        delay(n) = base_delay * 2^n, capped at max_delay; a constant
        base_delay when backoff is not exponential.

        Args:
            attempt: The attempt that just failed (0-indexed)
        """
        if not self._config.exponential:
            return self._config.base_delay_seconds
        delay = self._config.base_delay_seconds * (2 ** attempt)
        return min(delay, self._config.max_delay_seconds)

    def delay_for(self, attempt: int, outcome: Attempt) -> float:
        """Delay to apply after a failed attempt."""
        if outcome.decision == RetryDecision.RETRY_AFTER:
            if outcome.retry_after is not None:
                return outcome.retry_after
            return self._config.base_delay_seconds
        return self._calculate_delay(attempt)

    async def execute(
        self,
        operation: Callable[[int], Awaitable[Attempt[T]]],
        on_retry: Optional[RetryHook] = None,
    ) -> RetryResult[T]:
        """
        Run an operation until it succeeds, fails fatally, or the attempt
        budget is spent.

        Args:
            operation: Async callable receiving the 0-indexed attempt number
            on_retry: Optional hook called with (attempt, error, delay)
                      before each wait

        Returns:
            RetryResult containing success status, result, attempts, and last error
        """
        last_error: Optional[Exception] = None
        max_attempts = max(1, self._config.max_attempts)

        for attempt in range(max_attempts):
            outcome = await operation(attempt)
            if outcome.success:
                return RetryResult(
                    success=True,
                    result=outcome.value,
                    attempts=attempt + 1,
                    last_error=None,
                )

            last_error = outcome.error
            if outcome.decision == RetryDecision.NEVER or attempt + 1 >= max_attempts:
                return RetryResult(
                    success=False,
                    result=None,
                    attempts=attempt + 1,
                    last_error=last_error,
                )

            delay = self.delay_for(attempt, outcome)
            if on_retry is not None:
                on_retry(attempt, last_error, delay)
            await self._sleep(delay)

        return RetryResult(
            success=False,
            result=None,
            attempts=max_attempts,
            last_error=last_error,
        )

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        is_retryable: Optional[Callable[[Exception], bool]] = None,
        on_retry: Optional[RetryHook] = None,
    ) -> RetryResult[T]:
        """
        Execute an exception-raising operation with retry and backoff.

        Args:
            operation: The async operation to execute
            is_retryable: Optional function to determine if an exception is retryable.
                         If not provided, all exceptions are considered retryable.
            on_retry: Optional hook called with (attempt, error, delay)

        Returns:
            RetryResult containing success status, result, attempts, and last error
        """

        async def attempt_once(attempt: int) -> Attempt[T]:
            try:
                return Attempt.ok(await operation())
            except Exception as e:
                retryable = is_retryable(e) if is_retryable else True
                return Attempt.fail(
                    e,
                    RetryDecision.BACKOFF if retryable else RetryDecision.NEVER,
                )

        return await self.execute(attempt_once, on_retry=on_retry)
