"""
Retry and Timeout Utilities for FastRAG Sync.

Provides an async retry executor with exponential backoff, jitter and a
hard per-attempt timeout. Retry decisions are driven by the retryable flag
of the classified DataSourceError.
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union

from fastrag.sync.errors import (
    DataSourceError,
    DataSourceTimeoutError,
    ErrorCode,
    classify_exception,
)

logger = logging.getLogger(__name__)

Classifier = Callable[[BaseException, Optional[str]], DataSourceError]
AttemptCallback = Callable[[bool, float], None]


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_attempts: int = 3
    base_delay: float = 1.0        # seconds
    max_delay: float = 30.0        # seconds
    backoff_multiplier: float = 2.0
    jitter_range: float = 0.1      # fraction of the delay added at random
    timeout: Optional[float] = 30.0  # seconds per attempt, None disables


class RetryExecutor:
    """
    Runs an async operation under a timeout, retrying retryable failures.

    The operation is a zero-argument callable returning a fresh awaitable for
    each attempt. Every attempt, successful or not, is reported through the
    on_attempt callback as (success, elapsed_ms).
    """

    def __init__(
        self,
        config: RetryConfig,
        source_id: Optional[str] = None,
        classifier: Optional[Classifier] = None,
        on_attempt: Optional[AttemptCallback] = None,
        log: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None
    ):
        self.config = config
        self.source_id = source_id
        self._classify = classifier or classify_exception
        self._on_attempt = on_attempt
        self._log = log or logger
        self._sleep = asyncio.sleep

    def calculate_delay(self, failed_attempts: int) -> float:
        """
        Delay to wait after the given number of failed attempts.

        min(base * multiplier^(n-1), max_delay) plus up to jitter_range of
        that value.
        """
        exponent = max(failed_attempts - 1, 0)
        delay = min(
            self.config.base_delay * (self.config.backoff_multiplier ** exponent),
            self.config.max_delay
        )
        return delay + random.uniform(0, delay * self.config.jitter_range)

    async def execute_with_timeout(
        self,
        operation: Callable[[], Awaitable[Any]],
        timeout: Optional[float] = None
    ) -> Any:
        """Race the operation against a timer."""
        timeout = timeout if timeout is not None else self.config.timeout
        if timeout is None:
            return await operation()

        try:
            return await asyncio.wait_for(operation(), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise DataSourceTimeoutError(
                f"Operation timed out after {timeout}s",
                self.source_id,
                cause=e
            ) from e

    def _should_retry(self, error: DataSourceError, attempt: int, max_attempts: int) -> bool:
        """Determine if the classified error should trigger another attempt."""
        if not error.retryable:
            return False
        return attempt < max_attempts

    def _report(self, success: bool, started: float) -> None:
        if self._on_attempt:
            self._on_attempt(success, (time.monotonic() - started) * 1000)

    async def async_execute(
        self,
        operation: Callable[[], Awaitable[Any]],
        max_attempts: Optional[int] = None,
        timeout: Optional[float] = None
    ) -> Any:
        """
        Execute operation with retry logic.

        Raises:
            DataSourceError: the classified error if it is not retryable, or
                MAX_RETRIES_EXCEEDED wrapping the last failure
        """
        max_attempts = max(1, max_attempts if max_attempts is not None else self.config.max_attempts)
        last_error: Optional[DataSourceError] = None

        for attempt in range(1, max_attempts + 1):
            started = time.monotonic()
            try:
                result = await self.execute_with_timeout(operation, timeout)
            except Exception as e:
                self._report(False, started)
                error = self._classify(e, self.source_id)
                last_error = error

                if not error.retryable:
                    self._log.debug(f"Not retrying after attempt {attempt}: {error}")
                    if error is e:
                        raise
                    raise error from e

                if not self._should_retry(error, attempt, max_attempts):
                    break

                delay = self.calculate_delay(attempt)
                if error.retry_after:
                    delay = max(delay, min(error.retry_after, self.config.max_delay))

                self._log.warning(
                    f"Attempt {attempt}/{max_attempts} failed: {error}. "
                    f"Retrying in {delay:.2f} seconds..."
                )
                await self._sleep(delay)
            else:
                self._report(True, started)
                return result

        self._log.error(f"All {max_attempts} attempts failed: {last_error}")
        raise DataSourceError(
            f"Operation failed after {max_attempts} attempts: {last_error.message}",
            ErrorCode.MAX_RETRIES_EXCEEDED,
            self.source_id,
            retryable=False,
            status_code=last_error.status_code,
            cause=last_error
        ) from last_error
