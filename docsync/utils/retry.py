"""
Bounded retries for AWS calls.

Only throttling and transient service errors are retried, and only a few
times with a short capped backoff. Redelivery of failed work is the retry
queue's job, never an in-process loop.
"""

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar, Union

from botocore.exceptions import ClientError, ConnectionClosedError, EndpointConnectionError, ReadTimeoutError

logger = logging.getLogger(__name__)

R = TypeVar("R")

ExceptionTypes = Union[Type[Exception], Tuple[Type[Exception], ...]]

RETRYABLE_ERROR_CODES = frozenset(
    {
        "Throttling",
        "ThrottlingException",
        "RequestThrottled",
        "RequestLimitExceeded",
        "SlowDown",
        "ServiceUnavailable",
        "InternalError",
        "InternalFailure",
        "AWS.SimpleQueueService.InternalError",
    }
)


class RetryError(Exception):
    """Raised when all retry attempts have been exhausted"""

    def __init__(self, attempts: int, last_exception: Exception):
        self.attempts = attempts
        self.last_exception = last_exception
        super().__init__(f"Failed after {attempts} attempts. Last error: {last_exception}")


def is_transient_aws_error(error: Exception) -> bool:
    """True for throttling, 5xx-style service errors and dropped connections."""
    if isinstance(error, ClientError):
        return error.response.get("Error", {}).get("Code") in RETRYABLE_ERROR_CODES
    return isinstance(error, (ConnectionClosedError, EndpointConnectionError, ReadTimeoutError))


class RetryConfig:
    """Configuration for retry behavior"""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 0.1,
        max_delay: float = 1.0,
        jitter: bool = True,
    ):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter

    def calculate_delay(self, attempt: int) -> float:
        """
        Exponential delay for a 0-indexed attempt, capped at ``max_delay``.

        With jitter the delay is drawn uniformly from ``[0, delay]``.
        """
        delay = min(self.base_delay * (2**attempt), self.max_delay)
        if self.jitter:
            return random.uniform(0, delay)
        return delay


class AsyncRetrier:
    """
    Runs async calls under a RetryConfig.

    ``should_retry`` decides which of the caught exceptions are worth
    another attempt; the rest fail on the first try.
    """

    def __init__(self, config: RetryConfig, should_retry: Callable[[Exception], bool] = is_transient_aws_error):
        self.config = config
        self.should_retry = should_retry
        self.stats = {
            "total_calls": 0,
            "successful_calls": 0,
            "failed_calls": 0,
            "retries": 0,
        }

    async def call(self, func: Callable[[], Awaitable[R]], exceptions: ExceptionTypes = (Exception,)) -> R:
        """
        Call ``func`` until it succeeds or attempts run out.

        Raises:
            RetryError: Wrapping the last exception once the call is given up on
            Exception: Anything not in ``exceptions`` propagates unchanged
        """
        self.stats["total_calls"] += 1
        last_exception: Optional[Exception] = None

        for attempt in range(self.config.max_attempts):
            try:
                result = await func()
            except exceptions as e:
                last_exception = e
                if attempt + 1 >= self.config.max_attempts or not self.should_retry(e):
                    break

                delay = self.config.calculate_delay(attempt)
                self.stats["retries"] += 1
                logger.warning(
                    f"Transient AWS error, retrying in {delay:.2f}s",
                    extra={"attempt": attempt + 1, "exception_type": type(e).__name__},
                )
                if delay > 0:
                    await asyncio.sleep(delay)
                continue

            self.stats["successful_calls"] += 1
            return result

        self.stats["failed_calls"] += 1
        raise RetryError(attempt + 1, last_exception or Exception("No exception captured during retries"))

    def get_stats(self) -> dict:
        return dict(self.stats)


# Short and capped: drain and reindex loops check their deadline between calls
QUEUE_RETRY_CONFIG = RetryConfig(max_attempts=3, base_delay=0.1, max_delay=0.5)
