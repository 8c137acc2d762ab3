"""
Retry policy with fixed or linear backoff.

Used for calls against rate-limited APIs (container listings). Fatal and
cancelled errors are never retried; throttling responses wait for their
Retry-After hint when the server provides one.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from core.errors.exceptions import (
    OperationCancelled,
    PipelineError,
    ThrottlingError,
    wrap_exception,
)
from core.logging.utilities import log_with_context
from core.resilience.cancellation import CancellationToken

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for bounded retries."""

    # Total attempts including the first one
    max_attempts: int = 2

    # Seconds before retrying a transient failure
    base_delay: float = 1.0

    # Seconds before retrying a 429 without Retry-After
    throttle_delay: float = 2.0

    # "fixed" waits base delay each time, "linear" multiplies by attempt number
    backoff: str = "linear"

    # Upper bound for any single wait
    max_delay: float = 30.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.backoff not in ("fixed", "linear"):
            raise ValueError(f"Unknown backoff mode: {self.backoff}")

    def delay_for(self, attempt: int, error: Optional[BaseException] = None) -> float:
        """
        Seconds to wait after failed ``attempt`` (1-based).

        Args:
            attempt: Number of the attempt that just failed
            error: The failure, used to pick throttle vs transient delay

        Returns:
            Delay in seconds, capped at max_delay
        """
        if isinstance(error, ThrottlingError):
            if error.retry_after is not None:
                return min(error.retry_after, self.max_delay)
            base = self.throttle_delay
        else:
            base = self.base_delay

        delay = base * attempt if self.backoff == "linear" else base
        return min(delay, self.max_delay)


DEFAULT_RETRY = RetryConfig()


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig = DEFAULT_RETRY,
    token: Optional[CancellationToken] = None,
    operation_name: str = "operation",
) -> T:
    """
    Run ``operation`` with bounded retries.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        config: Retry policy
        token: Optional cancellation token checked before each attempt and
            honoured during backoff sleeps
        operation_name: Name used in log messages

    Returns:
        Result of the first successful attempt

    Raises:
        OperationCancelled: If the token fires
        PipelineError: Last classified failure once attempts are exhausted,
            or immediately for non-retryable errors
    """
    for attempt in range(1, config.max_attempts + 1):
        if token is not None:
            token.raise_if_cancelled()

        try:
            return await operation()
        except (OperationCancelled, asyncio.CancelledError):
            raise
        except Exception as e:
            error = wrap_exception(e)
            if not error.is_retryable or attempt >= config.max_attempts:
                if error is e:
                    raise
                raise error from e

            delay = config.delay_for(attempt, error)
            log_with_context(
                logger,
                logging.DEBUG,
                f"{operation_name} failed, retrying",
                attempt=attempt,
                retry_after=delay,
                error_category=error.category.value,
                error_message=str(error),
            )
            if token is not None:
                await token.sleep(delay)
            else:
                await asyncio.sleep(delay)

    raise PipelineError(f"{operation_name}: retry loop exited without result")
