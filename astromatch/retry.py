"""
Retry logic with exponential backoff for handling transient failures.

Retries are modelled as a small bounded state machine:

    ATTEMPTING(n) -> SUCCEEDED
    ATTEMPTING(n) -> BACKING_OFF(n) -> ATTEMPTING(n + 1)
    ATTEMPTING(max_retries) -> FAILED

Delays come from pure functions of the attempt count so they can be
asserted on without sleeping.
"""

import time
import functools
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Optional, Sequence, Tuple, Type


class RetryError(Exception):
    """Raised when all retry attempts are exhausted."""
    pass


class RetryPhase(str, Enum):
    ATTEMPTING = "attempting"
    BACKING_OFF = "backing_off"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class RetryState:
    """Ephemeral per-request retry bookkeeping."""

    max_retries: int
    attempt: int = 0
    phase: RetryPhase = RetryPhase.ATTEMPTING

    @property
    def can_retry(self) -> bool:
        return self.attempt < self.max_retries

    def succeed(self) -> "RetryState":
        return replace(self, phase=RetryPhase.SUCCEEDED)

    def fail(self) -> "RetryState":
        """Record a retryable failure: back off if budget remains, else fail."""
        if self.can_retry:
            return replace(self, phase=RetryPhase.BACKING_OFF)
        return replace(self, phase=RetryPhase.FAILED)

    def next_attempt(self) -> "RetryState":
        if self.phase is not RetryPhase.BACKING_OFF:
            raise ValueError(f"Cannot start a new attempt from {self.phase.value}")
        return replace(self, attempt=self.attempt + 1, phase=RetryPhase.ATTEMPTING)


def exponential_delay(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
) -> float:
    """
    Delay before retry number ``attempt + 1``.

    Args:
        attempt: Zero-based index of the attempt that just failed
        base_delay: Delay after the first failure
        max_delay: Upper bound on any single delay
        exponential_base: Growth factor per attempt

    Returns:
        Seconds to wait
    """
    return min(base_delay * (exponential_base ** attempt), max_delay)


def scheduled_delay(attempt: int, schedule: Sequence[float]) -> float:
    """Delay from a fixed schedule; the last entry repeats past its end."""
    if not schedule:
        return 0.0
    return schedule[min(attempt, len(schedule) - 1)]


def exponential_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    on_retry: Optional[Callable] = None,
    sleep: Callable[[float], None] = time.sleep,
):
    """
    Decorator for retrying functions with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts (0 = no retries)
        base_delay: Initial delay in seconds
        max_delay: Maximum delay between retries in seconds
        exponential_base: Base for exponential calculation (delay *= base)
        exceptions: Tuple of exceptions to catch and retry
        on_retry: Optional callback function(attempt, exception, delay)
        sleep: Function used to wait between attempts

    Example:
        @exponential_backoff(max_retries=2, base_delay=1.0, max_delay=30.0)
        def fetch_page(page):
            return client.get("/api/profiles", params={"page": page})
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            state = RetryState(max_retries=max_retries)

            while True:
                try:
                    result = func(*args, **kwargs)
                except exceptions as e:
                    state = state.fail()
                    if state.phase is RetryPhase.FAILED:
                        raise RetryError(
                            f"Failed after {max_retries + 1} attempts: {str(e)}"
                        ) from e

                    current_delay = exponential_delay(
                        state.attempt, base_delay, max_delay, exponential_base
                    )
                    if on_retry:
                        on_retry(state.attempt + 1, e, current_delay)

                    sleep(current_delay)
                    state = state.next_attempt()
                else:
                    return result

        return wrapper
    return decorator
