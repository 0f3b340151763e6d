"""
Retry Policy, Deadlines and the Shared Retry Loop
=================================================

Freshly issued Vault identities race with their own propagation: the
credentials endpoint may answer 5xx for a moment, and PostgreSQL may reject a
role that Vault created milliseconds earlier. Both the credential fetch and
the connection step therefore run through the same retry loop.

Retry Loop States:
-----------------

    Attempting ──► Success            (return the value)
               ──► FatalFailure       (raise immediately)
               ──► RetryableFailure ──► Attempting   (attempts remain)
                                    ──► Exhausted    (raise last error)

Whether a failure is retryable is decided by the operation itself: it raises
an AuthSvcError whose ``retryable`` attribute is set. The loop never inspects
error text.

Backoff:
-------
    delay(attempt) = base * 2^(attempt-1)     (100ms, 200ms, 400ms, 800ms)

No sleep follows the final attempt, so an exhausted loop sleeps exactly
max_attempts - 1 times.

Cancellation and Deadlines:
--------------------------
Task cancellation propagates out of any await in the loop; the loop does not
catch asyncio.CancelledError. A Deadline bounds the whole loop: it is checked
before each attempt, caps every attempt with asyncio.wait_for, and a sleep
that would run past it is never started.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar

from .exceptions import AuthSvcError, DeadlineExceededError
from .logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Exponential backoff shared by every retry loop.

    Attributes:
        base_delay: Delay after the first failed attempt, in seconds
        max_attempts: Total attempts including the first one
    """

    base_delay: float = 0.1
    max_attempts: int = 5

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")
        if self.base_delay < 0:
            raise ValueError(f"base_delay must not be negative, got {self.base_delay}")

    def delay(self, attempt: int) -> float:
        """
        Get the delay to wait after a failed attempt.

        Args:
            attempt: The attempt that just failed, 1-based

        Returns:
            Delay in seconds

        Raises:
            ValueError: If attempt is outside 1..max_attempts
        """
        if attempt < 1 or attempt > self.max_attempts:
            raise ValueError(
                f"attempt must be between 1 and {self.max_attempts}, got {attempt}"
            )
        return self.base_delay * 2 ** (attempt - 1)


@dataclass
class Deadline:
    """
    An absolute point on the monotonic clock by which work must finish.

    Use Deadline.after(seconds) to create one; pass the same instance through
    every step of a bootstrap so all steps share one budget.
    """

    expires_at: float
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)

    @classmethod
    def after(cls, seconds: float, clock: Callable[[], float] = time.monotonic) -> "Deadline":
        """Create a deadline the given number of seconds from now."""
        return cls(expires_at=clock() + seconds, clock=clock)

    def remaining(self) -> float:
        """Get the seconds left, never negative."""
        return max(0.0, self.expires_at - self.clock())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0

    def check(self, operation: str) -> None:
        """
        Raise if the deadline has passed.

        Raises:
            DeadlineExceededError: If no time remains
        """
        if self.expired:
            raise DeadlineExceededError(
                f"{operation}: deadline exceeded",
                details={"operation": operation},
            )


async def with_deadline(
    awaitable: Awaitable[T],
    deadline: Optional[Deadline],
    operation: str,
) -> T:
    """
    Await a single call, bounded by the remaining time of a deadline.

    Args:
        awaitable: The call to run
        deadline: Deadline to honor, or None for no bound
        operation: Operation name used in the error message

    Returns:
        The awaitable's result

    Raises:
        DeadlineExceededError: If the deadline passes while waiting
    """
    if deadline is None:
        return await awaitable

    try:
        deadline.check(operation)
    except DeadlineExceededError:
        # Never started: close the coroutine so it is not reported as un-awaited
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise

    try:
        return await asyncio.wait_for(awaitable, timeout=deadline.remaining())
    except asyncio.TimeoutError as e:
        raise DeadlineExceededError(
            f"{operation}: deadline exceeded during call",
            details={"operation": operation},
        ) from e


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    policy: BackoffPolicy,
    operation_name: str,
    deadline: Optional[Deadline] = None,
    sleep: SleepFunc = asyncio.sleep,
) -> T:
    """
    Run an operation until it succeeds, fails fatally, or attempts run out.

    Args:
        operation: Zero-argument callable returning a fresh awaitable per attempt
        policy: Backoff schedule and attempt limit
        operation_name: Name used in logs and error messages
        deadline: Optional deadline checked between attempts and bounding each call
        sleep: Coroutine used to wait between attempts

    Returns:
        The operation's result

    Raises:
        AuthSvcError: The first non-retryable error, or the last retryable
            error annotated with mark_retry_exhausted()
        DeadlineExceededError: If the deadline is reached first
    """
    last_error: Optional[AuthSvcError] = None

    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await with_deadline(operation(), deadline, operation_name)
        except DeadlineExceededError as e:
            if last_error is not None:
                raise e from last_error
            raise
        except AuthSvcError as e:
            if not e.retryable:
                logger.error(
                    "Operation failed with non-retryable error",
                    operation=operation_name,
                    attempt=attempt,
                    error=e.message,
                    error_type=type(e).__name__,
                )
                raise
            last_error = e

        if attempt == policy.max_attempts:
            break

        delay = policy.delay(attempt)
        if deadline is not None and deadline.remaining() < delay:
            raise DeadlineExceededError(
                f"{operation_name}: deadline exceeded before retry {attempt + 1}",
                details={"operation": operation_name, "attempts": attempt},
            ) from last_error

        logger.warning(
            "Retrying after transient failure",
            operation=operation_name,
            attempt=attempt,
            max_attempts=policy.max_attempts,
            delay_ms=int(delay * 1000),
            error=last_error.message,
        )
        await sleep(delay)

    # BackoffPolicy guarantees at least one attempt, so last_error is set here
    last_error.mark_retry_exhausted(policy.max_attempts)
    logger.error(
        "Retries exhausted",
        operation=operation_name,
        attempts=policy.max_attempts,
        error=last_error.message,
        error_type=type(last_error).__name__,
    )
    raise last_error
