"""
Tests for the Backoff Policy and Retry Loop
===========================================

These tests verify that:
- The backoff schedule doubles from the base delay
- Fatal errors stop the loop without sleeping
- Exhaustion sleeps max_attempts - 1 times and annotates the last error
- Deadlines and task cancellation stop the loop
"""

import asyncio

import pytest

from auth_svc.exceptions import DatabaseConnectError, DeadlineExceededError, FetchError
from auth_svc.retry import BackoffPolicy, Deadline, retry_async, with_deadline


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestBackoffPolicy:
    """Tests for BackoffPolicy.delay()."""

    def test_default_schedule(self):
        policy = BackoffPolicy()
        delays = [policy.delay(attempt) for attempt in range(1, 6)]
        assert delays == pytest.approx([0.1, 0.2, 0.4, 0.8, 1.6])

    def test_custom_base(self):
        assert BackoffPolicy(base_delay=0.5, max_attempts=3).delay(3) == pytest.approx(2.0)

    @pytest.mark.parametrize("attempt", [0, 6])
    def test_attempt_out_of_range(self, attempt):
        with pytest.raises(ValueError):
            BackoffPolicy().delay(attempt)

    @pytest.mark.parametrize("kwargs", [{"max_attempts": 0}, {"max_attempts": -1}, {"base_delay": -0.1}])
    def test_invalid_policy_rejected(self, kwargs):
        with pytest.raises(ValueError):
            BackoffPolicy(**kwargs)


class TestRetryAsync:
    """Tests for the shared retry loop."""

    async def test_success_on_first_attempt(self, sleep_recorder):
        async def operation():
            return "ok"

        result = await retry_async(
            operation, policy=BackoffPolicy(), operation_name="op", sleep=sleep_recorder
        )

        assert result == "ok"
        assert sleep_recorder.delays == []

    async def test_recovers_after_retryable_failures(self, sleep_recorder):
        calls = []

        async def operation():
            calls.append(1)
            if len(calls) < 3:
                raise FetchError("503 Service Unavailable", retryable=True)
            return "ok"

        result = await retry_async(
            operation, policy=BackoffPolicy(), operation_name="op", sleep=sleep_recorder
        )

        assert result == "ok"
        assert len(calls) == 3
        assert sleep_recorder.delays == pytest.approx([0.1, 0.2])

    async def test_fatal_error_is_not_retried(self, sleep_recorder):
        calls = []

        async def operation():
            calls.append(1)
            raise DatabaseConnectError("connection refused")

        with pytest.raises(DatabaseConnectError) as exc_info:
            await retry_async(
                operation, policy=BackoffPolicy(), operation_name="op", sleep=sleep_recorder
            )

        assert len(calls) == 1
        assert sleep_recorder.delays == []
        assert exc_info.value.retry_exhausted is False

    async def test_exhaustion_raises_last_error_annotated(self, sleep_recorder):
        errors = []

        async def operation():
            error = FetchError(f"failure {len(errors) + 1}", retryable=True)
            errors.append(error)
            raise error

        with pytest.raises(FetchError) as exc_info:
            await retry_async(
                operation, policy=BackoffPolicy(), operation_name="op", sleep=sleep_recorder
            )

        assert len(errors) == 5
        assert exc_info.value is errors[-1]
        assert exc_info.value.retry_exhausted is True
        assert exc_info.value.attempts == 5
        assert str(exc_info.value).startswith("retries exhausted after 5 attempts: failure 5")
        assert sleep_recorder.delays == pytest.approx([0.1, 0.2, 0.4, 0.8])

    async def test_unrelated_exceptions_propagate(self, sleep_recorder):
        async def operation():
            raise KeyError("bug")

        with pytest.raises(KeyError):
            await retry_async(
                operation, policy=BackoffPolicy(), operation_name="op", sleep=sleep_recorder
            )
        assert sleep_recorder.delays == []


class TestDeadlines:
    """Tests for deadline handling inside the retry loop."""

    def test_deadline_remaining(self):
        clock = FakeClock()
        deadline = Deadline.after(1.0, clock=clock)

        clock.now = 0.25
        assert deadline.remaining() == pytest.approx(0.75)
        assert not deadline.expired

        clock.now = 2.0
        assert deadline.remaining() == 0.0
        assert deadline.expired

    async def test_sleep_past_deadline_is_not_started(self):
        clock = FakeClock()
        deadline = Deadline.after(0.25, clock=clock)
        delays = []

        async def advancing_sleep(delay):
            delays.append(delay)
            clock.now += delay

        async def operation():
            raise FetchError("503 Service Unavailable", retryable=True)

        with pytest.raises(DeadlineExceededError) as exc_info:
            await retry_async(
                operation,
                policy=BackoffPolicy(),
                operation_name="op",
                deadline=deadline,
                sleep=advancing_sleep,
            )

        # 0.1 fits in 0.25; the following 0.2 does not fit in the 0.15 left
        assert delays == pytest.approx([0.1])
        assert isinstance(exc_info.value.__cause__, FetchError)

    async def test_expired_deadline_prevents_any_attempt(self, sleep_recorder):
        clock = FakeClock()
        deadline = Deadline.after(0.0, clock=clock)
        calls = []

        async def operation():
            calls.append(1)
            return "ok"

        with pytest.raises(DeadlineExceededError):
            await retry_async(
                operation,
                policy=BackoffPolicy(),
                operation_name="op",
                deadline=deadline,
                sleep=sleep_recorder,
            )
        assert calls == []

    async def test_with_deadline_bounds_slow_call(self):
        async def slow():
            await asyncio.sleep(10)

        with pytest.raises(DeadlineExceededError):
            await with_deadline(slow(), Deadline.after(0.01), "slow_call")

    async def test_with_deadline_none_is_unbounded(self):
        async def quick():
            return 42

        assert await with_deadline(quick(), None, "quick_call") == 42


class TestCancellation:
    """Tests for task cancellation during a retry loop."""

    async def test_cancel_during_backoff_propagates(self):
        sleeping = asyncio.Event()

        async def blocking_sleep(delay):
            sleeping.set()
            await asyncio.Event().wait()

        async def operation():
            raise FetchError("503 Service Unavailable", retryable=True)

        task = asyncio.create_task(
            retry_async(
                operation, policy=BackoffPolicy(), operation_name="op", sleep=blocking_sleep
            )
        )
        await sleeping.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
