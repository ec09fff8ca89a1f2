"""
Unit tests for RetryPolicy and Deadline.
"""

from unittest.mock import AsyncMock

import pytest

from tradewizard.errors import DeadlineExceeded
from tradewizard.retry import Deadline, RetryPolicy


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestRetryPolicy:
    """Test exponential backoff."""

    def test_delays_double_and_cap(self):
        policy = RetryPolicy(max_attempts=6, base_delay=1.0, max_delay=10.0)

        assert [policy.delay_for(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 8.0, 10.0]

    def test_jitter_bounded(self):
        policy = RetryPolicy(base_delay=1.0, jitter=0.5)

        assert 1.0 <= policy.delay_for(1) <= 1.5

    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        sleep = AsyncMock()
        calls = []

        async def flaky(attempt):
            calls.append(attempt)
            if attempt < 3:
                raise ConnectionError("reset")
            return "ok"

        result = await RetryPolicy(max_attempts=3).run(flaky, "flaky call", retry_on=(ConnectionError,), sleep=sleep)

        assert result == "ok"
        assert calls == [1, 2, 3]
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_exhausted_raises_last_error(self):
        operation = AsyncMock(side_effect=[ConnectionError("one"), ConnectionError("two")])

        with pytest.raises(ConnectionError, match="two"):
            await RetryPolicy(max_attempts=2).run(operation, "call", retry_on=(ConnectionError,), sleep=AsyncMock())

    @pytest.mark.asyncio
    async def test_non_retryable_error_propagates_immediately(self):
        operation = AsyncMock(side_effect=ValueError("bad input"))

        with pytest.raises(ValueError):
            await RetryPolicy(max_attempts=5).run(operation, "call", retry_on=(ConnectionError,), sleep=AsyncMock())

        assert operation.await_count == 1

    @pytest.mark.asyncio
    async def test_expired_deadline_stops_before_calling(self):
        clock = FakeClock()
        deadline = Deadline(1.0, clock)
        clock.now += 5
        operation = AsyncMock(return_value="ok")

        with pytest.raises(DeadlineExceeded):
            await RetryPolicy().run(operation, "call", deadline=deadline, sleep=AsyncMock())

        operation.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_retry_when_backoff_exceeds_budget(self):
        clock = FakeClock()
        deadline = Deadline(0.5, clock)
        operation = AsyncMock(side_effect=ConnectionError("reset"))
        sleep = AsyncMock()

        with pytest.raises(ConnectionError):
            await RetryPolicy(max_attempts=3, base_delay=1.0).run(
                operation, "call", retry_on=(ConnectionError,), deadline=deadline, sleep=sleep
            )

        assert operation.await_count == 1
        sleep.assert_not_awaited()


class TestDeadline:
    """Test the per-URL budget."""

    def test_remaining_and_timeout(self):
        clock = FakeClock()
        deadline = Deadline(10.0, clock)

        assert deadline.remaining() == 10.0
        assert deadline.timeout(30.0) == 10.0
        assert deadline.timeout(5.0) == 5.0
        assert deadline.timeout() == 10.0

        clock.now += 11
        assert deadline.remaining() == 0.0
        assert deadline.expired
        with pytest.raises(DeadlineExceeded):
            deadline.check("extraction")

    def test_unbounded(self):
        deadline = Deadline(None)

        assert deadline.remaining() is None
        assert deadline.timeout(5.0) == 5.0
        assert not deadline.expired
        deadline.check("anything")
