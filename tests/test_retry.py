"""
Tests for the exponential backoff helper.
"""

import pytest

from statuswatch.retry import RetryPolicy, with_retry


class Flaky:
    """Fails ``failures`` times, then returns ``value``."""

    def __init__(self, failures, value="ok", exc=ConnectionError):
        self.failures = failures
        self.value = value
        self.exc = exc
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc(f"failure {self.calls}")
        return self.value


class TestRetryPolicy:
    def test_delays_double_then_cap(self):
        policy = RetryPolicy(max_attempts=5, base_delay=1.0, max_delay=8.0)
        assert [policy.delay_for(n) for n in range(5)] == [1.0, 2.0, 4.0, 8.0, 8.0]

    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.max_attempts == 3
        assert policy.delay_for(0) == 1.0


class TestWithRetry:
    @pytest.mark.asyncio
    async def test_first_try(self):
        op = Flaky(0)
        assert await with_retry(op, base_delay=0, max_delay=0) == "ok"
        assert op.calls == 1

    @pytest.mark.asyncio
    async def test_succeeds_after_failures(self):
        op = Flaky(2)
        assert await with_retry(op, max_attempts=3, base_delay=0, max_delay=0) == "ok"
        assert op.calls == 3

    @pytest.mark.asyncio
    async def test_raises_last_error(self):
        op = Flaky(5)
        with pytest.raises(ConnectionError, match="failure 3"):
            await with_retry(op, max_attempts=3, base_delay=0, max_delay=0)
        assert op.calls == 3

    @pytest.mark.asyncio
    async def test_at_least_one_attempt(self):
        op = Flaky(0)
        assert await with_retry(op, max_attempts=0, base_delay=0) == "ok"

    @pytest.mark.asyncio
    async def test_policy_run(self):
        op = Flaky(1, value=42)
        policy = RetryPolicy(max_attempts=2, base_delay=0, max_delay=0)
        assert await policy.run(op) == 42
