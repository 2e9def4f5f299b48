import pytest

from hirechat.services.errors import RateLimitedError, RemoteUnavailableError
from hirechat.services.executor import RemoteExecutor, RetryPolicy


class FlakyOperation:
    """Raises the queued errors in order, then returns ``result``."""

    def __init__(self, errors, result="ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


async def test_success_needs_no_retry(recording_sleep):
    executor = RemoteExecutor(sleep=recording_sleep)
    operation = FlakyOperation([])
    assert await executor.execute(operation) == "ok"
    assert operation.calls == 1
    assert recording_sleep.delays == []


async def test_server_wait_hint_is_honored_exactly(recording_sleep):
    executor = RemoteExecutor(RetryPolicy(base_delay=0.1), sleep=recording_sleep)
    operation = FlakyOperation([RateLimitedError("slow down", retry_after=2.0)])

    assert await executor.execute(operation) == "ok"
    assert operation.calls == 2
    assert recording_sleep.delays == [2.0]


async def test_delays_double_without_hint_until_retries_run_out(recording_sleep):
    executor = RemoteExecutor(RetryPolicy(max_retries=3, base_delay=1.0), sleep=recording_sleep)
    operation = FlakyOperation([RateLimitedError(f"limited {i}") for i in range(10)])

    with pytest.raises(RateLimitedError, match="limited 3"):
        await executor.execute(operation)

    assert operation.calls == 4
    assert recording_sleep.delays == [1.0, 2.0, 4.0]


async def test_other_errors_are_not_retried(recording_sleep):
    executor = RemoteExecutor(sleep=recording_sleep)
    operation = FlakyOperation([RemoteUnavailableError("down")])

    with pytest.raises(RemoteUnavailableError):
        await executor.execute(operation)

    assert operation.calls == 1
    assert recording_sleep.delays == []


async def test_recovers_after_some_rate_limits(recording_sleep):
    executor = RemoteExecutor(RetryPolicy(base_delay=0.5), sleep=recording_sleep)
    operation = FlakyOperation(
        [RateLimitedError("a"), RateLimitedError("b", retry_after=0.25)], result=42
    )

    assert await executor.execute(operation) == 42
    assert recording_sleep.delays == [0.5, 0.25]


async def test_policy_override_applies_to_single_call(recording_sleep):
    executor = RemoteExecutor(RetryPolicy(max_retries=3), sleep=recording_sleep)
    operation = FlakyOperation([RateLimitedError("a"), RateLimitedError("b")])

    with pytest.raises(RateLimitedError):
        await executor.execute(operation, RetryPolicy(max_retries=1, base_delay=0.0))

    assert operation.calls == 2


def test_policy_validation():
    assert RetryPolicy().max_attempts == 4
    with pytest.raises(ValueError):
        RetryPolicy(max_retries=-1)
    with pytest.raises(ValueError):
        RetryPolicy(base_delay=-0.1)
