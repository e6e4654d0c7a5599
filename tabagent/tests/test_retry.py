import asyncio

import pytest

from tabagent.errors import (
    HostError,
    OperationCancelled,
    OperationTimeout,
    RequestValidationError,
    SecurityRejection,
    is_retryable,
)
from tabagent.execution.runtime import CancellationToken, RetryController, compute_delay


def _recorder():
    delays = []

    async def fake_sleep(delay):
        delays.append(delay)

    return delays, fake_sleep


def test_backoff_is_monotonic_and_capped():
    delays = [compute_delay(attempt, 1.0, 5.0) for attempt in range(1, 11)]

    assert compute_delay(0, 1.0, 5.0) == 0.0
    assert delays == [min(1.0 * 2 ** n, 5.0) for n in range(1, 11)]
    assert all(a <= b for a, b in zip(delays, delays[1:]))
    assert max(delays) == 5.0


@pytest.mark.asyncio
async def test_retryable_errors_are_retried_until_budget_spent():
    delays, fake_sleep = _recorder()
    controller = RetryController(base_delay=1.0, max_delay=5.0, sleep=fake_sleep)
    attempts = []

    async def operation(attempt):
        attempts.append(attempt)
        raise OperationTimeout("timeout")

    with pytest.raises(OperationTimeout):
        await controller.execute(operation, max_retries=4)

    assert attempts == [0, 1, 2, 3, 4]
    assert delays == [2.0, 4.0, 5.0, 5.0]


@pytest.mark.asyncio
async def test_non_retryable_error_is_terminal():
    delays, fake_sleep = _recorder()
    controller = RetryController(sleep=fake_sleep)
    attempts = []

    async def operation(attempt):
        attempts.append(attempt)
        raise RequestValidationError("bad url")

    with pytest.raises(RequestValidationError):
        await controller.execute(operation, max_retries=3)

    assert attempts == [0]
    assert delays == []


@pytest.mark.asyncio
async def test_success_after_transient_failures():
    delays, fake_sleep = _recorder()
    controller = RetryController(sleep=fake_sleep)

    async def operation(attempt):
        if attempt < 2:
            raise RuntimeError("network unreachable")
        return "ok"

    assert await controller.execute(operation, max_retries=2) == "ok"
    assert delays == [2.0, 4.0]


@pytest.mark.asyncio
async def test_cancelled_token_stops_before_next_attempt():
    delays, fake_sleep = _recorder()
    controller = RetryController(sleep=fake_sleep)
    token = CancellationToken("navigation")
    attempts = []

    async def operation(attempt):
        attempts.append(attempt)
        token.cancel("user request")
        raise OperationTimeout("timeout")

    with pytest.raises(OperationCancelled):
        await controller.execute(operation, max_retries=2, token=token)

    assert attempts == [0]


@pytest.mark.parametrize(
    "exc, expected",
    [
        (OperationTimeout("slow"), True),
        (asyncio.TimeoutError(), True),
        (OSError("reset"), True),
        (HostError("net::ERR_NAME_NOT_RESOLVED"), True),
        (HostError("Element missing"), False),
        (SecurityRejection("timeout in payload"), False),
        (RuntimeError("temporary glitch"), True),
        (RuntimeError("boom"), False),
    ],
)
def test_retryability_classification(exc, expected):
    assert is_retryable(exc) is expected
