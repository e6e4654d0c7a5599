"""Exponential backoff retry loop."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from tabagent.config import AgentSettings
from tabagent.errors import OperationCancelled, is_retryable as default_is_retryable

from .cancellation import CancellationToken

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")
SleepFunc = Callable[[float], Awaitable[None]]


def compute_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before ``attempt`` (0-based); the first attempt never waits."""

    if attempt <= 0:
        return 0.0
    return min(base_delay * (2 ** attempt), max_delay)


class RetryController:
    def __init__(
        self,
        *,
        base_delay: float = 1.0,
        max_delay: float = 5.0,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self._base_delay = float(base_delay)
        self._max_delay = float(max_delay)
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: AgentSettings, *, sleep: SleepFunc = asyncio.sleep) -> "RetryController":
        return cls(
            base_delay=settings.retry_base_delay_seconds,
            max_delay=settings.retry_max_delay_seconds,
            sleep=sleep,
        )

    def delay_for(self, attempt: int) -> float:
        return compute_delay(attempt, self._base_delay, self._max_delay)

    async def execute(
        self,
        operation: Callable[[int], Awaitable[T]],
        *,
        max_retries: int,
        is_retryable: Callable[[BaseException], bool] = default_is_retryable,
        token: Optional[CancellationToken] = None,
        label: str = "operation",
    ) -> T:
        """Run ``operation(attempt)`` until it succeeds or the retry budget is spent.

        Non-retryable errors surface on first occurrence; otherwise the last error is
        raised once ``max_retries`` retries have failed.
        """

        last_exc: Optional[BaseException] = None
        for attempt in range(max_retries + 1):
            if attempt:
                delay = self.delay_for(attempt)
                LOGGER.info("Retrying %s in %.2fs (attempt %s/%s)", label, delay, attempt + 1, max_retries + 1)
                await self._sleep(delay)
            if token is not None:
                token.raise_if_cancelled()
            try:
                return await operation(attempt)
            except OperationCancelled:
                raise
            except Exception as exc:  # noqa: BLE001
                last_exc = exc
                if not is_retryable(exc):
                    LOGGER.debug("%s failed with non-retryable error: %s", label, exc)
                    raise
                LOGGER.warning("%s attempt %s/%s failed: %s", label, attempt + 1, max_retries + 1, exc)
        assert last_exc is not None
        raise last_exc
