"""Cooperative cancellation token shared between a coordinator and its work."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Set

from tabagent.errors import OperationCancelled

LOGGER = logging.getLogger(__name__)


class CancellationToken:
    """Cancels linked tasks and lets loops check for cancellation between steps.

    Cancelling stops the local work only; whatever the host already started keeps going.
    """

    def __init__(self, label: str = "operation") -> None:
        self._label = label
        self._cancelled = False
        self._reason: Optional[str] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason
        LOGGER.debug("Cancelling %s (%s), %s linked task(s)", self._label, reason, len(self._tasks))
        for task in list(self._tasks):
            task.cancel()

    def link(self, task: asyncio.Task) -> asyncio.Task:
        if self._cancelled:
            task.cancel()
            return task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise OperationCancelled(f"{self._label} {self._reason or 'cancelled'}")
