"""Wait coordinator: concurrent, independently tracked element waits."""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from shared.models.control import ControlMessage

from tabagent.config import AgentSettings
from tabagent.errors import OperationCancelled, OperationTimeout, RequestValidationError, SelectorError
from tabagent.execution.runtime import CancellationToken, ListenerPool, RetryController
from tabagent.host import ElementInfo, HostCapabilityProvider

from .base import error_response, ok_response, require_selector, resolve_timeout

LOGGER = logging.getLogger(__name__)

COMMAND = "wait"
CONDITIONS = frozenset({"present", "visible", "hidden"})
QUERY_RETRIES = 2


@dataclass
class ActiveWait:
    wait_id: str
    request_id: str
    selector: str
    started_at: float
    token: CancellationToken


@dataclass
class WaitHandler:
    settings: AgentSettings
    host: HostCapabilityProvider
    pool: ListenerPool
    retry: RetryController

    _waits: Dict[str, ActiveWait] = field(default_factory=dict, init=False, repr=False)
    _ids: Any = field(default_factory=lambda: itertools.count(1), init=False, repr=False)
    _sweep_task: Optional[asyncio.Task[None]] = field(default=None, init=False, repr=False)

    async def handle(self, message: ControlMessage, request_id: str) -> Dict[str, Any]:
        params = message.params()
        try:
            selector = require_selector(params)
            condition = str(params.get("condition") or "visible")
            if condition not in CONDITIONS:
                raise RequestValidationError(f"Unsupported wait condition: {condition}")
            timeout = resolve_timeout(self.settings, params, self.settings.wait_timeout_seconds)
        except RequestValidationError as exc:
            return error_response(COMMAND, request_id, exc, {"result": "selector_invalid"})

        wait_id = f"wait_{next(self._ids)}_{int(time.time() * 1000)}"
        token = CancellationToken(f"wait {wait_id}")
        wake = asyncio.Event()
        listener = self.pool.acquire(
            lambda event: wake.set(),
            f"wait-{selector[:50]}",
            on_evict=lambda reason: LOGGER.debug("Wait %s listener evicted (%s), polling only", wait_id, reason),
        )
        target_id = self.host.target_id
        listener.attach(self.host.subscribe(listener.callback, lambda event: event.target_id == target_id))
        self._waits[wait_id] = ActiveWait(wait_id, request_id, selector, time.monotonic(), token)
        started = time.monotonic()
        LOGGER.debug("Wait %s for %s (%s, %.1fs)", wait_id, selector, condition, timeout)

        poll = token.link(asyncio.ensure_future(self._poll(selector, condition, wake)))
        try:
            element = await asyncio.wait_for(poll, timeout=timeout)
        except asyncio.TimeoutError:
            LOGGER.info("Wait %s timed out after %.1fs", wait_id, timeout)
            return error_response(
                COMMAND,
                request_id,
                OperationTimeout(f"Timeout waiting for element: {selector} ({round(timeout * 1000)}ms)"),
                {"result": "timeout", "selector": selector},
            )
        except asyncio.CancelledError:
            if not token.cancelled:
                raise
            return error_response(
                COMMAND,
                request_id,
                OperationCancelled(f"Wait cancelled: {token.reason}"),
                {"result": "unknown_error", "selector": selector},
            )
        except SelectorError as exc:
            return error_response(COMMAND, request_id, exc, {"result": "selector_invalid", "selector": selector})
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Wait %s failed: %s", wait_id, exc)
            return error_response(COMMAND, request_id, exc, {"result": "unknown_error", "selector": selector})
        finally:
            listener.release()
            self._waits.pop(wait_id, None)

        data: Dict[str, Any] = {
            "result": "success",
            "selector": selector,
            "condition": condition,
            "elapsed": int((time.monotonic() - started) * 1000),
        }
        if element is not None:
            data["element"] = {"tagName": element.tag_name, "text": element.text, "visible": element.visible}
        return ok_response(COMMAND, request_id, data)

    async def _poll(self, selector: str, condition: str, wake: asyncio.Event) -> Optional[ElementInfo]:
        while True:
            wake.clear()
            elements: List[ElementInfo] = await self.retry.execute(
                lambda attempt: self.host.query_elements(selector),
                max_retries=QUERY_RETRIES,
                label=f"wait query {selector[:50]}",
            )
            element = elements[0] if elements else None
            if condition == "present" and element is not None:
                return element
            if condition == "visible" and element is not None and element.visible:
                return element
            if condition == "hidden" and (element is None or not element.visible):
                return element
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(wake.wait(), timeout=self.settings.wait_poll_interval_seconds)

    def active_waits(self) -> List[Dict[str, Any]]:
        now = time.monotonic()
        return [
            {
                "id": wait.wait_id,
                "request_id": wait.request_id,
                "selector": wait.selector,
                "age_seconds": round(now - wait.started_at, 3),
            }
            for wait in self._waits.values()
        ]

    def cancel_all(self, reason: str = "cancelled") -> int:
        waits = list(self._waits.values())
        for wait in waits:
            wait.token.cancel(reason)
        return len(waits)

    def sweep_orphans(self) -> int:
        """Cancel waits that outlived the orphan age."""

        now = time.monotonic()
        max_age = self.settings.orphaned_wait_max_age_seconds
        orphans = [wait for wait in self._waits.values() if now - wait.started_at > max_age]
        for wait in orphans:
            LOGGER.warning("Cancelling orphaned wait %s (%s)", wait.wait_id, wait.selector)
            wait.token.cancel("orphaned")
        return len(orphans)

    def start(self) -> None:
        if self._sweep_task and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.create_task(self._sweep_loop(), name="wait-orphan-sweep")

    async def stop(self) -> None:
        self.cancel_all("stopped")
        if self._sweep_task:
            self._sweep_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweep_task
            self._sweep_task = None

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.orphaned_wait_sweep_seconds)
            self.sweep_orphans()
