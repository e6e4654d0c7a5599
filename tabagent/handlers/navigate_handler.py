"""Navigate coordinator: single-flight navigation of the target session."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from shared.models.control import ControlMessage

from tabagent.config import AgentSettings
from tabagent.errors import (
    BusyError,
    CapacityError,
    HostError,
    OperationCancelled,
    OperationTimeout,
    RequestValidationError,
)
from tabagent.execution import UrlPolicy, validate_url
from tabagent.execution.runtime import CancellationToken, ListenerPool, RetryController
from tabagent.host import HostCapabilityProvider, TargetStateEvent

from .base import OperationState, OperationTracker, error_response, ok_response, resolve_timeout

LOGGER = logging.getLogger(__name__)

COMMAND = "navigate"
MAX_RETRIES_LIMIT = 5


@dataclass
class NavigateHandler:
    settings: AgentSettings
    host: HostCapabilityProvider
    pool: ListenerPool
    retry: RetryController
    url_policy: Optional[UrlPolicy] = None

    tracker: OperationTracker = field(default_factory=OperationTracker, init=False)
    _token: Optional[CancellationToken] = field(default=None, init=False, repr=False)
    _cooldown: Optional[asyncio.TimerHandle] = field(default=None, init=False, repr=False)
    _timeout: float = field(default=0.0, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.url_policy is None:
            self.url_policy = UrlPolicy.from_settings(self.settings)
        self._timeout = self.settings.navigate_timeout_seconds

    async def handle(self, message: ControlMessage, request_id: str) -> Dict[str, Any]:
        # busy check and state change happen before the first await
        if self.tracker.busy:
            LOGGER.warning(
                "Navigate %s rejected, %s still in flight",
                request_id,
                self.tracker.request_id,
            )
            return error_response(COMMAND, request_id, BusyError("Navigation already in progress"))

        self._cancel_cooldown()
        self.tracker.begin(request_id)
        params = message.params()
        try:
            url = validate_url(params.get("url"), self.url_policy)
            self._timeout = resolve_timeout(self.settings, params, self.settings.navigate_timeout_seconds)
            max_retries = self._resolve_retries(params.get("maxRetries"))
            self.tracker.transition(OperationState.IN_FLIGHT)
            LOGGER.info("Navigating to %s (request=%s timeout=%.1fs)", url, request_id, self._timeout)
            final_url = await self._navigate(url, max_retries)
        except asyncio.CancelledError:
            self.tracker.transition(OperationState.FAILED)
            raise
        except Exception as exc:  # noqa: BLE001
            self.tracker.transition(OperationState.FAILED)
            LOGGER.warning("Navigate %s failed: %s", request_id, exc)
            return error_response(COMMAND, request_id, exc)
        else:
            self.tracker.transition(OperationState.SUCCEEDED)
            LOGGER.info("Navigation %s completed at %s", request_id, final_url)
            return ok_response(COMMAND, request_id, {"url": final_url, "tabId": self.host.target_id})
        finally:
            self._timeout = self.settings.navigate_timeout_seconds
            self._token = None
            self._schedule_idle()

    def cancel(self, reason: str = "cancelled") -> bool:
        """Abort the in-flight navigation; the host may still finish loading."""

        if self._token is None:
            return False
        self._token.cancel(reason)
        return True

    def state(self) -> Dict[str, Any]:
        return {
            "state": self.tracker.state.value,
            "in_flight_request": self.tracker.request_id if self.tracker.busy else None,
            "listener_pool": self.pool.status(),
        }

    async def _navigate(self, url: str, max_retries: int) -> str:
        loop = asyncio.get_running_loop()
        token = CancellationToken("navigation")
        self._token = token
        pending: Dict[str, asyncio.Future] = {}

        def on_state(event: TargetStateEvent) -> None:
            future = pending.get("current")
            if future is None or future.done():
                return
            if event.error:
                future.set_exception(HostError(f"Navigation failed: {event.error}"))
            elif event.status == "complete":
                if event.url:
                    future.set_result(event.url)
                else:
                    future.set_exception(HostError("Navigation completed but no URL available"))

        def on_evict(reason: str) -> None:
            future = pending.get("current")
            if future is not None and not future.done():
                future.set_exception(CapacityError(f"Navigation listener released early ({reason})"))

        listener = self.pool.acquire(on_state, f"navigation-{url[:50]}", on_evict=on_evict)
        target_id = self.host.target_id
        listener.attach(self.host.subscribe(listener.callback, lambda event: event.target_id == target_id))

        async def attempt(number: int) -> str:
            if not listener.is_active():
                raise CapacityError("Navigation listener was evicted")
            future = loop.create_future()
            pending["current"] = future
            await self.host.navigate(url)
            try:
                return await asyncio.wait_for(future, timeout=self._timeout)
            except asyncio.TimeoutError:
                raise OperationTimeout(f"Navigation timeout after {round(self._timeout * 1000)}ms") from None

        task = token.link(
            asyncio.ensure_future(
                self.retry.execute(attempt, max_retries=max_retries, token=token, label="navigation")
            )
        )
        try:
            return await task
        except asyncio.CancelledError:
            if token.cancelled:
                raise OperationCancelled("Navigation cancelled") from None
            task.cancel()
            raise
        finally:
            listener.release()

    def _resolve_retries(self, raw: Any) -> int:
        if raw is None:
            return self.settings.navigate_max_retries
        if isinstance(raw, bool) or not isinstance(raw, int) or raw < 0:
            raise RequestValidationError("maxRetries must be a non-negative integer")
        return min(raw, MAX_RETRIES_LIMIT)

    def _schedule_idle(self) -> None:
        self._cancel_cooldown()
        loop = asyncio.get_running_loop()
        self._cooldown = loop.call_later(self.settings.status_cooldown_seconds, self._return_to_idle)

    def _cancel_cooldown(self) -> None:
        if self._cooldown is not None:
            self._cooldown.cancel()
            self._cooldown = None

    def _return_to_idle(self) -> None:
        self._cooldown = None
        if self.tracker.state in {OperationState.SUCCEEDED, OperationState.FAILED}:
            self.tracker.transition(OperationState.IDLE)
