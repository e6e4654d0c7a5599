"""Routes inbound control frames to command handlers and sends the responses."""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import ValidationError

from shared.models.control import ControlMessage
from shared.protocol import (
    build_response,
    build_unknown_command_response,
    now_ms,
    parse_message,
    resolve_request_id,
)

from tabagent.errors import public_error_message
from tabagent.execution.runtime import ConcurrencyGuard
from tabagent.host import HostCapabilityProvider
from tabagent.network.connection import ConnectionManager

LOGGER = logging.getLogger(__name__)

CommandHandler = Callable[[ControlMessage, str], Awaitable[Dict[str, Any]]]


@dataclass
class BridgeClient:
    """Correlates every response with the ``requestId`` of the frame that caused it."""

    connection: ConnectionManager
    host: HostCapabilityProvider
    concurrency_guard: ConcurrencyGuard = field(default_factory=ConcurrencyGuard)

    _handlers: Dict[str, CommandHandler] = field(default_factory=dict, init=False, repr=False)
    _request_tasks: set[asyncio.Task[None]] = field(default_factory=set, init=False, repr=False)
    _stop_hooks: List[Callable[[], Optional[Awaitable[None]]]] = field(
        default_factory=list, init=False, repr=False
    )

    def __post_init__(self) -> None:
        self.connection.on("message", self._on_message)
        self.connection.on("connected", self._announce_target)
        self.register_handler("ping", self._handle_ping)

    def register_handler(self, command: str, handler: CommandHandler) -> None:
        if command in self._handlers and command != "ping":
            LOGGER.warning("Replacing handler for command %s", command)
        self._handlers[command] = handler

    def add_stop_hook(self, hook: Callable[[], Optional[Awaitable[None]]]) -> None:
        self._stop_hooks.append(hook)

    def in_flight(self) -> int:
        return self.concurrency_guard.inflight()

    async def start(self) -> None:
        await self.connection.connect()

    async def stop(self) -> None:
        await self.cancel_all()
        for hook in self._stop_hooks:
            try:
                result = hook()
                if inspect.isawaitable(result):
                    await result
            except Exception:  # noqa: BLE001
                LOGGER.exception("Stop hook failed")
        await self.connection.disconnect()

    async def cancel_all(self) -> None:
        if not self._request_tasks:
            return
        tasks = list(self._request_tasks)
        self._request_tasks.clear()
        LOGGER.debug("Cancelling %s request tasks", len(tasks))
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _on_message(self, frame: Dict[str, Any]) -> None:
        try:
            message = parse_message(frame)
        except ValidationError as exc:
            LOGGER.warning("Dropping invalid control frame: %s", exc.errors())
            return
        request_id = resolve_request_id(message)
        LOGGER.info("Received %s request=%s", message.command, request_id)
        task = asyncio.create_task(self._process(message, request_id), name=f"request-{request_id}")
        self._request_tasks.add(task)

        def _finalise(completed: asyncio.Task[None]) -> None:
            self._request_tasks.discard(completed)
            with contextlib.suppress(asyncio.CancelledError, Exception):
                completed.result()

        task.add_done_callback(_finalise)

    async def _process(self, message: ControlMessage, request_id: str) -> None:
        command = message.command or ""
        async with self.concurrency_guard.acquire(request_id) as acquired:
            if not acquired:
                LOGGER.warning("Request %s already in flight, rejecting duplicate", request_id)
                response = build_response(
                    command or "unknown",
                    request_id,
                    success=False,
                    error=f"Request {request_id} is already in flight",
                )
            else:
                response = await self._dispatch(command, message, request_id)
        await self.connection.send(response)

    async def _dispatch(self, command: str, message: ControlMessage, request_id: str) -> Dict[str, Any]:
        handler = self._handlers.get(command)
        if handler is None:
            LOGGER.warning("Unsupported command %r (request=%s)", command, request_id)
            return build_unknown_command_response(message, request_id)
        try:
            response = await handler(message, request_id)
        except asyncio.CancelledError:
            LOGGER.debug("Request %s cancelled", request_id)
            raise
        except Exception as exc:  # noqa: BLE001
            return build_response(command, request_id, success=False, error=public_error_message(exc))
        if response.get("requestId") != request_id:
            LOGGER.error("Handler for %s returned mismatched requestId, correcting", command)
            response["requestId"] = request_id
        return response

    async def _handle_ping(self, message: ControlMessage, request_id: str) -> Dict[str, Any]:
        return build_response("ping", request_id, success=True)

    async def _announce_target(self) -> None:
        target_id = self.host.target_id
        await self.connection.send({"type": "tabId", "tabId": target_id, "timestamp": now_ms()})
        url = await self.host.current_location()
        if url:
            await self.connection.send({"type": "url", "url": url, "tabId": target_id, "timestamp": now_ms()})
