"""Connection manager that owns the bridge control-channel lifecycle."""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import json
import logging
import random
from collections import deque
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

from shared.protocol import build_heartbeat, is_heartbeat

from tabagent.config import AgentSettings
from tabagent.transport import ABNORMAL_CLOSURE, NORMAL_CLOSURE, BaseTransport, TransportClosed

LOGGER = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]
EventHandler = Callable[..., Any]

GIVE_UP_MAX_ATTEMPTS = "max_reconnect_attempts_reached"


class ConnectionError(RuntimeError):
    """Raised when the transport connection fails."""


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSING = "closing"


class ConnectionManager:
    """Maintains the control channel and exposes event subscription + send.

    Events: ``connected``, ``disconnected(code, reason)``, ``reconnecting(attempt, delay)``,
    ``give_up(reason)`` and ``message(frame)`` for every non-heartbeat inbound frame.
    """

    def __init__(
        self,
        settings: AgentSettings,
        transport_factory: Callable[[AgentSettings], BaseTransport],
        *,
        url: Optional[str] = None,
        sleep: SleepFunc = asyncio.sleep,
        heartbeat_interval: float | None = None,
        pong_timeout: float | None = None,
        base_delay: float | None = None,
        max_delay: float | None = None,
        max_attempts: int | None = None,
        jitter: float | None = None,
        queue_size: int | None = None,
    ) -> None:
        self._settings = settings
        self._transport_factory = transport_factory
        self._url = url or str(settings.bridge_ws_url)
        self._sleep = sleep
        self._heartbeat_interval = float(
            heartbeat_interval if heartbeat_interval is not None else settings.heartbeat_interval_seconds
        )
        self._pong_timeout = float(pong_timeout if pong_timeout is not None else settings.pong_timeout_seconds)
        self._base_delay = float(base_delay if base_delay is not None else settings.reconnect_base_delay_seconds)
        self._max_delay = float(max_delay if max_delay is not None else settings.reconnect_max_delay_seconds)
        self._max_attempts = int(max_attempts if max_attempts is not None else settings.reconnect_max_attempts)
        self._jitter = float(jitter if jitter is not None else settings.reconnect_jitter)
        self._queue: Deque[Dict[str, Any]] = deque(
            maxlen=int(queue_size if queue_size is not None else settings.outbound_queue_size)
        )
        self._transport: Optional[BaseTransport] = None
        self._state = ConnectionState.DISCONNECTED
        self._handlers: Dict[str, List[EventHandler]] = {}
        self._recv_task: Optional[asyncio.Task[None]] = None
        self._heartbeat_task: Optional[asyncio.Task[None]] = None
        self._reconnect_task: Optional[asyncio.Task[None]] = None
        self._reconnect_attempts = 0
        self._closed_by_client = False
        self._flushing = False
        self._pong_event = asyncio.Event()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def url(self) -> str:
        return self._url

    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED and self._transport is not None

    def on(self, event: str, handler: EventHandler) -> None:
        self._handlers.setdefault(event, []).append(handler)

    def off(self, event: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(event)
        if handlers and handler in handlers:
            handlers.remove(handler)

    async def connect(self) -> None:
        """Open the channel, falling back to scheduled reconnects on failure."""

        if self._state in {ConnectionState.CONNECTED, ConnectionState.CONNECTING}:
            return
        if self._reconnect_task and not self._reconnect_task.done():
            return
        self._closed_by_client = False
        if not await self._open():
            self._schedule_reconnect()

    async def disconnect(self, code: int = NORMAL_CLOSURE, reason: str = "client disconnect") -> None:
        """Close the channel; an explicit close never triggers a reconnect."""

        self._closed_by_client = True
        if self._reconnect_task:
            self._reconnect_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reconnect_task
            self._reconnect_task = None
        transport = self._transport
        if transport is None:
            self._state = ConnectionState.DISCONNECTED
            return
        self._state = ConnectionState.CLOSING
        self._transport = None
        await self._stop_background_tasks()
        try:
            await transport.close(code, reason)
        except Exception:  # noqa: BLE001
            LOGGER.debug("Suppress transport close error", exc_info=True)
        self._state = ConnectionState.DISCONNECTED
        LOGGER.info("Bridge connection closed (%s): %s", code, reason)
        await self._emit("disconnected", code, reason)

    async def send(self, message: Dict[str, Any]) -> bool:
        """Transmit ``message`` or queue it until the channel is back.

        Returns True when the frame was handed to the transport, False when queued.
        """

        if not self.is_connected() or self._flushing:
            self._enqueue(message)
            return False
        transport = self._transport
        assert transport is not None
        try:
            await transport.send(message)
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Send failed, queueing frame and reconnecting: %s", exc)
            self._queue.appendleft(message)
            await self._handle_close(transport, ABNORMAL_CLOSURE, str(exc))
            return False
        return True

    async def update_endpoint(self, url: str) -> None:
        if url == self._url:
            return
        LOGGER.info("Bridge endpoint changed: %s -> %s", self._url, url)
        self._url = url
        active = self._state is not ConnectionState.DISCONNECTED or (
            self._reconnect_task is not None and not self._reconnect_task.done()
        )
        if active:
            await self.disconnect(NORMAL_CLOSURE, "endpoint changed")
            await self.connect()

    def connection_state(self) -> Dict[str, Any]:
        return {
            "state": self._state.value,
            "connected": self.is_connected(),
            "reconnect_attempts": self._reconnect_attempts,
            "queued_messages": len(self._queue),
        }

    def compute_reconnect_delay(self, attempt: int) -> float:
        delay = min(self._max_delay, self._base_delay * (2 ** (attempt - 1)))
        if self._jitter:
            delay *= random.uniform(1 - self._jitter, 1 + self._jitter)
            delay = max(0.1, min(delay, self._max_delay))
        return delay

    async def _open(self) -> bool:
        self._state = ConnectionState.CONNECTING
        transport = self._transport_factory(self._settings)
        try:
            await transport.connect(self._url)
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Bridge connect to %s failed: %s", self._url, exc)
            self._state = ConnectionState.DISCONNECTED
            return False
        if self._closed_by_client:
            await transport.close(NORMAL_CLOSURE, "client disconnect")
            self._state = ConnectionState.DISCONNECTED
            return True

        self._transport = transport
        self._state = ConnectionState.CONNECTED
        self._reconnect_attempts = 0
        LOGGER.info("Bridge connection established: %s", self._url)
        self._recv_task = asyncio.create_task(self._receive_loop(transport), name="bridge-recv")
        if self._heartbeat_interval:
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(), name="bridge-heartbeat")
        await self._flush_queue(transport)
        if self._transport is not transport:
            return False
        await self._emit("connected")
        return True

    def _enqueue(self, message: Dict[str, Any]) -> None:
        if self._queue.maxlen is not None and len(self._queue) >= self._queue.maxlen:
            dropped = self._queue.popleft()
            LOGGER.warning(
                "Outbound queue full (%s), dropping oldest frame type=%s",
                self._queue.maxlen,
                dropped.get("type") or dropped.get("action"),
            )
        self._queue.append(message)
        LOGGER.debug("Queued outbound frame (%s pending)", len(self._queue))

    async def _flush_queue(self, transport: BaseTransport) -> None:
        if not self._queue:
            return
        LOGGER.info("Flushing %s queued frame(s)", len(self._queue))
        self._flushing = True
        try:
            while self._queue and self._transport is transport:
                message = self._queue.popleft()
                try:
                    await transport.send(message)
                except Exception as exc:  # noqa: BLE001
                    LOGGER.warning("Flush interrupted: %s", exc)
                    self._queue.appendleft(message)
                    self._flushing = False
                    await self._handle_close(transport, ABNORMAL_CLOSURE, str(exc))
                    return
        finally:
            self._flushing = False

    async def _receive_loop(self, transport: BaseTransport) -> None:
        code, reason = ABNORMAL_CLOSURE, "receive failed"
        try:
            while True:
                raw = await transport.receive()
                await self._handle_frame(raw)
        except asyncio.CancelledError:
            raise
        except TransportClosed as exc:
            code, reason = exc.code, exc.reason
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Receive loop error: %s", exc)
            reason = str(exc)
        await self._handle_close(transport, code, reason)

    async def _handle_frame(self, raw: Any) -> None:
        try:
            frame = json.loads(raw) if isinstance(raw, (str, bytes, bytearray)) else raw
        except ValueError as exc:
            LOGGER.warning("Dropping malformed frame: %s", exc)
            return
        if not isinstance(frame, dict):
            LOGGER.warning("Dropping non-object frame: %r", frame)
            return
        if is_heartbeat(frame):
            if frame.get("action") == "ping":
                await self.send(build_heartbeat("pong"))
            else:
                LOGGER.debug("Pong received (timestamp=%s)", frame.get("timestamp"))
                self._pong_event.set()
            return
        LOGGER.debug("Inbound frame: %s", frame.get("type") or frame.get("action"))
        await self._emit("message", frame)

    async def _heartbeat_loop(self) -> None:
        current = asyncio.current_task()
        while self._heartbeat_task is current:
            await asyncio.sleep(self._heartbeat_interval)
            if not self.is_connected():
                continue
            self._pong_event.clear()
            transport = self._transport
            await self.send(build_heartbeat("ping"))
            if self._pong_timeout <= 0:
                continue
            try:
                await asyncio.wait_for(self._pong_event.wait(), timeout=self._pong_timeout)
            except asyncio.TimeoutError:
                LOGGER.warning("No pong within %.1fs, closing channel", self._pong_timeout)
                if transport is not None:
                    with contextlib.suppress(Exception):
                        await transport.close(ABNORMAL_CLOSURE, "pong timeout")
                    await self._handle_close(transport, ABNORMAL_CLOSURE, "pong timeout")
                return

    async def _handle_close(self, transport: BaseTransport, code: int, reason: str) -> None:
        if transport is not self._transport:
            return
        self._transport = None
        self._state = ConnectionState.DISCONNECTED
        await self._stop_background_tasks()
        LOGGER.info("Bridge connection lost (%s): %s", code, reason)
        await self._emit("disconnected", code, reason)
        if code == NORMAL_CLOSURE or self._closed_by_client:
            return
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._reconnect_task and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.create_task(self._reconnect_loop(), name="bridge-reconnect")

    async def _reconnect_loop(self) -> None:
        while not self._closed_by_client:
            if self._reconnect_attempts >= self._max_attempts:
                LOGGER.error("Giving up after %s reconnect attempts", self._reconnect_attempts)
                await self._emit("give_up", GIVE_UP_MAX_ATTEMPTS)
                return
            self._reconnect_attempts += 1
            delay = self.compute_reconnect_delay(self._reconnect_attempts)
            LOGGER.info(
                "Reconnecting in %.2fs (attempt %s/%s)",
                delay,
                self._reconnect_attempts,
                self._max_attempts,
            )
            await self._emit("reconnecting", self._reconnect_attempts, delay)
            await self._sleep(delay)
            if self._closed_by_client:
                return
            if await self._open():
                return

    async def _stop_background_tasks(self) -> None:
        current = asyncio.current_task()
        for task in (self._heartbeat_task, self._recv_task):
            if task is None or task is current or task.done():
                continue
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._heartbeat_task = None
        self._recv_task = None

    async def _emit(self, event: str, *args: Any) -> None:
        for handler in list(self._handlers.get(event, ())):
            try:
                result = handler(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception:  # noqa: BLE001
                LOGGER.exception("Handler for %s event failed", event)
