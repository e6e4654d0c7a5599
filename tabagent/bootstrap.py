"""Agent bootstrap: builds and wires every component explicitly."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Type

from tabagent.config import AgentSettings, get_settings
from tabagent.execution import CapabilitySanitizer, ExecutionStrategyChain, UrlPolicy
from tabagent.execution.runtime import ListenerPool, RetryController
from tabagent.handlers import CaptureHandler, InteractionHandler, NavigateHandler, WaitHandler
from tabagent.host import DummyHost, HostCapabilityProvider
from tabagent.network import BridgeClient, ConnectionManager
from tabagent.transport import BaseTransport, DummyTransport, WebSocketTransport

LOGGER = logging.getLogger(__name__)


@dataclass
class Agent:
    settings: AgentSettings
    connection: ConnectionManager
    client: BridgeClient
    host: HostCapabilityProvider
    pool: ListenerPool
    navigate: NavigateHandler
    interactions: InteractionHandler
    waits: WaitHandler
    capture: CaptureHandler

    async def start(self) -> None:
        self.pool.start()
        self.waits.start()
        await self.client.start()

    async def stop(self) -> None:
        await self.client.stop()


def _default_host(settings: AgentSettings) -> HostCapabilityProvider:
    return DummyHost(settings.target_id)


def build_agent(
    settings: Optional[AgentSettings] = None,
    *,
    transport_factory: Optional[Callable[[AgentSettings], BaseTransport]] = None,
    host: Optional[HostCapabilityProvider] = None,
) -> Agent:
    """Construct the agent graph; nothing is started."""

    settings = settings or get_settings()
    if transport_factory is None:
        resolved_cls: Type[BaseTransport]
        resolved_cls = WebSocketTransport if settings.transport == "websocket" else DummyTransport
        LOGGER.debug("Initialising bridge connection via %s", resolved_cls.__name__)
        transport_factory = lambda s: resolved_cls(s)  # noqa: E731
    host = host or _default_host(settings)

    connection = ConnectionManager(settings, transport_factory)
    client = BridgeClient(connection=connection, host=host)
    pool = ListenerPool.from_settings(settings)
    retry = RetryController.from_settings(settings)
    sanitizer = CapabilitySanitizer(max_payload_bytes=settings.sanitizer_max_payload_bytes)
    chain = ExecutionStrategyChain.from_settings(settings, host, sanitizer)

    navigate = NavigateHandler(
        settings=settings,
        host=host,
        pool=pool,
        retry=retry,
        url_policy=UrlPolicy.from_settings(settings),
    )
    interactions = InteractionHandler(settings=settings, chain=chain)
    waits = WaitHandler(settings=settings, host=host, pool=pool, retry=retry)
    capture = CaptureHandler(settings=settings, host=host)

    client.register_handler("navigate", navigate.handle)
    client.register_handler("click", interactions.handle_click)
    client.register_handler("type", interactions.handle_type)
    client.register_handler("wait", waits.handle)
    client.register_handler("screenshot", capture.handle_screenshot)
    client.register_handler("getContent", capture.handle_get_content)
    client.register_handler("getConsole", capture.handle_get_console)

    async def _cleanup() -> None:
        navigate.cancel("agent stopping")
        await waits.stop()
        await pool.destroy()

    client.add_stop_hook(_cleanup)

    return Agent(
        settings=settings,
        connection=connection,
        client=client,
        host=host,
        pool=pool,
        navigate=navigate,
        interactions=interactions,
        waits=waits,
        capture=capture,
    )


async def run_forever(settings: Optional[AgentSettings] = None) -> None:
    """Run the agent until reconnection gives up or the task is cancelled."""

    agent = build_agent(settings)
    gave_up = asyncio.Event()

    def _on_give_up(reason: str) -> None:
        LOGGER.error("Bridge connection abandoned: %s", reason)
        gave_up.set()

    agent.connection.on("give_up", _on_give_up)
    await agent.start()
    try:
        await gave_up.wait()
    finally:
        await agent.stop()
