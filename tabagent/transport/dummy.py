"""In-memory transport for offline runs and tests."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional, Union

from .base import ABNORMAL_CLOSURE, NORMAL_CLOSURE, BaseTransport, TransportClosed

LOGGER = logging.getLogger(__name__)


class DummyTransport(BaseTransport):
    """Loopback transport: outbound frames are recorded, inbound frames are injected."""

    def __init__(self, settings=None) -> None:
        self._settings = settings
        self._inbox: asyncio.Queue[Union[str, TransportClosed]] = asyncio.Queue()
        self.sent: list[dict[str, Any]] = []
        self.url: Optional[str] = None
        self.connected = False

    async def connect(self, url: str) -> None:
        LOGGER.debug("Dummy transport connect(%s)", url)
        self.url = url
        self.connected = True

    async def send(self, message: dict[str, Any]) -> None:
        if not self.connected:
            raise RuntimeError("Dummy transport not connected")
        LOGGER.debug("Dummy transport send(): %s", message)
        self.sent.append(message)

    async def receive(self) -> str:
        item = await self._inbox.get()
        if isinstance(item, TransportClosed):
            self.connected = False
            raise item
        return item

    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        LOGGER.debug("Dummy transport close(%s, %s)", code, reason)
        self.connected = False

    def inject(self, frame: Union[str, dict[str, Any]]) -> None:
        """Queue an inbound frame as if the bridge server had sent it."""

        self._inbox.put_nowait(frame if isinstance(frame, str) else json.dumps(frame))

    def drop(self, code: int = ABNORMAL_CLOSURE, reason: str = "") -> None:
        """Simulate the peer closing the channel."""

        self._inbox.put_nowait(TransportClosed(code, reason))
