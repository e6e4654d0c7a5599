"""WebSocket transport implementation."""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

import websockets
from fastapi.encoders import jsonable_encoder
from websockets.exceptions import ConnectionClosed

from .base import ABNORMAL_CLOSURE, NORMAL_CLOSURE, BaseTransport, TransportClosed

LOGGER = logging.getLogger(__name__)


class WebSocketTransport(BaseTransport):
    """WebSocket-based control-channel transport."""

    def __init__(self, settings=None) -> None:
        self._settings = settings
        self._ws: Optional[Any] = None

    async def connect(self, url: str) -> None:
        LOGGER.info("Connecting to bridge WebSocket at %s", url)
        self._ws = await websockets.connect(url)

    async def send(self, message: dict[str, Any]) -> None:
        if not self._ws:
            raise RuntimeError("WebSocket transport not connected")
        payload = json.dumps(jsonable_encoder(message))
        LOGGER.debug("WebSocket send: %s", payload)
        try:
            await self._ws.send(payload)
        except ConnectionClosed as exc:
            raise TransportClosed(*_close_details(exc)) from exc

    async def receive(self) -> str:
        if not self._ws:
            raise RuntimeError("WebSocket transport not connected")
        try:
            raw = await self._ws.recv()
        except ConnectionClosed as exc:
            raise TransportClosed(*_close_details(exc)) from exc
        LOGGER.debug("WebSocket receive: %s", raw)
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        return raw

    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        if self._ws:
            LOGGER.info("Closing WebSocket transport (%s)", code)
            await self._ws.close(code=code, reason=reason)
            self._ws = None


def _close_details(exc: ConnectionClosed) -> tuple[int, str]:
    frame = exc.rcvd
    if frame is None:
        return ABNORMAL_CLOSURE, "connection lost"
    return frame.code, frame.reason
