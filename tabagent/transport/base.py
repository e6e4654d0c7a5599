"""Transport abstractions for the bridge control channel."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

NORMAL_CLOSURE = 1000
ABNORMAL_CLOSURE = 1006


class TransportClosed(Exception):
    """Raised by :meth:`BaseTransport.receive` once the peer closed the channel."""

    def __init__(self, code: int = ABNORMAL_CLOSURE, reason: str = "") -> None:
        super().__init__(f"transport closed ({code}): {reason}" if reason else f"transport closed ({code})")
        self.code = code
        self.reason = reason


class BaseTransport(ABC):
    """Abstract WebSocket-like transport used by the connection manager.

    ``receive`` hands back the raw text frame; decoding is left to the caller so
    malformed frames can be dropped without tearing the channel down.
    """

    @abstractmethod
    async def connect(self, url: str) -> None:
        ...

    @abstractmethod
    async def send(self, message: dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def receive(self) -> str:
        ...

    @abstractmethod
    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        ...
