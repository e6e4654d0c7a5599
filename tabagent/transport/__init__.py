"""Transport implementations for the bridge control channel."""

from .base import ABNORMAL_CLOSURE, NORMAL_CLOSURE, BaseTransport, TransportClosed
from .dummy import DummyTransport
from .websocket import WebSocketTransport

__all__ = [
    "ABNORMAL_CLOSURE",
    "NORMAL_CLOSURE",
    "BaseTransport",
    "DummyTransport",
    "TransportClosed",
    "WebSocketTransport",
]
