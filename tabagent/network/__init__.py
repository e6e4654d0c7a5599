"""Control-channel connection management and request routing."""

from tabagent.network.client import BridgeClient
from tabagent.network.connection import ConnectionError, ConnectionManager, ConnectionState

__all__ = [
    "BridgeClient",
    "ConnectionError",
    "ConnectionManager",
    "ConnectionState",
]
