"""Error taxonomy shared by the agent's coordinators and execution layer."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Iterable, List, Optional

LOGGER = logging.getLogger(__name__)

RETRYABLE_MARKERS: tuple[str, ...] = (
    "timeout",
    "network",
    "connection",
    "unreachable",
    "temporary",
    "err_",
)

GENERIC_ERROR_MESSAGE = "Internal error while handling request"


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    BUSY = "busy"
    CAPACITY = "capacity"
    TIMEOUT = "timeout"
    NETWORK = "network"
    TRANSIENT = "transient"
    SECURITY = "security"
    BACKEND_UNAVAILABLE = "backend_unavailable"
    CONNECTION = "connection"
    CANCELLED = "cancelled"
    HOST = "host"
    INTERNAL = "internal"


RETRYABLE_KINDS = frozenset(
    {ErrorKind.TIMEOUT, ErrorKind.NETWORK, ErrorKind.TRANSIENT, ErrorKind.CONNECTION}
)


class BridgeError(RuntimeError):
    """Base error carrying the kind assigned where the failure originated."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, *, kind: Optional[ErrorKind] = None) -> None:
        super().__init__(message)
        if kind is not None:
            self.kind = kind

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS


class RequestValidationError(BridgeError):
    kind = ErrorKind.VALIDATION


class BusyError(BridgeError):
    kind = ErrorKind.BUSY


class CapacityError(BridgeError):
    kind = ErrorKind.CAPACITY


class OperationTimeout(BridgeError):
    kind = ErrorKind.TIMEOUT


class SecurityRejection(BridgeError):
    kind = ErrorKind.SECURITY


class BackendUnavailable(BridgeError):
    """Raised when every execution backend failed."""

    kind = ErrorKind.BACKEND_UNAVAILABLE

    def __init__(self, message: str, failures: Optional[Iterable[str]] = None) -> None:
        super().__init__(message)
        self.failures: List[str] = list(failures or [])


class OperationCancelled(BridgeError):
    kind = ErrorKind.CANCELLED


class HostError(BridgeError):
    """Failure reported by the host capability provider."""

    kind = ErrorKind.HOST


def is_retryable(exc: BaseException) -> bool:
    """Classify ``exc`` for the retry controller."""

    if isinstance(exc, BridgeError):
        if exc.retryable:
            return True
        if exc.kind is not ErrorKind.HOST:
            return False
        # host errors carry the browser's own message, e.g. net::ERR_NAME_NOT_RESOLVED
    elif isinstance(exc, (asyncio.TimeoutError, OSError)):
        return True
    message = str(exc).lower()
    return any(marker in message for marker in RETRYABLE_MARKERS)


def public_error_message(exc: BaseException) -> str:
    """Return the error string safe to put on the wire."""

    if isinstance(exc, BridgeError):
        return str(exc) or exc.kind.value
    LOGGER.error("Unexpected error while handling request", exc_info=exc)
    return GENERIC_ERROR_MESSAGE


class SelectorError(RequestValidationError):
    """Raised by host providers for selectors the target cannot parse."""
