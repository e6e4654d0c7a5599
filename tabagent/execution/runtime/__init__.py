"""Execution runtime primitives (retry, cancellation, concurrency, listeners)."""

from .cancellation import CancellationToken
from .concurrency import ConcurrencyGuard
from .listener_pool import ListenerPool, PooledListener, compute_cleanup_interval
from .retry import RetryController, compute_delay

__all__ = [
    "CancellationToken",
    "ConcurrencyGuard",
    "ListenerPool",
    "PooledListener",
    "RetryController",
    "compute_cleanup_interval",
    "compute_delay",
]
