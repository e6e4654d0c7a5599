"""Bounded pool of host event subscriptions with staleness eviction."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional

from tabagent.config import AgentSettings
from tabagent.errors import CapacityError

LOGGER = logging.getLogger(__name__)

OverflowPolicy = Literal["evict_oldest", "fail"]
Clock = Callable[[], float]
SleepFunc = Callable[[float], Awaitable[None]]


def compute_cleanup_interval(size: int) -> float:
    """Seconds until the next sweep for a pool holding ``size`` listeners."""

    if size <= 0:
        return 120.0
    if size <= 2:
        return 60.0
    if size <= 4:
        return 30.0
    return 10.0


@dataclass
class PooledListener:
    """Handle returned by :meth:`ListenerPool.acquire`."""

    listener_id: str
    description: str
    created_at: float
    last_used: float
    calls: int = 0
    active: bool = True
    callback: Callable[..., Any] = field(default=lambda *args, **kwargs: None, repr=False)
    _pool: Optional["ListenerPool"] = field(default=None, repr=False)
    _unsubscribe: Optional[Callable[[], Any]] = field(default=None, repr=False)
    _on_evict: Optional[Callable[[str], Any]] = field(default=None, repr=False)

    def attach(self, unsubscribe: Callable[[], Any]) -> None:
        """Bind the host unsubscribe function so release/eviction detaches the listener."""

        if not self.active:
            unsubscribe()
            return
        self._unsubscribe = unsubscribe

    def release(self) -> bool:
        if self._pool is None:
            return False
        return self._pool.release(self.listener_id)

    def is_active(self) -> bool:
        return self.active


class ListenerPool:
    """Tracks pooled listeners; the size never exceeds ``max_size``."""

    def __init__(
        self,
        *,
        max_size: int = 5,
        max_age: float = 300.0,
        min_idle: float = 60.0,
        never_called_age: float = 120.0,
        overflow_policy: OverflowPolicy = "evict_oldest",
        clock: Clock = time.monotonic,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be positive")
        self._max_size = max_size
        self._max_age = max_age
        self._min_idle = min_idle
        self._never_called_age = never_called_age
        self._overflow_policy = overflow_policy
        self._clock = clock
        self._sleep = sleep
        self._entries: Dict[str, PooledListener] = {}
        self._counter = 0
        self._cleanup_task: Optional[asyncio.Task[None]] = None

    @classmethod
    def from_settings(cls, settings: AgentSettings, **kwargs: Any) -> "ListenerPool":
        return cls(
            max_size=settings.listener_pool_max,
            max_age=settings.listener_max_age_seconds,
            min_idle=settings.listener_min_idle_seconds,
            never_called_age=settings.listener_never_called_age_seconds,
            overflow_policy=settings.listener_overflow_policy,
            **kwargs,
        )

    @property
    def max_size(self) -> int:
        return self._max_size

    def __len__(self) -> int:
        return len(self._entries)

    def acquire(
        self,
        callback: Callable[..., Any],
        description: str = "listener",
        *,
        on_evict: Optional[Callable[[str], Any]] = None,
    ) -> PooledListener:
        """Admit a listener, evicting stale (or, by policy, the oldest) entries when full."""

        if len(self._entries) >= self._max_size:
            self.evict_stale()
        if len(self._entries) >= self._max_size:
            if self._overflow_policy == "fail":
                raise CapacityError(f"Listener pool at capacity ({self._max_size})")
            oldest = min(self._entries.values(), key=lambda entry: entry.created_at)
            LOGGER.warning(
                "Listener pool full, evicting oldest listener %s (%s)",
                oldest.listener_id,
                oldest.description,
            )
            self._remove(oldest, reason="capacity")

        self._counter += 1
        now = self._clock()
        entry = PooledListener(
            listener_id=f"listener_{self._counter}_{int(time.time() * 1000)}",
            description=description,
            created_at=now,
            last_used=now,
            _pool=self,
            _on_evict=on_evict,
        )
        entry.callback = self._wrap(entry, callback)
        self._entries[entry.listener_id] = entry
        LOGGER.debug(
            "Acquired listener %s (%s), pool %s/%s",
            entry.listener_id,
            description,
            len(self._entries),
            self._max_size,
        )
        return entry

    def release(self, listener_id: str) -> bool:
        entry = self._entries.get(listener_id)
        if entry is None:
            return False
        self._remove(entry, reason="released")
        LOGGER.debug("Released listener %s, pool %s/%s", listener_id, len(self._entries), self._max_size)
        return True

    def evict_stale(self) -> int:
        """Remove listeners that are old and idle, or that never fired."""

        now = self._clock()
        stale: List[PooledListener] = []
        for entry in self._entries.values():
            age = now - entry.created_at
            idle = now - entry.last_used
            if (age > self._max_age and idle > self._min_idle) or (
                entry.calls == 0 and age > self._never_called_age
            ):
                stale.append(entry)
        for entry in stale:
            self._remove(entry, reason="stale")
        if stale:
            LOGGER.info("Evicted %s stale listener(s), pool %s/%s", len(stale), len(self._entries), self._max_size)
        return len(stale)

    def status(self) -> Dict[str, Any]:
        now = self._clock()
        size = len(self._entries)
        return {
            "size": size,
            "max": self._max_size,
            "utilization_percent": round(size / self._max_size * 100),
            "entries": [
                {
                    "id": entry.listener_id,
                    "description": entry.description,
                    "age_seconds": round(now - entry.created_at, 3),
                    "idle_seconds": round(now - entry.last_used, 3),
                    "calls": entry.calls,
                    "active": entry.active,
                }
                for entry in self._entries.values()
            ],
        }

    def start(self) -> None:
        """Start the background sweep; its interval follows the current pool size."""

        if self._cleanup_task and not self._cleanup_task.done():
            return
        self._cleanup_task = asyncio.create_task(self._cleanup_loop(), name="listener-pool-cleanup")

    async def destroy(self) -> None:
        if self._cleanup_task:
            self._cleanup_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._cleanup_task
            self._cleanup_task = None
        entries = list(self._entries.values())
        for entry in entries:
            self._remove(entry, reason="destroyed")
        if entries:
            LOGGER.info("Listener pool destroyed, released %s listener(s)", len(entries))

    async def _cleanup_loop(self) -> None:
        while True:
            interval = compute_cleanup_interval(len(self._entries))
            await self._sleep(interval)
            try:
                self.evict_stale()
            except Exception:  # noqa: BLE001
                LOGGER.exception("Listener pool sweep failed")

    def _wrap(self, entry: PooledListener, callback: Callable[..., Any]) -> Callable[..., Any]:
        def wrapped(*args: Any, **kwargs: Any) -> Any:
            if not entry.active:
                return None
            entry.calls += 1
            entry.last_used = self._clock()
            return callback(*args, **kwargs)

        return wrapped

    def _remove(self, entry: PooledListener, *, reason: str) -> None:
        self._entries.pop(entry.listener_id, None)
        entry.active = False
        unsubscribe, entry._unsubscribe = entry._unsubscribe, None
        if unsubscribe is not None:
            try:
                unsubscribe()
            except Exception:  # noqa: BLE001
                LOGGER.warning("Unsubscribe failed for listener %s", entry.listener_id, exc_info=True)
        if reason != "released" and entry._on_evict is not None:
            try:
                entry._on_evict(reason)
            except Exception:  # noqa: BLE001
                LOGGER.exception("Eviction callback failed for listener %s", entry.listener_id)
