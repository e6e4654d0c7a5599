"""Ordered execution backends with success caching and per-strategy retries."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from tabagent.config import AgentSettings
from tabagent.errors import BackendUnavailable, BridgeError, OperationTimeout, SecurityRejection
from tabagent.host import ExecutionRequest, HostCapabilityProvider, StrategyKind

from .sanitizer import CapabilitySanitizer

LOGGER = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]


@dataclass
class StrategyChainState:
    """Strategy order plus the index of the last backend that succeeded."""

    order: Tuple[StrategyKind, ...]
    preferred: Optional[int] = None

    @property
    def preferred_kind(self) -> Optional[StrategyKind]:
        if self.preferred is None:
            return None
        return self.order[self.preferred]


@dataclass
class StrategyOutcome:
    kind: StrategyKind
    value: Any
    from_cache: bool = False
    attempts: int = 1


@dataclass
class _Failures:
    """Raw failure text for logs plus a per-backend summary safe for the wire."""

    messages: List[str] = field(default_factory=list)
    summary: Dict[StrategyKind, str] = field(default_factory=dict)
    timeouts: int = 0
    total: int = 0

    def record(self, kind: StrategyKind, exc: BaseException) -> None:
        self.total += 1
        if isinstance(exc, asyncio.TimeoutError):
            self.timeouts += 1
            category = "timeout"
            self.messages.append(f"{kind.value}: timeout")
        else:
            category = str(exc) if isinstance(exc, BridgeError) and str(exc) else "failed"
            self.messages.append(f"{kind.value}: {exc}")
        self.summary[kind] = category

    def public_message(self) -> str:
        return "; ".join(f"{kind.value}: {category}" for kind, category in self.summary.items())


class ExecutionStrategyChain:
    def __init__(
        self,
        host: HostCapabilityProvider,
        sanitizer: CapabilitySanitizer,
        *,
        order: Sequence[StrategyKind] = tuple(StrategyKind),
        timeout: float = 10.0,
        retries: int = 2,
        retry_delay: float = 0.5,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self._host = host
        self._sanitizer = sanitizer
        self.state = StrategyChainState(order=tuple(order))
        self._timeout = timeout
        self._retries = retries
        self._retry_delay = retry_delay
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        settings: AgentSettings,
        host: HostCapabilityProvider,
        sanitizer: CapabilitySanitizer,
        **kwargs: Any,
    ) -> "ExecutionStrategyChain":
        return cls(
            host,
            sanitizer,
            order=[StrategyKind(name) for name in settings.strategy_order],
            timeout=settings.strategy_timeout_seconds,
            retries=settings.strategy_retries,
            retry_delay=settings.strategy_retry_delay_seconds,
            **kwargs,
        )

    def reset_cache(self) -> None:
        self.state.preferred = None

    async def execute(
        self,
        request: ExecutionRequest,
        *,
        timeout: Optional[float] = None,
        retries: Optional[int] = None,
        context: str = "payload",
    ) -> StrategyOutcome:
        """Run ``request`` against the target, trying backends until one succeeds."""

        verdict = self._sanitizer.sanitize(request.payload, context)
        if not verdict.valid:
            raise SecurityRejection(verdict.error or "Payload rejected")
        request = ExecutionRequest(operation=request.operation, payload=verdict.payload, params=request.params)

        timeout = self._timeout if timeout is None else timeout
        retries = self._retries if retries is None else retries
        available = set(self._host.execution_backends())
        candidates = [(index, kind) for index, kind in enumerate(self.state.order) if kind in available]
        if not candidates:
            raise BackendUnavailable("No execution backend available")

        failures = _Failures()
        cached = self.state.preferred_kind
        if cached is not None and cached in available:
            try:
                value = await asyncio.wait_for(self._host.execute(cached, request), timeout=timeout)
                LOGGER.debug("Cached strategy %s succeeded for %s", cached.value, request.operation)
                return StrategyOutcome(kind=cached, value=value, from_cache=True)
            except SecurityRejection:
                raise
            except Exception as exc:  # noqa: BLE001
                LOGGER.info("Cached strategy %s failed, trying full chain: %s", cached.value, exc)
                failures.record(cached, exc)
                self.state.preferred = None

        for index, kind in candidates:
            for attempt in range(retries + 1):
                if attempt:
                    await self._sleep(self._retry_delay * attempt)
                try:
                    value = await asyncio.wait_for(self._host.execute(kind, request), timeout=timeout)
                except SecurityRejection:
                    raise
                except Exception as exc:  # noqa: BLE001
                    LOGGER.warning(
                        "Strategy %s attempt %s/%s failed: %s",
                        kind.value,
                        attempt + 1,
                        retries + 1,
                        exc or type(exc).__name__,
                    )
                    failures.record(kind, exc)
                    continue
                self.state.preferred = index
                LOGGER.info("Strategy %s succeeded for %s", kind.value, request.operation)
                return StrategyOutcome(kind=kind, value=value, attempts=attempt + 1)

        if failures.total and failures.timeouts == failures.total:
            raise OperationTimeout(f"Execution timed out after {round(timeout * 1000)}ms")
        LOGGER.warning("All execution strategies failed for %s: %s", request.operation, failures.messages)
        raise BackendUnavailable(
            "All execution strategies failed: " + failures.public_message(),
            failures.messages,
        )
