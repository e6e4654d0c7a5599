"""Host capability provider interface and the offline simulated tab."""

from .base import (
    ElementInfo,
    ExecutionRequest,
    HostCapabilityProvider,
    StrategyKind,
    TargetStateEvent,
)
from .dummy import DummyHost

__all__ = [
    "DummyHost",
    "ElementInfo",
    "ExecutionRequest",
    "HostCapabilityProvider",
    "StrategyKind",
    "TargetStateEvent",
]
