"""Capability interface the coordinators use to drive the target session."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional


class StrategyKind(str, Enum):
    SCRIPTING = "scripting"
    DEVTOOLS = "devtools"
    CONTENT_AGENT = "content_agent"


@dataclass(frozen=True)
class TargetStateEvent:
    """State change notification for the target session (e.g. a tab update)."""

    target_id: str
    status: str
    url: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class ElementInfo:
    selector: str
    tag_name: str = "div"
    text: str = ""
    value: str = ""
    visible: bool = True


@dataclass(frozen=True)
class ExecutionRequest:
    """Work handed to an execution backend.

    Script backends run ``payload``; the content agent receives ``operation`` and
    ``params`` as a message instead.
    """

    operation: str
    payload: str
    params: Dict[str, Any] = field(default_factory=dict)


StateCallback = Callable[[TargetStateEvent], Any]
StatePredicate = Callable[[TargetStateEvent], bool]


class HostCapabilityProvider(ABC):
    """Black-box access to the host that owns the target session."""

    @property
    @abstractmethod
    def target_id(self) -> str:
        ...

    @abstractmethod
    async def navigate(self, url: str) -> None:
        """Start changing the target address; completion arrives as a state event."""

    @abstractmethod
    def subscribe(
        self,
        callback: StateCallback,
        predicate: Optional[StatePredicate] = None,
    ) -> Callable[[], None]:
        """Register for state-change events and return the unsubscribe function."""

    @abstractmethod
    def execution_backends(self) -> List[StrategyKind]:
        """Backends currently usable against the target."""

    @abstractmethod
    async def execute(self, kind: StrategyKind, request: ExecutionRequest) -> Any:
        ...

    @abstractmethod
    async def query_elements(self, selector: str) -> List[ElementInfo]:
        ...

    @abstractmethod
    async def current_location(self) -> Optional[str]:
        ...

    @abstractmethod
    async def capture_screenshot(self) -> str:
        ...

    @abstractmethod
    async def get_content(self, content_format: str = "html") -> str:
        ...

    @abstractmethod
    async def get_console_logs(self) -> List[Dict[str, Any]]:
        ...
