"""In-memory simulated tab for offline runs and tests."""

from __future__ import annotations

import asyncio
import base64
import itertools
import logging
import time
from html import escape
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlsplit

from tabagent.errors import HostError, SelectorError

from .base import (
    ElementInfo,
    ExecutionRequest,
    HostCapabilityProvider,
    StateCallback,
    StatePredicate,
    StrategyKind,
    TargetStateEvent,
)

LOGGER = logging.getLogger(__name__)

_PLACEHOLDER_PNG = base64.b64encode(b"\x89PNG\r\n\x1a\n").decode("ascii")


def _check_selector(selector: str) -> None:
    if not selector or not selector.strip():
        raise SelectorError("Selector must be a non-empty string")
    depth = {"[": 0, "(": 0}
    closing = {"]": "[", ")": "("}
    for char in selector:
        if char in depth:
            depth[char] += 1
        elif char in closing:
            depth[closing[char]] -= 1
            if depth[closing[char]] < 0:
                raise SelectorError(f"Invalid selector: {selector}")
    if any(depth.values()) or selector.count('"') % 2 or selector.count("'") % 2:
        raise SelectorError(f"Invalid selector: {selector}")


class DummyHost(HostCapabilityProvider):
    """Simulated tab: navigations complete after ``load_delay`` unless the host is unreachable."""

    def __init__(
        self,
        target_id: str = "tab-1",
        *,
        load_delay: float = 0.05,
        backends: Iterable[StrategyKind] = tuple(StrategyKind),
        unreachable_hosts: Iterable[str] = (),
    ) -> None:
        self._target_id = target_id
        self._load_delay = load_delay
        self._backends = list(backends)
        self._location: Optional[str] = None
        self._title = ""
        self._elements: Dict[str, ElementInfo] = {}
        self._subscribers: Dict[int, Tuple[StateCallback, Optional[StatePredicate]]] = {}
        self._ids = itertools.count(1)
        self.unreachable_hosts = set(unreachable_hosts)
        self.failing_backends: set[StrategyKind] = set()
        self.executed: List[Tuple[StrategyKind, ExecutionRequest]] = []
        self.navigations: List[str] = []
        self.clicks: List[str] = []
        self.console: List[Dict[str, Any]] = []

    @property
    def target_id(self) -> str:
        return self._target_id

    async def navigate(self, url: str) -> None:
        self.navigations.append(url)
        self.emit(TargetStateEvent(self._target_id, "loading", url=url))
        host = urlsplit(url).hostname or ""
        if host in self.unreachable_hosts:
            LOGGER.debug("Dummy host: %s unreachable, navigation will not complete", host)
            return
        asyncio.get_running_loop().call_later(self._load_delay, self._complete, url)

    def _complete(self, url: str) -> None:
        self._location = url
        self._title = urlsplit(url).hostname or url
        self._elements = {}
        self.console.append({"level": "info", "message": f"loaded {url}", "timestamp": int(time.time() * 1000)})
        self.emit(TargetStateEvent(self._target_id, "complete", url=url))

    def emit(self, event: TargetStateEvent) -> None:
        for callback, predicate in list(self._subscribers.values()):
            if predicate is None or predicate(event):
                callback(event)

    def subscribe(
        self,
        callback: StateCallback,
        predicate: Optional[StatePredicate] = None,
    ) -> Callable[[], None]:
        key = next(self._ids)
        self._subscribers[key] = (callback, predicate)

        def unsubscribe() -> None:
            self._subscribers.pop(key, None)

        return unsubscribe

    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def add_element(self, element: ElementInfo, *, delay: Optional[float] = None) -> None:
        """Place ``element`` on the page now, or after ``delay`` seconds."""

        if delay:
            asyncio.get_running_loop().call_later(delay, self.add_element, element)
            return
        self._elements[element.selector] = element
        self.emit(TargetStateEvent(self._target_id, "mutated", url=self._location))

    def element(self, selector: str) -> Optional[ElementInfo]:
        return self._elements.get(selector)

    def execution_backends(self) -> List[StrategyKind]:
        return list(self._backends)

    async def execute(self, kind: StrategyKind, request: ExecutionRequest) -> Any:
        self.executed.append((kind, request))
        if kind in self.failing_backends:
            raise HostError(f"{kind.value} backend failed")
        selector = request.params.get("selector", "")
        try:
            _check_selector(selector)
        except SelectorError:
            return {"success": False, "result": "selector_invalid"}
        element = self._elements.get(selector)
        if element is None or not element.visible:
            return {"success": False, "result": "element_not_found"}
        if request.operation == "click":
            self.clicks.append(selector)
            return {"success": True, "result": "success"}
        if request.operation == "type":
            text = str(request.params.get("text", ""))
            value = text if request.params.get("clear", True) else element.value + text
            self._elements[selector] = ElementInfo(
                selector=element.selector,
                tag_name=element.tag_name,
                text=element.text,
                value=value,
                visible=element.visible,
            )
            return {"success": True, "result": "success", "value": value}
        raise HostError(f"Unsupported operation: {request.operation}")

    async def query_elements(self, selector: str) -> List[ElementInfo]:
        _check_selector(selector)
        element = self._elements.get(selector)
        return [element] if element is not None else []

    async def current_location(self) -> Optional[str]:
        return self._location

    async def capture_screenshot(self) -> str:
        return f"data:image/png;base64,{_PLACEHOLDER_PNG}"

    async def get_content(self, content_format: str = "html") -> str:
        if content_format == "text":
            return "\n".join(element.text for element in self._elements.values() if element.text)
        body = "".join(
            f"<{element.tag_name}>{escape(element.text)}</{element.tag_name}>"
            for element in self._elements.values()
        )
        return f"<html><head><title>{escape(self._title)}</title></head><body>{body}</body></html>"

    async def get_console_logs(self) -> List[Dict[str, Any]]:
        return list(self.console)
