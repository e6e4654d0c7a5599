"""Screenshot/content/console commands forwarded to the host provider."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict

from shared.models.control import ControlMessage

from tabagent.config import AgentSettings
from tabagent.errors import OperationTimeout, RequestValidationError
from tabagent.host import HostCapabilityProvider

from .base import error_response, ok_response, resolve_timeout

LOGGER = logging.getLogger(__name__)

CONTENT_FORMATS = frozenset({"html", "text"})


@dataclass
class CaptureHandler:
    settings: AgentSettings
    host: HostCapabilityProvider

    async def handle_screenshot(self, message: ControlMessage, request_id: str) -> Dict[str, Any]:
        async def capture() -> Dict[str, Any]:
            return {"dataUrl": await self.host.capture_screenshot()}

        return await self._run("screenshot", message, request_id, capture)

    async def handle_get_content(self, message: ControlMessage, request_id: str) -> Dict[str, Any]:
        content_format = str(message.params().get("format") or "html")
        if content_format not in CONTENT_FORMATS:
            return error_response(
                "getContent",
                request_id,
                RequestValidationError(f"Unsupported content format: {content_format}"),
            )

        async def collect() -> Dict[str, Any]:
            return {
                "content": await self.host.get_content(content_format),
                "format": content_format,
                "url": await self.host.current_location(),
            }

        return await self._run("getContent", message, request_id, collect)

    async def handle_get_console(self, message: ControlMessage, request_id: str) -> Dict[str, Any]:
        async def collect() -> Dict[str, Any]:
            return {"logs": await self.host.get_console_logs()}

        return await self._run("getConsole", message, request_id, collect)

    async def _run(
        self,
        command: str,
        message: ControlMessage,
        request_id: str,
        work: Callable[[], Awaitable[Dict[str, Any]]],
    ) -> Dict[str, Any]:
        try:
            timeout = resolve_timeout(self.settings, message.params(), self.settings.interaction_timeout_seconds)
            try:
                data = await asyncio.wait_for(work(), timeout=timeout)
            except asyncio.TimeoutError:
                raise OperationTimeout(f"{command} timed out after {round(timeout * 1000)}ms") from None
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("%s %s failed: %s", command, request_id, exc)
            return error_response(command, request_id, exc)
        return ok_response(command, request_id, data)
