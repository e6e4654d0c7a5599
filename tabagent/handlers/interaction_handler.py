"""Click/Type coordinators running templated payloads through the strategy chain."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping

from shared.models.control import ControlMessage

from tabagent.config import AgentSettings
from tabagent.errors import (
    BridgeError,
    ErrorKind,
    OperationTimeout,
    RequestValidationError,
)
from tabagent.execution import ExecutionStrategyChain, build_click_script, build_type_script
from tabagent.host import ExecutionRequest

from .base import error_response, ok_response, require_selector, resolve_timeout

LOGGER = logging.getLogger(__name__)

RESULT_MESSAGES = {
    "element_not_found": "Element not found: {selector}",
    "selector_invalid": "Invalid selector: {selector}",
    "timeout": "Timed out interacting with: {selector}",
    "permission_denied": "Permission denied for: {selector}",
    "unknown_error": "Interaction failed for: {selector}",
}
_KIND_RESULTS = {
    ErrorKind.TIMEOUT: "timeout",
    ErrorKind.SECURITY: "permission_denied",
    ErrorKind.VALIDATION: "selector_invalid",
}


def result_code_for(exc: BaseException) -> str:
    if isinstance(exc, BridgeError):
        return _KIND_RESULTS.get(exc.kind, "unknown_error")
    return "unknown_error"


@dataclass
class InteractionHandler:
    settings: AgentSettings
    chain: ExecutionStrategyChain

    async def handle_click(self, message: ControlMessage, request_id: str) -> Dict[str, Any]:
        params = message.params()
        try:
            selector = require_selector(params)
        except RequestValidationError as exc:
            return error_response("click", request_id, exc, {"result": "selector_invalid"})
        request = ExecutionRequest("click", build_click_script(selector), {"selector": selector})
        return await self._run("click", request_id, request, params)

    async def handle_type(self, message: ControlMessage, request_id: str) -> Dict[str, Any]:
        params = message.params()
        try:
            selector = require_selector(params)
            text = params.get("text")
            if not isinstance(text, str):
                raise RequestValidationError("text must be a string")
            clear = params.get("clear", True)
            if not isinstance(clear, bool):
                raise RequestValidationError("clear must be a boolean")
        except RequestValidationError as exc:
            return error_response("type", request_id, exc, {"result": "unknown_error"})
        request = ExecutionRequest(
            "type",
            build_type_script(selector, text, clear=clear),
            {"selector": selector, "text": text, "clear": clear},
        )
        return await self._run("type", request_id, request, params)

    async def _run(
        self,
        command: str,
        request_id: str,
        request: ExecutionRequest,
        params: Mapping[str, Any],
    ) -> Dict[str, Any]:
        selector = request.params["selector"]
        try:
            timeout = resolve_timeout(self.settings, params, self.settings.interaction_timeout_seconds)
            per_strategy = min(self.settings.strategy_timeout_seconds, timeout)
            try:
                outcome = await asyncio.wait_for(
                    self.chain.execute(request, timeout=per_strategy, context=f"{command} payload"),
                    timeout=timeout,
                )
            except asyncio.TimeoutError:
                raise OperationTimeout(f"{command} timed out after {round(timeout * 1000)}ms") from None
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("%s %s failed: %s", command, request_id, exc)
            code = result_code_for(exc)
            return error_response(command, request_id, exc, {"result": code, "selector": selector})

        value = outcome.value if isinstance(outcome.value, Mapping) else {"success": bool(outcome.value)}
        code = str(value.get("result") or ("success" if value.get("success") else "unknown_error"))
        data: Dict[str, Any] = {"result": code, "selector": selector, "strategy": outcome.kind.value}
        if "value" in value:
            data["value"] = value["value"]
        if value.get("success"):
            LOGGER.info("%s on %s succeeded via %s", command, selector, outcome.kind.value)
            return ok_response(command, request_id, data)
        message = RESULT_MESSAGES.get(code, RESULT_MESSAGES["unknown_error"]).format(selector=selector)
        LOGGER.info("%s on %s failed: %s", command, selector, code)
        return error_response(command, request_id, RequestValidationError(message), data)
