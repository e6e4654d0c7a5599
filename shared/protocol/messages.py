"""Helpers for building/parsing control-channel frames."""

from __future__ import annotations

import time
from typing import Any, Dict, Mapping, Optional

from shared.models.control import ControlMessage, HeartbeatFrame, ResponseMessage

RESULT_TYPES: Dict[str, str] = {
    "navigate": "navigationResult",
    "click": "clickResult",
    "type": "typeResult",
    "wait": "waitResult",
    "screenshot": "screenshotResult",
    "getContent": "getContentResult",
    "getConsole": "getConsoleResult",
    "ping": "pong",
}
UNKNOWN_COMMAND_TYPE = "unknownMessageError"
HEARTBEAT_ACTIONS = frozenset({"ping", "pong"})
_RESERVED_KEYS = frozenset({"type", "success", "error", "requestId", "timestamp"})


def now_ms() -> int:
    return int(time.time() * 1000)


def result_type_for(command: str) -> str:
    return RESULT_TYPES.get(command, f"{command}Result")


def parse_message(raw: Mapping[str, Any]) -> ControlMessage:
    """Validate and parse a decoded inbound frame."""

    return ControlMessage.model_validate(dict(raw))


def resolve_request_id(message: ControlMessage) -> str:
    return message.request_id or f"unknown_{now_ms()}"


def build_response(
    command: str,
    request_id: str,
    *,
    success: bool,
    error: Optional[str] = None,
    data: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Construct a ``*Result`` frame ready for transport."""

    extra = {key: value for key, value in (data or {}).items() if key not in _RESERVED_KEYS}
    response = ResponseMessage(
        type=result_type_for(command),
        success=success,
        error=None if success else (error or "Unknown error"),
        requestId=request_id,
        timestamp=now_ms(),
        **extra,
    )
    return response.model_dump(by_alias=True, exclude_none=True)


def build_unknown_command_response(message: ControlMessage, request_id: str) -> Dict[str, Any]:
    command = message.command or "undefined"
    response = ResponseMessage(
        type=UNKNOWN_COMMAND_TYPE,
        success=False,
        error=f"Unsupported message type: {command}",
        requestId=request_id,
        timestamp=now_ms(),
        originalMessage={"type": message.type, "action": message.action},
    )
    return response.model_dump(by_alias=True)


def build_heartbeat(action: str) -> Dict[str, Any]:
    return HeartbeatFrame(action=action, timestamp=now_ms()).model_dump()


def is_heartbeat(raw: Mapping[str, Any]) -> bool:
    return raw.get("action") in HEARTBEAT_ACTIONS and not raw.get("type")
