"""Shared coordinator state machine and response helpers."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from shared.models.control import ControlMessage
from shared.protocol import build_response

from tabagent.config import AgentSettings
from tabagent.errors import RequestValidationError, public_error_message

CommandHandler = Callable[[ControlMessage, str], Awaitable[Dict[str, Any]]]


class OperationState(enum.Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    IN_FLIGHT = "in_flight"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


ACTIVE_STATES = frozenset({OperationState.VALIDATING, OperationState.IN_FLIGHT})


@dataclass
class OperationTracker:
    """Per-coordinator operation state."""

    state: OperationState = OperationState.IDLE
    request_id: Optional[str] = None
    last_transition_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))

    @property
    def busy(self) -> bool:
        return self.state in ACTIVE_STATES

    def begin(self, request_id: str) -> None:
        self.transition(OperationState.VALIDATING)
        self.request_id = request_id

    def transition(self, next_state: OperationState) -> None:
        """Move into ``next_state``, validating allowed transitions."""

        if not self._is_valid_transition(self.state, next_state):
            raise ValueError(f"Invalid transition {self.state.value} -> {next_state.value}")
        self.state = next_state
        self.last_transition_at = datetime.now(tz=timezone.utc)
        if next_state is OperationState.IDLE:
            self.request_id = None

    @staticmethod
    def _is_valid_transition(current: OperationState, nxt: OperationState) -> bool:
        allowed = {
            OperationState.IDLE: {OperationState.VALIDATING},
            OperationState.VALIDATING: {OperationState.IN_FLIGHT, OperationState.FAILED},
            OperationState.IN_FLIGHT: {OperationState.SUCCEEDED, OperationState.FAILED},
            OperationState.SUCCEEDED: {OperationState.IDLE, OperationState.VALIDATING},
            OperationState.FAILED: {OperationState.IDLE, OperationState.VALIDATING},
        }
        return nxt in allowed.get(current, set())


def error_response(
    command: str,
    request_id: str,
    exc: BaseException,
    data: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    return build_response(command, request_id, success=False, error=public_error_message(exc), data=data)


def ok_response(command: str, request_id: str, data: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    return build_response(command, request_id, success=True, data=data)


def require_selector(params: Mapping[str, Any]) -> str:
    selector = params.get("selector")
    if not isinstance(selector, str) or not selector.strip():
        raise RequestValidationError("Selector is required and must be a non-empty string")
    return selector.strip()


def resolve_timeout(settings: AgentSettings, params: Mapping[str, Any], default: float) -> float:
    """Read the wire ``timeout`` (milliseconds) and clamp it into the allowed window."""

    raw = params.get("timeout")
    if raw is None:
        return settings.clamp_timeout(None, default)
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise RequestValidationError("timeout must be a number of milliseconds")
    return settings.clamp_timeout(raw / 1000.0, default)
