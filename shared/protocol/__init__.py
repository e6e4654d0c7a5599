from .messages import (
    HEARTBEAT_ACTIONS,
    RESULT_TYPES,
    UNKNOWN_COMMAND_TYPE,
    build_heartbeat,
    build_response,
    build_unknown_command_response,
    is_heartbeat,
    now_ms,
    parse_message,
    resolve_request_id,
    result_type_for,
)

__all__ = [
    "HEARTBEAT_ACTIONS",
    "RESULT_TYPES",
    "UNKNOWN_COMMAND_TYPE",
    "build_heartbeat",
    "build_response",
    "build_unknown_command_response",
    "is_heartbeat",
    "now_ms",
    "parse_message",
    "resolve_request_id",
    "result_type_for",
]
