import pytest
from pydantic import ValidationError

from shared.protocol import (
    build_heartbeat,
    build_response,
    build_unknown_command_response,
    is_heartbeat,
    parse_message,
    resolve_request_id,
    result_type_for,
)


def test_control_message_exposes_command_and_params():
    message = parse_message({"type": "click", "selector": "#go", "requestId": 17, "timestamp": 1})

    assert message.command == "click"
    assert message.request_id == "17"
    assert message.params() == {"selector": "#go"}


def test_action_is_used_when_type_missing():
    message = parse_message({"action": "navigate", "url": "https://example.com"})

    assert message.command == "navigate"
    assert resolve_request_id(message).startswith("unknown_")


def test_invalid_request_id_type_is_rejected():
    with pytest.raises(ValidationError):
        parse_message({"type": "click", "requestId": {"nested": True}})


def test_success_response_omits_error():
    response = build_response("navigate", "r-1", success=True, data={"url": "https://example.com/"})

    assert response["type"] == "navigationResult"
    assert response["success"] is True
    assert response["requestId"] == "r-1"
    assert response["url"] == "https://example.com/"
    assert "error" not in response
    assert isinstance(response["timestamp"], int)


def test_failure_response_cannot_override_correlation_fields():
    response = build_response(
        "wait",
        "r-2",
        success=False,
        error="Timeout waiting for element: #x (1000ms)",
        data={"requestId": "spoofed", "result": "timeout"},
    )

    assert response["requestId"] == "r-2"
    assert response["result"] == "timeout"
    assert response["error"].startswith("Timeout")


def test_unknown_command_response_echoes_original():
    message = parse_message({"type": "bogus", "requestId": "r-3"})

    response = build_unknown_command_response(message, "r-3")

    assert response["type"] == "unknownMessageError"
    assert response["error"] == "Unsupported message type: bogus"
    assert response["originalMessage"] == {"type": "bogus", "action": None}


def test_result_types():
    assert result_type_for("click") == "clickResult"
    assert result_type_for("getContent") == "getContentResult"
    assert result_type_for("custom") == "customResult"


def test_heartbeat_frames():
    ping = build_heartbeat("ping")

    assert ping["action"] == "ping"
    assert is_heartbeat(ping)
    assert not is_heartbeat({"type": "navigate", "action": "ping"})
