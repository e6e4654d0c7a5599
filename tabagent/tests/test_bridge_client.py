import asyncio

import pytest

from tabagent.bootstrap import build_agent
from tabagent.config import AgentSettings
from tabagent.errors import GENERIC_ERROR_MESSAGE
from tabagent.host import DummyHost, ElementInfo
from tabagent.transport import DummyTransport


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


async def _response_for(transport: DummyTransport, request_id: str) -> dict:
    await _wait_for(lambda: any(frame.get("requestId") == request_id for frame in transport.sent))
    return next(frame for frame in transport.sent if frame.get("requestId") == request_id)


def _agent(host=None, **overrides):
    settings = AgentSettings(
        transport="dummy",
        heartbeat_interval_seconds=3600,
        min_timeout_seconds=0.01,
        status_cooldown_seconds=0.01,
        wait_poll_interval_seconds=0.02,
        **overrides,
    )
    transport = DummyTransport()
    host = host or DummyHost("tab-7", load_delay=0.01)
    agent = build_agent(settings, transport_factory=lambda _: transport, host=host)
    return agent, transport, host


@pytest.mark.asyncio
async def test_connect_announces_target():
    agent, transport, host = _agent()
    await agent.start()

    await _wait_for(lambda: transport.sent)

    assert transport.sent[0]["type"] == "tabId"
    assert transport.sent[0]["tabId"] == "tab-7"
    assert not any(frame.get("type") == "url" for frame in transport.sent)
    await agent.stop()


@pytest.mark.asyncio
async def test_navigate_round_trip():
    agent, transport, host = _agent()
    await agent.start()

    transport.inject({"type": "navigate", "url": "https://example.com", "requestId": "req-1"})
    response = await _response_for(transport, "req-1")

    assert response["type"] == "navigationResult"
    assert response["success"] is True
    assert response["url"] == "https://example.com/"
    assert host.navigations == ["https://example.com/"]
    await agent.stop()


@pytest.mark.asyncio
async def test_every_response_carries_its_request_id():
    agent, transport, host = _agent()
    host.add_element(ElementInfo("#present"))
    await agent.start()
    frames = [
        {"type": "click", "selector": "#missing", "requestId": "c-1"},
        {"type": "click", "selector": "#present", "requestId": "c-2"},
        {"type": "wait", "selector": "#present", "requestId": "w-1", "timeout": 500},
        {"type": "screenshot", "requestId": "s-1"},
        {"type": "getConsole", "requestId": "g-1"},
        {"type": "getContent", "format": "text", "requestId": "g-2"},
        {"type": "bogus", "requestId": "b-1"},
        {"action": "ping", "type": "ping", "requestId": "p-1"},
    ]
    for frame in frames:
        transport.inject(frame)

    responses = {frame["requestId"]: await _response_for(transport, frame["requestId"]) for frame in frames}

    for request_id, response in responses.items():
        assert response["requestId"] == request_id
    assert responses["c-1"]["success"] is False
    assert responses["c-1"]["result"] == "element_not_found"
    assert responses["c-1"]["error"] == "Element not found: #missing"
    assert responses["c-2"]["success"] is True
    assert responses["c-2"]["strategy"] == "scripting"
    assert responses["w-1"]["type"] == "waitResult"
    assert responses["s-1"]["dataUrl"].startswith("data:image/png;base64,")
    assert responses["g-1"]["type"] == "getConsoleResult"
    assert responses["g-2"]["format"] == "text"
    assert responses["b-1"]["type"] == "unknownMessageError"
    assert responses["b-1"]["error"] == "Unsupported message type: bogus"
    assert responses["p-1"]["type"] == "pong"
    await agent.stop()


@pytest.mark.asyncio
async def test_missing_request_id_is_generated():
    agent, transport, _ = _agent()
    await agent.start()

    transport.inject({"type": "getConsole"})
    await _wait_for(lambda: any(frame.get("type") == "getConsoleResult" for frame in transport.sent))

    response = next(frame for frame in transport.sent if frame.get("type") == "getConsoleResult")
    assert response["requestId"].startswith("unknown_")
    await agent.stop()


@pytest.mark.asyncio
async def test_duplicate_in_flight_request_id_is_rejected():
    agent, transport, host = _agent()
    host.add_element(ElementInfo("#late"), delay=0.2)
    await agent.start()

    transport.inject({"type": "wait", "selector": "#late", "requestId": "dup", "timeout": 2000})
    transport.inject({"type": "wait", "selector": "#late", "requestId": "dup", "timeout": 2000})
    await _wait_for(lambda: len([f for f in transport.sent if f.get("requestId") == "dup"]) == 2)

    responses = [frame for frame in transport.sent if frame.get("requestId") == "dup"]
    assert responses[0]["success"] is False
    assert responses[0]["error"] == "Request dup is already in flight"
    assert responses[1]["success"] is True
    await agent.stop()


@pytest.mark.asyncio
async def test_injection_in_click_selector_is_escaped_before_execution():
    agent, transport, host = _agent()
    await agent.start()

    transport.inject({"type": "click", "selector": '"; DROP TABLE x; --', "requestId": "inj-1"})
    response = await _response_for(transport, "inj-1")

    assert response["success"] is False
    assert response["result"] == "selector_invalid"
    _, request = host.executed[0]
    assert "const selector = '\\\"; DROP TABLE x; --';" in request.payload
    await agent.stop()


@pytest.mark.asyncio
async def test_unsafe_payload_is_denied_without_execution():
    agent, transport, host = _agent()
    await agent.start()

    transport.inject({"type": "click", "selector": "eval(document.cookie)", "requestId": "sec-1"})
    response = await _response_for(transport, "sec-1")

    assert response["success"] is False
    assert response["result"] == "permission_denied"
    assert response["error"] == "Payload rejected: dynamic eval is not allowed"
    assert host.executed == []
    await agent.stop()


@pytest.mark.asyncio
async def test_type_command_sets_value():
    agent, transport, host = _agent()
    host.add_element(ElementInfo("#name", tag_name="input", value="old"))
    await agent.start()

    transport.inject({"type": "type", "selector": "#name", "text": " new", "clear": False, "requestId": "t-1"})
    response = await _response_for(transport, "t-1")

    assert response["type"] == "typeResult"
    assert response["success"] is True
    assert response["value"] == "old new"
    await agent.stop()


@pytest.mark.asyncio
async def test_stop_releases_resources_and_closes_channel():
    agent, transport, host = _agent()
    await agent.start()
    transport.inject({"type": "wait", "selector": "#never", "requestId": "w-stop", "timeout": 5000})
    await _wait_for(lambda: agent.waits.active_waits())
    assert agent.client.in_flight() == 1

    await agent.stop()

    assert len(agent.pool) == 0
    assert transport.connected is False
    assert agent.connection.connection_state()["state"] == "disconnected"
    assert agent.client.in_flight() == 0


@pytest.mark.asyncio
async def test_type_rejects_non_boolean_clear():
    agent, transport, host = _agent()
    host.add_element(ElementInfo("#name", tag_name="input", value="abc"))
    await agent.start()

    transport.inject({"type": "type", "selector": "#name", "text": "d", "clear": "false", "requestId": "t-2"})
    response = await _response_for(transport, "t-2")

    assert response["success"] is False
    assert response["error"] == "clear must be a boolean"
    assert host.executed == []
    assert host.element("#name").value == "abc"
    await agent.stop()


INTERNAL_PATH = "/opt/agent/internal/bridge_agent.js"


class _BrokenHost(DummyHost):
    """Host whose every capability fails with filesystem detail in the message."""

    def _fail(self):
        raise FileNotFoundError(2, "No such file or directory", INTERNAL_PATH)

    async def navigate(self, url):
        self.navigations.append(url)
        self._fail()

    async def execute(self, kind, request):
        self.executed.append((kind, request))
        self._fail()

    async def capture_screenshot(self):
        self._fail()


def _broken_agent():
    return _agent(
        host=_BrokenHost("tab-7"),
        strategy_retries=0,
        navigate_max_retries=0,
    )


@pytest.mark.asyncio
async def test_click_failure_does_not_expose_host_detail():
    agent, transport, host = _broken_agent()
    await agent.start()

    transport.inject({"type": "click", "selector": "#go", "requestId": "leak-click"})
    response = await _response_for(transport, "leak-click")

    assert response["success"] is False
    assert INTERNAL_PATH not in response["error"]
    assert "Errno" not in response["error"]
    assert response["error"] == (
        "All execution strategies failed: scripting: failed; devtools: failed; content_agent: failed"
    )
    assert response["result"] == "unknown_error"
    assert len(host.executed) == 3
    await agent.stop()


@pytest.mark.asyncio
async def test_navigate_failure_does_not_expose_host_detail():
    agent, transport, host = _broken_agent()
    await agent.start()

    transport.inject({"type": "navigate", "url": "https://example.com", "requestId": "leak-nav"})
    response = await _response_for(transport, "leak-nav")

    assert response["success"] is False
    assert response["error"] == GENERIC_ERROR_MESSAGE
    assert host.navigations == ["https://example.com/"]
    await agent.stop()


@pytest.mark.asyncio
async def test_capture_failure_does_not_expose_host_detail():
    agent, transport, _ = _broken_agent()
    await agent.start()

    transport.inject({"type": "screenshot", "requestId": "leak-shot"})
    response = await _response_for(transport, "leak-shot")

    assert response["type"] == "screenshotResult"
    assert response["success"] is False
    assert response["error"] == GENERIC_ERROR_MESSAGE
    await agent.stop()


@pytest.mark.asyncio
async def test_handler_crash_does_not_expose_traceback():
    agent, transport, _ = _agent()

    async def crashing_handler(message, request_id):
        raise RuntimeError(f'Traceback (most recent call last):\n  File "{INTERNAL_PATH}", line 12')

    agent.client.register_handler("getConsole", crashing_handler)
    await agent.start()

    transport.inject({"type": "getConsole", "requestId": "leak-handler"})
    response = await _response_for(transport, "leak-handler")

    assert response["success"] is False
    assert response["error"] == GENERIC_ERROR_MESSAGE
    assert "Traceback" not in response["error"]
    await agent.stop()
