import asyncio

import pytest

from shared.models.control import ControlMessage
from tabagent.config import AgentSettings
from tabagent.execution.runtime import ListenerPool, RetryController
from tabagent.handlers import NavigateHandler, OperationState
from tabagent.host import DummyHost, TargetStateEvent


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


def _message(request_id: str, url: str, **params) -> ControlMessage:
    return ControlMessage.model_validate({"type": "navigate", "url": url, "requestId": request_id, **params})


def _handler(pool=None, **settings_overrides):
    settings = AgentSettings(min_timeout_seconds=0.01, status_cooldown_seconds=0.05, **settings_overrides)
    host = DummyHost("tab-1", load_delay=0.01, unreachable_hosts={"unreachable.test"})
    delays = []

    async def fake_sleep(delay):
        delays.append(delay)

    retry = RetryController.from_settings(settings, sleep=fake_sleep)
    handler = NavigateHandler(settings=settings, host=host, pool=pool if pool is not None else ListenerPool(max_size=5), retry=retry)
    return handler, host, delays


@pytest.mark.asyncio
async def test_unreachable_address_fails_after_three_attempts():
    handler, host, delays = _handler()

    response = await handler.handle(_message("nav-1", "https://unreachable.test/", timeout=50), "nav-1")

    assert response["success"] is False
    assert response["type"] == "navigationResult"
    assert response["requestId"] == "nav-1"
    assert "timeout" in response["error"].lower()
    assert response["error"] == "Navigation timeout after 50ms"
    assert len(host.navigations) == 3
    assert delays == [2.0, 4.0]
    assert 3.0 <= sum(delays) <= 6.0
    assert len(handler.pool) == 0
    assert host.subscriber_count() == 0
    assert handler.tracker.state is OperationState.FAILED


@pytest.mark.asyncio
async def test_wire_timeout_is_clamped_and_reported():
    handler, host, _ = _handler()

    response = await handler.handle(
        _message("nav-2", "https://unreachable.test/", timeout=50, maxRetries=0), "nav-2"
    )

    assert response["error"] == "Navigation timeout after 50ms"
    assert len(host.navigations) == 1
    assert handler._timeout == handler.settings.navigate_timeout_seconds


@pytest.mark.asyncio
async def test_successful_navigation_returns_final_url_and_cools_down():
    handler, host, delays = _handler()

    response = await handler.handle(_message("nav-3", "HTTPS://Example.COM/docs/"), "nav-3")

    assert response["success"] is True
    assert response["url"] == "https://example.com/docs"
    assert response["tabId"] == "tab-1"
    assert "error" not in response
    assert delays == []
    assert handler.tracker.state is OperationState.SUCCEEDED

    await _wait_for(lambda: handler.tracker.state is OperationState.IDLE)
    assert handler.state()["in_flight_request"] is None


@pytest.mark.asyncio
async def test_second_navigation_is_rejected_while_in_flight():
    handler, host, _ = _handler()
    first = asyncio.create_task(
        handler.handle(_message("nav-a", "https://unreachable.test/", timeout=2000), "nav-a")
    )
    await _wait_for(lambda: handler.tracker.state is OperationState.IN_FLIGHT)

    second = await handler.handle(_message("nav-b", "https://example.com/"), "nav-b")

    assert second["success"] is False
    assert second["error"] == "Navigation already in progress"
    assert second["requestId"] == "nav-b"
    assert handler.tracker.state is OperationState.IN_FLIGHT
    assert handler.state()["in_flight_request"] == "nav-a"
    assert host.navigations == ["https://unreachable.test/"]

    assert handler.cancel() is True
    result = await asyncio.wait_for(first, timeout=2.0)
    assert result["success"] is False
    assert result["error"] == "Navigation cancelled"
    assert len(handler.pool) == 0


@pytest.mark.asyncio
async def test_invalid_url_is_rejected_before_navigation():
    handler, host, _ = _handler()

    response = await handler.handle(_message("nav-4", "javascript:alert(1)"), "nav-4")

    assert response["success"] is False
    assert response["error"] == "Blocked protocol: javascript:"
    assert host.navigations == []
    assert handler.tracker.state is OperationState.FAILED


@pytest.mark.asyncio
async def test_completion_without_url_is_an_error():
    handler, host, delays = _handler()
    task = asyncio.create_task(handler.handle(_message("nav-5", "https://unreachable.test/"), "nav-5"))
    await _wait_for(lambda: host.navigations)

    host.emit(TargetStateEvent("tab-1", "complete", url=None))
    response = await asyncio.wait_for(task, timeout=2.0)

    assert response["error"] == "Navigation completed but no URL available"
    assert len(host.navigations) == 1
    assert delays == []


@pytest.mark.asyncio
async def test_events_for_other_targets_are_ignored():
    handler, host, _ = _handler()
    task = asyncio.create_task(
        handler.handle(_message("nav-6", "https://unreachable.test/", maxRetries=0, timeout=100), "nav-6")
    )
    await _wait_for(lambda: host.navigations)

    host.emit(TargetStateEvent("tab-2", "complete", url="https://elsewhere.test/"))
    response = await asyncio.wait_for(task, timeout=2.0)

    assert response["error"] == "Navigation timeout after 100ms"


@pytest.mark.asyncio
async def test_evicted_listener_fails_navigation():
    pool = ListenerPool(max_size=1)
    handler, host, _ = _handler(pool=pool)
    task = asyncio.create_task(
        handler.handle(_message("nav-7", "https://unreachable.test/", timeout=2000), "nav-7")
    )
    await _wait_for(lambda: host.navigations)

    pool.acquire(lambda *_: None, "wait-#other")
    response = await asyncio.wait_for(task, timeout=2.0)

    assert response["success"] is False
    assert "released early" in response["error"]
    assert len(host.navigations) == 1
