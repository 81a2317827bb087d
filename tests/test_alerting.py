# tests/test_alerting.py
"""Tests for the alert dispatcher and its channels."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp import test_utils

from smartwatch_monitor.alerting import AlertDispatcher, PagerDutyClient
from smartwatch_monitor.exceptions import DispatchError


# --- alert slot ---


@pytest.mark.asyncio
async def test_raise_fills_slot(dispatcher):
    alert = await dispatcher.raise_alert("2024-01-01T00:01:00Z", "Age: 30s, Gender: Male, Emotion: Angry")

    assert dispatcher.current_alert is alert
    assert alert.title == "Abnormal Result Detected"
    assert alert.message == "Age: 30s, Gender: Male, Emotion: Angry"
    assert alert.route["eventTimestamp"] == "2024-01-01T00:01:00Z"
    assert dispatcher.channels == ["log"]


@pytest.mark.asyncio
async def test_second_raise_replaces_first(dispatcher):
    first = await dispatcher.raise_alert("2024-01-01T00:01:00Z", "first")
    second = await dispatcher.raise_alert("2024-01-01T00:02:00Z", "second")

    assert dispatcher.current_alert is second
    assert first.id == second.id
    assert dispatcher.raise_count == 2


@pytest.mark.asyncio
async def test_cancel_clears_slot(dispatcher):
    await dispatcher.raise_alert("2024-01-01T00:01:00Z", "body")

    assert await dispatcher.cancel() is True
    assert dispatcher.current_alert is None


@pytest.mark.asyncio
async def test_cancel_with_empty_slot_is_noop(dispatcher):
    assert await dispatcher.cancel() is False


@pytest.mark.asyncio
async def test_title_comes_from_config(config):
    config.alerting.title = "Check on Grandma"
    d = AlertDispatcher(config)
    await d.initialize()
    try:
        alert = await d.raise_alert("2024-01-01T00:01:00Z", "body")
        assert alert.title == "Check on Grandma"
    finally:
        await d.close()


@pytest.mark.asyncio
async def test_pagerduty_failure_raises_dispatch_error(dispatcher):
    dispatcher._pagerduty = AsyncMock()
    dispatcher._pagerduty.trigger_incident.return_value = False

    with pytest.raises(DispatchError) as exc_info:
        await dispatcher.raise_alert("2024-01-01T00:01:00Z", "body")

    assert exc_info.value.channels == ["pagerduty"]
    # the local slot is still shown
    assert dispatcher.current_alert.event_timestamp == "2024-01-01T00:01:00Z"


@pytest.mark.asyncio
async def test_pagerduty_receives_route(dispatcher):
    dispatcher._pagerduty = AsyncMock()
    dispatcher._pagerduty.trigger_incident.return_value = True

    await dispatcher.raise_alert("2024-01-01T00:01:00Z", "body")
    await dispatcher.cancel()

    details = dispatcher._pagerduty.trigger_incident.await_args.kwargs["custom_details"]
    assert details["route"] == {
        "destination": "notification-detail",
        "eventTimestamp": "2024-01-01T00:01:00Z",
    }
    dispatcher._pagerduty.resolve_incident.assert_awaited_once()


@pytest.mark.asyncio
async def test_heartbeat_without_healthchecks(dispatcher):
    assert await dispatcher.send_heartbeat() is False
    assert await dispatcher.send_heartbeat_fail("boom") is False


# --- PagerDuty client ---


@pytest_asyncio.fixture
async def pagerduty_server():
    received = []
    status = {"code": 202}

    async def enqueue(request):
        received.append(await request.json())
        return web.json_response({"status": "success"}, status=status["code"])

    app = web.Application()
    app.router.add_post("/v2/enqueue", enqueue)
    server = test_utils.TestServer(app)
    await server.start_server()
    yield server, received, status
    await server.close()


@pytest.mark.asyncio
async def test_pagerduty_trigger_and_resolve_share_dedup_key(pagerduty_server):
    server, received, _ = pagerduty_server
    client = PagerDutyClient("R0UT1NG", api_url=str(server.make_url("/v2/enqueue")))
    try:
        assert await client.trigger_incident("first") is True
        assert await client.trigger_incident("second") is True
        assert await client.resolve_incident() is True
    finally:
        await client.close()

    assert [p["event_action"] for p in received] == ["trigger", "trigger", "resolve"]
    assert len({p["dedup_key"] for p in received}) == 1
    assert received[0]["routing_key"] == "R0UT1NG"
    assert received[1]["payload"]["summary"] == "second"


@pytest.mark.asyncio
async def test_pagerduty_rejection_returns_false(pagerduty_server):
    server, _, status = pagerduty_server
    status["code"] = 400
    client = PagerDutyClient("R0UT1NG", api_url=str(server.make_url("/v2/enqueue")))
    try:
        assert await client.trigger_incident("summary") is False
    finally:
        await client.close()
