# tests/test_detection.py
"""Unit tests for the detection loop."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from smartwatch_monitor.detection import DetectionLoop, select_candidate
from smartwatch_monitor.exceptions import DispatchError, FetchError, StoreError
from smartwatch_monitor.models import MonitorState
from tests.helpers import FakeClient, make_event

NORMAL_0 = make_event("2024-01-01T00:00:00Z", "normal")
ABNORMAL_1 = make_event("2024-01-01T00:01:00Z", "abnormal", age="30s", gender="Male", emotion="Angry")
ABNORMAL_2 = make_event("2024-01-01T00:02:00Z", "ABNORMAL")


# --- select_candidate ---


def test_select_candidate_picks_newest_abnormal():
    assert select_candidate([ABNORMAL_2, NORMAL_0, ABNORMAL_1]) is ABNORMAL_2


def test_select_candidate_ignores_normal_events():
    newer_normal = make_event("2024-01-01T00:05:00Z", "normal")
    assert select_candidate([ABNORMAL_1, newer_normal]) is ABNORMAL_1
    assert select_candidate([NORMAL_0, newer_normal]) is None
    assert select_candidate([]) is None


def test_select_candidate_tie_goes_to_last_occurrence():
    first = make_event("2024-01-01T00:01:00Z", "abnormal", emotion="Sad")
    second = make_event("2024-01-01T00:01:00Z", "abnormal", emotion="Fear")
    assert select_candidate([first, second]) is second


# --- single cycle scenarios ---


@pytest.mark.asyncio
async def test_new_abnormal_event_raises_alert_and_sets_watermark(store, dispatcher):
    loop = DetectionLoop(FakeClient([NORMAL_0, ABNORMAL_1]), store, dispatcher)

    alert = await loop.run_cycle()

    assert alert is not None
    assert alert.event_timestamp == "2024-01-01T00:01:00Z"
    assert alert.message == "Age: 30s, Gender: Male, Emotion: Angry"
    assert alert.route == {
        "destination": "notification-detail",
        "eventTimestamp": "2024-01-01T00:01:00Z",
    }
    assert await store.get() == "2024-01-01T00:01:00Z"


@pytest.mark.asyncio
async def test_same_events_with_watermark_set_do_nothing(store, dispatcher):
    await store.set("2024-01-01T00:01:00Z")
    loop = DetectionLoop(FakeClient([NORMAL_0, ABNORMAL_1]), store, dispatcher)

    assert await loop.run_cycle() is None
    assert dispatcher.raise_count == 0
    assert await store.get() == "2024-01-01T00:01:00Z"


@pytest.mark.asyncio
async def test_alerts_exactly_once_for_unchanged_data(store, dispatcher):
    loop = DetectionLoop(FakeClient([NORMAL_0, ABNORMAL_1]), store, dispatcher)

    await loop.run_cycle()
    await loop.run_cycle()

    assert dispatcher.raise_count == 1
    assert loop.get_status().alert_count == 1


@pytest.mark.asyncio
async def test_newer_abnormal_event_alerts_again(store, dispatcher):
    client = FakeClient([NORMAL_0, ABNORMAL_1], [NORMAL_0, ABNORMAL_1, ABNORMAL_2])
    loop = DetectionLoop(client, store, dispatcher)

    await loop.run_cycle()
    alert = await loop.run_cycle()

    assert alert.event_timestamp == "2024-01-01T00:02:00Z"
    assert dispatcher.raise_count == 2
    assert dispatcher.current_alert.event_timestamp == "2024-01-01T00:02:00Z"
    assert await store.get() == "2024-01-01T00:02:00Z"


@pytest.mark.asyncio
async def test_only_normal_events_never_alert(store, dispatcher):
    loop = DetectionLoop(FakeClient([NORMAL_0]), store, dispatcher)

    assert await loop.run_cycle() is None
    assert await store.get() is None


@pytest.mark.asyncio
async def test_watermark_is_monotonic_across_cycles(store, dispatcher):
    older = make_event("2023-12-31T23:00:00Z", "abnormal")
    client = FakeClient(
        [ABNORMAL_2],
        [older],
        [ABNORMAL_1],
        [ABNORMAL_2, make_event("2024-01-01T00:09:00Z", "abnormal")],
    )
    loop = DetectionLoop(client, store, dispatcher)

    seen = []
    for _ in range(4):
        await loop.run_cycle()
        seen.append(await store.get())

    assert seen == sorted(seen)
    assert seen[-1] == "2024-01-01T00:09:00Z"
    assert dispatcher.raise_count == 2


# --- failure handling ---


@pytest.mark.asyncio
async def test_fetch_failure_leaves_watermark_and_raises_nothing(store, dispatcher):
    await store.set("2024-01-01T00:00:30Z")
    loop = DetectionLoop(FakeClient(FetchError("timeout")), store, dispatcher)

    with pytest.raises(FetchError):
        await loop.run_cycle()

    assert dispatcher.raise_count == 0
    assert await store.get() == "2024-01-01T00:00:30Z"


@pytest.mark.asyncio
async def test_dispatch_failure_does_not_advance_watermark(store, dispatcher):
    dispatcher.raise_alert = AsyncMock(side_effect=DispatchError("pagerduty down", ["pagerduty"]))
    loop = DetectionLoop(FakeClient([ABNORMAL_1]), store, dispatcher)

    assert await loop.run_cycle() is None

    assert await store.get() is None
    status = loop.get_status()
    assert status.alert_count == 0
    assert "pagerduty down" in status.last_error


@pytest.mark.asyncio
async def test_dispatch_retried_on_next_cycle(store, dispatcher):
    real_raise = dispatcher.raise_alert
    attempts = []

    async def flaky_raise(*args, **kwargs):
        attempts.append(args)
        if len(attempts) == 1:
            raise DispatchError("flaky")
        return await real_raise(*args, **kwargs)

    dispatcher.raise_alert = flaky_raise
    loop = DetectionLoop(FakeClient([ABNORMAL_1]), store, dispatcher)

    await loop.run_cycle()
    assert await store.get() is None

    alert = await loop.run_cycle()
    assert alert.event_timestamp == "2024-01-01T00:01:00Z"
    assert await store.get() == "2024-01-01T00:01:00Z"
    assert len(attempts) == 2


@pytest.mark.asyncio
async def test_store_write_failure_keeps_alert(dispatcher):
    store = AsyncMock()
    store.get.return_value = None
    store.set_if_greater.side_effect = StoreError("disk full")
    loop = DetectionLoop(FakeClient([ABNORMAL_1]), store, dispatcher)

    alert = await loop.run_cycle()

    assert alert is not None
    assert "disk full" in loop.get_status().last_error


# --- run / stop ---


@pytest.mark.asyncio
async def test_run_survives_errors_and_stops_on_request(store, dispatcher):
    client = FakeClient(
        FetchError("offline"),
        RuntimeError("boom"),
        [NORMAL_0, ABNORMAL_1],
    )
    loop = DetectionLoop(client, store, dispatcher, poll_interval_seconds=0.01)

    task = asyncio.create_task(loop.run())
    for _ in range(200):
        if dispatcher.raise_count:
            break
        await asyncio.sleep(0.01)

    loop.stop()
    await asyncio.wait_for(task, timeout=2)

    assert client.calls >= 3
    assert dispatcher.raise_count == 1
    assert await store.get() == "2024-01-01T00:01:00Z"
    assert loop.current_state is MonitorState.STOPPED


@pytest.mark.asyncio
async def test_stop_interrupts_sleep(store, dispatcher):
    loop = DetectionLoop(FakeClient([NORMAL_0]), store, dispatcher, poll_interval_seconds=3600)

    task = asyncio.create_task(loop.run())
    for _ in range(100):
        if loop.current_state is MonitorState.SLEEPING:
            break
        await asyncio.sleep(0.01)

    loop.stop()
    await asyncio.wait_for(task, timeout=1)

    assert loop.get_status().cycle_count == 1
    assert not loop.is_running


@pytest.mark.asyncio
async def test_heartbeat_reports_cycle_outcome(store, dispatcher):
    dispatcher.send_heartbeat = AsyncMock(return_value=True)
    dispatcher.send_heartbeat_fail = AsyncMock(return_value=True)
    client = FakeClient(FetchError("offline"), [NORMAL_0])
    loop = DetectionLoop(client, store, dispatcher, poll_interval_seconds=0.01)

    task = asyncio.create_task(loop.run())
    for _ in range(200):
        if dispatcher.send_heartbeat.await_count:
            break
        await asyncio.sleep(0.01)
    loop.stop()
    await asyncio.wait_for(task, timeout=2)

    dispatcher.send_heartbeat_fail.assert_awaited()
    assert "offline" in dispatcher.send_heartbeat_fail.await_args.args[0]
    dispatcher.send_heartbeat.assert_awaited()


@pytest.mark.asyncio
async def test_stop_before_run_prevents_any_fetch(store, dispatcher):
    client = FakeClient([NORMAL_0, ABNORMAL_1])
    loop = DetectionLoop(client, store, dispatcher, poll_interval_seconds=0.01)

    loop.stop()
    await asyncio.wait_for(loop.run(), timeout=1)

    assert client.calls == 0
    assert dispatcher.raise_count == 0
    assert loop.current_state is MonitorState.STOPPED


@pytest.mark.asyncio
async def test_store_read_failure_skips_cycle_and_loop_continues(dispatcher):
    store = AsyncMock()
    store.get.side_effect = StoreError("database is locked")
    client = FakeClient([NORMAL_0, ABNORMAL_1])
    loop = DetectionLoop(client, store, dispatcher, poll_interval_seconds=0.01)

    task = asyncio.create_task(loop.run())
    for _ in range(200):
        if client.calls >= 2:
            break
        await asyncio.sleep(0.01)

    assert loop.is_running
    loop.stop()
    await asyncio.wait_for(task, timeout=2)

    assert client.calls >= 2
    assert dispatcher.raise_count == 0
    store.set_if_greater.assert_not_awaited()
    status = loop.get_status()
    assert status.consecutive_failures >= 2
    assert "database is locked" in status.last_error
