# =============================================================================
# DISCLAIMER: This software is NOT a safety device and is NOT intended for
# emergency response or child supervision. This is a proof of concept for
# educational purposes only. Do not rely on this system for safety decisions.
# =============================================================================
"""Abnormal-event detection loop for Smartwatch Monitor.

This module implements the core monitoring logic that:
- Polls the event source on a fixed interval
- Picks the newest abnormal event in each fetch
- Compares it against the persisted watermark
- Raises the alert once per new event, then advances the watermark

State Flow:
    IDLE -> FETCHING
    FETCHING -> EVALUATING (fetch ok) | SLEEPING (fetch failed)
    EVALUATING -> ALERTING (newer abnormal event) | SLEEPING
    ALERTING -> SLEEPING
    SLEEPING -> FETCHING (interval elapsed) | STOPPED (stop() called)

The watermark only advances after the dispatcher reports delivery. A
failed delivery leaves it where it was, so the next cycle raises the same
alert again.

Usage:
    from smartwatch_monitor.detection import DetectionLoop

    loop = DetectionLoop(client, store, dispatcher, poll_interval_seconds=30)
    await loop.run()          # until loop.stop()
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional, Sequence

from smartwatch_monitor.exceptions import DispatchError, FetchError, StoreError
from smartwatch_monitor.models import Alert, ClassificationEvent, LoopStatus, MonitorState

logger = logging.getLogger(__name__)


def select_candidate(events: Sequence[ClassificationEvent]) -> Optional[ClassificationEvent]:
    """Newest abnormal event in fetch order.

    Ties on timestamp go to the later element.
    """
    candidate = None
    for event in events:
        if not event.is_abnormal:
            continue
        if candidate is None or event.timestamp >= candidate.timestamp:
            candidate = event
    return candidate


class DetectionLoop:
    """Polls for abnormal events and alerts on each new one.

    Attributes:
        current_state: Current MonitorState
        poll_interval_seconds: Sleep between cycles
    """

    DEFAULT_POLL_INTERVAL = 30.0

    def __init__(
        self,
        client,
        store,
        dispatcher,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL,
    ):
        """Initialize detection loop.

        Args:
            client: EventSourceClient (or MockEventSource)
            store: WatermarkStore
            dispatcher: AlertDispatcher
            poll_interval_seconds: Seconds to sleep between cycles
        """
        self.client = client
        self.store = store
        self.dispatcher = dispatcher
        self.poll_interval_seconds = poll_interval_seconds

        self._state = MonitorState.IDLE
        self._cycle_count = 0
        self._alert_count = 0
        self._consecutive_failures = 0
        self._last_cycle_time: Optional[datetime] = None
        self._last_alert_timestamp: Optional[str] = None
        self._last_error: Optional[str] = None

        # Control
        self._running = False
        self._stop_requested = False
        self._shutdown_event = asyncio.Event()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        self._start_time = datetime.now()

        logger.info(f"DetectionLoop initialized (interval: {poll_interval_seconds}s)")

    # ==================== Properties ====================

    @property
    def current_state(self) -> MonitorState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def uptime(self) -> timedelta:
        return datetime.now() - self._start_time

    def get_status(self) -> LoopStatus:
        """Get a snapshot of loop progress."""
        return LoopStatus(
            state=self._state,
            cycle_count=self._cycle_count,
            alert_count=self._alert_count,
            last_cycle_time=self._last_cycle_time,
            last_alert_timestamp=self._last_alert_timestamp,
            last_error=self._last_error,
            consecutive_failures=self._consecutive_failures,
            uptime_seconds=self.uptime.total_seconds(),
        )

    def _set_state(self, state: MonitorState) -> None:
        if state != self._state:
            logger.debug(f"State: {self._state.value} -> {state.value}")
            self._state = state

    # ==================== Main Loop ====================

    async def run(self) -> None:
        """Run cycles until stop() is called.

        A failing cycle never ends the loop; it is logged and the loop
        sleeps as it would after a fetch failure.
        """
        self._loop = asyncio.get_running_loop()
        # A stop() that arrived before run() still counts
        self._running = not self._stop_requested
        self._start_time = datetime.now()
        if self._running:
            logger.info("Detection loop starting")
        else:
            logger.info("Detection loop stopped before it started")

        try:
            while self._running:
                try:
                    await self.run_cycle()
                except FetchError as e:
                    self._record_failure(f"Fetch failed: {e}")
                    logger.warning(f"Event fetch failed, retrying in {self.poll_interval_seconds}s: {e}")
                except StoreError as e:
                    self._record_failure(f"Watermark read failed: {e}")
                    logger.error(f"Watermark store unavailable, skipping cycle: {e}")
                except Exception as e:
                    self._record_failure(f"Cycle error: {e}")
                    logger.exception(f"Error in detection cycle: {e}")

                await self._heartbeat(self._consecutive_failures == 0)

                if not self._running:
                    break
                self._set_state(MonitorState.SLEEPING)
                await self._sleep()
        finally:
            self._running = False
            self._set_state(MonitorState.STOPPED)
            logger.info(f"Detection loop stopped after {self._cycle_count} cycles")

    async def run_cycle(self) -> Optional[Alert]:
        """Run one fetch/evaluate/alert pass.

        Returns:
            The alert raised this cycle, or None

        Raises:
            FetchError: If the event list could not be fetched
        """
        self._cycle_count += 1
        self._last_cycle_time = datetime.now()

        self._set_state(MonitorState.FETCHING)
        events = await self.client.fetch()

        self._set_state(MonitorState.EVALUATING)
        candidate = select_candidate(events)
        watermark = await self.store.get()
        if candidate is None:
            self._record_success()
            return None

        if watermark is not None and candidate.timestamp <= watermark:
            logger.debug(f"No new abnormal event (newest {candidate.timestamp}, watermark {watermark})")
            self._record_success()
            return None

        self._set_state(MonitorState.ALERTING)
        logger.info(f"New abnormal event at {candidate.timestamp} (watermark {watermark})")

        try:
            alert = await self.dispatcher.raise_alert(candidate.timestamp, candidate.summary)
        except DispatchError as e:
            # Leave the watermark alone so the next cycle retries delivery
            self._record_failure(f"Dispatch failed: {e}")
            logger.error(f"Alert delivery failed, watermark not advanced: {e}")
            return None

        self._alert_count += 1
        self._last_alert_timestamp = candidate.timestamp

        try:
            await self.store.set_if_greater(candidate.timestamp)
        except StoreError as e:
            self._record_failure(f"Watermark write failed: {e}")
            logger.error(f"Could not advance watermark, alert may repeat next cycle: {e}")
            return alert

        self._record_success()
        return alert

    def stop(self) -> None:
        """Signal shutdown. Safe to call from any thread.

        The current sleep ends immediately and no further fetch starts.
        A cycle already in progress runs to completion. Called before
        run(), it makes run() return without fetching.
        """
        logger.info("Detection loop stopping")
        self._stop_requested = True
        self._running = False
        loop = self._loop
        if loop is not None and loop.is_running():
            try:
                in_loop = asyncio.get_running_loop() is loop
            except RuntimeError:
                in_loop = False
            if not in_loop:
                loop.call_soon_threadsafe(self._shutdown_event.set)
                return
        self._shutdown_event.set()

    async def _sleep(self) -> None:
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=self.poll_interval_seconds)
        except asyncio.TimeoutError:
            pass

    # ==================== Bookkeeping ====================

    def _record_success(self) -> None:
        self._consecutive_failures = 0
        self._last_error = None

    def _record_failure(self, message: str) -> None:
        self._consecutive_failures += 1
        self._last_error = message

    async def _heartbeat(self, ok: bool) -> None:
        try:
            if ok:
                await self.dispatcher.send_heartbeat()
            else:
                await self.dispatcher.send_heartbeat_fail(self._last_error or "cycle failed")
        except Exception as e:
            logger.error(f"Heartbeat error: {e}")
