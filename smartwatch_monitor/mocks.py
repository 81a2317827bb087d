# =============================================================================
# DISCLAIMER: This software is NOT a safety device and is NOT intended for
# emergency response or child supervision. This is a proof of concept for
# educational purposes only. Do not rely on this system for safety decisions.
# =============================================================================
"""Mock event source for running without the remote sensing API.

Generates a growing list of classification events in memory, with the
same interface as EventSourceClient, so the detection loop and the web
API can be exercised end to end.

Enable mock mode by:
- Setting MOCK_SOURCE=true environment variable, OR
- Setting mock_mode: true in config.yaml
"""

import io
import logging
import random
import wave
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from smartwatch_monitor.exceptions import FetchError
from smartwatch_monitor.models import (
    AGE_LABELS,
    EMOTION_LABELS,
    GENDER_LABELS,
    Classification,
    ClassificationEvent,
    ConfigurationPayload,
)

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def format_timestamp(dt: datetime) -> str:
    """Fixed-width UTC timestamp, ordered correctly as a string."""
    return dt.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


class MockEventSource:
    """Simulated event source.

    Events appear on a simulated timeline, one every 5 to 60 seconds of
    clock time, the way a real sensing server accumulates them. Fetching
    only reports what has come due; it never creates events itself, so
    any number of readers see the same list. The mock can be controlled to:
    - Make the next event abnormal (inject_abnormal)
    - Fail fetches (simulate_failure)
    - Return an in-memory configuration

    Attributes:
        abnormal_probability: Chance a generated event is abnormal
        max_events: Oldest events are dropped beyond this count
    """

    def __init__(
        self,
        abnormal_probability: float = 0.1,
        max_events: int = 200,
        seed: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.abnormal_probability = abnormal_probability
        self.max_events = max_events

        self._random = random.Random(seed)
        self._events: List[ClassificationEvent] = []
        self._config = ConfigurationPayload.default()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._next_time = self._clock().replace(microsecond=0)

        self._simulate_failure = False
        self._force_abnormal = False

        logger.info(f"MockEventSource initialized (abnormal p={abnormal_probability})")

    @property
    def events(self) -> List[ClassificationEvent]:
        return list(self._events)

    # ==================== Simulation Controls ====================

    def simulate_failure(self, enabled: bool = True) -> None:
        """Make fetches raise FetchError until disabled."""
        self._simulate_failure = enabled
        logger.info(f"MockEventSource: failure simulation {'on' if enabled else 'off'}")

    def inject_abnormal(self) -> None:
        """Make the next generated event abnormal."""
        self._force_abnormal = True

    def add_event(self, event: ClassificationEvent) -> None:
        self._events.append(event)

    def _generate(self) -> ClassificationEvent:
        abnormal = self._force_abnormal or self._random.random() < self.abnormal_probability
        self._force_abnormal = False

        return ClassificationEvent(
            timestamp=format_timestamp(self._next_time),
            age_band=self._random.choice(AGE_LABELS),
            gender=self._random.choice(GENDER_LABELS),
            emotion=self._random.choice(EMOTION_LABELS),
            classification=Classification.ABNORMAL if abnormal else Classification.NORMAL,
        )

    def _catch_up(self) -> None:
        """Append every event whose time has come."""
        now = self._clock()
        while self._next_time <= now:
            event = self._generate()
            self._events.append(event)
            if event.is_abnormal:
                logger.info(f"MockEventSource: generated abnormal event at {event.timestamp}")
            self._next_time += timedelta(seconds=self._random.randint(5, 60))

        if len(self._events) > self.max_events:
            self._events = self._events[-self.max_events:]

    # ==================== Client Interface ====================

    async def fetch(self) -> List[ClassificationEvent]:
        if self._simulate_failure:
            raise FetchError("Simulated fetch failure")

        self._catch_up()
        return list(self._events)

    async def get_config(self) -> ConfigurationPayload:
        if self._simulate_failure:
            raise FetchError("Simulated fetch failure")
        return self._config.model_copy(deep=True)

    async def post_config(self, payload: ConfigurationPayload) -> None:
        if self._simulate_failure:
            raise FetchError("Simulated fetch failure")
        self._config = payload.model_copy(deep=True)

    async def fetch_audio(self, timestamp: str) -> bytes:
        """Half a second of silence as a WAV file."""
        if not any(e.timestamp == timestamp for e in self._events):
            raise FetchError(f"No audio for {timestamp}", status=404)

        buffer = io.BytesIO()
        with wave.open(buffer, "wb") as wav:
            wav.setnchannels(1)
            wav.setsampwidth(2)
            wav.setframerate(8000)
            wav.writeframes(b"\x00\x00" * 4000)
        return buffer.getvalue()

    async def close(self) -> None:
        pass
