# =============================================================================
# DISCLAIMER: This software is NOT a safety device and is NOT intended for
# emergency response or child supervision. This is a proof of concept for
# educational purposes only. Do not rely on this system for safety decisions.
# =============================================================================
"""Data models for Smartwatch Monitor.

Plain dataclasses for the objects the monitor passes around internally,
and pydantic models for the JSON shapes exchanged with the remote API.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

# Filter labels offered by the wearable's configuration endpoint
GENDER_LABELS = ["Male", "Female"]
EMOTION_LABELS = ["Angry", "Sad", "Neutral", "Calm", "Happy", "Fear", "Disgust", "Surprised"]
AGE_LABELS = ["20s", "30s", "40s", "50s", "60s", "70s", "80s"]

# Single logical alert slot
ALERT_SLOT_ID = "abnormal-event"
ALERT_DESTINATION = "notification-detail"

# Persisted watermark key
WATERMARK_KEY = "last_seen_timestamp"


class Classification(Enum):
    """Upstream classification result."""

    NORMAL = "normal"
    ABNORMAL = "abnormal"

    @classmethod
    def from_wire(cls, value: str) -> "Classification":
        """Normalize a wire value. Only "abnormal" (any case) is abnormal."""
        if value.strip().lower() == cls.ABNORMAL.value:
            return cls.ABNORMAL
        return cls.NORMAL


class MonitorState(Enum):
    """Detection loop states."""

    IDLE = "idle"
    FETCHING = "fetching"
    EVALUATING = "evaluating"
    ALERTING = "alerting"
    SLEEPING = "sleeping"
    STOPPED = "stopped"


class EventRecord(BaseModel):
    """One element of the `GET /data` response array."""

    model_config = ConfigDict(extra="ignore")

    timestamp: str
    age_prediction: str
    gender_prediction: str
    emotion_prediction: str
    result: str


@dataclass(frozen=True)
class ClassificationEvent:
    """A single sensing result from the wearable.

    Timestamps are compared as plain strings, so the source must send them
    zero-padded and fixed width.
    """

    timestamp: str
    age_band: str
    gender: str
    emotion: str
    classification: Classification = Classification.NORMAL

    @classmethod
    def from_record(cls, record: EventRecord) -> "ClassificationEvent":
        return cls(
            timestamp=record.timestamp,
            age_band=record.age_prediction,
            gender=record.gender_prediction,
            emotion=record.emotion_prediction,
            classification=Classification.from_wire(record.result),
        )

    @property
    def is_abnormal(self) -> bool:
        return self.classification is Classification.ABNORMAL

    @property
    def summary(self) -> str:
        """Alert body text."""
        return f"Age: {self.age_band}, Gender: {self.gender}, Emotion: {self.emotion}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the wire shape for JSON responses."""
        return {
            "timestamp": self.timestamp,
            "age_prediction": self.age_band,
            "gender_prediction": self.gender,
            "emotion_prediction": self.emotion,
            "result": self.classification.value,
        }


class ConfigurationPayload(BaseModel):
    """Remote reporting configuration.

    Filter values are inclusion flags (0 or 1) keyed by category label.
    The monitor passes this through to the server and never acts on it.
    """

    model_config = ConfigDict(populate_by_name=True)

    primary_phone: str = Field(alias="primaryPhone")
    secondary_phone: str = Field(alias="secondaryPhone")
    filters: Dict[str, Literal[0, 1]] = Field(default_factory=dict)

    @classmethod
    def default(cls) -> "ConfigurationPayload":
        """Payload with every known label disabled and no contacts."""
        labels = GENDER_LABELS + EMOTION_LABELS + AGE_LABELS
        return cls(
            primary_phone="-1",
            secondary_phone="-1",
            filters={label: 0 for label in labels},
        )

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


@dataclass
class Alert:
    """Content of the single user-visible alert slot."""

    event_timestamp: str
    message: str
    title: str = "Abnormal Result Detected"
    id: str = ALERT_SLOT_ID
    raised_at: datetime = field(default_factory=datetime.now)

    @property
    def route(self) -> Dict[str, str]:
        """Deep-link payload that opens the detail view for this event."""
        return {
            "destination": ALERT_DESTINATION,
            "eventTimestamp": self.event_timestamp,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "message": self.message,
            "event_timestamp": self.event_timestamp,
            "raised_at": self.raised_at.isoformat(),
            "route": self.route,
        }


@dataclass
class LoopStatus:
    """Snapshot of the detection loop for the web API."""

    state: MonitorState = MonitorState.IDLE
    cycle_count: int = 0
    alert_count: int = 0
    last_cycle_time: Optional[datetime] = None
    last_alert_timestamp: Optional[str] = None
    last_error: Optional[str] = None
    consecutive_failures: int = 0
    uptime_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "cycle_count": self.cycle_count,
            "alert_count": self.alert_count,
            "last_cycle_time": self.last_cycle_time.isoformat() if self.last_cycle_time else None,
            "last_alert_timestamp": self.last_alert_timestamp,
            "last_error": self.last_error,
            "consecutive_failures": self.consecutive_failures,
            "uptime_seconds": self.uptime_seconds,
        }


def events_to_dicts(events: List[ClassificationEvent]) -> List[Dict[str, Any]]:
    return [e.to_dict() for e in events]
