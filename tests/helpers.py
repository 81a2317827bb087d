# tests/helpers.py
"""Test doubles shared across test modules."""

from __future__ import annotations

from typing import List

from smartwatch_monitor.models import Classification, ClassificationEvent


def make_event(timestamp: str, result: str = "normal", **labels) -> ClassificationEvent:
    return ClassificationEvent(
        timestamp=timestamp,
        age_band=labels.get("age", "20s"),
        gender=labels.get("gender", "Female"),
        emotion=labels.get("emotion", "Calm"),
        classification=Classification.from_wire(result),
    )


class FakeClient:
    """Event source that replays queued responses.

    Each queued item is either a list of events or an exception to raise.
    The last item is repeated once the queue runs dry.
    """

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = 0

    async def fetch(self) -> List[ClassificationEvent]:
        self.calls += 1
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        return list(item)

    async def close(self) -> None:
        pass
