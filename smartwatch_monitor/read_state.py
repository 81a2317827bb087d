"""Read/unread partitioning for the notification list.

An event is unread when its timestamp is strictly greater than the
watermark. Everything at or below the watermark is read.
"""

import logging
from typing import Iterable, List, Optional, Sequence, Tuple

from smartwatch_monitor.models import ClassificationEvent

logger = logging.getLogger(__name__)


def partition(
    events: Sequence[ClassificationEvent],
    watermark: Optional[str],
) -> Tuple[List[ClassificationEvent], List[ClassificationEvent]]:
    """Split events into (unread, read), preserving input order.

    Args:
        events: Events to split
        watermark: Last acknowledged timestamp, or None if never set

    Returns:
        (unread, read) lists
    """
    if watermark is None:
        return list(events), []

    unread = []
    read = []
    for event in events:
        if event.timestamp > watermark:
            unread.append(event)
        else:
            read.append(event)
    return unread, read


def latest_timestamp(events: Iterable[ClassificationEvent]) -> Optional[str]:
    """Largest timestamp in events, or None for an empty list."""
    return max((e.timestamp for e in events), default=None)


def sort_newest_first(events: Iterable[ClassificationEvent]) -> List[ClassificationEvent]:
    return sorted(events, key=lambda e: e.timestamp, reverse=True)


async def mark_all_read(events: Sequence[ClassificationEvent], store) -> Optional[str]:
    """Advance the watermark to the newest event in the list.

    Uses set_if_greater() so this never undoes a newer watermark written by
    the detection loop in the meantime.

    Args:
        events: The events the user was shown
        store: WatermarkStore

    Returns:
        The watermark after the call, or None if events was empty
    """
    newest = latest_timestamp(events)
    if newest is None:
        return None

    if await store.set_if_greater(newest):
        logger.info(f"Marked all read up to {newest}")
        return newest
    return await store.get()
