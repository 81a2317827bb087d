"""Exception types for Smartwatch Monitor.

None of these are fatal to the process. The detection loop catches them,
logs them and tries again on the next cycle.
"""

from typing import Iterable, Optional


class MonitorError(Exception):
    """Base class for all monitor errors."""


class FetchError(MonitorError):
    """Remote event source request failed.

    Raised on network errors, timeouts, non-2xx responses and bodies that
    cannot be parsed into a complete event list.
    """

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class StoreError(MonitorError):
    """Persistent watermark storage is unavailable."""


class DispatchError(MonitorError):
    """An alert channel failed to deliver the alert."""

    def __init__(self, message: str, channels: Optional[Iterable[str]] = None):
        super().__init__(message)
        self.channels = list(channels or [])


class ConfigError(ValueError):
    """Configuration file contains invalid values."""
