# =============================================================================
# DISCLAIMER: This software is NOT a safety device and is NOT intended for
# emergency response or child supervision. This is a proof of concept for
# educational purposes only. Do not rely on this system for safety decisions.
# =============================================================================
"""Client for the smartwatch sensing API.

Fetches classification events, reads and writes the reporting
configuration, and downloads the audio clip recorded for an event.
The client holds no monitoring state; every call is a fresh request.
"""

import asyncio
import logging
from typing import Any, List, Optional

import aiohttp
from pydantic import TypeAdapter, ValidationError

from smartwatch_monitor.exceptions import FetchError
from smartwatch_monitor.models import ClassificationEvent, ConfigurationPayload, EventRecord

logger = logging.getLogger(__name__)

_RECORDS = TypeAdapter(List[EventRecord])


def parse_events(data: Any) -> List[ClassificationEvent]:
    """Convert a decoded `/data` response into events.

    A single bad record fails the whole list.

    Raises:
        FetchError: If the body is not a list of complete event objects
    """
    if not isinstance(data, list):
        raise FetchError(f"Expected a JSON array, got {type(data).__name__}")
    try:
        records = _RECORDS.validate_python(data)
    except ValidationError as e:
        raise FetchError(f"Malformed event record: {e.errors()[0]['loc']} {e.errors()[0]['msg']}") from e
    return [ClassificationEvent.from_record(r) for r in records]


class EventSourceClient:
    """Client for the remote event source.

    Usage:
        client = EventSourceClient(base_url="https://example.net/api/smartwatch")
        events = await client.fetch()
        await client.close()
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 5.0,
    ):
        """Initialize event source client.

        Args:
            base_url: API root, e.g. https://host/api/smartwatch
            timeout_seconds: Bound on connect and read for every request
        """
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(
                total=self.timeout_seconds,
                sock_connect=self.timeout_seconds,
                sock_read=self.timeout_seconds,
            )
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self) -> None:
        """Close the client and cleanup resources."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def fetch(self) -> List[ClassificationEvent]:
        """Fetch the full current list of classification events.

        Returns:
            Events in the order the server sent them

        Raises:
            FetchError: On timeout, connection error, non-200 or bad body
        """
        data = await self._get_json("/data")
        events = parse_events(data)
        logger.debug(f"Fetched {len(events)} events")
        return events

    async def get_config(self) -> ConfigurationPayload:
        """Read the reporting configuration from the server.

        Raises:
            FetchError: On request failure or invalid payload
        """
        data = await self._get_json("/config")
        try:
            return ConfigurationPayload.model_validate(data)
        except ValidationError as e:
            raise FetchError(f"Malformed configuration payload: {e}") from e

    async def post_config(self, payload: ConfigurationPayload) -> None:
        """Save the reporting configuration on the server.

        Raises:
            FetchError: If the server does not answer with a 2xx status
        """
        url = f"{self.base_url}/config"
        try:
            session = await self._get_session()
            async with session.post(url, json=payload.to_wire()) as resp:
                if not 200 <= resp.status < 300:
                    text = await resp.text()
                    raise FetchError(f"POST /config returned HTTP {resp.status}: {text}", status=resp.status)
        except asyncio.TimeoutError as e:
            raise FetchError("POST /config timed out") from e
        except aiohttp.ClientError as e:
            raise FetchError(f"POST /config connection error: {e}") from e
        logger.info("Configuration saved to server")

    async def fetch_audio(self, timestamp: str) -> bytes:
        """Download the audio clip recorded for one event.

        Raises:
            FetchError: On request failure or non-200 status
        """
        url = f"{self.base_url}/audio"
        try:
            session = await self._get_session()
            async with session.get(url, params={"timestamp": timestamp}) as resp:
                if resp.status != 200:
                    raise FetchError(f"GET /audio returned HTTP {resp.status}", status=resp.status)
                return await resp.read()
        except asyncio.TimeoutError as e:
            raise FetchError("GET /audio timed out") from e
        except aiohttp.ClientError as e:
            raise FetchError(f"GET /audio connection error: {e}") from e

    async def _get_json(self, path: str) -> Any:
        url = f"{self.base_url}{path}"
        try:
            session = await self._get_session()
            async with session.get(url) as resp:
                if resp.status != 200:
                    raise FetchError(f"GET {path} returned HTTP {resp.status}", status=resp.status)
                # Server may not label the body as JSON
                return await resp.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise FetchError(f"GET {path} timed out after {self.timeout_seconds}s") from e
        except aiohttp.ClientError as e:
            raise FetchError(f"GET {path} connection error: {e}") from e
        except ValueError as e:
            raise FetchError(f"GET {path} returned invalid JSON: {e}") from e
