"""Alerting system for Smartwatch Monitor.

This module owns the single user-visible alert slot and delivers it:
- Log record (always)
- PagerDuty incident with a fixed dedup key, so re-raising updates the
  same incident instead of opening another one
- Local audio chime via pygame (optional)
- Healthchecks.io heartbeat for the detection loop itself

Usage:
    from smartwatch_monitor.alerting import AlertDispatcher

    dispatcher = AlertDispatcher(config)
    await dispatcher.initialize()
    await dispatcher.raise_alert("2024-01-01T00:01:00Z", "Age: 20s, ...")
    await dispatcher.cancel()
    await dispatcher.close()
"""

import logging
import os
from datetime import datetime
from typing import Dict, List, Optional

import aiohttp

from smartwatch_monitor.exceptions import DispatchError
from smartwatch_monitor.models import ALERT_SLOT_ID, Alert

logger = logging.getLogger(__name__)

# Try to import pygame for audio
try:
    import pygame
    PYGAME_AVAILABLE = True
except ImportError:
    PYGAME_AVAILABLE = False


class AudioAlert:
    """Local audio chime via pygame."""

    def __init__(self, alert_sound: str = "sounds/alert.wav", volume: int = 80):
        """Initialize audio alerting.

        Args:
            alert_sound: Path to chime sound file
            volume: Volume (0-100)
        """
        self.alert_sound = alert_sound
        self._volume = max(0, min(100, volume)) / 100.0
        self._initialized = False

    def initialize(self) -> bool:
        """Initialize pygame mixer.

        Returns:
            True if initialization successful
        """
        if not PYGAME_AVAILABLE:
            logger.warning("Cannot initialize audio - pygame not installed")
            return False

        try:
            pygame.mixer.init()
            pygame.mixer.music.set_volume(self._volume)
            self._initialized = True
            logger.info("Audio alerting initialized")
            return True
        except Exception as e:
            logger.error(f"Failed to initialize pygame mixer: {e}")
            return False

    def close(self) -> None:
        """Stop audio and cleanup pygame."""
        self.stop()
        if self._initialized:
            pygame.mixer.quit()
            self._initialized = False

    def play(self) -> bool:
        """Play the chime once.

        Returns:
            True if playback started
        """
        if not self._initialized:
            return False

        if not os.path.exists(self.alert_sound):
            logger.error(f"Sound file not found: {self.alert_sound}")
            return False

        try:
            pygame.mixer.music.load(self.alert_sound)
            pygame.mixer.music.play(loops=0)
            return True
        except Exception as e:
            logger.error(f"Error playing sound: {e}")
            return False

    def stop(self) -> None:
        if self._initialized:
            pygame.mixer.music.stop()


class PagerDutyClient:
    """PagerDuty Events API v2 client.

    Every event uses the same dedup key, which makes the PagerDuty incident
    behave like a single alert slot.
    """

    EVENTS_API_URL = "https://events.pagerduty.com/v2/enqueue"

    def __init__(
        self,
        routing_key: str,
        service_name: str = "Smartwatch Monitor",
        dedup_key: str = f"smartwatch-{ALERT_SLOT_ID}",
        api_url: str = EVENTS_API_URL,
    ):
        """Initialize PagerDuty client.

        Args:
            routing_key: PagerDuty Events API v2 routing key
            service_name: Service name for incident source
            dedup_key: Fixed deduplication key for the alert slot
            api_url: Events endpoint (overridable for testing)
        """
        self.routing_key = routing_key
        self.service_name = service_name
        self.dedup_key = dedup_key
        self.api_url = api_url
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self) -> None:
        """Close HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def trigger_incident(
        self,
        summary: str,
        severity: str = "critical",
        custom_details: Optional[Dict] = None,
    ) -> bool:
        """Create or update the slot's PagerDuty incident.

        Args:
            summary: Short incident description
            severity: One of critical, error, warning, info
            custom_details: Additional incident details

        Returns:
            True if PagerDuty accepted the event
        """
        payload = {
            "routing_key": self.routing_key,
            "event_action": "trigger",
            "dedup_key": self.dedup_key,
            "payload": {
                "summary": summary,
                "severity": severity,
                "source": self.service_name,
                "timestamp": datetime.now().isoformat(),
                "custom_details": custom_details or {},
            },
        }
        if await self._post(payload):
            logger.info(f"PagerDuty incident triggered: {summary}")
            return True
        return False

    async def resolve_incident(self) -> bool:
        """Resolve the slot's PagerDuty incident."""
        payload = {
            "routing_key": self.routing_key,
            "event_action": "resolve",
            "dedup_key": self.dedup_key,
        }
        if await self._post(payload):
            logger.info(f"PagerDuty incident resolved: {self.dedup_key}")
            return True
        return False

    async def _post(self, payload: Dict) -> bool:
        try:
            session = await self._get_session()
            async with session.post(
                self.api_url,
                json=payload,
                timeout=aiohttp.ClientTimeout(total=10),
            ) as resp:
                if resp.status == 202:
                    return True
                text = await resp.text()
                logger.error(f"PagerDuty API error {resp.status}: {text}")
                return False
        except Exception as e:
            logger.error(f"PagerDuty API request failed: {e}")
            return False


class HealthchecksClient:
    """Healthchecks.io heartbeat client.

    Pinged after every detection cycle so an outside watchdog notices
    when the monitor stops polling.
    """

    def __init__(self, ping_url: str):
        """Initialize Healthchecks client.

        Args:
            ping_url: Full ping URL including UUID
        """
        self.ping_url = ping_url
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self) -> None:
        """Close HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def send_ping(self) -> bool:
        """Send heartbeat ping.

        Returns:
            True if ping was delivered
        """
        try:
            session = await self._get_session()
            async with session.get(
                self.ping_url,
                timeout=aiohttp.ClientTimeout(total=10),
            ) as resp:
                if resp.status == 200:
                    logger.debug("Healthchecks ping sent")
                    return True
                logger.warning(f"Healthchecks ping failed: {resp.status}")
                return False
        except Exception as e:
            logger.error(f"Healthchecks ping error: {e}")
            return False

    async def send_fail(self, message: str = "") -> bool:
        """Send failure signal.

        Args:
            message: Failure description

        Returns:
            True if signal was delivered
        """
        try:
            session = await self._get_session()
            async with session.post(
                f"{self.ping_url}/fail",
                data=message,
                timeout=aiohttp.ClientTimeout(total=10),
            ) as resp:
                return resp.status == 200
        except Exception as e:
            logger.error(f"Healthchecks fail signal error: {e}")
            return False


class AlertDispatcher:
    """Single-slot alert delivery for Smartwatch Monitor.

    At most one alert is visible at a time. raise_alert() replaces the slot
    contents and re-sends to every channel; cancel() clears it.
    """

    def __init__(self, config):
        """Initialize alert dispatcher.

        Args:
            config: Config object with alerting settings
        """
        self.config = config

        self._audio: Optional[AudioAlert] = None
        self._pagerduty: Optional[PagerDutyClient] = None
        self._healthchecks: Optional[HealthchecksClient] = None

        self._current: Optional[Alert] = None
        self._raise_count = 0

        logger.info("AlertDispatcher initialized")

    async def initialize(self) -> None:
        """Initialize all alerting channels."""
        alerting = self.config.alerting

        if alerting.local_audio.enabled:
            self._audio = AudioAlert(
                alert_sound=str(self.config.resolve_path(alerting.local_audio.alert_sound)),
                volume=alerting.local_audio.volume,
            )
            if not self._audio.initialize():
                self._audio = None

        if alerting.pagerduty.enabled and alerting.pagerduty.routing_key:
            self._pagerduty = PagerDutyClient(
                routing_key=alerting.pagerduty.routing_key,
                service_name=alerting.pagerduty.service_name,
            )

        if alerting.healthchecks.enabled and alerting.healthchecks.ping_url:
            self._healthchecks = HealthchecksClient(
                ping_url=alerting.healthchecks.ping_url,
            )

        logger.info(f"AlertDispatcher channels: {', '.join(self.channels)}")

    async def close(self) -> None:
        """Close all alerting channels."""
        if self._audio:
            self._audio.close()

        if self._pagerduty:
            await self._pagerduty.close()

        if self._healthchecks:
            await self._healthchecks.close()

        logger.info("AlertDispatcher closed")

    @property
    def channels(self) -> List[str]:
        names = ["log"]
        if self._pagerduty:
            names.append("pagerduty")
        if self._audio:
            names.append("audio")
        return names

    @property
    def current_alert(self) -> Optional[Alert]:
        """Alert currently occupying the slot, if any."""
        return self._current

    @property
    def raise_count(self) -> int:
        return self._raise_count

    # ==================== Alert Slot ====================

    async def raise_alert(self, event_timestamp: str, summary: str) -> Alert:
        """Show the alert for an event, replacing whatever is in the slot.

        Args:
            event_timestamp: Timestamp of the event the alert points at
            summary: Alert body

        Returns:
            The alert now in the slot

        Raises:
            DispatchError: If a remote channel did not accept the alert
        """
        alert = Alert(
            event_timestamp=event_timestamp,
            message=summary,
            title=self.config.alerting.title,
        )
        replaced = self._current is not None
        self._current = alert
        self._raise_count += 1

        logger.warning(
            f"ALERT: {alert.title} - {alert.message} "
            f"(event {event_timestamp}{', replaced previous' if replaced else ''})"
        )

        if self._audio:
            self._audio.play()

        failed = []
        if self._pagerduty:
            delivered = await self._pagerduty.trigger_incident(
                summary=f"{alert.title}: {alert.message}",
                custom_details={
                    "alert_id": alert.id,
                    "event_timestamp": event_timestamp,
                    "route": alert.route,
                },
            )
            if not delivered:
                failed.append("pagerduty")

        if failed:
            raise DispatchError(
                f"Alert for {event_timestamp} not delivered to: {', '.join(failed)}",
                channels=failed,
            )

        return alert

    async def cancel(self) -> bool:
        """Clear the visible alert.

        Returns:
            True if an alert was cleared, False if the slot was empty
        """
        if self._current is None:
            return False

        cleared = self._current
        self._current = None

        if self._audio:
            self._audio.stop()

        if self._pagerduty:
            await self._pagerduty.resolve_incident()

        logger.info(f"Alert cancelled (event {cleared.event_timestamp})")
        return True

    # ==================== Heartbeat ====================

    async def send_heartbeat(self) -> bool:
        """Send heartbeat ping to Healthchecks.io."""
        if self._healthchecks:
            return await self._healthchecks.send_ping()
        return False

    async def send_heartbeat_fail(self, message: str) -> bool:
        """Send failure signal to Healthchecks.io."""
        if self._healthchecks:
            return await self._healthchecks.send_fail(message)
        return False
