"""
Telemetry reporting to the bot service.

The session reports each state transition and participant change through a
``TelemetryReporter``. Delivery is best effort: a failed POST is logged and
never interrupts the session.

Usage:
    reporter = HttpTelemetryReporter(config.telemetry_url, config.bot_id)
    reporter.start_heartbeat(config.heartbeat_interval_ms)
    await reporter.report(EventCode.IN_CALL)
    await reporter.close()
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Optional, Protocol, runtime_checkable

import httpx

from meet_recorder.events import EventCode

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 10.0


@runtime_checkable
class TelemetryReporter(Protocol):
    """Anything that can deliver ``report(event_code, payload)`` calls."""

    async def report(self, event: EventCode, payload: Optional[dict[str, Any]] = None) -> None:
        ...

    def start_heartbeat(self, interval_ms: int) -> None:
        ...

    async def close(self) -> None:
        ...


class LoggingTelemetryReporter:
    """Reporter used when no telemetry endpoint is configured."""

    def __init__(self, bot_id: str):
        self.bot_id = bot_id

    async def report(self, event: EventCode, payload: Optional[dict[str, Any]] = None) -> None:
        logger.info(f"[{self.bot_id}] event {event.value}: {payload or {}}")

    def start_heartbeat(self, interval_ms: int) -> None:
        logger.debug(f"[{self.bot_id}] No telemetry endpoint, heartbeat disabled")

    async def close(self) -> None:
        pass


class HttpTelemetryReporter:
    """Posts events and heartbeats to ``<base_url>/bots/<bot_id>/...``."""

    def __init__(
        self,
        base_url: str,
        bot_id: str,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.bot_id = bot_id
        self._client = client or httpx.AsyncClient(timeout=REQUEST_TIMEOUT)
        self._owns_client = client is None
        self._heartbeat_task: Optional[asyncio.Task] = None

    @property
    def events_url(self) -> str:
        return f"{self.base_url}/bots/{self.bot_id}/events"

    @property
    def heartbeat_url(self) -> str:
        return f"{self.base_url}/bots/{self.bot_id}/heartbeat"

    async def report(self, event: EventCode, payload: Optional[dict[str, Any]] = None) -> None:
        body = {
            "eventType": event.value,
            "eventTime": datetime.now(timezone.utc).isoformat(),
            "data": payload or {},
        }
        try:
            response = await self._client.post(self.events_url, json=body)
            response.raise_for_status()
            logger.debug(f"[{self.bot_id}] Reported {event.value}")
        except httpx.HTTPError as e:
            logger.warning(f"[{self.bot_id}] Failed to report {event.value}: {e}")

    def start_heartbeat(self, interval_ms: int) -> None:
        """Start the background heartbeat loop (idempotent)."""
        if self._heartbeat_task and not self._heartbeat_task.done():
            return
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(interval_ms / 1000))

    async def _heartbeat_loop(self, interval: float) -> None:
        logger.info(f"[{self.bot_id}] Heartbeat started (every {interval:.1f}s)")
        while True:
            try:
                response = await self._client.post(self.heartbeat_url)
                response.raise_for_status()
            except httpx.HTTPError as e:
                logger.warning(f"[{self.bot_id}] Heartbeat failed: {e}")
            await asyncio.sleep(interval)

    async def stop_heartbeat(self) -> None:
        if self._heartbeat_task and not self._heartbeat_task.done():
            self._heartbeat_task.cancel()
            try:
                await self._heartbeat_task
            except asyncio.CancelledError:
                pass
        self._heartbeat_task = None

    async def close(self) -> None:
        """Stop the heartbeat and release the HTTP client."""
        await self.stop_heartbeat()
        if self._owns_client:
            await self._client.aclose()


def create_reporter(telemetry_url: Optional[str], bot_id: str) -> TelemetryReporter:
    """Pick the HTTP reporter when an endpoint is configured, else log events."""
    if telemetry_url:
        return HttpTelemetryReporter(telemetry_url, bot_id)
    return LoggingTelemetryReporter(bot_id)
