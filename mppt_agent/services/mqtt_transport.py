"""Retained MQTT channel with reconnect handling."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from aiomqtt import Client, MqttError

from mppt_agent.config import Settings

logger = logging.getLogger(__name__)


class MqttTransport:
    """Keeps one broker session open and exposes ``connected`` plus ``publish``.

    A failed publish marks the session lost; the connection loop then tears it
    down and reconnects after ``reconnect_delay`` seconds.
    """

    def __init__(self, settings: Settings, *, reconnect_delay: float = 5.0) -> None:
        self.settings = settings
        self.reconnect_delay = reconnect_delay
        self.connected: bool = False
        self.last_error: Optional[str] = None
        self.last_publish_at: Optional[datetime] = None
        self.published_count: int = 0
        self._client: Client | None = None
        self._task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()
        self._lost = asyncio.Event()

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run(), name="mqtt-transport")

    async def stop(self) -> None:
        self._stop_event.set()
        self._lost.set()
        if self._task:
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self.connected = False

    async def publish(self, topic: str, payload: str, *, retain: bool | None = None) -> bool:
        client = self._client
        if not self.connected or client is None:
            return False
        if retain is None:
            retain = self.settings.mqtt_retain
        try:
            await client.publish(topic, payload.encode("utf-8"), retain=retain)
        except MqttError as exc:
            self._mark_lost(str(exc))
            logger.warning("MQTT publish to %s failed: %s", topic, exc)
            return False
        self.published_count += 1
        self.last_publish_at = datetime.now(timezone.utc)
        return True

    def _mark_lost(self, error: str) -> None:
        self.connected = False
        self.last_error = error
        self._lost.set()

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                logger.info("Connecting to MQTT broker %s:%s", self.settings.mqtt_host, self.settings.mqtt_port)
                async with Client(
                    self.settings.mqtt_host,
                    port=self.settings.mqtt_port,
                    username=self.settings.mqtt_username,
                    password=self.settings.mqtt_password,
                ) as client:
                    self._client = client
                    self._lost.clear()
                    self.connected = True
                    self.last_error = None
                    logger.info("MQTT connected")
                    try:
                        await self._lost.wait()
                    finally:
                        self.connected = False
                        self._client = None
                if not self._stop_event.is_set():
                    logger.info("MQTT session lost; reconnecting")
                    await self._sleep(self.reconnect_delay)
            except MqttError as exc:
                self.connected = False
                self.last_error = str(exc)
                logger.warning("MQTT error %s; retrying", exc)
                await self._sleep(self.reconnect_delay)
            except Exception:
                self.connected = False
                logger.exception("Unhandled MQTT transport error")
                await self._sleep(self.reconnect_delay)

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
