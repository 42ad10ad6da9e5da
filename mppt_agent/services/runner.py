"""Single cooperative driver loop for publishing and live-view checks."""
from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from mppt_agent.clock import ticks_ms
from mppt_agent.config import Settings
from mppt_agent.services.hass import HassDiscovery
from mppt_agent.services.live_view import LiveViewGate
from mppt_agent.services.publisher import FleetPublisher
from mppt_agent.services.simulator import SimulatedFleet

logger = logging.getLogger(__name__)


class TelemetryRunner:
    """Drives every periodic component in sequence, once per tick.

    Each step runs to completion before the next, so the publisher, gate and
    discovery state only ever have one mutator.
    """

    def __init__(
        self,
        settings: Settings,
        publisher: FleetPublisher,
        hass: HassDiscovery,
        live_view: LiveViewGate,
        *,
        simulator: SimulatedFleet | None = None,
        clock: Callable[[], int] = ticks_ms,
    ) -> None:
        self.settings = settings
        self.publisher = publisher
        self.hass = hass
        self.live_view = live_view
        self.simulator = simulator
        self._clock = clock
        self._task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()
        self.ticks: int = 0

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run(), name="telemetry-runner")

    async def stop(self) -> None:
        self._stop_event.set()
        if self._task:
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    def force_update(self) -> None:
        """Invalidate downstream caches: next cycle is full and discovery is resent."""

        self.publisher.force_update()
        self.hass.force_update()

    async def run_once(self, now: Optional[int] = None) -> None:
        if self.simulator is not None:
            self.simulator.step()
        now = self._clock() if now is None else now
        await self.publisher.tick(now)
        await self.hass.tick()
        await self.live_view.check(now)
        self.ticks += 1

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception:
                logger.exception("Unhandled telemetry loop error")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.settings.tick_interval_seconds)
            except asyncio.TimeoutError:
                continue
