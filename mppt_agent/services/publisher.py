"""Fleet telemetry publisher for the retained MQTT channel."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Protocol

from mppt_agent.clock import ticks_ms
from mppt_agent.config import Settings
from mppt_agent.hardware.vedirect import TRACKED_FIELDS, VeDirectFleet, VeDirectFrame, render_value
from mppt_agent.observability import cycle_context
from mppt_agent.services.aggregates import FleetAggregates, compute_aggregates
from mppt_agent.services.cadence import CadenceScheduler
from mppt_agent.services.change_tracker import ChangeTracker
from mppt_agent.services.snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)


class RetainedTransport(Protocol):
    connected: bool

    async def publish(self, topic: str, payload: str, *, retain: bool | None = None) -> bool: ...


@dataclass
class CycleResult:
    cycle_id: str
    full_mode: bool
    started_at: int
    messages: int = 0
    devices: List[int] = field(default_factory=list)
    aborted: bool = False
    aggregates: Optional[FleetAggregates] = None
    completed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def summary(self) -> Dict[str, object]:
        return {
            "cycle_id": self.cycle_id,
            "mode": "full" if self.full_mode else "updates_only",
            "messages": self.messages,
            "devices": list(self.devices),
            "aborted": self.aborted,
            "completed_at": self.completed_at.isoformat(),
        }


class _CycleAborted(Exception):
    pass


class FleetPublisher:
    """Runs full or delta publish cycles over the whole fleet.

    A cycle only starts while the transport is connected. If a publish fails
    mid-cycle the remaining work is dropped and neither the snapshot store nor
    the cadence deadlines change, so the next tick retries the whole cycle.
    """

    def __init__(
        self,
        settings: Settings,
        fleet: VeDirectFleet,
        transport: RetainedTransport,
        *,
        clock: Callable[[], int] = ticks_ms,
    ) -> None:
        self.settings = settings
        self.fleet = fleet
        self.transport = transport
        self._clock = clock
        self.store = SnapshotStore(len(fleet), VeDirectFrame().as_fields())
        self.tracker = ChangeTracker(self.store, TRACKED_FIELDS)
        self.cadence = CadenceScheduler(settings, clock())
        self.last_cycle: Optional[CycleResult] = None
        self.cycles_completed: int = 0
        self.cycles_aborted: int = 0

    def force_update(self, now: int | None = None) -> None:
        self.cadence.force_update(self._clock() if now is None else now)

    async def tick(self, now: int | None = None) -> Optional[CycleResult]:
        if not self.settings.vedirect.enabled:
            return None
        now = self._clock() if now is None else now
        if not self.cadence.is_due(now):
            return None
        if not self.transport.connected:
            return None
        full_mode = self.cadence.full_mode()
        with cycle_context() as cycle_id:
            result = CycleResult(cycle_id=cycle_id, full_mode=full_mode, started_at=now)
            try:
                await self._run_cycle(now, result)
            except _CycleAborted:
                result.aborted = True
                self.cycles_aborted += 1
                logger.warning("Publish cycle aborted after %s messages: transport unavailable", result.messages)
                self.last_cycle = result
                return result
            self.cadence.commit(now, full_mode)
            self.cycles_completed += 1
            self.last_cycle = result
            logger.debug(
                "Publish cycle done",
                extra={"mode": "full" if full_mode else "updates_only", "messages": result.messages},
            )
            return result

    async def _run_cycle(self, now: int, result: CycleResult) -> None:
        root = self.settings.state_topic_root
        window_ms = self.fleet.valid_window_ms
        staged: list[tuple[int, Dict[str, object], List[str]]] = []
        for device in self.fleet:
            if not self.transport.connected:
                raise _CycleAborted()
            current = device.current_values()
            if result.full_mode:
                dirty = self.tracker.dirty_fields(device.index, current, full_mode=True)
            elif device.is_data_valid(now, window_ms):
                dirty = self.tracker.dirty_fields(device.index, current, full_mode=False)
            else:
                continue
            topic = f"{root}{device.serial}/"
            for name in dirty:
                await self._emit(f"{topic}{name}", render_value(name, current[name]), result)
            if dirty:
                result.devices.append(device.index)
            staged.append((device.index, current, dirty))

        aggregates = compute_aggregates(
            self.fleet,
            now=now,
            valid_window_ms=window_ms,
            include_invalid=self.settings.vedirect.aggregate_include_invalid,
        )
        for name, payload in aggregates.rendered().items():
            await self._emit(f"{root}{name}", payload, result)
        result.aggregates = aggregates

        for index, current, emitted in staged:
            self.tracker.commit(index, current, emitted, full_mode=result.full_mode)

    async def _emit(self, topic: str, payload: str, result: CycleResult) -> None:
        ok = await self.transport.publish(topic, payload)
        if not ok:
            raise _CycleAborted()
        result.messages += 1

    def status_snapshot(self, now: int | None = None) -> Dict[str, object]:
        now = self._clock() if now is None else now
        return {
            "enabled": self.settings.vedirect.enabled,
            "updates_only": self.settings.vedirect.updates_only,
            "full_mode_next": self.cadence.full_mode(),
            "deadlines": self.cadence.due_in_ms(now),
            "cycles_completed": self.cycles_completed,
            "cycles_aborted": self.cycles_aborted,
            "last_cycle": self.last_cycle.summary() if self.last_cycle else None,
        }
