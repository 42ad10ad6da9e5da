"""Throttled live-view broadcasts towards attached WebSocket viewers."""
from __future__ import annotations

import asyncio
import json
import logging
from collections import OrderedDict
from typing import Any, Callable, Dict, List, Optional, Protocol

from mppt_agent.clock import seconds_to_ms, ticks_diff, ticks_ms
from mppt_agent.config import Settings
from mppt_agent.hardware.vedirect import FIELD_CATALOGUE, VeDirectDevice, VeDirectFleet, render_value
from mppt_agent.services.aggregates import AGGREGATE_FIELDS, compute_aggregates

logger = logging.getLogger(__name__)

VIEWER_EVICTED_CODE = 1008

_DEVICE_TEXT_FIELDS = ("PID", "SER", "FW", "LOAD", "CS", "ERR", "OR", "MPPT")
_OUTPUT_FIELDS = ("P", "V", "I", "E")
_INPUT_FIELDS = (
    ("PPV", "PPV"),
    ("VPV", "VPV"),
    ("IPV", "IPV"),
    ("YieldToday", "H20"),
    ("YieldYesterday", "H22"),
    ("YieldTotal", "H19"),
    ("MaximumPowerToday", "H21"),
    ("MaximumPowerYesterday", "H23"),
)


class Viewer(Protocol):
    async def send_text(self, data: str) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


class ViewerHub:
    """Attached viewers in connection order; the oldest is dropped beyond ``max_viewers``."""

    def __init__(self, max_viewers: int = 8) -> None:
        self.max_viewers = max_viewers
        self._viewers: "OrderedDict[int, Viewer]" = OrderedDict()
        self._lock = asyncio.Lock()

    @property
    def viewer_count(self) -> int:
        return len(self._viewers)

    async def attach(self, viewer: Viewer) -> None:
        evicted: List[Viewer] = []
        async with self._lock:
            self._viewers[id(viewer)] = viewer
            while len(self._viewers) > max(int(self.max_viewers), 1):
                _, oldest = self._viewers.popitem(last=False)
                evicted.append(oldest)
        logger.info("Live viewer attached (%s total)", self.viewer_count)
        for oldest in evicted:
            logger.info("Dropping oldest live viewer: limit %s reached", self.max_viewers)
            try:
                await oldest.close(code=VIEWER_EVICTED_CODE)
            except Exception:
                logger.debug("Closing evicted viewer failed", exc_info=True)

    async def detach(self, viewer: Viewer) -> None:
        async with self._lock:
            removed = self._viewers.pop(id(viewer), None)
        if removed is not None:
            logger.info("Live viewer detached (%s remaining)", self.viewer_count)

    async def broadcast(self, text: str) -> bool:
        """Send ``text`` to every viewer; viewers that fail are detached.

        Returns ``True`` when at least one viewer received the payload.
        """

        delivered = 0
        for viewer in list(self._viewers.values()):
            try:
                await viewer.send_text(text)
                delivered += 1
            except Exception as exc:
                logger.debug("Live viewer send failed: %s", exc)
                await self.detach(viewer)
        return delivered > 0


def _value_entry(name: str, value: object) -> Dict[str, Any]:
    spec = FIELD_CATALOGUE[name]
    return {"v": value, "u": spec.unit, "d": spec.decimals}


def device_document(device: VeDirectDevice, *, now: int, valid_window_ms: int) -> Dict[str, Any]:
    frame = device.frame
    age_ms = device.data_age_ms(now)
    info: Dict[str, Any] = {
        "data_age": None if age_ms is None else age_ms // 1000,
        "age_critical": not device.is_data_valid(now, valid_window_ms),
    }
    for name in _DEVICE_TEXT_FIELDS:
        info[name] = render_value(name, getattr(frame, name))
    info["HSDS"] = {"v": frame.HSDS, "u": FIELD_CATALOGUE["HSDS"].unit}
    return {
        "order": device.index,
        "device": info,
        "output": {name: _value_entry(name, getattr(frame, name)) for name in _OUTPUT_FIELDS},
        "input": {label: _value_entry(name, getattr(frame, name)) for label, name in _INPUT_FIELDS},
    }


def build_live_document(fleet: VeDirectFleet, settings: Settings, *, now: int) -> Dict[str, Any]:
    window_ms = fleet.valid_window_ms
    totals = compute_aggregates(
        fleet,
        now=now,
        valid_window_ms=window_ms,
        include_invalid=settings.vedirect.aggregate_include_invalid,
    )
    return {
        "mppts": [device_document(device, now=now, valid_window_ms=window_ms) for device in fleet],
        "totals": {
            f"{name}_total": _value_entry(name, getattr(totals, name)) for name in AGGREGATE_FIELDS
        },
    }


class LiveViewGate:
    """Decides when the consolidated live view is pushed to viewers.

    Checks are skipped while nobody is attached and are throttled to one per
    ``min_check_interval_seconds``. A broadcast goes out when any device's update
    tick advanced since the last broadcast, or when the last broadcast is older
    than ``max_staleness_seconds``. Cached ticks only move on a successful send.
    """

    def __init__(
        self,
        settings: Settings,
        fleet: VeDirectFleet,
        hub: ViewerHub,
        *,
        clock: Callable[[], int] = ticks_ms,
    ) -> None:
        self.settings = settings
        self.fleet = fleet
        self.hub = hub
        self._clock = clock
        self._seen_updates: List[Optional[int]] = [None] * len(fleet)
        self._last_check: Optional[int] = None
        self._last_broadcast: Optional[int] = None
        self.broadcasts: int = 0
        self.failures: int = 0

    @property
    def last_broadcast(self) -> Optional[int]:
        return self._last_broadcast

    def build_payload(self, now: int | None = None) -> Dict[str, Any]:
        now = self._clock() if now is None else now
        return build_live_document(self.fleet, self.settings, now=now)

    def render(self, now: int) -> str:
        return json.dumps(self.build_payload(now), allow_nan=False, separators=(",", ":"))

    def _change_detected(self) -> bool:
        for device in self.fleet:
            if device.last_update is not None and device.last_update != self._seen_updates[device.index]:
                return True
        return False

    def _stale(self, now: int) -> bool:
        if self._last_broadcast is None:
            return True
        limit_ms = seconds_to_ms(self.settings.live_view.max_staleness_seconds)
        return ticks_diff(now, self._last_broadcast) > limit_ms

    async def check(self, now: int | None = None) -> bool:
        """Run one gate check; returns ``True`` when a broadcast was delivered."""

        config = self.settings.live_view
        if not config.enabled or self.hub.viewer_count == 0:
            return False
        now = self._clock() if now is None else now
        min_interval_ms = seconds_to_ms(config.min_check_interval_seconds)
        if self._last_check is not None and ticks_diff(now, self._last_check) < min_interval_ms:
            return False
        self._last_check = now

        if not (self._change_detected() or self._stale(now)):
            return False
        # ticks as of the rendered document; ingests during the send stay unseen
        seen = [device.last_update for device in self.fleet]
        try:
            text = self.render(now)
        except (TypeError, ValueError, OverflowError, MemoryError) as exc:
            self.failures += 1
            logger.warning("Live view serialization failed: %s", exc)
            return False
        delivered = await self.hub.broadcast(text)
        if delivered:
            self._seen_updates = seen
            self._last_broadcast = now
            self.broadcasts += 1
        return delivered
