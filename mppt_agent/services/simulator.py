"""Simulated VE.Direct controllers for development runs."""
from __future__ import annotations

import logging
import math
import random
import time
from typing import Dict, Optional

from mppt_agent import build_info
from mppt_agent.config import Settings, SimulationProfile
from mppt_agent.hardware.vedirect import FIELD_CATALOGUE, VeDirectFleet

logger = logging.getLogger(__name__)

SIMULATED_PID = 0xA053
SIMULATED_FIRMWARE = "159"

# base, amplitude, period seconds, clamp min, clamp max
VEDIRECT_FIELD_PROFILE = {
    "V": (13.2, 0.6, 40.0, 11.5, 14.6),
    "I": (6.0, 4.0, 25.0, 0.0, None),
    "VPV": (36.0, 6.0, 30.0, 0.0, None),
    "PPV": (180.0, 140.0, 25.0, 0.0, None),
    "E": (96.0, 2.0, 60.0, 0.0, 100.0),
    "H19": (540.0, 0.5, 900.0, 0.0, None),
    "H20": (1.2, 0.8, 300.0, 0.0, None),
    "H21": (320.0, 30.0, 600.0, 0.0, None),
    "H22": (1.8, 0.2, 900.0, 0.0, None),
    "H23": (350.0, 20.0, 900.0, 0.0, None),
}


class SimulatedFleet:
    """Feed repeatable frames into every device of a fleet."""

    def __init__(self, settings: Settings, fleet: VeDirectFleet, *, seed_hint: str | None = None):
        if build_info.BUILD_FLAVOR == "prod":
            raise RuntimeError("Simulation is not allowed in production builds")
        self.settings = settings
        self.fleet = fleet
        self._seed_hint = seed_hint or settings.node_id
        self.random = random.Random(self._resolve_seed(self.profile))
        self._started = time.monotonic()
        self._last_frame_at: Dict[int, float] = {}

    @property
    def profile(self) -> SimulationProfile:
        return self.settings.simulation

    def _resolve_seed(self, profile: SimulationProfile) -> int:
        if profile.seed is not None:
            return int(profile.seed)
        return sum(self._seed_hint.encode("utf-8")) % (2**31)

    def _resolve_time(self, now: Optional[float]) -> float:
        multiplier = self.profile.time_multiplier or 1.0
        if now is None:
            return (time.monotonic() - self._started) * multiplier
        return now * multiplier

    def is_offline(self, now: Optional[float] = None) -> bool:
        now = self._resolve_time(now)
        if not self.profile.enabled:
            return False
        if self.profile.offline:
            return True
        if self.profile.offline_cycle:
            offset = self.profile.offline_cycle.initial_offset_seconds or 0.0
            period = self.profile.offline_cycle.period_seconds
            window = self.profile.offline_cycle.offline_seconds
            if period > 0:
                position = (now + offset) % period
                return position < window
        return False

    def frame(self, index: int, now: Optional[float] = None) -> Dict[str, object]:
        """Deterministic frame for one device at simulated time ``now``."""

        now = self._resolve_time(now)
        values: Dict[str, object] = {}
        for name in VEDIRECT_FIELD_PROFILE:
            value = self._field_value(name, index, now)
            spec = FIELD_CATALOGUE[name]
            values[name] = int(round(value)) if spec.kind == "int" else round(value, spec.decimals)
        values["P"] = int(round(float(values["V"]) * float(values["I"])))
        producing = int(values["PPV"]) > 0
        values.update(
            {
                "PID": SIMULATED_PID,
                "SER": f"HQSIM{index:05d}",
                "FW": SIMULATED_FIRMWARE,
                "LOAD": math.sin(now / 120.0 + index) > -0.5,
                "CS": 3 if producing else 0,
                "ERR": 0,
                "OR": 0 if producing else 1,
                "MPPT": 2 if producing else 0,
                "HSDS": int(now // 86400) % 365,
            }
        )
        return values

    def step(self, now: Optional[float] = None) -> int:
        """Ingest a frame for each device whose frame interval elapsed; returns frames fed."""

        if not self.profile.enabled:
            return 0
        sim_now = self._resolve_time(now)
        if self.is_offline(now):
            return 0
        interval = self.profile.frame_interval_seconds
        fed = 0
        for device in self.fleet:
            last = self._last_frame_at.get(device.index)
            if last is not None and sim_now - last < interval:
                continue
            self._last_frame_at[device.index] = sim_now
            self.fleet.ingest_payload(device.index, self.frame(device.index, now))
            fed += 1
        return fed

    def _field_value(self, name: str, index: int, now: float) -> float:
        base_overrides = self.profile.base_overrides or {}
        if name in base_overrides:
            value = float(base_overrides[name])
        else:
            base, amplitude, period, _, _ = VEDIRECT_FIELD_PROFILE[name]
            phase = (sum(name.encode("utf-8")) % 10) / 10.0 + index * 0.7
            value = base + amplitude * math.sin((now / period) + phase)
        jitter_map = self.profile.jitter or {}
        if name in jitter_map:
            sigma = max(float(jitter_map[name]), 0.0)
            value += self.random.gauss(0, sigma)
        _, _, _, clamp_min, clamp_max = VEDIRECT_FIELD_PROFILE[name]
        if clamp_min is not None:
            value = max(value, clamp_min)
        if clamp_max is not None:
            value = min(value, clamp_max)
        return value
