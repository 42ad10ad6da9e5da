"""Fleet-wide totals derived from current device values."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable

from mppt_agent.hardware.vedirect import VeDirectDevice, render_value

AGGREGATE_FIELDS: tuple[str, ...] = ("PPV", "P", "E", "H19", "H20", "H21", "H22")


@dataclass
class FleetAggregates:
    PPV: int = 0
    P: int = 0
    E: float = 0.0
    H19: float = 0.0
    H20: float = 0.0
    H21: int = 0
    H22: float = 0.0
    device_count: int = 0

    def as_fields(self) -> Dict[str, object]:
        return {f"{name}_total": getattr(self, name) for name in AGGREGATE_FIELDS}

    def rendered(self) -> Dict[str, str]:
        return {f"{name}_total": render_value(name, getattr(self, name)) for name in AGGREGATE_FIELDS}


def compute_aggregates(
    devices: Iterable[VeDirectDevice],
    *,
    now: int,
    valid_window_ms: int,
    include_invalid: bool = False,
) -> FleetAggregates:
    """Sum power and energy counters and average efficiency over the fleet.

    Devices without valid data are skipped unless ``include_invalid`` is set.
    The efficiency mean over zero counted devices is 0.
    """

    totals = FleetAggregates()
    efficiency_sum = 0.0
    for device in devices:
        if not include_invalid and not device.is_data_valid(now, valid_window_ms):
            continue
        frame = device.frame
        totals.device_count += 1
        totals.PPV += int(frame.PPV)
        totals.P += int(frame.P)
        totals.H19 += float(frame.H19)
        totals.H20 += float(frame.H20)
        totals.H21 += int(frame.H21)
        totals.H22 += float(frame.H22)
        efficiency_sum += float(frame.E)
    if totals.device_count:
        totals.E = efficiency_sum / totals.device_count
    return totals
