"""Free-running millisecond tick counter shared by the publish and live-view loops.

Ticks wrap at 32 bits, so deadlines must only ever be compared through
:func:`ticks_diff`; ``now >= deadline`` breaks once the counter rolls over.
"""
from __future__ import annotations

import time

TICK_BITS = 32
TICK_MASK = (1 << TICK_BITS) - 1
_TICK_HALF = 1 << (TICK_BITS - 1)


def ticks_ms() -> int:
    return int(time.monotonic() * 1000) & TICK_MASK


def ticks_add(ticks: int, delta_ms: int) -> int:
    return (int(ticks) + int(delta_ms)) & TICK_MASK


def ticks_diff(end: int, start: int) -> int:
    """Signed distance from ``start`` to ``end`` in milliseconds, wraparound safe."""

    return ((int(end) - int(start) + _TICK_HALF) & TICK_MASK) - _TICK_HALF


def ticks_due(now: int, deadline: int | None) -> bool:
    if deadline is None:
        return False
    return ticks_diff(now, deadline) >= 0


def seconds_to_ms(seconds: float) -> int:
    return int(round(float(seconds) * 1000.0))
