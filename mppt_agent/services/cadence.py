"""Full versus delta publish cadence for the retained channel."""
from __future__ import annotations

import logging
from typing import Optional

from mppt_agent.clock import seconds_to_ms, ticks_add, ticks_diff, ticks_due

logger = logging.getLogger(__name__)


class CadenceScheduler:
    """Owns the next full and next delta deadlines, both tick values.

    ``next_full`` is ``None`` when no forced full cycle is scheduled. Both
    deadlines start at ``now`` so the first cycle after startup is always full.
    Settings are read on every call so config changes apply on the next cycle.
    """

    def __init__(self, settings, now: int) -> None:
        self.settings = settings
        self.next_full: Optional[int] = now
        self.next_updates_only: int = now

    @property
    def interval_ms(self) -> int:
        return seconds_to_ms(self.settings.mqtt_publish_interval_seconds)

    def is_due(self, now: int) -> bool:
        return ticks_due(now, self.next_full) or ticks_due(now, self.next_updates_only)

    def full_mode(self) -> bool:
        if not self.settings.vedirect.updates_only:
            return True
        if self.next_full is None:
            return False
        return ticks_diff(self.next_updates_only, self.next_full) >= 0

    def commit(self, now: int, full_mode: bool) -> None:
        interval_ms = self.interval_ms
        self.next_updates_only = ticks_add(now, interval_ms)
        if not full_mode:
            return
        if not self.settings.vedirect.updates_only:
            # every cycle is full, so the full deadline tracks the interval
            self.next_full = self.next_updates_only
        elif self.settings.expiry_guard_enabled:
            # one tick ahead of the three interval expiry announced to discovery consumers
            self.next_full = ticks_add(now, 3 * interval_ms - 1000)
        else:
            self.next_full = None

    def force_update(self, now: int) -> None:
        logger.debug("Full publish forced")
        # full mode needs next_full at or before an overdue delta deadline
        if ticks_diff(self.next_updates_only, now) < 0:
            self.next_full = self.next_updates_only
        else:
            self.next_full = now

    def due_in_ms(self, now: int) -> dict[str, Optional[int]]:
        return {
            "next_full_ms": None if self.next_full is None else ticks_diff(self.next_full, now),
            "next_updates_only_ms": ticks_diff(self.next_updates_only, now),
        }
