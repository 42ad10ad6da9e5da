"""Dirty-field detection against the snapshot store."""
from __future__ import annotations

from typing import Iterable, List, Mapping, Sequence

from mppt_agent.services.snapshot_store import SnapshotStore


class ChangeTracker:
    def __init__(self, store: SnapshotStore, tracked_fields: Sequence[str]) -> None:
        self.store = store
        self.tracked_fields = tuple(tracked_fields)

    def dirty_fields(self, index: int, current: Mapping[str, object], *, full_mode: bool) -> List[str]:
        """Fields to emit for one device, in tracked order.

        Full mode returns every tracked field. Otherwise a field is dirty when its
        current value differs from the snapshot under exact equality.
        """

        if full_mode:
            return list(self.tracked_fields)
        snapshot = self.store.get(index)
        return [name for name in self.tracked_fields if current.get(name) != snapshot.get(name)]

    def commit(
        self,
        index: int,
        current: Mapping[str, object],
        emitted: Iterable[str],
        *,
        full_mode: bool,
    ) -> None:
        """Record what was published. A full cycle emits every tracked field, so its
        commit replaces the whole entry; a delta commit only touches ``emitted``.
        """

        if full_mode:
            self.store.replace(index, {name: current.get(name) for name in self.tracked_fields})
            return
        changed = {name: current.get(name) for name in emitted if name in self.tracked_fields}
        if changed:
            self.store.update(index, changed)
