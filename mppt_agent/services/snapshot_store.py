"""Last values emitted on the retained channel, one entry per device."""
from __future__ import annotations

from typing import Dict, Mapping


class SnapshotStore:
    """Per-device mapping of field name to the value last published for it.

    Entries start out as ``defaults`` and are only ever overwritten, never removed.
    """

    def __init__(self, size: int, defaults: Mapping[str, object]) -> None:
        self._defaults = dict(defaults)
        self._entries: list[Dict[str, object]] = [dict(self._defaults) for _ in range(int(size))]

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, index: int) -> Dict[str, object]:
        return dict(self._entries[index])

    def value(self, index: int, name: str) -> object:
        return self._entries[index].get(name)

    def replace(self, index: int, values: Mapping[str, object]) -> None:
        entry = dict(self._defaults)
        entry.update(values)
        self._entries[index] = entry

    def update(self, index: int, values: Mapping[str, object]) -> None:
        self._entries[index].update(values)
