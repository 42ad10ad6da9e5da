from __future__ import annotations

from mppt_agent.hardware.vedirect import TRACKED_FIELDS, VeDirectFrame
from mppt_agent.services.change_tracker import ChangeTracker
from mppt_agent.services.snapshot_store import SnapshotStore


def _tracker(size: int = 2) -> ChangeTracker:
    return ChangeTracker(SnapshotStore(size, VeDirectFrame().as_fields()), TRACKED_FIELDS)


def test_full_mode_returns_every_field_in_order():
    tracker = _tracker()
    current = VeDirectFrame(SER="HQ1", P=100).as_fields()
    assert tracker.dirty_fields(0, current, full_mode=True) == list(TRACKED_FIELDS)
    tracker.commit(0, current, TRACKED_FIELDS, full_mode=True)
    # full mode ignores whether anything changed
    assert tracker.dirty_fields(0, current, full_mode=True) == list(TRACKED_FIELDS)


def test_full_commit_replaces_snapshot():
    tracker = _tracker()
    current = VeDirectFrame(SER="HQ1", P=100, V=13.05, LOAD=True).as_fields()
    tracker.commit(0, current, TRACKED_FIELDS, full_mode=True)
    assert tracker.store.get(0) == current
    assert tracker.store.get(1) == VeDirectFrame().as_fields()


def test_delta_detects_exact_changes_only():
    tracker = _tracker()
    baseline = VeDirectFrame(SER="HQ1", P=100, V=13.05).as_fields()
    tracker.commit(0, baseline, TRACKED_FIELDS, full_mode=True)
    assert tracker.dirty_fields(0, baseline, full_mode=False) == []

    changed = VeDirectFrame(SER="HQ1", P=120, V=13.050001).as_fields()
    assert tracker.dirty_fields(0, changed, full_mode=False) == ["V", "P"]


def test_delta_commit_updates_only_emitted_fields():
    tracker = _tracker()
    baseline = VeDirectFrame(SER="HQ1", P=100, PPV=150).as_fields()
    tracker.commit(0, baseline, TRACKED_FIELDS, full_mode=True)
    changed = VeDirectFrame(SER="HQ1", P=120, PPV=180).as_fields()
    tracker.commit(0, changed, ["P"], full_mode=False)
    snapshot = tracker.store.get(0)
    assert snapshot["P"] == 120
    assert snapshot["PPV"] == 150
    assert tracker.dirty_fields(0, changed, full_mode=False) == ["PPV"]


def test_delta_commit_ignores_untracked_names():
    tracker = _tracker()
    current = VeDirectFrame(SER="HQ1", P=100).as_fields()
    tracker.commit(0, current, ["P", "P_total", "CHECKSUM"], full_mode=False)
    snapshot = tracker.store.get(0)
    assert snapshot["P"] == 100
    assert "P_total" not in snapshot and "CHECKSUM" not in snapshot
    assert snapshot["SER"] == VeDirectFrame().SER


def test_devices_are_tracked_independently():
    tracker = _tracker()
    first = VeDirectFrame(SER="HQ1", P=100).as_fields()
    second = VeDirectFrame(SER="HQ2", P=300).as_fields()
    tracker.commit(0, first, TRACKED_FIELDS, full_mode=True)
    tracker.commit(1, second, TRACKED_FIELDS, full_mode=True)
    assert tracker.dirty_fields(0, first, full_mode=False) == []
    assert tracker.dirty_fields(1, second, full_mode=False) == []
    assert tracker.dirty_fields(1, first, full_mode=False) == ["SER", "P"]
