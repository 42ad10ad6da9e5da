from __future__ import annotations

import pytest

from mppt_agent.hardware.vedirect import VeDirectDevice, VeDirectFrame
from mppt_agent.services.aggregates import compute_aggregates


def _device(index: int, *, last_update, **values) -> VeDirectDevice:
    return VeDirectDevice(index=index, frame=VeDirectFrame(**values), last_update=last_update)


def test_sums_and_mean_over_valid_devices():
    devices = [
        _device(0, last_update=0, P=100, PPV=150, E=95.0, H19=10.5, H20=1.25, H21=300, H22=2.0),
        _device(1, last_update=0, P=200, PPV=250, E=97.0, H19=20.0, H20=0.75, H21=100, H22=1.0),
    ]
    totals = compute_aggregates(devices, now=1_000, valid_window_ms=10_000)
    assert totals.device_count == 2
    assert totals.P == 300
    assert totals.PPV == 400
    assert totals.E == pytest.approx(96.0)
    assert totals.H19 == pytest.approx(30.5)
    assert totals.H20 == pytest.approx(2.0)
    assert totals.H21 == 400
    assert totals.H22 == pytest.approx(3.0)


def test_invalid_devices_are_excluded_by_default():
    devices = [
        _device(0, last_update=0, P=100, E=90.0),
        _device(1, last_update=None, P=500, E=0.0),
        _device(2, last_update=-20_000, P=700, E=10.0),
    ]
    totals = compute_aggregates(devices, now=1_000, valid_window_ms=10_000)
    assert totals.device_count == 1
    assert totals.P == 100
    assert totals.E == pytest.approx(90.0)


def test_invalid_devices_can_be_included():
    devices = [
        _device(0, last_update=0, P=100, E=90.0),
        _device(1, last_update=None, P=0, E=0.0),
    ]
    totals = compute_aggregates(devices, now=1_000, valid_window_ms=10_000, include_invalid=True)
    assert totals.device_count == 2
    assert totals.E == pytest.approx(45.0)


def test_mean_over_no_devices_is_zero():
    totals = compute_aggregates([_device(0, last_update=None, E=80.0)], now=0, valid_window_ms=10_000)
    assert totals.device_count == 0
    assert totals.E == 0.0


def test_rendered_totals_use_field_precision():
    devices = [_device(0, last_update=0, P=100, PPV=150, E=95.25, H19=10.5, H20=1.25, H21=300, H22=2.0)]
    rendered = compute_aggregates(devices, now=0, valid_window_ms=10_000).rendered()
    assert list(rendered) == ["PPV_total", "P_total", "E_total", "H19_total", "H20_total", "H21_total", "H22_total"]
    assert rendered["P_total"] == "100"
    assert rendered["E_total"] == "95.2"
    assert rendered["H19_total"] == "10.500"
    assert rendered["H21_total"] == "300"
