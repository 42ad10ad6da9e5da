from __future__ import annotations

import pytest

from mppt_agent.config import Settings
from mppt_agent.hardware.vedirect import TRACKED_FIELDS, VeDirectFleet, VeDirectFrame, render_value

from conftest import FakeClock


def test_render_value_uses_protocol_descriptions():
    assert render_value("PID", 0xA053) == "SmartSolar MPPT 75|15"
    assert render_value("PID", 0x1234) == "0x1234"
    assert render_value("LOAD", True) == "ON"
    assert render_value("LOAD", False) == "OFF"
    assert render_value("CS", 3) == "Bulk"
    assert render_value("ERR", 0) == "No error"
    assert render_value("OR", 1) == "No input power"
    assert render_value("MPPT", 2) == "MPP Tracker active"
    assert render_value("CS", 99) == "Unknown"


def test_render_value_formats_numbers():
    assert render_value("V", 13.1) == "13.10"
    assert render_value("P", 120) == "120"
    assert render_value("H20", 1.5) == "1.500"
    assert render_value("E", 96.25) == "96.2"
    assert render_value("SER", "HQ2132ABCDE") == "HQ2132ABCDE"


def test_frame_fields_follow_tracked_order():
    frame = VeDirectFrame(PPV=240, VPV=40.0)
    assert tuple(frame.as_fields()) == TRACKED_FIELDS
    assert frame.IPV == pytest.approx(6.0)
    assert VeDirectFrame(PPV=10).IPV == 0.0


def test_ingest_coerces_and_stamps_update_tick():
    clock = FakeClock(5_000)
    fleet = VeDirectFleet(Settings(vedirect={"device_count": 2}), clock=clock)
    accepted = fleet.ingest_payload(
        1,
        {"ser": "HQ1", "PID": "0xA053", "LOAD": "ON", "V": "13.25", "P": 120.4, "bogus": 1, "CS": "nope"},
    )
    assert accepted == {"SER": "HQ1", "PID": 0xA053, "LOAD": True, "V": 13.25, "P": 120}
    device = fleet[1]
    assert device.serial == "HQ1"
    assert device.last_update == 5_000
    assert fleet[0].last_update is None
    assert fleet[0].serial == "vedirect0"


def test_ingest_without_usable_fields_is_ignored():
    clock = FakeClock(0)
    fleet = VeDirectFleet(Settings(), clock=clock)
    assert fleet.ingest_payload(0, {"unknown": 1, "V": "n/a"}) == {}
    assert fleet[0].last_update is None


def test_ingest_rejects_out_of_range_index():
    fleet = VeDirectFleet(Settings(vedirect={"device_count": 1}))
    with pytest.raises(IndexError):
        fleet.ingest_payload(3, {"V": 12.0})


def test_data_validity_window():
    clock = FakeClock(0)
    fleet = VeDirectFleet(Settings(vedirect={"data_valid_seconds": 10}), clock=clock)
    assert fleet.is_data_valid(0) is False
    fleet.ingest_payload(0, {"V": 12.5})
    assert fleet.is_data_valid(0, now=9_999) is True
    assert fleet.is_data_valid(0, now=10_000) is False
    assert fleet[0].data_age_ms(2_500) == 2_500


def test_ingest_skips_non_finite_values():
    clock = FakeClock(0)
    fleet = VeDirectFleet(Settings(), clock=clock)
    payload = {"P": "inf", "V": "-inf", "I": float("inf"), "PPV": 10**400, "VPV": "nan"}
    assert fleet.ingest_payload(0, payload) == {}
    assert fleet[0].last_update is None
    assert fleet.ingest_payload(0, {"P": "inf", "V": "13.1"}) == {"V": 13.1}
    assert fleet[0].frame.P == 0
