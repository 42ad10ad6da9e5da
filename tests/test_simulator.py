from __future__ import annotations

import pytest

from mppt_agent import build_info
from mppt_agent.config import OfflineCycleConfig, Settings, SimulationProfile
from mppt_agent.hardware.vedirect import VeDirectFleet
from mppt_agent.services.simulator import SimulatedFleet

from conftest import FakeClock


def _simulated(profile: SimulationProfile, *, device_count: int = 2):
    settings = Settings(vedirect={"device_count": device_count}, simulation=profile)
    clock = FakeClock(0)
    fleet = VeDirectFleet(settings, clock=clock)
    return clock, fleet, SimulatedFleet(settings, fleet, seed_hint="sim")


def test_simulation_rejected_in_prod(monkeypatch):
    monkeypatch.setattr(build_info, "BUILD_FLAVOR", "prod")
    settings = Settings()
    with pytest.raises(RuntimeError, match="Simulation is not allowed in production builds"):
        SimulatedFleet(settings, VeDirectFleet(settings))


def test_prod_settings_reject_enabled_simulation(monkeypatch):
    monkeypatch.setattr(build_info, "BUILD_FLAVOR", "prod")
    with pytest.raises(ValueError):
        Settings(simulation={"enabled": True})


def test_offline_cycle():
    _, _, sim = _simulated(
        SimulationProfile(enabled=True, offline_cycle=OfflineCycleConfig(period_seconds=10, offline_seconds=5))
    )
    assert sim.is_offline(now=0.0) is True
    assert sim.is_offline(now=6.0) is False


def test_time_multiplier_scales_offline_cycle():
    _, _, sim = _simulated(
        SimulationProfile(
            enabled=True,
            time_multiplier=2.0,
            offline_cycle=OfflineCycleConfig(period_seconds=10, offline_seconds=5),
        )
    )
    assert sim.is_offline(now=2.0) is True
    assert sim.is_offline(now=3.0) is False


def test_step_feeds_every_device_once_per_frame_interval():
    clock, fleet, sim = _simulated(SimulationProfile(enabled=True, seed=7, frame_interval_seconds=1.0))
    assert sim.step(now=0.0) == 2
    assert fleet[0].last_update == 0
    assert fleet[0].serial == "HQSIM00000"
    assert fleet[1].serial == "HQSIM00001"
    clock.now = 500
    assert sim.step(now=0.5) == 0
    clock.now = 1_000
    assert sim.step(now=1.0) == 2
    assert fleet[1].last_update == 1_000


def test_frames_are_deterministic_and_overridable():
    _, _, sim = _simulated(SimulationProfile(enabled=True, seed=3, base_overrides={"PPV": 250.0}))
    first = sim.frame(0, now=12.0)
    assert first == sim.frame(0, now=12.0)
    assert first["PPV"] == 250
    assert first["CS"] == 3
    assert first["MPPT"] == 2
    assert isinstance(first["P"], int)


def test_jitter_changes_values():
    _, _, sim = _simulated(SimulationProfile(enabled=True, seed=11, jitter={"V": 0.5}))
    values = {sim.frame(0, now=5.0)["V"] for _ in range(5)}
    assert len(values) > 1


def test_disabled_or_offline_profile_feeds_nothing():
    _, fleet, sim = _simulated(SimulationProfile(enabled=False))
    assert sim.step(now=0.0) == 0
    _, fleet, sim = _simulated(SimulationProfile(enabled=True, offline=True))
    assert sim.step(now=0.0) == 0
    assert fleet[0].last_update is None
