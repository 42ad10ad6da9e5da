from __future__ import annotations

import pytest

from mppt_agent.config import Settings
from mppt_agent.services.config_store import ConfigStore, apply_config, export_config


def test_export_apply_roundtrip(tmp_path):
    settings = Settings(mqtt_prefix="solar/", vedirect={"updates_only": False})
    store = ConfigStore(tmp_path / "cfg" / "config.json")
    store.save(export_config(settings))

    restored = Settings()
    apply_config(restored, store.load())
    assert restored.mqtt_prefix == "solar/"
    assert restored.vedirect.updates_only is False


def test_apply_is_transactional():
    settings = Settings(node_name="before")
    with pytest.raises(ValueError):
        apply_config(settings, {"node": {"node_name": "after"}, "vedirect": {"device_count": 99}})
    assert settings.node_name == "before"
    assert settings.vedirect.device_count == 2


def test_apply_clamps_publish_interval_and_merges_sections():
    settings = Settings(hass={"enabled": True, "topic": "ha/"})
    apply_config(settings, {"mqtt": {"publish_interval_seconds": 0.2}, "hass": {"expire": False}})
    assert settings.mqtt_publish_interval_seconds == 1.0
    assert settings.hass.enabled is True
    assert settings.hass.topic == "ha/"
    assert settings.hass.expire is False


def test_unreadable_file_loads_as_none(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json")
    assert ConfigStore(path).load() is None


def test_hass_topic_normalized():
    assert Settings(hass={"topic": "custom"}).hass.topic == "custom/"
