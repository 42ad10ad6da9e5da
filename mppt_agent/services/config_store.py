"""Persistence helpers for the MPPT agent configuration."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import ValidationError

from mppt_agent.config import Settings

logger = logging.getLogger(__name__)

_NODE_FIELDS = ("node_id", "node_name")
_MQTT_FIELDS = {
    "url": "mqtt_url",
    "username": "mqtt_username",
    "password": "mqtt_password",
    "prefix": "mqtt_prefix",
    "retain": "mqtt_retain",
    "publish_interval_seconds": "mqtt_publish_interval_seconds",
}
_SECTIONS = ("vedirect", "hass", "live_view", "simulation")


class ConfigStore:
    """Handles serialization of agent configuration for restore/backups."""

    def __init__(self, path: Path):
        self.path = path
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def load(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            return None
        try:
            return json.loads(self.path.read_text())
        except json.JSONDecodeError:
            logger.warning("Ignoring unreadable config file %s", self.path)
            return None

    def save(self, payload: Dict[str, Any]) -> None:
        temp_path = self.path.with_suffix(".tmp")
        temp_path.write_text(json.dumps(payload, indent=2, sort_keys=True))
        temp_path.replace(self.path)


def export_config(settings: Settings) -> Dict[str, Any]:
    """Serialize the editable part of the settings to a plain dict."""

    return {
        "node": {field: getattr(settings, field) for field in _NODE_FIELDS},
        "mqtt": {key: getattr(settings, attr) for key, attr in _MQTT_FIELDS.items()},
        "vedirect": settings.vedirect.model_dump(mode="json"),
        "hass": settings.hass.model_dump(mode="json"),
        "live_view": settings.live_view.model_dump(mode="json"),
        "simulation": settings.simulation.model_dump(mode="json"),
    }


def apply_config(settings: Settings, payload: Dict[str, Any]) -> Settings:
    """Apply a persisted config payload.

    The candidate is validated through the Settings model first, so an invalid
    payload raises ``ValueError`` without touching the live object.
    """

    candidate = settings.model_dump(mode="python")

    node_payload = payload.get("node") or {}
    if not isinstance(node_payload, dict):
        raise ValueError("node must be an object")
    for field in _NODE_FIELDS:
        if field in node_payload:
            candidate[field] = node_payload[field]

    mqtt_payload = payload.get("mqtt") or {}
    if not isinstance(mqtt_payload, dict):
        raise ValueError("mqtt must be an object")
    for key, attr in _MQTT_FIELDS.items():
        if key in mqtt_payload:
            if key == "password" and mqtt_payload[key] is None:
                continue
            candidate[attr] = mqtt_payload[key]

    for section in _SECTIONS:
        section_payload = payload.get(section)
        if section_payload is None:
            continue
        if not isinstance(section_payload, dict):
            raise ValueError(f"{section} must be an object")
        merged = dict(candidate.get(section) or {})
        merged.update(section_payload)
        candidate[section] = merged

    try:
        validated = Settings.model_validate(candidate)
    except ValidationError as exc:
        raise ValueError(str(exc)) from exc

    for field in Settings.model_fields:
        setattr(settings, field, getattr(validated, field))

    return settings
