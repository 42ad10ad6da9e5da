"""Runtime configuration for the MPPT agent."""
from __future__ import annotations

import json
import logging
import uuid
from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from mppt_agent import build_info

MIN_INTERVAL_SECONDS = 1.0
MAX_INTERVAL_SECONDS = 3600.0
MAX_DEVICES = 8


def _clamp_interval_seconds(value: float, *, field: str) -> float:
    try:
        parsed = float(value)
    except Exception as exc:
        raise ValueError(f"{field} must be a number") from exc
    if parsed != parsed:  # NaN
        raise ValueError(f"{field} must be a real number")
    return max(MIN_INTERVAL_SECONDS, min(parsed, MAX_INTERVAL_SECONDS))


class VeDirectConfig(BaseModel):
    """Fleet of VE.Direct charge controllers and how their telemetry is published."""

    enabled: bool = Field(default=True, description="Publish VE.Direct telemetry on the retained channel")
    updates_only: bool = Field(
        default=True,
        description="Publish only changed fields between full refreshes",
    )
    device_count: int = Field(default=2, ge=1, le=MAX_DEVICES, description="Number of controllers in the fleet")
    data_valid_seconds: float = Field(
        default=10.0,
        gt=0,
        description="A device whose last frame is older than this is treated as having no data",
    )
    aggregate_include_invalid: bool = Field(
        default=False,
        description="Include devices without valid data in the fleet totals",
    )
    ingest_token: Optional[str] = Field(
        default=None,
        description="Bearer token required for external frame ingest",
    )


class HassConfig(BaseModel):
    """Home Assistant MQTT auto-discovery."""

    enabled: bool = Field(default=False, description="Announce controllers via MQTT discovery")
    expire: bool = Field(
        default=True,
        description="Announce an expiry of three publish intervals on every entity",
    )
    retain: bool = Field(default=True, description="Retain discovery config messages")
    topic: str = Field(default="homeassistant/", description="Discovery topic prefix")

    @field_validator("topic")
    @classmethod
    def _trailing_slash(cls, value: str) -> str:
        cleaned = (value or "").strip() or "homeassistant/"
        if not cleaned.endswith("/"):
            cleaned += "/"
        return cleaned


class LiveViewConfig(BaseModel):
    """Push channel towards connected dashboards."""

    enabled: bool = Field(default=True, description="Broadcast the live view over WebSocket")
    min_check_interval_seconds: float = Field(
        default=1.0,
        gt=0,
        description="Minimum time between two change checks",
    )
    max_staleness_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Broadcast at least this often even when nothing changed",
    )
    max_viewers: int = Field(default=8, ge=1, le=64, description="Oldest viewers are dropped above this count")
    allow_readonly: bool = Field(
        default=True,
        description="Allow live view access without a bearer token",
    )


class OfflineCycleConfig(BaseModel):
    period_seconds: float = Field(default=60.0, gt=0)
    offline_seconds: float = Field(default=8.0, ge=0)
    initial_offset_seconds: float = Field(default=0.0, ge=0)


class SimulationProfile(BaseModel):
    """Synthetic controllers used for development runs."""

    enabled: bool = False
    seed: Optional[int] = None
    time_multiplier: float = Field(default=1.0, gt=0)
    frame_interval_seconds: float = Field(default=1.0, gt=0)
    offline: bool = False
    offline_cycle: Optional[OfflineCycleConfig] = None
    jitter: Dict[str, float] = Field(default_factory=dict)
    base_overrides: Dict[str, float] = Field(default_factory=dict)
    label: Optional[str] = None


class Settings(BaseSettings):
    """Environment driven settings with sensible defaults for a single-board host."""

    node_id: str = Field(default="mppt-agent", description="Identifier used in logs and discovery")
    node_name: str = Field(default="MPPT Agent", description="Human readable name")
    service_version: str = "0.1.0"
    log_level: str = "INFO"
    otel_enabled: bool = False
    otel_service_name: str = "mppt-agent"
    otel_exporter_otlp_endpoint: str = "http://127.0.0.1:4317"
    otel_exporter_otlp_headers: Optional[str] = None
    otel_sample_ratio: float = 1.0
    mqtt_url: str = Field(default="mqtt://127.0.0.1:1883", description="MQTT broker URL")
    mqtt_username: Optional[str] = None
    mqtt_password: Optional[str] = None
    mqtt_prefix: str = Field(default="", description="Prefix prepended to every state topic")
    mqtt_retain: bool = Field(default=True, description="Retain telemetry messages at the broker")
    mqtt_publish_interval_seconds: float = 5.0
    tick_interval_seconds: float = Field(default=0.1, gt=0, le=5.0, description="Driver loop cadence")
    api_secret: SecretStr | None = None
    advertise_ip: Optional[str] = None
    advertise_port: int = 9000
    config_path: str = "storage/mppt_config.json"
    vedirect: VeDirectConfig = Field(default_factory=VeDirectConfig)
    hass: HassConfig = Field(default_factory=HassConfig)
    live_view: LiveViewConfig = Field(default_factory=LiveViewConfig)
    sim_profile_path: Optional[str] = None
    simulation: SimulationProfile = Field(default_factory=SimulationProfile)
    started_at_monotonic: float | None = None

    model_config = SettingsConfigDict(
        env_prefix="MPPT_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("mqtt_publish_interval_seconds")
    @classmethod
    def _clamp_publish_interval(cls, value: float) -> float:
        return _clamp_interval_seconds(value, field="mqtt_publish_interval_seconds")

    @model_validator(mode="after")
    def _populate_defaults(self):
        default_service_version = type(self).model_fields["service_version"].default
        if self.service_version == default_service_version:
            version_path = Path("/opt/mppt-agent/VERSION")
            if version_path.exists():
                try:
                    first_line = version_path.read_text(encoding="utf-8").splitlines()[0].strip()
                    if first_line:
                        self.service_version = first_line
                except Exception as exc:
                    logging.getLogger(__name__).debug("Unable to read %s: %s", version_path, exc)
        if not self.advertise_ip:
            self.advertise_ip = _default_ip()
        if self.sim_profile_path:
            try:
                path = Path(self.sim_profile_path)
                if path.exists():
                    data = json.loads(path.read_text())
                    self.simulation = SimulationProfile.model_validate(data)
            except Exception as exc:
                logging.getLogger(__name__).warning("Unable to load simulation profile %s: %s", self.sim_profile_path, exc)
        if self.simulation.seed is None:
            # derive a repeatable seed per node id
            self.simulation.seed = int(uuid.uuid5(uuid.NAMESPACE_DNS, str(self.node_id)).int % (2**32 - 1))
        if build_info.BUILD_FLAVOR == "prod" and self.simulation.enabled:
            raise ValueError("Simulation is not allowed in production builds")
        return self

    @property
    def mqtt_host(self) -> str:
        return _parsed_mqtt(self.mqtt_url).hostname or "127.0.0.1"

    @property
    def mqtt_port(self) -> int:
        return _parsed_mqtt(self.mqtt_url).port or 1883

    @property
    def state_topic_root(self) -> str:
        return f"{self.mqtt_prefix}victron/"

    @property
    def expiry_guard_enabled(self) -> bool:
        """Delta publishing combined with a discovery consumer that expires cached values."""

        return bool(self.vedirect.updates_only and self.hass.enabled and self.hass.expire)

    @property
    def configuration_url(self) -> str:
        return f"http://{self.advertise_ip or '127.0.0.1'}:{self.advertise_port}"

    @property
    def config_file(self) -> Path:
        path = Path(self.config_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        return path


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


@lru_cache(maxsize=32)
def _parsed_mqtt(url: str):
    return urlparse(url)


def _default_ip() -> str:
    import socket

    try:
        hostname = socket.gethostname()
        ip = socket.gethostbyname(hostname)
        if ip.startswith("127."):
            # fallback to a UDP trick to detect outward interface
            with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
                s.connect(("8.8.8.8", 80))
                ip = s.getsockname()[0]
        return ip
    except OSError:
        return "127.0.0.1"
