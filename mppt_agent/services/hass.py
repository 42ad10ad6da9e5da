"""Home Assistant MQTT discovery for the charge controllers."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from mppt_agent.clock import ticks_ms
from mppt_agent.config import Settings
from mppt_agent.hardware.vedirect import VeDirectDevice, VeDirectFleet, product_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HassEntity:
    caption: str
    field: str
    icon: Optional[str] = None
    device_class: Optional[str] = None
    state_class: Optional[str] = None
    unit: Optional[str] = None
    binary: bool = False

    @property
    def sensor_id(self) -> str:
        cleaned = self.caption.replace(" ", "_").replace(".", "").replace("(", "").replace(")", "")
        return cleaned.lower()


ENTITIES: tuple[HassEntity, ...] = (
    HassEntity("MPPT load output state", "LOAD", icon="mdi:export", binary=True),
    HassEntity("MPPT serial number", "SER", icon="mdi:counter"),
    HassEntity("MPPT firmware number", "FW", icon="mdi:counter"),
    HassEntity("MPPT state of operation", "CS", icon="mdi:wrench"),
    HassEntity("MPPT error code", "ERR", icon="mdi:bell"),
    HassEntity("MPPT off reason", "OR", icon="mdi:wrench"),
    HassEntity("MPPT tracker operation mode", "MPPT", icon="mdi:wrench"),
    HassEntity(
        "MPPT Day sequence number (0...364)",
        "HSDS",
        icon="mdi:calendar-month-outline",
        state_class="total",
        unit="d",
    ),
    HassEntity("Battery voltage", "V", device_class="voltage", state_class="measurement", unit="V"),
    HassEntity("Battery current", "I", device_class="current", state_class="measurement", unit="A"),
    HassEntity("Panel voltage", "VPV", device_class="voltage", state_class="measurement", unit="V"),
    HassEntity("Panel power", "PPV", device_class="power", state_class="measurement", unit="W"),
    HassEntity("Panel yield total", "H19", device_class="energy", state_class="total_increasing", unit="kWh"),
    HassEntity("Panel yield today", "H20", device_class="energy", state_class="total", unit="kWh"),
    HassEntity("Panel maximum power today", "H21", device_class="power", state_class="measurement", unit="W"),
    HassEntity("Panel yield yesterday", "H22", device_class="energy", state_class="total", unit="kWh"),
    HassEntity("Panel maximum power yesterday", "H23", device_class="power", state_class="measurement", unit="W"),
)


class HassDiscovery:
    """Publishes retained discovery configs on connect and when forced."""

    def __init__(
        self,
        settings: Settings,
        fleet: VeDirectFleet,
        transport,
        *,
        clock: Callable[[], int] = ticks_ms,
    ) -> None:
        self.settings = settings
        self.fleet = fleet
        self.transport = transport
        self._clock = clock
        self._was_connected = False
        self._update_forced = False
        self.last_published: int = 0

    def force_update(self) -> None:
        self._update_forced = True

    async def tick(self) -> None:
        if not self.settings.vedirect.enabled:
            return
        if self._update_forced:
            self._update_forced = False
            await self.publish_config()

        connected = bool(self.transport.connected)
        if connected and not self._was_connected:
            self._was_connected = True
            await self.publish_config()
        elif not connected and self._was_connected:
            self._was_connected = False

    def config_messages(self, device: VeDirectDevice) -> List[tuple[str, Dict[str, object]]]:
        settings = self.settings
        serial = device.serial
        device_info = {
            "name": f"Victron({serial})",
            "ids": serial,
            "cu": settings.configuration_url,
            "mf": "mppt-agent",
            "mdl": product_name(device.frame.PID),
            "sw": settings.service_version,
        }
        messages = []
        for entity in ENTITIES:
            component = "binary_sensor" if entity.binary else "sensor"
            topic = f"{settings.hass.topic}{component}/mppt_victron_{serial}/{entity.sensor_id}/config"
            payload: Dict[str, object] = {
                "name": entity.caption,
                "stat_t": f"{settings.state_topic_root}{serial}/{entity.field}",
                "uniq_id": f"{serial}_{entity.sensor_id}",
            }
            if entity.icon:
                payload["icon"] = entity.icon
            if entity.binary:
                payload["pl_on"] = "ON"
                payload["pl_off"] = "OFF"
            else:
                if entity.unit:
                    payload["unit_of_meas"] = entity.unit
                if entity.device_class:
                    payload["dev_cla"] = entity.device_class
                if entity.state_class:
                    payload["stat_cla"] = entity.state_class
            payload["dev"] = dict(device_info)
            if settings.hass.expire:
                payload["exp_aft"] = int(settings.mqtt_publish_interval_seconds * 3)
            messages.append((topic, payload))
        return messages

    async def publish_config(self) -> int:
        """Announce every entity of each device with valid data; returns messages sent."""

        settings = self.settings
        if not settings.hass.enabled or not settings.vedirect.enabled:
            return 0
        if not self.transport.connected:
            return 0
        now = self._clock()
        sent = 0
        for device in self.fleet:
            if not self.fleet.is_data_valid(device.index, now):
                continue
            for topic, payload in self.config_messages(device):
                ok = await self.transport.publish(topic, json.dumps(payload), retain=settings.hass.retain)
                if not ok:
                    logger.warning("Discovery publish interrupted after %s messages", sent)
                    return sent
                sent += 1
        if sent:
            logger.info("Published %s discovery configs", sent)
        self.last_published = sent
        return sent
