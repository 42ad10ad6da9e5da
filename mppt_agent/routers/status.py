from __future__ import annotations

import time
from typing import Dict

import psutil
from fastapi import APIRouter, Depends, Request

from mppt_agent.clock import ticks_ms
from mppt_agent.config import Settings, get_settings
from mppt_agent.http_utils import fleet, publisher, transport, viewer_hub

router = APIRouter(prefix="/v1")


@router.get("/status")
async def status_endpoint(request: Request, settings: Settings = Depends(get_settings)) -> Dict[str, object]:
    uptime = int(time.monotonic() - getattr(request.app.state, "started_at", time.monotonic()))
    memory = psutil.virtual_memory()
    now = ticks_ms()
    devices = fleet(request.app)
    mqtt = transport(request.app)
    fleet_publisher = publisher(request.app)
    hub = viewer_hub(request.app)
    return {
        "node_id": settings.node_id,
        "node_name": settings.node_name,
        "service_version": settings.service_version,
        "uptime_seconds": uptime,
        "cpu_percent": psutil.cpu_percent(interval=0.0),
        "memory_percent": memory.percent,
        "mqtt": {
            "host": settings.mqtt_host,
            "port": settings.mqtt_port,
            "connected": bool(mqtt and mqtt.connected),
            "last_error": mqtt.last_error if mqtt else None,
            "published_count": mqtt.published_count if mqtt else 0,
            "last_publish_at": mqtt.last_publish_at.isoformat() if mqtt and mqtt.last_publish_at else None,
        },
        "publisher": fleet_publisher.status_snapshot(now) if fleet_publisher else None,
        "hass": {"enabled": settings.hass.enabled, "expire": settings.hass.expire},
        "live_view": {
            "enabled": settings.live_view.enabled,
            "viewers": hub.viewer_count if hub else 0,
        },
        "devices": [
            {
                "index": device.index,
                "serial": device.serial,
                "valid": device.is_data_valid(now, devices.valid_window_ms),
                "data_age_ms": device.data_age_ms(now),
            }
            for device in devices
        ],
        "simulation": settings.simulation.model_dump(),
    }
