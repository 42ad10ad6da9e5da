from __future__ import annotations

import logging
from typing import Optional

from fastapi import HTTPException, status
from fastapi.applications import FastAPI

from mppt_agent.config import Settings
from mppt_agent.hardware import VeDirectFleet
from mppt_agent.services.config_store import export_config
from mppt_agent.services.live_view import LiveViewGate, ViewerHub
from mppt_agent.services.mqtt_transport import MqttTransport
from mppt_agent.services.publisher import FleetPublisher
from mppt_agent.services.runner import TelemetryRunner

logger = logging.getLogger(__name__)


def persist(app: FastAPI, settings: Settings) -> None:
    store = getattr(app.state, "config_store")
    store.save(export_config(settings))


def fleet(app: FastAPI) -> VeDirectFleet:
    value: VeDirectFleet | None = getattr(app.state, "fleet", None)
    if value is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="VE.Direct fleet unavailable",
        )
    return value


def publisher(app: FastAPI) -> Optional[FleetPublisher]:
    return getattr(app.state, "publisher", None)


def transport(app: FastAPI) -> Optional[MqttTransport]:
    return getattr(app.state, "transport", None)


def viewer_hub(app: FastAPI) -> Optional[ViewerHub]:
    return getattr(app.state, "viewer_hub", None)


def live_view(app: FastAPI) -> Optional[LiveViewGate]:
    return getattr(app.state, "live_view", None)


def force_refresh(app: FastAPI) -> bool:
    """Mark downstream caches stale: full data cycle next tick plus a discovery republish."""

    runner: TelemetryRunner | None = getattr(app.state, "runner", None)
    if runner is None:
        return False
    runner.force_update()
    logger.info("Full publish and discovery refresh requested")
    return True
