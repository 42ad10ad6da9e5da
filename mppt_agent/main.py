"""FastAPI application exposing VE.Direct telemetry, status and configuration."""
from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI

from mppt_agent import build_info
from mppt_agent.config import get_settings
from mppt_agent.hardware import VeDirectFleet
from mppt_agent.observability import configure_observability
from mppt_agent.routers import config as config_router
from mppt_agent.routers import live as live_router
from mppt_agent.routers import root as root_router
from mppt_agent.routers import status as status_router
from mppt_agent.routers import vedirect as vedirect_router
from mppt_agent.services.config_store import ConfigStore, apply_config
from mppt_agent.services.hass import HassDiscovery
from mppt_agent.services.live_view import LiveViewGate, ViewerHub
from mppt_agent.services.mqtt_transport import MqttTransport
from mppt_agent.services.publisher import FleetPublisher
from mppt_agent.services.runner import TelemetryRunner
from mppt_agent.services.simulator import SimulatedFleet

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    settings.started_at_monotonic = time.monotonic()
    store = ConfigStore(settings.config_file)
    persisted = store.load()
    if persisted:
        try:
            apply_config(settings, persisted)
        except ValueError as exc:
            logger.warning("Persisted config rejected; using environment settings: %s", exc)
    simulator = None
    fleet = VeDirectFleet(settings)
    if settings.simulation.enabled:
        if build_info.BUILD_FLAVOR == "prod":
            raise RuntimeError("Simulation is not allowed in production builds")
        simulator = SimulatedFleet(settings, fleet, seed_hint=settings.node_id)
    transport = MqttTransport(settings)
    publisher = FleetPublisher(settings, fleet, transport)
    hass = HassDiscovery(settings, fleet, transport)
    hub = ViewerHub(settings.live_view.max_viewers)
    gate = LiveViewGate(settings, fleet, hub)
    runner = TelemetryRunner(settings, publisher, hass, gate, simulator=simulator)

    transport.start()
    runner.start()

    app.state.config_store = store
    app.state.fleet = fleet
    app.state.simulator = simulator
    app.state.transport = transport
    app.state.publisher = publisher
    app.state.hass = hass
    app.state.viewer_hub = hub
    app.state.live_view = gate
    app.state.runner = runner
    app.state.started_at = time.monotonic()
    logger.info("MPPT agent started for %s (%s devices)", settings.node_id, len(fleet))

    try:
        yield
    finally:
        runner_task: TelemetryRunner | None = getattr(app.state, "runner", None)
        if runner_task:
            await runner_task.stop()
        mqtt: MqttTransport | None = getattr(app.state, "transport", None)
        if mqtt:
            await mqtt.stop()
        logger.info("MPPT agent shutting down")


settings = get_settings()
app = FastAPI(title="MPPT Agent", lifespan=lifespan)
configure_observability(
    app,
    service_name=settings.otel_service_name,
    service_version=settings.service_version,
    log_level=settings.log_level,
    otel_enabled=settings.otel_enabled,
    otlp_endpoint=settings.otel_exporter_otlp_endpoint,
    otlp_headers=settings.otel_exporter_otlp_headers,
    otel_sample_ratio=settings.otel_sample_ratio,
)

app.include_router(root_router.router)
app.include_router(status_router.router)
app.include_router(config_router.router)
app.include_router(vedirect_router.router)
app.include_router(live_router.router)


def run() -> None:  # pragma: no cover
    import uvicorn

    uvicorn.run("mppt_agent.main:app", host="0.0.0.0", port=settings.advertise_port)


if __name__ == "__main__":  # pragma: no cover
    run()
