from __future__ import annotations

from typing import Dict

from fastapi import APIRouter, Depends, HTTPException, Request, status

from mppt_agent.auth import require_api_auth
from mppt_agent.config import Settings, get_settings
from mppt_agent.http_utils import force_refresh, persist
from mppt_agent.schemas import ConfigEnvelope
from mppt_agent.services.config_store import apply_config, export_config

router = APIRouter(prefix="/v1", dependencies=[Depends(require_api_auth)])


def _redact_secrets(payload: dict) -> dict:
    mqtt = payload.get("mqtt")
    if isinstance(mqtt, dict):
        mqtt.pop("password", None)
    vedirect = payload.get("vedirect")
    if isinstance(vedirect, dict):
        vedirect.pop("ingest_token", None)
    return payload


@router.get("/config")
async def config(settings: Settings = Depends(get_settings)) -> Dict:
    return _redact_secrets(export_config(settings))


@router.put("/config")
async def overwrite_config(
    payload: ConfigEnvelope,
    request: Request,
    settings: Settings = Depends(get_settings),
):
    try:
        apply_config(settings, payload.model_dump(exclude_unset=True))
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    hub = getattr(request.app.state, "viewer_hub", None)
    if hub is not None:
        hub.max_viewers = settings.live_view.max_viewers
    persist(request.app, settings)
    force_refresh(request.app)
    return _redact_secrets(export_config(settings))
