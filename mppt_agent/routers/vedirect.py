from __future__ import annotations

import logging
from typing import Dict

from fastapi import APIRouter, Depends, HTTPException, Request, status

from mppt_agent.auth import require_api_auth, validate_ingest_token
from mppt_agent.config import Settings, get_settings
from mppt_agent.http_utils import fleet, force_refresh
from mppt_agent.schemas import RefreshResponse, VeDirectIngestResponse

router = APIRouter(prefix="/v1")
logger = logging.getLogger(__name__)


@router.post("/vedirect/refresh", response_model=RefreshResponse, dependencies=[Depends(require_api_auth)])
async def vedirect_refresh(request: Request):
    if not force_refresh(request.app):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Telemetry runner unavailable",
        )
    return RefreshResponse(status="scheduled")


@router.post("/vedirect/{index}", response_model=VeDirectIngestResponse)
async def vedirect_ingest(
    index: int,
    payload: Dict[str, object],
    request: Request,
    settings: Settings = Depends(get_settings),
):
    if not settings.vedirect.enabled:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="VE.Direct disabled",
        )
    validate_ingest_token(request, settings)
    devices = fleet(request.app)
    if index < 0 or index >= len(devices):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No VE.Direct device at index {index}",
        )
    accepted = devices.ingest_payload(index, payload)
    if not accepted:
        return VeDirectIngestResponse(status="ignored", index=index, fields=[])
    return VeDirectIngestResponse(status="ok", index=index, fields=sorted(accepted.keys()))
