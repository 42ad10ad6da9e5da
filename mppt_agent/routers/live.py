from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, WebSocket, WebSocketDisconnect, status

from mppt_agent.auth import extract_bearer_token, check_token, require_live_view_auth
from mppt_agent.config import get_settings
from mppt_agent.http_utils import live_view, viewer_hub
from mppt_agent.schemas import LiveViewStatus

router = APIRouter(prefix="/v1")
logger = logging.getLogger(__name__)


@router.get("/live/status", response_model=LiveViewStatus, dependencies=[Depends(require_live_view_auth)])
async def live_status(request: Request):
    gate = live_view(request.app)
    if gate is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Live view unavailable",
        )
    return gate.build_payload()


@router.websocket("/live/ws")
async def live_socket(websocket: WebSocket):
    settings = get_settings()
    if not settings.live_view.allow_readonly:
        secret = settings.api_secret.get_secret_value().strip() if settings.api_secret else None
        try:
            check_token(extract_bearer_token(websocket), secret)
        except HTTPException:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return
    hub = viewer_hub(websocket.app)
    if hub is None or not settings.live_view.enabled:
        await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER)
        return
    await websocket.accept()
    await hub.attach(websocket)
    try:
        while True:
            # viewers only listen; inbound frames keep the socket alive
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        await hub.detach(websocket)
