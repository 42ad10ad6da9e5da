from __future__ import annotations

import hmac
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from starlette.requests import HTTPConnection

from mppt_agent.config import Settings, get_settings


def extract_bearer_token(request: HTTPConnection) -> Optional[str]:
    header = request.headers.get("authorization") or request.headers.get("Authorization") or ""
    if not header:
        return None
    if not header.lower().startswith("bearer "):
        return None
    token = header.split(" ", 1)[1].strip()
    return token or None


def check_token(token: Optional[str], allowed: Optional[str]) -> None:
    """Raise 401 for a missing token and 403 for one that does not match ``allowed``."""

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token",
        )
    if allowed and hmac.compare_digest(token, allowed):
        return
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="Invalid token",
    )


def _api_secret(settings: Settings) -> Optional[str]:
    if not settings.api_secret:
        return None
    value = settings.api_secret.get_secret_value().strip()
    return value or None


def require_api_auth(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> None:
    """Require the ``MPPT_API_SECRET`` bearer token for configuration endpoints.

    With no secret configured every token is rejected, so config stays read-only
    until an operator sets one.
    """

    check_token(extract_bearer_token(request), _api_secret(settings))


def require_live_view_auth(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> None:
    if settings.live_view.allow_readonly:
        return
    check_token(extract_bearer_token(request), _api_secret(settings))


def validate_ingest_token(request: Request, settings: Settings) -> None:
    token = settings.vedirect.ingest_token
    if not token:
        return
    check_token(extract_bearer_token(request), token)
