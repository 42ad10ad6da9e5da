"""Telemetry sources for the MPPT agent."""
from __future__ import annotations

from .vedirect import (
    FIELD_CATALOGUE,
    TRACKED_FIELDS,
    VeDirectDevice,
    VeDirectFleet,
    VeDirectFrame,
    render_value,
)

__all__ = [
    "FIELD_CATALOGUE",
    "TRACKED_FIELDS",
    "VeDirectDevice",
    "VeDirectFleet",
    "VeDirectFrame",
    "render_value",
]
