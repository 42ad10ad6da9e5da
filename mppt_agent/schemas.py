from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel

from mppt_agent.config import HassConfig, LiveViewConfig, SimulationProfile, VeDirectConfig


class NodeUpdatePayload(BaseModel):
    node_id: Optional[str] = None
    node_name: Optional[str] = None


class MqttUpdatePayload(BaseModel):
    url: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    prefix: Optional[str] = None
    retain: Optional[bool] = None
    publish_interval_seconds: Optional[float] = None


class ConfigEnvelope(BaseModel):
    node: Optional[NodeUpdatePayload] = None
    mqtt: Optional[MqttUpdatePayload] = None
    vedirect: Optional[VeDirectConfig] = None
    hass: Optional[HassConfig] = None
    live_view: Optional[LiveViewConfig] = None
    simulation: Optional[SimulationProfile] = None


class VeDirectIngestResponse(BaseModel):
    status: str
    index: int
    fields: List[str]


class RefreshResponse(BaseModel):
    status: str


class LiveViewStatus(BaseModel):
    mppts: List[Dict[str, object]]
    totals: Dict[str, Dict[str, object]]
