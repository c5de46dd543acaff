"""
Pydantic schemas for KPI cards and the events feed.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class KpiCardOut(BaseModel):
    kpi_key: str
    organization_id: str
    title: Optional[str] = None
    value_human: str
    value_raw: float
    payload: dict
    theme: str
    computed_at: datetime

    model_config = ConfigDict(from_attributes=True)


class EventFeedOut(BaseModel):
    id: str
    organization_id: str
    kind: str
    event_time: datetime
    priority: str
    title: str
    description: Optional[str] = None
    entity_json: dict
    status: str

    model_config = ConfigDict(from_attributes=True)


class TenantRollupOut(BaseModel):
    organization_id: str
    status: str
    cards_written: int
    cards_unchanged: int
    events_appended: int
    elapsed_sec: float
    error: Optional[str] = None
