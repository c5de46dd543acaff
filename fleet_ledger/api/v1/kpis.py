"""
Read-only KPI cache and events feed APIs, plus an on-demand rollup trigger.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from ...core.auth import PLATFORM_ADMIN, UserContext, require_organization, require_roles
from ...core.db import SessionLocal, get_db
from ...core.pagination import DEFAULT_PAGE_SIZE, resolve_page, set_pagination_headers
from ...schemas.kpi import EventFeedOut, KpiCardOut, TenantRollupOut
from ...services.kpi_cache import get_kpi_cards, list_events
from ...services.kpi_rollup import run_kpi_rollup
from ...services.trip_store import ensure_utc


router = APIRouter(prefix="/api/v1/organizations/{organization_id}", tags=["kpis"])


@router.get("/kpis", response_model=list[KpiCardOut])
def list_kpi_cards(
    organization_id: str,
    theme: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    user: UserContext = Depends(require_organization),
) -> list[dict]:
    out = []
    for card in get_kpi_cards(db, organization_id, theme=theme):
        payload = KpiCardOut.model_validate(card).model_dump()
        payload["computed_at"] = ensure_utc(payload["computed_at"])
        out.append(payload)
    return out


@router.get("/events-feed", response_model=dict)
def list_events_feed(
    organization_id: str,
    response: Response,
    kind: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1),
    db: Session = Depends(get_db),
    user: UserContext = Depends(require_organization),
) -> dict:
    window = resolve_page(page, page_size)
    rows, total = list_events(db, organization_id, kind=kind, page=window.number, page_size=window.size)
    set_pagination_headers(response, window, total)
    items = []
    for row in rows:
        item = EventFeedOut.model_validate(row).model_dump()
        item["event_time"] = ensure_utc(item["event_time"])
        items.append(item)
    return {"items": items, "total": total, "page": window.number, "page_size": window.size}


@router.post("/kpis/refresh", response_model=TenantRollupOut)
def refresh_kpis(
    organization_id: str,
    user: UserContext = Depends(require_organization),
    admin: UserContext = Depends(require_roles(PLATFORM_ADMIN)),
) -> dict:
    report = run_kpi_rollup(SessionLocal, organization_ids=[organization_id])
    outcome = report.outcome_for(organization_id)
    return TenantRollupOut(**outcome.__dict__).model_dump()
