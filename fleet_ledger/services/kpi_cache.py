"""
KPI cache store and events feed.

The rollup engine is the only writer. Each metric is upserted on
``(kpi_key, organization_id)``; a row whose content is unchanged is left
untouched so reruns over the same inputs keep rows byte-identical.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from ..core.db import dialect_name
from ..models.events_feed import EventsFeed
from ..models.kpi_card import KpiCard


INSERTED = "inserted"
UPDATED = "updated"
UNCHANGED = "unchanged"


@dataclass(frozen=True)
class MetricSnapshot:
    kpi_key: str
    title: str
    value_human: str
    value_raw: float
    theme: str
    payload: dict = field(default_factory=dict)


def _same_content(row: KpiCard, metric: MetricSnapshot) -> bool:
    return (
        row.title == metric.title
        and row.value_human == metric.value_human
        and float(row.value_raw or 0.0) == float(metric.value_raw)
        and row.theme == metric.theme
        and (row.payload or {}) == metric.payload
    )


def _native_insert(db: Session):
    dialect = dialect_name(db)
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
        return insert
    if dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
        return insert
    return None


def upsert_metric(
    db: Session,
    organization_id: str,
    metric: MetricSnapshot,
    *,
    computed_at: Optional[datetime] = None,
) -> str:
    """Insert or overwrite one KPI card. Returns inserted, updated or unchanged."""
    computed_at = computed_at or datetime.now(timezone.utc)
    existing = (
        db.query(KpiCard)
        .filter(KpiCard.kpi_key == metric.kpi_key, KpiCard.organization_id == organization_id)
        .first()
    )
    if existing is not None and _same_content(existing, metric):
        return UNCHANGED

    values = {
        "title": metric.title,
        "value_human": metric.value_human,
        "value_raw": float(metric.value_raw),
        "payload": metric.payload,
        "theme": metric.theme,
        "computed_at": computed_at,
        "updated_at": computed_at,
    }
    insert = _native_insert(db)
    if insert is not None:
        stmt = insert(KpiCard).values(
            id=str(uuid.uuid4()),
            kpi_key=metric.kpi_key,
            organization_id=organization_id,
            created_at=computed_at,
            **values,
        )
        stmt = stmt.on_conflict_do_update(index_elements=["kpi_key", "organization_id"], set_=values)
        db.execute(stmt)
        if existing is not None:
            db.expire(existing)
    elif existing is not None:
        for key, value in values.items():
            setattr(existing, key, value)
        db.flush()
    else:
        db.add(
            KpiCard(
                kpi_key=metric.kpi_key,
                organization_id=organization_id,
                created_at=computed_at,
                **values,
            )
        )
        db.flush()
    return UPDATED if existing is not None else INSERTED


def get_kpi_cards(db: Session, organization_id: str, *, theme: Optional[str] = None) -> list[KpiCard]:
    q = db.query(KpiCard).filter(KpiCard.organization_id == organization_id)
    if theme:
        q = q.filter(KpiCard.theme == theme)
    return q.order_by(KpiCard.kpi_key.asc()).all()


def append_event(
    db: Session,
    organization_id: str,
    *,
    kind: str,
    title: str,
    description: Optional[str] = None,
    priority: str = "info",
    entity: Optional[dict] = None,
    event_time: Optional[datetime] = None,
) -> EventsFeed:
    now = datetime.now(timezone.utc)
    row = EventsFeed(
        organization_id=organization_id,
        kind=kind,
        event_time=event_time or now,
        priority=priority,
        title=title,
        description=description,
        entity_json=entity or {},
        status="published",
        created_at=now,
    )
    db.add(row)
    db.flush()
    return row


def list_events(
    db: Session,
    organization_id: str,
    *,
    kind: Optional[str] = None,
    page: int = 1,
    page_size: int = 50,
) -> tuple[list[EventsFeed], int]:
    q = db.query(EventsFeed).filter(EventsFeed.organization_id == organization_id)
    if kind:
        q = q.filter(EventsFeed.kind == kind)
    total = q.count()
    rows = (
        q.order_by(EventsFeed.event_time.desc(), EventsFeed.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return rows, total
