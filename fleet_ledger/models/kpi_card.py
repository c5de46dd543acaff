"""
Materialized KPI snapshots written by the rollup engine.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy import DateTime, Float, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from . import Base


class KpiCard(Base):
    __tablename__ = "kpi_cards"
    __table_args__ = (
        UniqueConstraint("kpi_key", "organization_id", name="uq_kpi_cards_key_org"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    kpi_key: Mapped[str] = mapped_column(String(64), nullable=False)
    organization_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    title: Mapped[str | None] = mapped_column(String(128), nullable=True)
    value_human: Mapped[str] = mapped_column(String(64), nullable=False)
    value_raw: Mapped[float] = mapped_column(Float, default=0.0)
    payload: Mapped[dict] = mapped_column(JSONB, default=dict)
    theme: Mapped[str] = mapped_column(String(32), default="distance")
    computed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)
