"""
Append-only audit log for trip ledger mutations and validation warnings.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy import DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from . import Base


class TripAuditLog(Base):
    __tablename__ = "trip_audit_log"
    __table_args__ = (
        Index("ix_trip_audit_org_trip", "organization_id", "trip_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id: Mapped[str] = mapped_column(String(36), nullable=False)
    trip_id: Mapped[str] = mapped_column(String(36), nullable=False)
    serial_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    action: Mapped[str] = mapped_column(String(32), nullable=False)
    severity: Mapped[str] = mapped_column(String(16), default="info")
    actor: Mapped[str | None] = mapped_column(String(128), nullable=True)
    details: Mapped[dict] = mapped_column(JSONB, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
