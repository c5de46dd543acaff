"""
ORM model for tenant organizations.

Organizations are provisioned elsewhere; the ledger reads them for the
tenant's timezone and its per-tenant write-path tuning.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from . import Base


class Organization(Base):
    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    timezone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_large_fleet: Mapped[bool] = mapped_column(Boolean, default=False)
    # Nullable overrides; None falls back to the global settings.
    odometer_gap_warning_km: Mapped[int | None] = mapped_column(Integer, nullable=True)
    overlap_slack_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
