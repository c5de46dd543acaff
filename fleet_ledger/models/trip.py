"""
ORM model for trip ledger entries.

A trip is created Active, may be edited (except its vehicle) while Active and
is never hard-deleted: removal moves it to SoftDeleted, which is terminal.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from . import Base


class TripStatus(str, enum.Enum):
    ACTIVE = "Active"
    SOFT_DELETED = "SoftDeleted"


class Trip(Base):
    __tablename__ = "trips"
    __table_args__ = (
        UniqueConstraint("organization_id", "serial_number", name="uq_trip_org_serial"),
        CheckConstraint("end_odometer > start_odometer", name="ck_trips_odometer_range"),
        CheckConstraint("end_time > start_time", name="ck_trips_time_range"),
        Index("ix_trips_org_vehicle_end", "organization_id", "vehicle_id", "end_time"),
        Index("ix_trips_org_driver_start", "organization_id", "driver_id", "start_time"),
        Index("ix_trips_org_start", "organization_id", "start_time"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id: Mapped[str] = mapped_column(String(36), ForeignKey("organizations.id"), nullable=False)
    vehicle_id: Mapped[str] = mapped_column(String(36), ForeignKey("vehicles.id"), nullable=False)
    driver_id: Mapped[str] = mapped_column(String(36), ForeignKey("drivers.id"), nullable=False)
    serial_number: Mapped[str] = mapped_column(String(32), nullable=False)

    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    start_odometer: Mapped[int] = mapped_column(Integer, nullable=False)
    end_odometer: Mapped[int] = mapped_column(Integer, nullable=False)

    income_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    fuel_quantity_l: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    fuel_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    road_expense: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(16), default=TripStatus.ACTIVE.value, index=True)
    created_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deleted_by: Mapped[str | None] = mapped_column(String(128), nullable=True)

    @property
    def distance_km(self) -> int:
        return int(self.end_odometer) - int(self.start_odometer)

    @property
    def is_active(self) -> bool:
        return self.status == TripStatus.ACTIVE.value
