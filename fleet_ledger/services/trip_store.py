"""
Tenant-partitioned persistence helpers for the trip ledger.

Every query here takes an explicit ``organization_id``. Reads exclude
SoftDeleted trips unless ``include_deleted`` is passed; continuity and
conflict lookups always work on Active trips only.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from ..models.driver import Driver
from ..models.trip import Trip, TripStatus
from ..models.trip_audit import TripAuditLog
from ..models.vehicle import Vehicle
from .ledger_errors import TripNotFound, UnknownReference


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def lock_vehicle(db: Session, organization_id: str, vehicle_id: str) -> Vehicle:
    vehicle = (
        db.query(Vehicle)
        .filter(Vehicle.organization_id == organization_id, Vehicle.id == vehicle_id)
        .with_for_update()
        .first()
    )
    if vehicle is None:
        raise UnknownReference(
            f"Vehicle {vehicle_id} is not registered to this organization",
            context={"organization_id": organization_id, "vehicle_id": vehicle_id},
        )
    return vehicle


def lock_driver(db: Session, organization_id: str, driver_id: str) -> Driver:
    driver = (
        db.query(Driver)
        .filter(Driver.organization_id == organization_id, Driver.id == driver_id)
        .with_for_update()
        .first()
    )
    if driver is None:
        raise UnknownReference(
            f"Driver {driver_id} is not registered to this organization",
            context={"organization_id": organization_id, "driver_id": driver_id},
        )
    return driver


def find_vehicle(db: Session, organization_id: str, vehicle_id: str) -> Optional[Vehicle]:
    return (
        db.query(Vehicle)
        .filter(Vehicle.organization_id == organization_id, Vehicle.id == vehicle_id)
        .first()
    )


def active_trips(db: Session, organization_id: str):
    return db.query(Trip).filter(
        Trip.organization_id == organization_id,
        Trip.status == TripStatus.ACTIVE.value,
    )


def get_trip(
    db: Session,
    organization_id: str,
    trip_id: str,
    *,
    include_deleted: bool = False,
    for_update: bool = False,
) -> Trip:
    q = db.query(Trip).filter(Trip.organization_id == organization_id, Trip.id == trip_id)
    if not include_deleted:
        q = q.filter(Trip.status == TripStatus.ACTIVE.value)
    if for_update:
        q = q.with_for_update().populate_existing()
    trip = q.first()
    if trip is None:
        raise TripNotFound(
            f"Trip {trip_id} not found",
            context={"organization_id": organization_id, "trip_id": trip_id},
        )
    return trip


def find_prior_trip(
    db: Session,
    organization_id: str,
    vehicle_id: str,
    end_time: datetime,
    exclude_id: Optional[str] = None,
) -> Optional[Trip]:
    q = active_trips(db, organization_id).filter(
        Trip.vehicle_id == vehicle_id,
        Trip.end_time < ensure_utc(end_time),
    )
    if exclude_id:
        q = q.filter(Trip.id != exclude_id)
    return q.order_by(Trip.end_time.desc(), Trip.created_at.desc()).first()


def find_successor_trip(
    db: Session,
    organization_id: str,
    vehicle_id: str,
    end_time: datetime,
    exclude_id: Optional[str] = None,
) -> Optional[Trip]:
    q = active_trips(db, organization_id).filter(
        Trip.vehicle_id == vehicle_id,
        Trip.end_time > ensure_utc(end_time),
    )
    if exclude_id:
        q = q.filter(Trip.id != exclude_id)
    return q.order_by(Trip.end_time.asc(), Trip.created_at.asc()).first()


def find_window_candidates(
    db: Session,
    organization_id: str,
    *,
    column: str,
    value: str,
    start_time: datetime,
    end_time: datetime,
    exclude_id: Optional[str] = None,
) -> list[Trip]:
    """Active trips of one vehicle or driver whose raw windows intersect the given one."""
    attr = getattr(Trip, column)
    q = active_trips(db, organization_id).filter(
        attr == value,
        Trip.end_time > ensure_utc(start_time),
        Trip.start_time < ensure_utc(end_time),
    )
    if exclude_id:
        q = q.filter(Trip.id != exclude_id)
    return q.order_by(Trip.start_time.asc()).all()


def list_trips_for_vehicle(
    db: Session,
    organization_id: str,
    vehicle_id: str,
    *,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    include_deleted: bool = False,
) -> list[Trip]:
    q = db.query(Trip).filter(Trip.organization_id == organization_id, Trip.vehicle_id == vehicle_id)
    if not include_deleted:
        q = q.filter(Trip.status == TripStatus.ACTIVE.value)
    if date_from:
        q = q.filter(Trip.start_time >= ensure_utc(date_from))
    if date_to:
        q = q.filter(Trip.end_time <= ensure_utc(date_to))
    return q.order_by(Trip.end_time.asc(), Trip.created_at.asc()).all()


def append_audit(
    db: Session,
    trip: Trip,
    action: str,
    *,
    actor: Optional[str],
    details: Optional[dict] = None,
    severity: str = "info",
) -> TripAuditLog:
    row = TripAuditLog(
        organization_id=trip.organization_id,
        trip_id=trip.id,
        serial_number=trip.serial_number,
        action=action,
        severity=severity,
        actor=actor,
        details=details or {},
        created_at=datetime.now(timezone.utc),
    )
    db.add(row)
    return row


def list_trip_audit(db: Session, organization_id: str, trip_id: str) -> list[TripAuditLog]:
    return (
        db.query(TripAuditLog)
        .filter(TripAuditLog.organization_id == organization_id, TripAuditLog.trip_id == trip_id)
        .order_by(TripAuditLog.created_at.asc())
        .all()
    )


def trip_snapshot(trip: Trip, fields: Iterable[str]) -> dict:
    out = {}
    for name in fields:
        value = getattr(trip, name)
        if isinstance(value, datetime):
            value = ensure_utc(value).isoformat()
        elif value is not None and not isinstance(value, (str, int, float, bool)):
            value = float(value)
        out[name] = value
    return out
