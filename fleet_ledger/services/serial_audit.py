"""
Read-only scan for trips whose serial fingerprint no longer matches their vehicle.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from ..models.trip import Trip, TripStatus
from ..models.vehicle import Vehicle
from .serials import serial_fingerprint, serial_matches_vehicle, vehicle_fingerprint
from .trip_store import ensure_utc


def detect_serial_mismatches(db: Session, organization_id: str, *, limit: Optional[int] = None) -> dict:
    rows = (
        db.query(Trip, Vehicle)
        .join(Vehicle, Vehicle.id == Trip.vehicle_id)
        .filter(
            Trip.organization_id == organization_id,
            Trip.status == TripStatus.ACTIVE.value,
        )
        .order_by(Trip.start_time.asc())
        .all()
    )
    mismatches: list[dict] = []
    for trip, vehicle in rows:
        actual = vehicle_fingerprint(vehicle)
        if serial_matches_vehicle(trip.serial_number, actual):
            continue
        created = ensure_utc(trip.created_at)
        updated = ensure_utc(trip.updated_at)
        mismatches.append(
            {
                "trip_id": trip.id,
                "serial_number": trip.serial_number,
                "vehicle_id": vehicle.id,
                "registration_number": vehicle.registration_number,
                "serial_fingerprint": serial_fingerprint(trip.serial_number),
                "vehicle_fingerprint": actual,
                "start_time": ensure_utc(trip.start_time),
                "end_time": ensure_utc(trip.end_time),
                "was_modified": bool(created and updated and updated > created),
            }
        )
    total = len(rows)
    return {
        "organization_id": organization_id,
        "total_trips": total,
        "valid_trips": total - len(mismatches),
        "mismatched_trips": len(mismatches),
        "mismatches": mismatches[:limit] if limit else mismatches,
        "generated_at": datetime.now(timezone.utc),
    }
