"""
Trip serial numbers.

Format: ``TYY-####-NNNN`` where ``YY`` is the two-digit year of the trip start,
``####`` the vehicle's registration fingerprint and ``NNNN`` a per-fingerprint,
per-year sequence. Vehicles that share a fingerprint share the sequence, so
allocation is serialized per prefix rather than per vehicle.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Optional

from sqlalchemy import text
from sqlalchemy.orm import Session

from ..core.db import is_postgres
from ..models.trip import Trip
from ..models.vehicle import Vehicle


_NON_DIGIT = re.compile(r"[^0-9]")


def registration_fingerprint(registration: Optional[str]) -> str:
    if not registration:
        return "0000"
    digits = _NON_DIGIT.sub("", registration)
    return digits[-4:].rjust(4, "0")


def vehicle_fingerprint(vehicle: Optional[Vehicle]) -> str:
    if vehicle is None:
        return "unknown"
    if vehicle.registration_fingerprint:
        return vehicle.registration_fingerprint
    return registration_fingerprint(vehicle.registration_number)


def serial_fingerprint(serial: Optional[str]) -> Optional[str]:
    if not serial:
        return None
    parts = serial.split("-")
    if len(parts) != 3:
        return None
    return parts[1]


def serial_matches_vehicle(serial: Optional[str], fingerprint: str) -> bool:
    return serial_fingerprint(serial) == fingerprint


def lock_serial_prefix(db: Session, organization_id: str, prefix: str) -> None:
    if not is_postgres(db):
        return
    db.execute(
        text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
        {"key": f"trip-serial:{organization_id}:{prefix}"},
    )


def next_serial_number(db: Session, vehicle: Vehicle, start_time: datetime) -> str:
    """Allocate the next serial for a vehicle inside the caller's write transaction."""
    prefix = f"T{start_time.year % 100:02d}-{vehicle_fingerprint(vehicle)}-"
    lock_serial_prefix(db, vehicle.organization_id, prefix)
    used = (
        db.query(Trip.serial_number)
        .filter(
            Trip.organization_id == vehicle.organization_id,
            Trip.serial_number.like(f"{prefix}%"),
        )
        .all()
    )
    highest = 0
    for (serial,) in used:
        try:
            highest = max(highest, int(serial.rsplit("-", 1)[1]))
        except (ValueError, IndexError):
            continue
    return f"{prefix}{highest + 1:04d}"
