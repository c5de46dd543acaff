"""
State passed through the write-path validator chain.

Validators see two immutable snapshots (the stored trip, or None on insert,
and the candidate after the patch) plus a context bound to the caller's
open transaction.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ..models.driver import Driver
from ..models.trip import Trip
from ..models.vehicle import Vehicle
from .ledger_errors import ValidationWarning
from .ledger_policy import LedgerPolicy
from .trip_store import ensure_utc, lock_driver


@dataclass(frozen=True)
class TripCandidate:
    organization_id: str
    vehicle_id: str
    driver_id: str
    start_time: datetime
    end_time: datetime
    start_odometer: int
    end_odometer: int
    id: Optional[str] = None
    serial_number: Optional[str] = None

    @classmethod
    def from_trip(cls, trip: Trip) -> "TripCandidate":
        return cls(
            organization_id=trip.organization_id,
            vehicle_id=trip.vehicle_id,
            driver_id=trip.driver_id,
            start_time=ensure_utc(trip.start_time),
            end_time=ensure_utc(trip.end_time),
            start_odometer=int(trip.start_odometer),
            end_odometer=int(trip.end_odometer),
            id=trip.id,
            serial_number=trip.serial_number,
        )

    def with_changes(self, **changes) -> "TripCandidate":
        return replace(self, **changes)

    @property
    def label(self) -> str:
        return self.serial_number or "new trip"


@dataclass
class ValidationContext:
    db: Session
    policy: LedgerPolicy
    vehicle: Vehicle
    skip_scheduling: bool = False
    _drivers: dict = field(default_factory=dict)

    def require_driver(self, driver_id: str) -> Driver:
        """Lock and return a tenant driver; cached for the rest of the write."""
        driver = self._drivers.get(driver_id)
        if driver is None:
            driver = lock_driver(self.db, self.vehicle.organization_id, driver_id)
            self._drivers[driver_id] = driver
        return driver


@dataclass
class ValidationOutcome:
    warnings: list[ValidationWarning] = field(default_factory=list)
    annotations: dict = field(default_factory=dict)

    def merge(self, other: Optional["ValidationOutcome"]) -> None:
        if other is None:
            return
        self.warnings.extend(other.warnings)
        self.annotations.update(other.annotations)


def touches(old: Optional[TripCandidate], new: TripCandidate, fields: tuple[str, ...]) -> bool:
    if old is None:
        return True
    return any(getattr(old, name) != getattr(new, name) for name in fields)
