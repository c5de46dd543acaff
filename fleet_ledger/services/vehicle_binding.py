"""
Vehicle binding: a trip's vehicle is fixed at creation.

The serial number and all continuity math are anchored to that vehicle, so
there is no override here; a wrong assignment is fixed by deleting the trip
and recreating it.
"""

from __future__ import annotations

from typing import Optional

from .ledger_errors import ImmutableFieldViolation
from .serials import vehicle_fingerprint
from .trip_store import find_vehicle
from .write_context import TripCandidate, ValidationContext, ValidationOutcome


def enforce_vehicle_binding(
    old: Optional[TripCandidate],
    new: TripCandidate,
    ctx: ValidationContext,
) -> Optional[ValidationOutcome]:
    if old is None or new.vehicle_id == old.vehicle_id:
        return None
    original = ctx.vehicle if ctx.vehicle.id == old.vehicle_id else find_vehicle(ctx.db, old.organization_id, old.vehicle_id)
    attempted = find_vehicle(ctx.db, old.organization_id, new.vehicle_id)
    original_fp = vehicle_fingerprint(original)
    attempted_fp = vehicle_fingerprint(attempted)
    raise ImmutableFieldViolation(
        f"Trip {old.serial_number} is bound to vehicle {original_fp}; "
        f"it cannot be moved to vehicle {attempted_fp}",
        context={
            "serial_number": old.serial_number,
            "trip_id": old.id,
            "vehicle_id": old.vehicle_id,
            "vehicle_fingerprint": original_fp,
            "attempted_vehicle_id": new.vehicle_id,
            "attempted_vehicle_fingerprint": attempted_fp,
        },
    )
