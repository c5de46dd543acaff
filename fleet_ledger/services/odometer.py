"""
Odometer continuity checks for trip writes.

A vehicle's readings must never move backward across its Active trips when
they are ordered by end time. Large forward gaps are accepted but produce a
warning that is returned to the caller and written to the audit log.
"""

from __future__ import annotations

import logging
from typing import Optional

from .ledger_errors import IntegrityViolation, InvalidRange, ValidationWarning
from .trip_store import ensure_utc, find_prior_trip, find_successor_trip
from .write_context import TripCandidate, ValidationContext, ValidationOutcome, touches


logger = logging.getLogger("trip_ledger")

FIRST_TRIP = "first_trip"
PERFECT_CONTINUITY = "perfect_continuity"
ACCEPTABLE_GAP = "acceptable_gap"
LARGE_GAP = "large_gap"

CONTINUITY_FIELDS = ("vehicle_id", "start_odometer", "end_odometer", "start_time", "end_time")


def classify_gap(gap_km: Optional[int], warning_km: int) -> str:
    if gap_km is None:
        return FIRST_TRIP
    if gap_km == 0:
        return PERFECT_CONTINUITY
    if gap_km <= warning_km:
        return ACCEPTABLE_GAP
    return LARGE_GAP


def check_range(new: TripCandidate) -> None:
    if new.end_odometer <= new.start_odometer:
        raise InvalidRange(
            f"End odometer ({new.end_odometer}) must be greater than start odometer ({new.start_odometer})",
            context={
                "serial_number": new.serial_number,
                "vehicle_id": new.vehicle_id,
                "start_odometer": new.start_odometer,
                "end_odometer": new.end_odometer,
            },
        )
    if new.start_odometer < 0:
        raise InvalidRange(
            f"Start odometer ({new.start_odometer}) cannot be negative",
            context={"serial_number": new.serial_number, "vehicle_id": new.vehicle_id},
        )
    if ensure_utc(new.end_time) <= ensure_utc(new.start_time):
        raise InvalidRange(
            "Trip end time must be after its start time",
            context={
                "serial_number": new.serial_number,
                "vehicle_id": new.vehicle_id,
                "start_time": new.start_time,
                "end_time": new.end_time,
            },
        )


def check_odometer_continuity(
    old: Optional[TripCandidate],
    new: TripCandidate,
    ctx: ValidationContext,
) -> ValidationOutcome:
    check_range(new)
    outcome = ValidationOutcome()
    db = ctx.db
    prior = find_prior_trip(db, new.organization_id, new.vehicle_id, new.end_time, exclude_id=new.id)
    gap_km: Optional[int] = None
    if prior is not None:
        gap_km = new.start_odometer - int(prior.end_odometer)
        if gap_km < 0:
            prior_end = ensure_utc(prior.end_time)
            raise IntegrityViolation(
                f"Odometer moved backward: {new.label} starts at {new.start_odometer} km but prior trip "
                f"{prior.serial_number} ended at {prior.end_odometer} km on {prior_end.isoformat()}",
                context={
                    "serial_number": new.serial_number,
                    "vehicle_id": new.vehicle_id,
                    "start_odometer": new.start_odometer,
                    "gap_km": gap_km,
                    "prior_trip": {
                        "id": prior.id,
                        "serial_number": prior.serial_number,
                        "end_odometer": int(prior.end_odometer),
                        "end_time": prior_end,
                    },
                },
            )

    successor = find_successor_trip(db, new.organization_id, new.vehicle_id, new.end_time, exclude_id=new.id)
    if successor is not None and int(successor.start_odometer) < new.end_odometer:
        raise IntegrityViolation(
            f"Odometer moved backward: {new.label} ends at {new.end_odometer} km but later trip "
            f"{successor.serial_number} starts at {successor.start_odometer} km on "
            f"{ensure_utc(successor.start_time).isoformat()}",
            context={
                "serial_number": new.serial_number,
                "vehicle_id": new.vehicle_id,
                "end_odometer": new.end_odometer,
                "next_trip": {
                    "id": successor.id,
                    "serial_number": successor.serial_number,
                    "start_odometer": int(successor.start_odometer),
                    "start_time": ensure_utc(successor.start_time),
                },
            },
        )

    gap_class = classify_gap(gap_km, ctx.policy.gap_warning_km)
    outcome.annotations["gap_class"] = gap_class
    outcome.annotations["gap_km"] = gap_km
    if gap_class == LARGE_GAP:
        outcome.warnings.append(
            ValidationWarning(
                code="odometer_gap",
                message=(
                    f"{gap_km} km unaccounted between prior trip {prior.serial_number} "
                    f"and {new.label} (threshold {ctx.policy.gap_warning_km} km)"
                ),
                context={
                    "gap_km": gap_km,
                    "threshold_km": ctx.policy.gap_warning_km,
                    "vehicle_id": new.vehicle_id,
                    "trip_id": new.id,
                    "serial_number": new.serial_number,
                    "prior_trip_id": prior.id,
                    "prior_serial_number": prior.serial_number,
                },
            )
        )
        logger.info(
            "Large odometer gap vehicle=%s gap_km=%s prior=%s",
            new.vehicle_id,
            gap_km,
            prior.serial_number,
        )
    return outcome


def odometer_validator(
    old: Optional[TripCandidate],
    new: TripCandidate,
    ctx: ValidationContext,
) -> Optional[ValidationOutcome]:
    if not touches(old, new, CONTINUITY_FIELDS):
        return None
    return check_odometer_continuity(old, new, ctx)
