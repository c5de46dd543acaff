"""
Trip ledger write path.

Every create/update runs as one unit of work: open the write transaction,
lock the vehicle and driver rows, run the validator chain against a
consistent view of their trips, then write the trip and its audit rows and
commit. Any rejection rolls back the whole transaction before the error is
re-raised to the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.db import begin_write
from ..models.organization import Organization
from ..models.trip import Trip, TripStatus
from .ledger_errors import (
    BulkImportDisabled,
    ImmutableFieldViolation,
    LedgerError,
    SerialCollision,
    UnknownReference,
    ValidationWarning,
)
from .ledger_policy import LedgerPolicy, resolve_ledger_policy
from .serials import next_serial_number
from .trip_store import (
    append_audit,
    ensure_utc,
    get_trip,
    lock_vehicle,
    trip_snapshot,
)
from .validator_chain import run_validator_chain
from .write_context import TripCandidate, ValidationContext


logger = logging.getLogger("trip_ledger")

CORE_FIELDS = ("driver_id", "start_time", "end_time", "start_odometer", "end_odometer")
MONEY_FIELDS = ("income_amount", "fuel_quantity_l", "fuel_cost", "road_expense")
PATCHABLE_FIELDS = CORE_FIELDS + MONEY_FIELDS + ("remarks",)
SNAPSHOT_FIELDS = ("vehicle_id",) + PATCHABLE_FIELDS


@dataclass
class TripWriteResult:
    trip: Trip
    warnings: list[ValidationWarning] = field(default_factory=list)
    gap_class: Optional[str] = None
    gap_km: Optional[int] = None


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _money(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    return Decimal(str(value))


def _load_policy(db: Session, organization_id: str) -> LedgerPolicy:
    org = db.get(Organization, organization_id)
    if org is None:
        raise UnknownReference(
            f"Organization {organization_id} does not exist",
            context={"organization_id": organization_id},
        )
    return resolve_ledger_policy(org)


def _candidate_from_data(organization_id: str, data: dict) -> TripCandidate:
    return TripCandidate(
        organization_id=organization_id,
        vehicle_id=str(data["vehicle_id"]),
        driver_id=str(data["driver_id"]),
        start_time=ensure_utc(data["start_time"]),
        end_time=ensure_utc(data["end_time"]),
        start_odometer=int(data["start_odometer"]),
        end_odometer=int(data["end_odometer"]),
    )


def _record_warnings(db: Session, trip: Trip, warnings: list[ValidationWarning], actor: Optional[str]) -> None:
    for warning in warnings:
        warning.context["trip_id"] = trip.id
        warning.context["serial_number"] = trip.serial_number
        append_audit(
            db,
            trip,
            "validation_warning",
            actor=actor,
            severity="warning",
            details=warning.to_dict(),
        )


def _insert_trip(
    db: Session,
    organization_id: str,
    data: dict,
    *,
    policy: LedgerPolicy,
    actor: Optional[str],
    skip_scheduling: bool,
) -> TripWriteResult:
    candidate = _candidate_from_data(organization_id, data)
    vehicle = lock_vehicle(db, organization_id, candidate.vehicle_id)
    ctx = ValidationContext(db=db, policy=policy, vehicle=vehicle, skip_scheduling=skip_scheduling)
    ctx.require_driver(candidate.driver_id)
    outcome = run_validator_chain(None, candidate, ctx)

    now = _now()
    trip = Trip(
        organization_id=organization_id,
        vehicle_id=candidate.vehicle_id,
        driver_id=candidate.driver_id,
        serial_number=next_serial_number(db, vehicle, candidate.start_time),
        start_time=candidate.start_time,
        end_time=candidate.end_time,
        start_odometer=candidate.start_odometer,
        end_odometer=candidate.end_odometer,
        income_amount=_money(data.get("income_amount")),
        fuel_quantity_l=_money(data.get("fuel_quantity_l")),
        fuel_cost=_money(data.get("fuel_cost")),
        road_expense=_money(data.get("road_expense")),
        remarks=data.get("remarks"),
        status=TripStatus.ACTIVE.value,
        created_by=actor,
        created_at=now,
        updated_at=now,
    )
    db.add(trip)
    try:
        db.flush()
    except IntegrityError as exc:
        if "serial" not in str(exc.orig):
            raise
        raise SerialCollision(
            f"Serial {trip.serial_number} is already taken in this organization",
            context={"serial_number": trip.serial_number, "vehicle_id": trip.vehicle_id},
        ) from exc
    append_audit(
        db,
        trip,
        "bulk_imported" if skip_scheduling else "created",
        actor=actor,
        details={
            "after": trip_snapshot(trip, SNAPSHOT_FIELDS),
            "gap_class": outcome.annotations.get("gap_class"),
            "gap_km": outcome.annotations.get("gap_km"),
        },
    )
    _record_warnings(db, trip, outcome.warnings, actor)
    return TripWriteResult(
        trip=trip,
        warnings=outcome.warnings,
        gap_class=outcome.annotations.get("gap_class"),
        gap_km=outcome.annotations.get("gap_km"),
    )


def _rejected(db: Session, exc: LedgerError, action: str, organization_id: str) -> None:
    db.rollback()
    logger.info(
        "Trip %s rejected org=%s invariant=%s serial=%s: %s",
        action,
        organization_id,
        exc.invariant,
        exc.context.get("serial_number"),
        exc.message,
    )


def create_trip(db: Session, organization_id: str, data: dict, *, actor: Optional[str] = None) -> TripWriteResult:
    try:
        begin_write(db)
        policy = _load_policy(db, organization_id)
        result = _insert_trip(db, organization_id, data, policy=policy, actor=actor, skip_scheduling=False)
        db.commit()
    except LedgerError as exc:
        _rejected(db, exc, "create", organization_id)
        raise
    except Exception:
        db.rollback()
        raise
    db.refresh(result.trip)
    logger.info(
        "Trip created org=%s serial=%s gap_class=%s",
        organization_id,
        result.trip.serial_number,
        result.gap_class,
    )
    return result


def update_trip(
    db: Session,
    organization_id: str,
    trip_id: str,
    patch: dict,
    *,
    actor: Optional[str] = None,
) -> TripWriteResult:
    try:
        begin_write(db)
        policy = _load_policy(db, organization_id)
        stored = get_trip(db, organization_id, trip_id)
        vehicle = lock_vehicle(db, organization_id, stored.vehicle_id)
        trip = get_trip(db, organization_id, trip_id, for_update=True)

        unknown = sorted(k for k in patch if k not in PATCHABLE_FIELDS and k != "vehicle_id")
        if unknown:
            raise ImmutableFieldViolation(
                f"Fields {', '.join(unknown)} cannot be changed on trip {trip.serial_number}",
                context={"serial_number": trip.serial_number, "trip_id": trip.id, "fields": unknown},
                invariant="immutable_fields",
                remediation="Remove these fields from the update.",
            )

        old = TripCandidate.from_trip(trip)
        changes: dict[str, Any] = {}
        if patch.get("vehicle_id") is not None:
            changes["vehicle_id"] = str(patch["vehicle_id"])
        for name in CORE_FIELDS:
            value = patch.get(name)
            if value is None:
                continue
            if name.endswith("_time"):
                value = ensure_utc(value)
            elif name.endswith("_odometer"):
                value = int(value)
            changes[name] = value
        new = old.with_changes(**changes)

        ctx = ValidationContext(db=db, policy=policy, vehicle=vehicle)
        outcome = run_validator_chain(old, new, ctx)
        ctx.require_driver(new.driver_id)

        before = trip_snapshot(trip, SNAPSHOT_FIELDS)
        for name in CORE_FIELDS:
            setattr(trip, name, getattr(new, name))
        for name in MONEY_FIELDS:
            if patch.get(name) is not None:
                setattr(trip, name, _money(patch[name]))
        if "remarks" in patch:
            trip.remarks = patch["remarks"]
        trip.updated_at = _now()
        db.flush()
        after = trip_snapshot(trip, SNAPSHOT_FIELDS)
        diff = {k: after[k] for k in after if before.get(k) != after[k]}
        append_audit(
            db,
            trip,
            "updated",
            actor=actor,
            details={
                "changes": diff,
                "before": {k: before[k] for k in diff},
                "gap_class": outcome.annotations.get("gap_class"),
                "gap_km": outcome.annotations.get("gap_km"),
            },
        )
        _record_warnings(db, trip, outcome.warnings, actor)
        db.commit()
    except LedgerError as exc:
        _rejected(db, exc, "update", organization_id)
        raise
    except Exception:
        db.rollback()
        raise
    db.refresh(trip)
    logger.info("Trip updated org=%s serial=%s fields=%s", organization_id, trip.serial_number, sorted(diff))
    return TripWriteResult(
        trip=trip,
        warnings=outcome.warnings,
        gap_class=outcome.annotations.get("gap_class"),
        gap_km=outcome.annotations.get("gap_km"),
    )


def _delete_ack(trip: Trip) -> dict:
    return {
        "id": trip.id,
        "serial_number": trip.serial_number,
        "status": trip.status,
        "deleted_at": ensure_utc(trip.deleted_at),
    }


def delete_trip(db: Session, organization_id: str, trip_id: str, *, actor: Optional[str] = None) -> dict:
    """Soft-delete a trip. Repeated calls return the original acknowledgement."""
    trip = get_trip(db, organization_id, trip_id, include_deleted=True)
    if trip.status == TripStatus.SOFT_DELETED.value:
        return _delete_ack(trip)
    try:
        begin_write(db)
        lock_vehicle(db, organization_id, trip.vehicle_id)
        trip = get_trip(db, organization_id, trip_id, include_deleted=True, for_update=True)
        if trip.status == TripStatus.SOFT_DELETED.value:
            db.rollback()
            return _delete_ack(trip)
        now = _now()
        trip.status = TripStatus.SOFT_DELETED.value
        trip.deleted_at = now
        trip.deleted_by = actor
        trip.updated_at = now
        append_audit(
            db,
            trip,
            "deleted",
            actor=actor,
            details={"before": trip_snapshot(trip, SNAPSHOT_FIELDS)},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(trip)
    logger.info("Trip soft-deleted org=%s serial=%s actor=%s", organization_id, trip.serial_number, actor)
    return _delete_ack(trip)


def import_trips(
    db: Session,
    organization_id: str,
    rows: Iterable[dict],
    *,
    actor: Optional[str] = None,
) -> list[TripWriteResult]:
    """Load historical trips in one transaction, skipping scheduling checks.

    Rows are applied in end-time order so continuity is checked against the
    rows already imported. Any rejection aborts the entire batch.
    """
    if not settings.enable_bulk_import:
        raise BulkImportDisabled("Bulk import is disabled", context={"organization_id": organization_id})
    ordered = sorted(rows, key=lambda r: (ensure_utc(r["end_time"]), ensure_utc(r["start_time"])))
    results: list[TripWriteResult] = []
    index = -1
    try:
        begin_write(db)
        policy = _load_policy(db, organization_id)
        for index, row in enumerate(ordered):
            results.append(
                _insert_trip(db, organization_id, row, policy=policy, actor=actor, skip_scheduling=True)
            )
        db.commit()
    except LedgerError as exc:
        exc.context["import_row"] = index
        _rejected(db, exc, "import", organization_id)
        raise
    except Exception:
        db.rollback()
        raise
    for result in results:
        db.refresh(result.trip)
    logger.info("Bulk import committed org=%s rows=%s actor=%s", organization_id, len(results), actor)
    return results
