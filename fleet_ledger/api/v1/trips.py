"""
Trip ledger APIs.

Writes go through the validator chain; hard rejections are returned as
structured details naming the violated invariant and a remediation.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ...core.auth import UserContext, require_organization
from ...core.db import get_db
from ...models.trip import Trip
from ...schemas.trip import TripAuditOut, TripCreate, TripDeleteAck, TripOut, TripUpdate, TripWriteOut
from ...services.ledger_errors import LedgerError
from ...services import trip_store
from ...services.trip_ledger import TripWriteResult, create_trip, delete_trip, update_trip
from ...services.trip_store import ensure_utc


router = APIRouter(prefix="/api/v1/organizations/{organization_id}", tags=["trips"])

_TIME_FIELDS = ("start_time", "end_time", "created_at", "updated_at", "deleted_at")


def ledger_http_error(exc: LedgerError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.to_detail())


def trip_to_out(trip: Trip) -> dict:
    payload = TripOut.model_validate(trip).model_dump()
    for name in _TIME_FIELDS:
        payload[name] = ensure_utc(payload.get(name))
    return payload


def _write_out(result: TripWriteResult) -> dict:
    return TripWriteOut(
        trip=trip_to_out(result.trip),
        gap_class=result.gap_class,
        gap_km=result.gap_km,
        warnings=[w.to_dict() for w in result.warnings],
    ).model_dump()


@router.post("/trips", response_model=TripWriteOut, status_code=201)
def create_trip_endpoint(
    organization_id: str,
    payload: TripCreate,
    db: Session = Depends(get_db),
    user: UserContext = Depends(require_organization),
) -> dict:
    try:
        result = create_trip(db, organization_id, payload.model_dump(), actor=user.actor)
    except LedgerError as exc:
        raise ledger_http_error(exc)
    return _write_out(result)


@router.get("/trips/{trip_id}", response_model=TripOut)
def get_trip_endpoint(
    organization_id: str,
    trip_id: str,
    include_deleted: bool = Query(False),
    db: Session = Depends(get_db),
    user: UserContext = Depends(require_organization),
) -> dict:
    try:
        trip = trip_store.get_trip(db, organization_id, trip_id, include_deleted=include_deleted)
    except LedgerError as exc:
        raise ledger_http_error(exc)
    return trip_to_out(trip)


@router.patch("/trips/{trip_id}", response_model=TripWriteOut)
def update_trip_endpoint(
    organization_id: str,
    trip_id: str,
    payload: TripUpdate,
    db: Session = Depends(get_db),
    user: UserContext = Depends(require_organization),
) -> dict:
    patch = payload.model_dump(exclude_unset=True)
    try:
        result = update_trip(db, organization_id, trip_id, patch, actor=user.actor)
    except LedgerError as exc:
        raise ledger_http_error(exc)
    return _write_out(result)


@router.delete("/trips/{trip_id}", response_model=TripDeleteAck)
def delete_trip_endpoint(
    organization_id: str,
    trip_id: str,
    db: Session = Depends(get_db),
    user: UserContext = Depends(require_organization),
) -> dict:
    try:
        return delete_trip(db, organization_id, trip_id, actor=user.actor)
    except LedgerError as exc:
        raise ledger_http_error(exc)


@router.get("/trips/{trip_id}/audit", response_model=list[TripAuditOut])
def trip_audit_endpoint(
    organization_id: str,
    trip_id: str,
    db: Session = Depends(get_db),
    user: UserContext = Depends(require_organization),
) -> list[dict]:
    try:
        trip_store.get_trip(db, organization_id, trip_id, include_deleted=True)
    except LedgerError as exc:
        raise ledger_http_error(exc)
    rows = trip_store.list_trip_audit(db, organization_id, trip_id)
    return [TripAuditOut.model_validate(r).model_dump() for r in rows]


@router.get("/vehicles/{vehicle_id}/trips", response_model=list[TripOut])
def list_vehicle_trips_endpoint(
    organization_id: str,
    vehicle_id: str,
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    include_deleted: bool = Query(False),
    db: Session = Depends(get_db),
    user: UserContext = Depends(require_organization),
) -> list[dict]:
    if date_from and date_to and ensure_utc(date_from) > ensure_utc(date_to):
        raise HTTPException(status_code=400, detail="date_from must be before date_to")
    rows = trip_store.list_trips_for_vehicle(
        db,
        organization_id,
        vehicle_id,
        date_from=date_from,
        date_to=date_to,
        include_deleted=include_deleted,
    )
    return [trip_to_out(t) for t in rows]
