"""
Privileged bulk import of historical trips.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...core.auth import PLATFORM_ADMIN, UserContext, require_organization, require_roles
from ...core.db import get_db
from ...schemas.trip import TripImport
from ...services.ledger_errors import LedgerError
from ...services.trip_ledger import import_trips
from .trips import ledger_http_error, trip_to_out


router = APIRouter(prefix="/api/v1/organizations/{organization_id}", tags=["imports"])


@router.post("/trips/import", status_code=201)
def import_trips_endpoint(
    organization_id: str,
    payload: TripImport,
    db: Session = Depends(get_db),
    user: UserContext = Depends(require_organization),
    admin: UserContext = Depends(require_roles(PLATFORM_ADMIN)),
) -> dict:
    rows = [t.model_dump() for t in payload.trips]
    try:
        results = import_trips(db, organization_id, rows, actor=admin.actor)
    except LedgerError as exc:
        raise ledger_http_error(exc)
    return {
        "imported": len(results),
        "warnings": sum(len(r.warnings) for r in results),
        "trips": [
            {
                "trip": trip_to_out(r.trip),
                "gap_class": r.gap_class,
                "gap_km": r.gap_km,
                "warnings": [w.to_dict() for w in r.warnings],
            }
            for r in results
        ],
    }
