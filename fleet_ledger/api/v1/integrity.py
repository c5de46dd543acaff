"""
Ledger integrity audit endpoints (read-only).
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...core.auth import UserContext, require_organization
from ...core.db import get_db
from ...services.serial_audit import detect_serial_mismatches


router = APIRouter(prefix="/api/v1/organizations/{organization_id}/integrity", tags=["integrity"])


@router.get("/serial-mismatches")
def serial_mismatches(
    organization_id: str,
    limit: Optional[int] = Query(None, ge=1, le=1000),
    db: Session = Depends(get_db),
    user: UserContext = Depends(require_organization),
) -> dict:
    return detect_serial_mismatches(db, organization_id, limit=limit)
