"""
Health endpoints for the fleet ledger backend.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.orm import Session

from ...core.db import get_db
from ...core.errors import log_exception


router = APIRouter(prefix="/api/v1/health", tags=["health"])
logger = logging.getLogger("health")


@router.get("")
def health(request: Request, db: Session = Depends(get_db)) -> dict:
    db_ok = True
    try:
        db.execute(text("SELECT 1"))
    except Exception as exc:
        log_exception(logger, "Health DB probe failed", exc=exc)
        db_ok = False
    thread = getattr(request.app.state, "kpi_rollup_thread", None)
    return {
        "timestamp_utc": datetime.now(timezone.utc).isoformat(),
        "database": "ok" if db_ok else "error",
        "kpi_rollup": {
            "enabled": thread is not None,
            "running": bool(thread and thread.is_alive()),
        },
    }
