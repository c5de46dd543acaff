"""
API package for the fleet ledger backend.

This package aggregates all API routers to be included in the FastAPI
application. The API is versioned under ``/api/v1``; every tenant-scoped
route carries its ``organization_id`` in the path.
"""

from fastapi import APIRouter, Depends
from .v1.trips import router as trips_router
from .v1.imports import router as imports_router
from .v1.kpis import router as kpis_router
from .v1.integrity import router as integrity_router
from .v1.health import router as health_router
from ..core.auth import get_current_user

api_router = APIRouter()
protected = [Depends(get_current_user)]
api_router.include_router(trips_router, dependencies=protected)
api_router.include_router(imports_router, dependencies=protected)
api_router.include_router(kpis_router, dependencies=protected)
api_router.include_router(integrity_router, dependencies=protected)
api_router.include_router(health_router)
