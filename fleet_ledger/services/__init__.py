"""
Service layer for the fleet ledger backend.

This package contains the trip write path (validator chain and ledger store)
and the KPI rollup engine that materializes per-tenant metrics.
"""

from .trip_ledger import create_trip, update_trip, delete_trip, import_trips
from .kpi_rollup import run_kpi_rollup

__all__ = ["create_trip", "update_trip", "delete_trip", "import_trips", "run_kpi_rollup"]
