"""
SQLAlchemy model base class for the fleet ledger backend.

This package defines ORM models for organizations, the read-only vehicle and
driver registry, the trip ledger with its audit log, and the KPI cache and
events feed written by the rollup engine. All models should inherit from the
declarative `Base` defined here.
"""

from __future__ import annotations

from sqlalchemy import JSON
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.dialects.postgresql import JSONB


@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(type_, compiler, **kw):
    return compiler.process(JSON(), **kw)


from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""

    pass


from .organization import Organization  # noqa: E402,F401
from .vehicle import Vehicle  # noqa: E402,F401
from .driver import Driver  # noqa: E402,F401
from .trip import Trip, TripStatus  # noqa: E402,F401
from .trip_audit import TripAuditLog  # noqa: E402,F401
from .kpi_card import KpiCard  # noqa: E402,F401
from .events_feed import EventsFeed  # noqa: E402,F401

__all__ = [
    "Base",

    # Tenancy / registry
    "Organization",
    "Vehicle",
    "Driver",

    # Ledger
    "Trip",
    "TripStatus",
    "TripAuditLog",

    # Rollup outputs
    "KpiCard",
    "EventsFeed",
]
