"""create organizations, registry and trip ledger tables

Revision ID: 20261001_01
Revises: 
Create Date: 2026-10-01
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "20261001_01"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "organizations",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=256), nullable=False),
        sa.Column("timezone", sa.String(length=64), nullable=True),
        sa.Column("is_large_fleet", sa.Boolean(), nullable=True),
        sa.Column("odometer_gap_warning_km", sa.Integer(), nullable=True),
        sa.Column("overlap_slack_minutes", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_organizations_is_active", "organizations", ["is_active"])

    op.create_table(
        "vehicles",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("organization_id", sa.String(length=36), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("registration_number", sa.String(length=32), nullable=False),
        sa.Column("registration_fingerprint", sa.String(length=8), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("organization_id", "registration_number", name="uq_vehicle_org_registration"),
    )
    op.create_index("ix_vehicles_organization_id", "vehicles", ["organization_id"])
    op.create_index("ix_vehicles_org_status", "vehicles", ["organization_id", "status"])

    op.create_table(
        "drivers",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("organization_id", sa.String(length=36), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_drivers_organization_id", "drivers", ["organization_id"])

    op.create_table(
        "trips",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("organization_id", sa.String(length=36), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("vehicle_id", sa.String(length=36), sa.ForeignKey("vehicles.id"), nullable=False),
        sa.Column("driver_id", sa.String(length=36), sa.ForeignKey("drivers.id"), nullable=False),
        sa.Column("serial_number", sa.String(length=32), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("start_odometer", sa.Integer(), nullable=False),
        sa.Column("end_odometer", sa.Integer(), nullable=False),
        sa.Column("income_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("fuel_quantity_l", sa.Numeric(10, 2), nullable=True),
        sa.Column("fuel_cost", sa.Numeric(12, 2), nullable=True),
        sa.Column("road_expense", sa.Numeric(12, 2), nullable=True),
        sa.Column("remarks", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=True),
        sa.Column("created_by", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_by", sa.String(length=128), nullable=True),
        sa.UniqueConstraint("organization_id", "serial_number", name="uq_trip_org_serial"),
        sa.CheckConstraint("end_odometer > start_odometer", name="ck_trips_odometer_range"),
        sa.CheckConstraint("end_time > start_time", name="ck_trips_time_range"),
    )
    op.create_index("ix_trips_status", "trips", ["status"])
    op.create_index("ix_trips_org_vehicle_end", "trips", ["organization_id", "vehicle_id", "end_time"])
    op.create_index("ix_trips_org_driver_start", "trips", ["organization_id", "driver_id", "start_time"])
    op.create_index("ix_trips_org_start", "trips", ["organization_id", "start_time"])

    op.create_table(
        "trip_audit_log",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("organization_id", sa.String(length=36), nullable=False),
        sa.Column("trip_id", sa.String(length=36), nullable=False),
        sa.Column("serial_number", sa.String(length=32), nullable=True),
        sa.Column("action", sa.String(length=32), nullable=False),
        sa.Column("severity", sa.String(length=16), nullable=True),
        sa.Column("actor", sa.String(length=128), nullable=True),
        sa.Column("details", postgresql.JSONB(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_trip_audit_org_trip", "trip_audit_log", ["organization_id", "trip_id"])


def downgrade() -> None:
    op.drop_index("ix_trip_audit_org_trip", table_name="trip_audit_log")
    op.drop_table("trip_audit_log")
    op.drop_index("ix_trips_org_start", table_name="trips")
    op.drop_index("ix_trips_org_driver_start", table_name="trips")
    op.drop_index("ix_trips_org_vehicle_end", table_name="trips")
    op.drop_index("ix_trips_status", table_name="trips")
    op.drop_table("trips")
    op.drop_index("ix_drivers_organization_id", table_name="drivers")
    op.drop_table("drivers")
    op.drop_index("ix_vehicles_org_status", table_name="vehicles")
    op.drop_index("ix_vehicles_organization_id", table_name="vehicles")
    op.drop_table("vehicles")
    op.drop_index("ix_organizations_is_active", table_name="organizations")
    op.drop_table("organizations")
