"""create kpi_cards and events_feed tables

Revision ID: 20261001_02
Revises: 20261001_01
Create Date: 2026-10-01
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "20261001_02"
down_revision = "20261001_01"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "kpi_cards",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("kpi_key", sa.String(length=64), nullable=False),
        sa.Column("organization_id", sa.String(length=36), nullable=False),
        sa.Column("title", sa.String(length=128), nullable=True),
        sa.Column("value_human", sa.String(length=64), nullable=False),
        sa.Column("value_raw", sa.Float(), nullable=True),
        sa.Column("payload", postgresql.JSONB(), nullable=True),
        sa.Column("theme", sa.String(length=32), nullable=True),
        sa.Column("computed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("kpi_key", "organization_id", name="uq_kpi_cards_key_org"),
    )
    op.create_index("ix_kpi_cards_organization_id", "kpi_cards", ["organization_id"])

    op.create_table(
        "events_feed",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("organization_id", sa.String(length=36), nullable=False),
        sa.Column("kind", sa.String(length=32), nullable=False),
        sa.Column("event_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("priority", sa.String(length=16), nullable=True),
        sa.Column("title", sa.String(length=256), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("entity_json", postgresql.JSONB(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_events_feed_org_time", "events_feed", ["organization_id", "event_time"])


def downgrade() -> None:
    op.drop_index("ix_events_feed_org_time", table_name="events_feed")
    op.drop_table("events_feed")
    op.drop_index("ix_kpi_cards_organization_id", table_name="kpi_cards")
    op.drop_table("kpi_cards")
