"""reporting schema

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "organizations",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )

    op.create_table(
        "datasets",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("organization_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("schema", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("rows", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("row_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("organization_id", "name", name="uq_datasets_org_name"),
    )
    op.create_index("ix_datasets_organization_id", "datasets", ["organization_id"])

    op.create_table(
        "report_definitions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("organization_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("dataset_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("datasets.id"), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("cadence", sa.String(length=16), nullable=False, server_default="monthly"),
        sa.Column("date_column_key", sa.String(length=255), nullable=False),
        sa.Column("layout", sa.String(length=16), nullable=False, server_default="standard"),
        sa.Column("compare_mode", sa.String(length=16), nullable=False, server_default="none"),
        sa.Column("columns", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("formula_rows", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("pivot_column_key", sa.String(length=255), nullable=True),
        sa.Column("metric_rows", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("pivot_duplicate_policy", sa.String(length=16), nullable=False, server_default="last"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint(
            "cadence IN ('daily', 'weekly', 'monthly', 'quarterly', 'yearly', 'annual')",
            name="ck_report_definitions_cadence",
        ),
        sa.CheckConstraint("layout IN ('standard', 'pivot')", name="ck_report_definitions_layout"),
        sa.CheckConstraint("compare_mode IN ('none', 'mom', 'yoy')", name="ck_report_definitions_compare_mode"),
        sa.CheckConstraint(
            "pivot_duplicate_policy IN ('last', 'sum')",
            name="ck_report_definitions_pivot_duplicate_policy",
        ),
    )
    op.create_index("ix_report_definitions_organization_id", "report_definitions", ["organization_id"])
    op.create_index("ix_report_definitions_dataset_id", "report_definitions", ["dataset_id"])


def downgrade() -> None:
    op.drop_index("ix_report_definitions_dataset_id", table_name="report_definitions")
    op.drop_index("ix_report_definitions_organization_id", table_name="report_definitions")
    op.drop_table("report_definitions")

    op.drop_index("ix_datasets_organization_id", table_name="datasets")
    op.drop_table("datasets")

    op.drop_table("organizations")
