"""bucket plan hour pools and per-unit rate tiers

Revision ID: 202610170004
Revises: 202610170003
Create Date: 2026-10-17
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "202610170004"
down_revision = "202610170003"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "plan_service_bucket_configs",
        sa.Column("tenant", sa.String(), nullable=False),
        sa.Column("plan_id", sa.String(), nullable=False),
        sa.Column("service_id", sa.String(), nullable=False),
        sa.Column("total_hours", sa.Integer(), nullable=False),
        sa.Column("billing_period", sa.String(), nullable=False),
        sa.Column("overage_rate", sa.Integer(), nullable=False),
        sa.Column("allow_rollover", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["tenant", "plan_id", "service_id"],
            ["plan_services.tenant", "plan_services.plan_id", "plan_services.service_id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("tenant", "plan_id", "service_id"),
    )

    op.create_table(
        "plan_service_rate_tiers",
        sa.Column("tier_id", sa.String(), nullable=False),
        sa.Column("tenant", sa.String(), nullable=False),
        sa.Column("plan_id", sa.String(), nullable=False),
        sa.Column("service_id", sa.String(), nullable=False),
        sa.Column("min_quantity", sa.Integer(), nullable=False),
        sa.Column("max_quantity", sa.Integer(), nullable=True),
        sa.Column("rate", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["tenant"], ["tenants.id"]),
        sa.ForeignKeyConstraint(
            ["tenant", "plan_id", "service_id"],
            ["plan_services.tenant", "plan_services.plan_id", "plan_services.service_id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("tier_id"),
        sa.UniqueConstraint("tenant", "plan_id", "service_id", "min_quantity", name="uq_plan_service_rate_tiers_min"),
    )
    op.create_index(
        "ix_plan_service_rate_tiers_link",
        "plan_service_rate_tiers",
        ["tenant", "plan_id", "service_id"],
    )


def downgrade() -> None:
    op.drop_index("ix_plan_service_rate_tiers_link", table_name="plan_service_rate_tiers")
    op.drop_table("plan_service_rate_tiers")
    op.drop_table("plan_service_bucket_configs")
