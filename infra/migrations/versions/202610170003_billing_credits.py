"""service catalog, billing plans, usage and credit ledger

Revision ID: 202610170003
Revises: 202610170002
Create Date: 2026-10-17
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "202610170003"
down_revision = "202610170002"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "service_types",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("tenant", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("billing_method", sa.String(), nullable=False),
        sa.Column("is_standard", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["tenant"], ["tenants.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant", "id", name="uq_service_types_tenant_id"),
        sa.UniqueConstraint("tenant", "name", name="uq_service_types_tenant_name"),
    )
    op.create_index("ix_service_types_tenant", "service_types", ["tenant"])
    op.create_index("ix_service_types_created_at", "service_types", ["created_at"])

    op.create_table(
        "service_categories",
        sa.Column("category_id", sa.String(), nullable=False),
        sa.Column("tenant", sa.String(), nullable=False),
        sa.Column("category_name", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["tenant"], ["tenants.id"]),
        sa.PrimaryKeyConstraint("category_id"),
        sa.UniqueConstraint("tenant", "category_id", name="uq_service_categories_tenant_id"),
        sa.UniqueConstraint("tenant", "category_name", name="uq_service_categories_tenant_name"),
    )
    op.create_index("ix_service_categories_tenant", "service_categories", ["tenant"])
    op.create_index("ix_service_categories_created_at", "service_categories", ["created_at"])

    op.create_table(
        "services",
        sa.Column("service_id", sa.String(), nullable=False),
        sa.Column("tenant", sa.String(), nullable=False),
        sa.Column("service_name", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("standard_service_type_id", sa.String(), nullable=True),
        sa.Column("custom_service_type_id", sa.String(), nullable=True),
        sa.Column("billing_method", sa.String(), nullable=False),
        sa.Column("default_rate", sa.Integer(), nullable=False),
        sa.Column("unit_of_measure", sa.String(), nullable=True),
        sa.Column("category_id", sa.String(), nullable=True),
        sa.Column("is_taxable", sa.Boolean(), nullable=False),
        sa.Column("tax_region", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["tenant"], ["tenants.id"]),
        sa.ForeignKeyConstraint(
            ["tenant", "standard_service_type_id"],
            ["service_types.tenant", "service_types.id"],
        ),
        sa.ForeignKeyConstraint(
            ["tenant", "custom_service_type_id"],
            ["service_types.tenant", "service_types.id"],
        ),
        sa.ForeignKeyConstraint(
            ["tenant", "category_id"],
            ["service_categories.tenant", "service_categories.category_id"],
        ),
        sa.PrimaryKeyConstraint("service_id"),
        sa.UniqueConstraint("tenant", "service_id", name="uq_services_tenant_service_id"),
    )
    op.create_index("ix_services_tenant", "services", ["tenant"])
    op.create_index("ix_services_service_name", "services", ["service_name"])
    op.create_index("ix_services_standard_service_type_id", "services", ["standard_service_type_id"])
    op.create_index("ix_services_custom_service_type_id", "services", ["custom_service_type_id"])
    op.create_index("ix_services_category_id", "services", ["category_id"])
    op.create_index("ix_services_created_at", "services", ["created_at"])
    op.create_index("ix_services_updated_at", "services", ["updated_at"])

    op.create_table(
        "billing_plans",
        sa.Column("plan_id", sa.String(), nullable=False),
        sa.Column("tenant", sa.String(), nullable=False),
        sa.Column("plan_name", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("billing_frequency", sa.String(), nullable=False),
        sa.Column("plan_type", sa.String(), nullable=False),
        sa.Column("is_custom", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["tenant"], ["tenants.id"]),
        sa.PrimaryKeyConstraint("plan_id"),
        sa.UniqueConstraint("tenant", "plan_id", name="uq_billing_plans_tenant_plan_id"),
        sa.UniqueConstraint("tenant", "plan_name", name="uq_billing_plans_tenant_name"),
    )
    op.create_index("ix_billing_plans_tenant", "billing_plans", ["tenant"])
    op.create_index("ix_billing_plans_plan_name", "billing_plans", ["plan_name"])
    op.create_index("ix_billing_plans_plan_type", "billing_plans", ["plan_type"])
    op.create_index("ix_billing_plans_created_at", "billing_plans", ["created_at"])
    op.create_index("ix_billing_plans_updated_at", "billing_plans", ["updated_at"])

    op.create_table(
        "plan_services",
        sa.Column("tenant", sa.String(), nullable=False),
        sa.Column("plan_id", sa.String(), nullable=False),
        sa.Column("service_id", sa.String(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("custom_rate", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["tenant", "plan_id"], ["billing_plans.tenant", "billing_plans.plan_id"]),
        sa.ForeignKeyConstraint(["tenant", "service_id"], ["services.tenant", "services.service_id"]),
        sa.PrimaryKeyConstraint("tenant", "plan_id", "service_id"),
    )
    op.create_index("ix_plan_services_tenant_service", "plan_services", ["tenant", "service_id"])
    op.create_index("ix_plan_services_created_at", "plan_services", ["created_at"])

    op.create_table(
        "company_billing_plans",
        sa.Column("company_billing_plan_id", sa.String(), nullable=False),
        sa.Column("tenant", sa.String(), nullable=False),
        sa.Column("company_id", sa.String(), nullable=False),
        sa.Column("plan_id", sa.String(), nullable=False),
        sa.Column("service_category", sa.String(), nullable=True),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["tenant"], ["tenants.id"]),
        sa.ForeignKeyConstraint(["tenant", "company_id"], ["companies.tenant", "companies.company_id"]),
        sa.ForeignKeyConstraint(["tenant", "plan_id"], ["billing_plans.tenant", "billing_plans.plan_id"]),
        sa.ForeignKeyConstraint(
            ["tenant", "service_category"],
            ["service_categories.tenant", "service_categories.category_id"],
        ),
        sa.PrimaryKeyConstraint("company_billing_plan_id"),
        sa.UniqueConstraint("tenant", "company_billing_plan_id", name="uq_company_billing_plans_tenant_id"),
    )
    op.create_index("ix_company_billing_plans_tenant", "company_billing_plans", ["tenant"])
    op.create_index(
        "ix_company_billing_plans_tenant_company",
        "company_billing_plans",
        ["tenant", "company_id"],
    )
    op.create_index("ix_company_billing_plans_plan_id", "company_billing_plans", ["plan_id"])
    op.create_index("ix_company_billing_plans_is_active", "company_billing_plans", ["is_active"])
    op.create_index("ix_company_billing_plans_created_at", "company_billing_plans", ["created_at"])

    op.create_table(
        "usage_records",
        sa.Column("usage_id", sa.String(), nullable=False),
        sa.Column("tenant", sa.String(), nullable=False),
        sa.Column("company_id", sa.String(), nullable=False),
        sa.Column("service_id", sa.String(), nullable=False),
        sa.Column("quantity", sa.Float(), nullable=False),
        sa.Column("usage_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("billing_plan_id", sa.String(), nullable=True),
        sa.Column("comments", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["tenant"], ["tenants.id"]),
        sa.ForeignKeyConstraint(["tenant", "company_id"], ["companies.tenant", "companies.company_id"]),
        sa.ForeignKeyConstraint(["tenant", "service_id"], ["services.tenant", "services.service_id"]),
        sa.PrimaryKeyConstraint("usage_id"),
    )
    op.create_index("ix_usage_records_tenant", "usage_records", ["tenant"])
    op.create_index("ix_usage_records_tenant_company", "usage_records", ["tenant", "company_id"])
    op.create_index("ix_usage_records_service_id", "usage_records", ["service_id"])
    op.create_index("ix_usage_records_usage_date", "usage_records", ["usage_date"])
    op.create_index("ix_usage_records_billing_plan_id", "usage_records", ["billing_plan_id"])
    op.create_index("ix_usage_records_created_at", "usage_records", ["created_at"])

    op.create_table(
        "transactions",
        sa.Column("transaction_id", sa.String(), nullable=False),
        sa.Column("tenant", sa.String(), nullable=False),
        sa.Column("company_id", sa.String(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("related_transaction_id", sa.String(), nullable=True),
        sa.Column("expiration_date", sa.Date(), nullable=True),
        sa.Column("balance_after", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["tenant"], ["tenants.id"]),
        sa.ForeignKeyConstraint(["tenant", "company_id"], ["companies.tenant", "companies.company_id"]),
        sa.PrimaryKeyConstraint("transaction_id"),
        sa.UniqueConstraint("tenant", "transaction_id", name="uq_transactions_tenant_id"),
    )
    op.create_index("ix_transactions_tenant", "transactions", ["tenant"])
    op.create_index("ix_transactions_tenant_company", "transactions", ["tenant", "company_id"])
    op.create_index("ix_transactions_type", "transactions", ["type"])
    op.create_index("ix_transactions_related_transaction_id", "transactions", ["related_transaction_id"])
    op.create_index("ix_transactions_created_at", "transactions", ["created_at"])

    op.create_table(
        "credit_tracking",
        sa.Column("credit_id", sa.String(), nullable=False),
        sa.Column("tenant", sa.String(), nullable=False),
        sa.Column("company_id", sa.String(), nullable=False),
        sa.Column("transaction_id", sa.String(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("remaining_amount", sa.Integer(), nullable=False),
        sa.Column("expiration_date", sa.Date(), nullable=True),
        sa.Column("is_expired", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["tenant"], ["tenants.id"]),
        sa.ForeignKeyConstraint(["tenant", "company_id"], ["companies.tenant", "companies.company_id"]),
        sa.ForeignKeyConstraint(
            ["tenant", "transaction_id"],
            ["transactions.tenant", "transactions.transaction_id"],
        ),
        sa.PrimaryKeyConstraint("credit_id"),
    )
    op.create_index("ix_credit_tracking_tenant", "credit_tracking", ["tenant"])
    op.create_index("ix_credit_tracking_tenant_company", "credit_tracking", ["tenant", "company_id"])
    op.create_index("ix_credit_tracking_transaction_id", "credit_tracking", ["transaction_id"])
    op.create_index("ix_credit_tracking_expiration_date", "credit_tracking", ["expiration_date"])
    op.create_index("ix_credit_tracking_is_expired", "credit_tracking", ["is_expired"])
    op.create_index("ix_credit_tracking_created_at", "credit_tracking", ["created_at"])

    op.create_table(
        "credit_reconciliation_reports",
        sa.Column("report_id", sa.String(), nullable=False),
        sa.Column("tenant", sa.String(), nullable=False),
        sa.Column("company_id", sa.String(), nullable=False),
        sa.Column("issue_type", sa.String(), nullable=False),
        sa.Column("expected_balance", sa.Integer(), nullable=False),
        sa.Column("actual_balance", sa.Integer(), nullable=False),
        sa.Column("difference", sa.Integer(), nullable=False),
        sa.Column("detection_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("credit_id", sa.String(), nullable=True),
        sa.Column("transaction_id", sa.String(), nullable=True),
        sa.Column("resolution_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolution_user", sa.String(), nullable=True),
        sa.Column("resolution_notes", sa.String(), nullable=True),
        sa.Column("resolution_transaction_id", sa.String(), nullable=True),
        sa.Column("detail", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["tenant"], ["tenants.id"]),
        sa.ForeignKeyConstraint(["tenant", "company_id"], ["companies.tenant", "companies.company_id"]),
        sa.PrimaryKeyConstraint("report_id"),
    )
    op.create_index("ix_credit_reconciliation_reports_tenant", "credit_reconciliation_reports", ["tenant"])
    op.create_index(
        "ix_credit_reconciliation_reports_tenant_company",
        "credit_reconciliation_reports",
        ["tenant", "company_id"],
    )
    op.create_index("ix_credit_reconciliation_reports_issue_type", "credit_reconciliation_reports", ["issue_type"])
    op.create_index("ix_credit_reconciliation_reports_status", "credit_reconciliation_reports", ["status"])
    op.create_index(
        "ix_credit_reconciliation_reports_detection_date",
        "credit_reconciliation_reports",
        ["detection_date"],
    )
    op.create_index("ix_credit_reconciliation_reports_credit_id", "credit_reconciliation_reports", ["credit_id"])
    op.create_index(
        "ix_credit_reconciliation_reports_transaction_id",
        "credit_reconciliation_reports",
        ["transaction_id"],
    )


def downgrade() -> None:
    op.drop_table("credit_reconciliation_reports")
    op.drop_table("credit_tracking")
    op.drop_table("transactions")
    op.drop_table("usage_records")
    op.drop_table("company_billing_plans")
    op.drop_table("plan_services")
    op.drop_table("billing_plans")
    op.drop_table("services")
    op.drop_table("service_categories")
    op.drop_table("service_types")
