"""asset registry, extensions, associations and maintenance

Revision ID: 202610170002
Revises: 202610170001
Create Date: 2026-10-17
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "202610170002"
down_revision = "202610170001"
branch_labels = None
depends_on = None

EXTENSION_TABLES = (
    "workstation_assets",
    "network_device_assets",
    "server_assets",
    "mobile_device_assets",
    "printer_assets",
)


def _extension_keys() -> list[sa.SchemaItem]:
    return [
        sa.Column("tenant", sa.String(), nullable=False),
        sa.Column("asset_id", sa.String(), nullable=False),
    ]


def _extension_constraints() -> list[sa.SchemaItem]:
    return [
        sa.ForeignKeyConstraint(
            ["tenant", "asset_id"],
            ["assets.tenant", "assets.asset_id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("tenant", "asset_id"),
    ]


def upgrade() -> None:
    op.create_table(
        "asset_types",
        sa.Column("type_id", sa.String(), nullable=False),
        sa.Column("tenant", sa.String(), nullable=False),
        sa.Column("type_name", sa.String(), nullable=False),
        sa.Column("parent_type_id", sa.String(), nullable=True),
        sa.Column("attributes_schema", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["tenant"], ["tenants.id"]),
        sa.ForeignKeyConstraint(["tenant", "parent_type_id"], ["asset_types.tenant", "asset_types.type_id"]),
        sa.PrimaryKeyConstraint("type_id"),
        sa.UniqueConstraint("tenant", "type_id", name="uq_asset_types_tenant_type_id"),
        sa.UniqueConstraint("tenant", "type_name", name="uq_asset_types_tenant_name"),
    )
    op.create_index("ix_asset_types_tenant", "asset_types", ["tenant"])
    op.create_index("ix_asset_types_type_name", "asset_types", ["type_name"])
    op.create_index("ix_asset_types_parent_type_id", "asset_types", ["parent_type_id"])

    op.create_table(
        "assets",
        sa.Column("asset_id", sa.String(), nullable=False),
        sa.Column("tenant", sa.String(), nullable=False),
        sa.Column("type_id", sa.String(), nullable=False),
        sa.Column("company_id", sa.String(), nullable=False),
        sa.Column("asset_tag", sa.String(), nullable=False),
        sa.Column("serial_number", sa.String(), nullable=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("location", sa.String(), nullable=True),
        sa.Column("purchase_date", sa.Date(), nullable=True),
        sa.Column("warranty_end_date", sa.Date(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["tenant"], ["tenants.id"]),
        sa.ForeignKeyConstraint(["tenant", "company_id"], ["companies.tenant", "companies.company_id"]),
        sa.ForeignKeyConstraint(["tenant", "type_id"], ["asset_types.tenant", "asset_types.type_id"]),
        sa.PrimaryKeyConstraint("asset_id"),
        sa.UniqueConstraint("tenant", "asset_id", name="uq_assets_tenant_asset_id"),
        sa.UniqueConstraint("tenant", "asset_tag", name="uq_assets_tenant_asset_tag"),
    )
    op.create_index("ix_assets_tenant", "assets", ["tenant"])
    op.create_index("ix_assets_tenant_company", "assets", ["tenant", "company_id"])
    op.create_index("ix_assets_tenant_type", "assets", ["tenant", "type_id"])
    op.create_index("ix_assets_asset_tag", "assets", ["asset_tag"])
    op.create_index("ix_assets_serial_number", "assets", ["serial_number"])
    op.create_index("ix_assets_name", "assets", ["name"])
    op.create_index("ix_assets_status", "assets", ["status"])
    op.create_index("ix_assets_created_at", "assets", ["created_at"])
    op.create_index("ix_assets_updated_at", "assets", ["updated_at"])

    op.create_table(
        "workstation_assets",
        *_extension_keys(),
        sa.Column("os_type", sa.String(), nullable=True),
        sa.Column("os_version", sa.String(), nullable=True),
        sa.Column("cpu_model", sa.String(), nullable=True),
        sa.Column("cpu_cores", sa.Integer(), nullable=True),
        sa.Column("ram_gb", sa.Integer(), nullable=True),
        sa.Column("storage_type", sa.String(), nullable=True),
        sa.Column("storage_capacity_gb", sa.Integer(), nullable=True),
        sa.Column("gpu_model", sa.String(), nullable=True),
        sa.Column("last_login", sa.DateTime(timezone=True), nullable=True),
        sa.Column("installed_software", sa.JSON(), nullable=False),
        *_extension_constraints(),
    )
    op.create_table(
        "network_device_assets",
        *_extension_keys(),
        sa.Column("device_type", sa.String(), nullable=False),
        sa.Column("management_ip", sa.String(), nullable=True),
        sa.Column("port_count", sa.Integer(), nullable=True),
        sa.Column("firmware_version", sa.String(), nullable=True),
        sa.Column("supports_poe", sa.Boolean(), nullable=False),
        sa.Column("power_draw_watts", sa.Float(), nullable=True),
        sa.Column("vlan_config", sa.JSON(), nullable=False),
        sa.Column("port_config", sa.JSON(), nullable=False),
        *_extension_constraints(),
    )
    op.create_table(
        "server_assets",
        *_extension_keys(),
        sa.Column("os_type", sa.String(), nullable=True),
        sa.Column("os_version", sa.String(), nullable=True),
        sa.Column("cpu_model", sa.String(), nullable=True),
        sa.Column("cpu_cores", sa.Integer(), nullable=True),
        sa.Column("ram_gb", sa.Integer(), nullable=True),
        sa.Column("storage_config", sa.JSON(), nullable=False),
        sa.Column("raid_config", sa.String(), nullable=True),
        sa.Column("is_virtual", sa.Boolean(), nullable=False),
        sa.Column("hypervisor", sa.String(), nullable=True),
        sa.Column("network_interfaces", sa.JSON(), nullable=False),
        sa.Column("primary_ip", sa.String(), nullable=True),
        sa.Column("installed_services", sa.JSON(), nullable=False),
        *_extension_constraints(),
    )
    op.create_table(
        "mobile_device_assets",
        *_extension_keys(),
        sa.Column("os_type", sa.String(), nullable=True),
        sa.Column("os_version", sa.String(), nullable=True),
        sa.Column("model", sa.String(), nullable=True),
        sa.Column("imei", sa.String(), nullable=True),
        sa.Column("phone_number", sa.String(), nullable=True),
        sa.Column("carrier", sa.String(), nullable=True),
        sa.Column("last_check_in", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_supervised", sa.Boolean(), nullable=False),
        sa.Column("installed_apps", sa.JSON(), nullable=False),
        *_extension_constraints(),
    )
    op.create_table(
        "printer_assets",
        *_extension_keys(),
        sa.Column("model", sa.String(), nullable=True),
        sa.Column("ip_address", sa.String(), nullable=True),
        sa.Column("is_network_printer", sa.Boolean(), nullable=False),
        sa.Column("supports_color", sa.Boolean(), nullable=False),
        sa.Column("supports_duplex", sa.Boolean(), nullable=False),
        sa.Column("max_paper_size", sa.Integer(), nullable=True),
        sa.Column("supported_paper_types", sa.JSON(), nullable=False),
        sa.Column("monthly_duty_cycle", sa.Integer(), nullable=True),
        sa.Column("supply_levels", sa.JSON(), nullable=False),
        *_extension_constraints(),
    )

    op.create_table(
        "asset_associations",
        sa.Column("tenant", sa.String(), nullable=False),
        sa.Column("asset_id", sa.String(), nullable=False),
        sa.Column("entity_id", sa.String(), nullable=False),
        sa.Column("entity_type", sa.String(), nullable=False),
        sa.Column("relationship_type", sa.String(), nullable=False),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("created_by", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["tenant", "asset_id"], ["assets.tenant", "assets.asset_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("tenant", "asset_id", "entity_id", "entity_type"),
    )
    op.create_index(
        "ix_asset_associations_tenant_entity",
        "asset_associations",
        ["tenant", "entity_id", "entity_type"],
    )
    op.create_index("ix_asset_associations_created_at", "asset_associations", ["created_at"])

    # No foreign key to assets: history outlives the asset.
    op.create_table(
        "asset_history",
        sa.Column("history_id", sa.String(), nullable=False),
        sa.Column("tenant", sa.String(), nullable=False),
        sa.Column("asset_id", sa.String(), nullable=False),
        sa.Column("changed_by", sa.String(), nullable=False),
        sa.Column("change_type", sa.String(), nullable=False),
        sa.Column("changes", sa.JSON(), nullable=False),
        sa.Column("changed_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["tenant"], ["tenants.id"]),
        sa.PrimaryKeyConstraint("history_id"),
    )
    op.create_index("ix_asset_history_tenant", "asset_history", ["tenant"])
    op.create_index("ix_asset_history_tenant_asset", "asset_history", ["tenant", "asset_id"])
    op.create_index("ix_asset_history_changed_at", "asset_history", ["changed_at"])

    op.create_table(
        "asset_relationships",
        sa.Column("tenant", sa.String(), nullable=False),
        sa.Column("parent_asset_id", sa.String(), nullable=False),
        sa.Column("child_asset_id", sa.String(), nullable=False),
        sa.Column("relationship_type", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["tenant", "parent_asset_id"],
            ["assets.tenant", "assets.asset_id"],
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["tenant", "child_asset_id"],
            ["assets.tenant", "assets.asset_id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("tenant", "parent_asset_id", "child_asset_id"),
    )
    op.create_index("ix_asset_relationships_created_at", "asset_relationships", ["created_at"])

    op.create_table(
        "asset_maintenance_schedules",
        sa.Column("schedule_id", sa.String(), nullable=False),
        sa.Column("tenant", sa.String(), nullable=False),
        sa.Column("asset_id", sa.String(), nullable=False),
        sa.Column("schedule_name", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("maintenance_type", sa.String(), nullable=False),
        sa.Column("frequency", sa.String(), nullable=False),
        sa.Column("frequency_interval", sa.Integer(), nullable=False),
        sa.Column("schedule_config", sa.JSON(), nullable=False),
        sa.Column("last_maintenance", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_maintenance", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_by", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["tenant"], ["tenants.id"]),
        sa.ForeignKeyConstraint(["tenant", "asset_id"], ["assets.tenant", "assets.asset_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("schedule_id"),
        sa.UniqueConstraint("tenant", "schedule_id", name="uq_asset_maintenance_schedules_tenant_id"),
    )
    op.create_index("ix_asset_maintenance_schedules_tenant", "asset_maintenance_schedules", ["tenant"])
    op.create_index(
        "ix_asset_maintenance_schedules_tenant_asset",
        "asset_maintenance_schedules",
        ["tenant", "asset_id"],
    )
    op.create_index(
        "ix_asset_maintenance_schedules_tenant_next",
        "asset_maintenance_schedules",
        ["tenant", "next_maintenance"],
    )
    op.create_index(
        "ix_asset_maintenance_schedules_maintenance_type",
        "asset_maintenance_schedules",
        ["maintenance_type"],
    )
    op.create_index("ix_asset_maintenance_schedules_is_active", "asset_maintenance_schedules", ["is_active"])

    op.create_table(
        "asset_maintenance_history",
        sa.Column("history_id", sa.String(), nullable=False),
        sa.Column("tenant", sa.String(), nullable=False),
        sa.Column("schedule_id", sa.String(), nullable=False),
        sa.Column("asset_id", sa.String(), nullable=False),
        sa.Column("maintenance_type", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("maintenance_data", sa.JSON(), nullable=False),
        sa.Column("performed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("performed_by", sa.String(), nullable=False),
        sa.ForeignKeyConstraint(["tenant"], ["tenants.id"]),
        sa.ForeignKeyConstraint(
            ["tenant", "schedule_id"],
            ["asset_maintenance_schedules.tenant", "asset_maintenance_schedules.schedule_id"],
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(["tenant", "asset_id"], ["assets.tenant", "assets.asset_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("history_id"),
    )
    op.create_index("ix_asset_maintenance_history_tenant", "asset_maintenance_history", ["tenant"])
    op.create_index(
        "ix_asset_maintenance_history_tenant_asset",
        "asset_maintenance_history",
        ["tenant", "asset_id"],
    )
    op.create_index("ix_asset_maintenance_history_performed_at", "asset_maintenance_history", ["performed_at"])


def downgrade() -> None:
    op.drop_table("asset_maintenance_history")
    op.drop_table("asset_maintenance_schedules")
    op.drop_table("asset_relationships")
    op.drop_table("asset_history")
    op.drop_table("asset_associations")
    for table_name in EXTENSION_TABLES:
        op.drop_table(table_name)
    op.drop_table("assets")
    op.drop_table("asset_types")
