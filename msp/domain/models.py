from __future__ import annotations

from datetime import UTC, date, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, model_validator
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column, ForeignKeyConstraint, Index, UniqueConstraint
from sqlmodel import Field, SQLModel

from msp.domain.state_machine import ReconciliationStatus


def now_utc() -> datetime:
    return datetime.now(UTC)


def _new_id() -> str:
    return str(uuid4())


class EventRecord(SQLModel, table=True):
    __tablename__ = "events"

    event_id: str = Field(default_factory=_new_id, primary_key=True)
    event_type: str = Field(index=True)
    tenant_id: str = Field(index=True)
    ts: datetime = Field(default_factory=now_utc, index=True)
    actor_id: str | None = Field(default=None, index=True)
    correlation_id: str | None = Field(default=None, index=True)
    payload: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: str = Field(default_factory=_new_id, primary_key=True)
    tenant_id: str = Field(index=True)
    actor_id: str | None = Field(default=None, index=True)
    action: str
    resource: str
    method: str
    status_code: int
    ts: datetime = Field(default_factory=now_utc, index=True)
    detail: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class Tenant(SQLModel, table=True):
    __tablename__ = "tenants"

    id: str = Field(default_factory=_new_id, primary_key=True)
    name: str = Field(index=True, unique=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class User(SQLModel, table=True):
    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("tenant_id", "username", name="uq_users_tenant_username"),
        UniqueConstraint("tenant_id", "id", name="uq_users_tenant_id_id"),
    )

    id: str = Field(default_factory=_new_id, primary_key=True)
    tenant_id: str = Field(foreign_key="tenants.id", index=True)
    username: str = Field(index=True)
    password_hash: str
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Role(SQLModel, table=True):
    __tablename__ = "roles"
    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_roles_tenant_name"),
        UniqueConstraint("tenant_id", "id", name="uq_roles_tenant_id_id"),
    )

    id: str = Field(default_factory=_new_id, primary_key=True)
    tenant_id: str = Field(foreign_key="tenants.id", index=True)
    name: str = Field(index=True)
    description: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Permission(SQLModel, table=True):
    __tablename__ = "permissions"

    id: str = Field(default_factory=_new_id, primary_key=True)
    name: str = Field(index=True, unique=True)
    description: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)


class UserRole(SQLModel, table=True):
    __tablename__ = "user_roles"
    __table_args__ = (
        ForeignKeyConstraint(
            ["tenant_id", "user_id"],
            ["users.tenant_id", "users.id"],
            ondelete="CASCADE",
        ),
        ForeignKeyConstraint(
            ["tenant_id", "role_id"],
            ["roles.tenant_id", "roles.id"],
            ondelete="CASCADE",
        ),
        Index("ix_user_roles_tenant_user", "tenant_id", "user_id"),
    )

    tenant_id: str = Field(primary_key=True)
    user_id: str = Field(primary_key=True)
    role_id: str = Field(primary_key=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class RolePermission(SQLModel, table=True):
    __tablename__ = "role_permissions"

    role_id: str = Field(foreign_key="roles.id", primary_key=True)
    permission_id: str = Field(foreign_key="permissions.id", primary_key=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


# Companies


class Company(SQLModel, table=True):
    __tablename__ = "companies"
    __table_args__ = (
        UniqueConstraint("tenant", "company_id", name="uq_companies_tenant_company_id"),
        UniqueConstraint("tenant", "company_name", name="uq_companies_tenant_name"),
    )

    company_id: str = Field(default_factory=_new_id, primary_key=True)
    tenant: str = Field(foreign_key="tenants.id", index=True)
    company_name: str = Field(index=True)
    phone_no: str | None = None
    email: str | None = None
    url: str | None = None
    address: str | None = None
    is_inactive: bool = Field(default=False, index=True)
    credit_balance: int = Field(default=0)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


# Assets


class AssetExtensionKind(StrEnum):
    WORKSTATION = "workstation"
    NETWORK_DEVICE = "network_device"
    SERVER = "server"
    MOBILE_DEVICE = "mobile_device"
    PRINTER = "printer"


class NetworkDeviceType(StrEnum):
    SWITCH = "switch"
    ROUTER = "router"
    FIREWALL = "firewall"
    ACCESS_POINT = "access_point"
    LOAD_BALANCER = "load_balancer"


class AssetChangeType(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class AssetType(SQLModel, table=True):
    __tablename__ = "asset_types"
    __table_args__ = (
        UniqueConstraint("tenant", "type_id", name="uq_asset_types_tenant_type_id"),
        UniqueConstraint("tenant", "type_name", name="uq_asset_types_tenant_name"),
        ForeignKeyConstraint(
            ["tenant", "parent_type_id"],
            ["asset_types.tenant", "asset_types.type_id"],
        ),
    )

    type_id: str = Field(default_factory=_new_id, primary_key=True)
    tenant: str = Field(foreign_key="tenants.id", index=True)
    type_name: str = Field(index=True)
    parent_type_id: str | None = Field(default=None, index=True)
    attributes_schema: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON, nullable=True))
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class Asset(SQLModel, table=True):
    __tablename__ = "assets"
    __table_args__ = (
        UniqueConstraint("tenant", "asset_id", name="uq_assets_tenant_asset_id"),
        UniqueConstraint("tenant", "asset_tag", name="uq_assets_tenant_asset_tag"),
        ForeignKeyConstraint(
            ["tenant", "company_id"],
            ["companies.tenant", "companies.company_id"],
        ),
        ForeignKeyConstraint(
            ["tenant", "type_id"],
            ["asset_types.tenant", "asset_types.type_id"],
        ),
        Index("ix_assets_tenant_company", "tenant", "company_id"),
        Index("ix_assets_tenant_type", "tenant", "type_id"),
    )

    asset_id: str = Field(default_factory=_new_id, primary_key=True)
    tenant: str = Field(foreign_key="tenants.id", index=True)
    type_id: str
    company_id: str
    asset_tag: str = Field(index=True)
    serial_number: str | None = Field(default=None, index=True)
    name: str = Field(index=True)
    status: str = Field(default="active", index=True)
    location: str | None = None
    purchase_date: date | None = None
    warranty_end_date: date | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class WorkstationAssetFields(SQLModel):
    os_type: str | None = None
    os_version: str | None = None
    cpu_model: str | None = None
    cpu_cores: int | None = None
    ram_gb: int | None = None
    storage_type: str | None = None
    storage_capacity_gb: int | None = None
    gpu_model: str | None = None
    last_login: datetime | None = None
    installed_software: list[Any] = Field(default_factory=list, sa_type=JSON)


class WorkstationAsset(WorkstationAssetFields, table=True):
    __tablename__ = "workstation_assets"
    __table_args__ = (
        ForeignKeyConstraint(["tenant", "asset_id"], ["assets.tenant", "assets.asset_id"], ondelete="CASCADE"),
    )

    tenant: str = Field(primary_key=True)
    asset_id: str = Field(primary_key=True)


class NetworkDeviceAssetFields(SQLModel):
    device_type: NetworkDeviceType
    management_ip: str | None = None
    port_count: int | None = None
    firmware_version: str | None = None
    supports_poe: bool = False
    power_draw_watts: float | None = None
    vlan_config: dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    port_config: dict[str, Any] = Field(default_factory=dict, sa_type=JSON)


class NetworkDeviceAsset(NetworkDeviceAssetFields, table=True):
    __tablename__ = "network_device_assets"
    __table_args__ = (
        ForeignKeyConstraint(["tenant", "asset_id"], ["assets.tenant", "assets.asset_id"], ondelete="CASCADE"),
    )

    tenant: str = Field(primary_key=True)
    asset_id: str = Field(primary_key=True)


class ServerAssetFields(SQLModel):
    os_type: str | None = None
    os_version: str | None = None
    cpu_model: str | None = None
    cpu_cores: int | None = None
    ram_gb: int | None = None
    storage_config: list[Any] = Field(default_factory=list, sa_type=JSON)
    raid_config: str | None = None
    is_virtual: bool = False
    hypervisor: str | None = None
    network_interfaces: list[Any] = Field(default_factory=list, sa_type=JSON)
    primary_ip: str | None = None
    installed_services: list[Any] = Field(default_factory=list, sa_type=JSON)


class ServerAsset(ServerAssetFields, table=True):
    __tablename__ = "server_assets"
    __table_args__ = (
        ForeignKeyConstraint(["tenant", "asset_id"], ["assets.tenant", "assets.asset_id"], ondelete="CASCADE"),
    )

    tenant: str = Field(primary_key=True)
    asset_id: str = Field(primary_key=True)


class MobileDeviceAssetFields(SQLModel):
    os_type: str | None = None
    os_version: str | None = None
    model: str | None = None
    imei: str | None = None
    phone_number: str | None = None
    carrier: str | None = None
    last_check_in: datetime | None = None
    is_supervised: bool = False
    installed_apps: list[Any] = Field(default_factory=list, sa_type=JSON)


class MobileDeviceAsset(MobileDeviceAssetFields, table=True):
    __tablename__ = "mobile_device_assets"
    __table_args__ = (
        ForeignKeyConstraint(["tenant", "asset_id"], ["assets.tenant", "assets.asset_id"], ondelete="CASCADE"),
    )

    tenant: str = Field(primary_key=True)
    asset_id: str = Field(primary_key=True)


class PrinterAssetFields(SQLModel):
    model: str | None = None
    ip_address: str | None = None
    is_network_printer: bool = True
    supports_color: bool = False
    supports_duplex: bool = False
    max_paper_size: int | None = None
    supported_paper_types: list[Any] = Field(default_factory=list, sa_type=JSON)
    monthly_duty_cycle: int | None = None
    supply_levels: dict[str, Any] = Field(default_factory=dict, sa_type=JSON)


class PrinterAsset(PrinterAssetFields, table=True):
    __tablename__ = "printer_assets"
    __table_args__ = (
        ForeignKeyConstraint(["tenant", "asset_id"], ["assets.tenant", "assets.asset_id"], ondelete="CASCADE"),
    )

    tenant: str = Field(primary_key=True)
    asset_id: str = Field(primary_key=True)


class AssociationEntityType(StrEnum):
    TICKET = "ticket"
    PROJECT = "project"


class AssociationRelationshipType(StrEnum):
    AFFECTED = "affected"
    RELATED = "related"


class AssetAssociation(SQLModel, table=True):
    __tablename__ = "asset_associations"
    __table_args__ = (
        ForeignKeyConstraint(["tenant", "asset_id"], ["assets.tenant", "assets.asset_id"], ondelete="CASCADE"),
        Index("ix_asset_associations_tenant_entity", "tenant", "entity_id", "entity_type"),
    )

    tenant: str = Field(primary_key=True)
    asset_id: str = Field(primary_key=True)
    entity_id: str = Field(primary_key=True)
    entity_type: AssociationEntityType = Field(primary_key=True)
    relationship_type: AssociationRelationshipType
    notes: str | None = None
    created_by: str
    created_at: datetime = Field(default_factory=now_utc, index=True)


class AssetHistory(SQLModel, table=True):
    __tablename__ = "asset_history"
    __table_args__ = (Index("ix_asset_history_tenant_asset", "tenant", "asset_id"),)

    history_id: str = Field(default_factory=_new_id, primary_key=True)
    tenant: str = Field(foreign_key="tenants.id", index=True)
    asset_id: str
    changed_by: str
    change_type: str
    changes: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    changed_at: datetime = Field(default_factory=now_utc, index=True)


class AssetRelationship(SQLModel, table=True):
    __tablename__ = "asset_relationships"
    __table_args__ = (
        ForeignKeyConstraint(
            ["tenant", "parent_asset_id"],
            ["assets.tenant", "assets.asset_id"],
            ondelete="CASCADE",
        ),
        ForeignKeyConstraint(
            ["tenant", "child_asset_id"],
            ["assets.tenant", "assets.asset_id"],
            ondelete="CASCADE",
        ),
    )

    tenant: str = Field(primary_key=True)
    parent_asset_id: str = Field(primary_key=True)
    child_asset_id: str = Field(primary_key=True)
    relationship_type: str
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class MaintenanceType(StrEnum):
    PREVENTIVE = "preventive"
    INSPECTION = "inspection"
    CALIBRATION = "calibration"
    REPLACEMENT = "replacement"


class MaintenanceFrequency(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"
    CUSTOM = "custom"


class MaintenanceStatus(StrEnum):
    DUE = "due"
    OVERDUE = "overdue"
    UPCOMING = "upcoming"
    COMPLETED = "completed"


class AssetMaintenanceSchedule(SQLModel, table=True):
    __tablename__ = "asset_maintenance_schedules"
    __table_args__ = (
        UniqueConstraint("tenant", "schedule_id", name="uq_asset_maintenance_schedules_tenant_id"),
        ForeignKeyConstraint(["tenant", "asset_id"], ["assets.tenant", "assets.asset_id"], ondelete="CASCADE"),
        Index("ix_asset_maintenance_schedules_tenant_asset", "tenant", "asset_id"),
        Index("ix_asset_maintenance_schedules_tenant_next", "tenant", "next_maintenance"),
    )

    schedule_id: str = Field(default_factory=_new_id, primary_key=True)
    tenant: str = Field(foreign_key="tenants.id", index=True)
    asset_id: str
    schedule_name: str
    description: str | None = None
    maintenance_type: MaintenanceType = Field(index=True)
    frequency: MaintenanceFrequency
    frequency_interval: int = Field(default=1)
    schedule_config: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    last_maintenance: datetime | None = None
    next_maintenance: datetime
    is_active: bool = Field(default=True, index=True)
    created_by: str
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class AssetMaintenanceHistory(SQLModel, table=True):
    __tablename__ = "asset_maintenance_history"
    __table_args__ = (
        ForeignKeyConstraint(
            ["tenant", "schedule_id"],
            ["asset_maintenance_schedules.tenant", "asset_maintenance_schedules.schedule_id"],
            ondelete="CASCADE",
        ),
        ForeignKeyConstraint(["tenant", "asset_id"], ["assets.tenant", "assets.asset_id"], ondelete="CASCADE"),
        Index("ix_asset_maintenance_history_tenant_asset", "tenant", "asset_id"),
    )

    history_id: str = Field(default_factory=_new_id, primary_key=True)
    tenant: str = Field(foreign_key="tenants.id", index=True)
    schedule_id: str
    asset_id: str
    maintenance_type: MaintenanceType
    description: str | None = None
    maintenance_data: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    performed_at: datetime = Field(default_factory=now_utc, index=True)
    performed_by: str


# Billing catalog


class BillingMethod(StrEnum):
    FIXED = "fixed"
    PER_UNIT = "per_unit"


class BillingPlanType(StrEnum):
    FIXED = "fixed"
    BUCKET = "bucket"
    TIME_BASED = "time-based"
    USAGE_BASED = "usage-based"


class ServiceType(SQLModel, table=True):
    __tablename__ = "service_types"
    __table_args__ = (
        UniqueConstraint("tenant", "id", name="uq_service_types_tenant_id"),
        UniqueConstraint("tenant", "name", name="uq_service_types_tenant_name"),
    )

    id: str = Field(default_factory=_new_id, primary_key=True)
    tenant: str = Field(foreign_key="tenants.id", index=True)
    name: str
    billing_method: BillingMethod
    is_standard: bool = Field(default=False)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class ServiceCategory(SQLModel, table=True):
    __tablename__ = "service_categories"
    __table_args__ = (
        UniqueConstraint("tenant", "category_id", name="uq_service_categories_tenant_id"),
        UniqueConstraint("tenant", "category_name", name="uq_service_categories_tenant_name"),
    )

    category_id: str = Field(default_factory=_new_id, primary_key=True)
    tenant: str = Field(foreign_key="tenants.id", index=True)
    category_name: str
    description: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Service(SQLModel, table=True):
    __tablename__ = "services"
    __table_args__ = (
        UniqueConstraint("tenant", "service_id", name="uq_services_tenant_service_id"),
        ForeignKeyConstraint(
            ["tenant", "standard_service_type_id"],
            ["service_types.tenant", "service_types.id"],
        ),
        ForeignKeyConstraint(
            ["tenant", "custom_service_type_id"],
            ["service_types.tenant", "service_types.id"],
        ),
        ForeignKeyConstraint(
            ["tenant", "category_id"],
            ["service_categories.tenant", "service_categories.category_id"],
        ),
    )

    service_id: str = Field(default_factory=_new_id, primary_key=True)
    tenant: str = Field(foreign_key="tenants.id", index=True)
    service_name: str = Field(index=True)
    description: str | None = None
    standard_service_type_id: str | None = Field(default=None, index=True)
    custom_service_type_id: str | None = Field(default=None, index=True)
    billing_method: BillingMethod
    default_rate: int = Field(default=0)
    unit_of_measure: str | None = None
    category_id: str | None = Field(default=None, index=True)
    is_taxable: bool = Field(default=True)
    tax_region: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class BillingPlan(SQLModel, table=True):
    __tablename__ = "billing_plans"
    __table_args__ = (
        UniqueConstraint("tenant", "plan_id", name="uq_billing_plans_tenant_plan_id"),
        UniqueConstraint("tenant", "plan_name", name="uq_billing_plans_tenant_name"),
    )

    plan_id: str = Field(default_factory=_new_id, primary_key=True)
    tenant: str = Field(foreign_key="tenants.id", index=True)
    plan_name: str = Field(index=True)
    description: str | None = None
    billing_frequency: str = Field(default="monthly")
    plan_type: BillingPlanType = Field(index=True)
    is_custom: bool = Field(default=False)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class PlanService(SQLModel, table=True):
    __tablename__ = "plan_services"
    __table_args__ = (
        ForeignKeyConstraint(["tenant", "plan_id"], ["billing_plans.tenant", "billing_plans.plan_id"]),
        ForeignKeyConstraint(["tenant", "service_id"], ["services.tenant", "services.service_id"]),
        Index("ix_plan_services_tenant_service", "tenant", "service_id"),
    )

    tenant: str = Field(primary_key=True)
    plan_id: str = Field(primary_key=True)
    service_id: str = Field(primary_key=True)
    quantity: int = Field(default=1)
    custom_rate: int | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class PlanServiceBucketConfig(SQLModel, table=True):
    __tablename__ = "plan_service_bucket_configs"
    __table_args__ = (
        ForeignKeyConstraint(
            ["tenant", "plan_id", "service_id"],
            ["plan_services.tenant", "plan_services.plan_id", "plan_services.service_id"],
            ondelete="CASCADE",
        ),
    )

    tenant: str = Field(primary_key=True)
    plan_id: str = Field(primary_key=True)
    service_id: str = Field(primary_key=True)
    total_hours: int
    billing_period: str = Field(default="monthly")
    # Minor units per hour beyond total_hours.
    overage_rate: int = Field(default=0)
    allow_rollover: bool = Field(default=False)
    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)


class PlanServiceRateTier(SQLModel, table=True):
    __tablename__ = "plan_service_rate_tiers"
    __table_args__ = (
        ForeignKeyConstraint(
            ["tenant", "plan_id", "service_id"],
            ["plan_services.tenant", "plan_services.plan_id", "plan_services.service_id"],
            ondelete="CASCADE",
        ),
        UniqueConstraint("tenant", "plan_id", "service_id", "min_quantity", name="uq_plan_service_rate_tiers_min"),
        Index("ix_plan_service_rate_tiers_link", "tenant", "plan_id", "service_id"),
    )

    tier_id: str = Field(default_factory=_new_id, primary_key=True)
    tenant: str = Field(foreign_key="tenants.id")
    plan_id: str
    service_id: str
    min_quantity: int
    max_quantity: int | None = None
    rate: int
    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)


class CompanyBillingPlan(SQLModel, table=True):
    __tablename__ = "company_billing_plans"
    __table_args__ = (
        UniqueConstraint("tenant", "company_billing_plan_id", name="uq_company_billing_plans_tenant_id"),
        ForeignKeyConstraint(["tenant", "company_id"], ["companies.tenant", "companies.company_id"]),
        ForeignKeyConstraint(["tenant", "plan_id"], ["billing_plans.tenant", "billing_plans.plan_id"]),
        ForeignKeyConstraint(
            ["tenant", "service_category"],
            ["service_categories.tenant", "service_categories.category_id"],
        ),
        Index("ix_company_billing_plans_tenant_company", "tenant", "company_id"),
    )

    company_billing_plan_id: str = Field(default_factory=_new_id, primary_key=True)
    tenant: str = Field(foreign_key="tenants.id", index=True)
    company_id: str
    plan_id: str = Field(index=True)
    service_category: str | None = None
    start_date: datetime = Field(default_factory=now_utc)
    end_date: datetime | None = None
    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class UsageRecord(SQLModel, table=True):
    __tablename__ = "usage_records"
    __table_args__ = (
        ForeignKeyConstraint(["tenant", "company_id"], ["companies.tenant", "companies.company_id"]),
        ForeignKeyConstraint(["tenant", "service_id"], ["services.tenant", "services.service_id"]),
        Index("ix_usage_records_tenant_company", "tenant", "company_id"),
    )

    usage_id: str = Field(default_factory=_new_id, primary_key=True)
    tenant: str = Field(foreign_key="tenants.id", index=True)
    company_id: str
    service_id: str = Field(index=True)
    quantity: float
    usage_date: datetime = Field(index=True)
    # Holds a company_billing_plan_id.
    billing_plan_id: str | None = Field(default=None, index=True)
    comments: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


# Credits


class TransactionType(StrEnum):
    CREDIT_ISSUANCE = "credit_issuance"
    CREDIT_APPLICATION = "credit_application"
    CREDIT_ADJUSTMENT = "credit_adjustment"
    CREDIT_EXPIRATION = "credit_expiration"
    CREDIT_TRANSFER = "credit_transfer"
    CREDIT_ISSUANCE_FROM_NEGATIVE_INVOICE = "credit_issuance_from_negative_invoice"


CREDIT_TRANSACTION_TYPES = tuple(TransactionType)
CREDIT_SOURCE_TRANSACTION_TYPES = (
    TransactionType.CREDIT_ISSUANCE,
    TransactionType.CREDIT_TRANSFER,
    TransactionType.CREDIT_ISSUANCE_FROM_NEGATIVE_INVOICE,
)


class ReconciliationIssueType(StrEnum):
    CREDIT_BALANCE_MISMATCH = "credit_balance_mismatch"
    MISSING_CREDIT_TRACKING_ENTRY = "missing_credit_tracking_entry"
    INCONSISTENT_CREDIT_REMAINING_AMOUNT = "inconsistent_credit_remaining_amount"


class Transaction(SQLModel, table=True):
    __tablename__ = "transactions"
    __table_args__ = (
        UniqueConstraint("tenant", "transaction_id", name="uq_transactions_tenant_id"),
        ForeignKeyConstraint(["tenant", "company_id"], ["companies.tenant", "companies.company_id"]),
        Index("ix_transactions_tenant_company", "tenant", "company_id"),
    )

    transaction_id: str = Field(default_factory=_new_id, primary_key=True)
    tenant: str = Field(foreign_key="tenants.id", index=True)
    company_id: str
    amount: int
    type: TransactionType = Field(index=True)
    status: str = Field(default="completed")
    description: str | None = None
    related_transaction_id: str | None = Field(default=None, index=True)
    expiration_date: date | None = None
    balance_after: int | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)


class CreditTracking(SQLModel, table=True):
    __tablename__ = "credit_tracking"
    __table_args__ = (
        ForeignKeyConstraint(["tenant", "company_id"], ["companies.tenant", "companies.company_id"]),
        ForeignKeyConstraint(["tenant", "transaction_id"], ["transactions.tenant", "transactions.transaction_id"]),
        Index("ix_credit_tracking_tenant_company", "tenant", "company_id"),
    )

    credit_id: str = Field(default_factory=_new_id, primary_key=True)
    tenant: str = Field(foreign_key="tenants.id", index=True)
    company_id: str
    transaction_id: str = Field(index=True)
    amount: int
    remaining_amount: int
    expiration_date: date | None = Field(default=None, index=True)
    is_expired: bool = Field(default=False, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class CreditReconciliationReport(SQLModel, table=True):
    __tablename__ = "credit_reconciliation_reports"
    __table_args__ = (
        ForeignKeyConstraint(["tenant", "company_id"], ["companies.tenant", "companies.company_id"]),
        Index("ix_credit_reconciliation_reports_tenant_company", "tenant", "company_id"),
    )

    report_id: str = Field(default_factory=_new_id, primary_key=True)
    tenant: str = Field(foreign_key="tenants.id", index=True)
    company_id: str
    issue_type: ReconciliationIssueType = Field(index=True)
    expected_balance: int
    actual_balance: int
    difference: int
    detection_date: datetime = Field(default_factory=now_utc, index=True)
    status: ReconciliationStatus = Field(default=ReconciliationStatus.OPEN, index=True)
    credit_id: str | None = Field(default=None, index=True)
    transaction_id: str | None = Field(default=None, index=True)
    resolution_date: datetime | None = None
    resolution_user: str | None = None
    resolution_notes: str | None = None
    resolution_transaction_id: str | None = None
    detail: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class EventEnvelope(BaseModel):
    event_id: str = PydanticField(default_factory=_new_id)
    event_type: str
    tenant_id: str
    ts: datetime = PydanticField(default_factory=now_utc)
    actor_id: str | None = None
    correlation_id: str | None = None
    payload: dict[str, Any]


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# Identity requests


class TenantCreate(BaseModel):
    name: str


class TenantRead(ORMReadModel):
    id: str
    name: str
    created_at: datetime


class UserCreate(BaseModel):
    username: str
    password: str
    is_active: bool = True


class UserRead(ORMReadModel):
    id: str
    tenant_id: str
    username: str
    is_active: bool
    created_at: datetime


class DevLoginRequest(BaseModel):
    tenant_id: str
    username: str
    password: str


class BootstrapAdminRequest(BaseModel):
    tenant_id: str
    username: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    permissions: list[str]


# Company requests


class CompanyCreate(BaseModel):
    company_name: str
    phone_no: str | None = None
    email: str | None = None
    url: str | None = None
    address: str | None = None
    is_inactive: bool = False


class CompanyUpdate(BaseModel):
    company_name: str | None = None
    phone_no: str | None = None
    email: str | None = None
    url: str | None = None
    address: str | None = None
    is_inactive: bool | None = None


class CompanyRead(ORMReadModel):
    company_id: str
    company_name: str
    phone_no: str | None = None
    email: str | None = None
    url: str | None = None
    address: str | None = None
    is_inactive: bool
    credit_balance: int
    created_at: datetime
    updated_at: datetime


# Asset requests


class AssetTypeCreate(BaseModel):
    type_name: str
    parent_type_id: str | None = None
    attributes_schema: dict[str, Any] | None = None


class AssetTypeUpdate(BaseModel):
    type_name: str | None = None
    parent_type_id: str | None = None
    attributes_schema: dict[str, Any] | None = None


class AssetTypeRead(ORMReadModel):
    type_id: str
    type_name: str
    parent_type_id: str | None = None
    attributes_schema: dict[str, Any] | None = None
    created_at: datetime
    updated_at: datetime


class _AssetExtensionPayloads(BaseModel):
    workstation: WorkstationAssetFields | None = None
    network_device: NetworkDeviceAssetFields | None = None
    server: ServerAssetFields | None = None
    mobile_device: MobileDeviceAssetFields | None = None
    printer: PrinterAssetFields | None = None

    def extension_payloads(self) -> dict[AssetExtensionKind, dict[str, Any]]:
        supplied: dict[AssetExtensionKind, dict[str, Any]] = {}
        for kind in AssetExtensionKind:
            payload = getattr(self, kind.value)
            if payload is not None:
                supplied[kind] = payload.model_dump(exclude_unset=True)
        return supplied


class AssetCreate(_AssetExtensionPayloads):
    type_id: str | None = None
    asset_type: str | None = None
    company_id: str
    asset_tag: str
    name: str
    status: str = "active"
    serial_number: str | None = None
    location: str | None = None
    purchase_date: date | None = None
    warranty_end_date: date | None = None

    @model_validator(mode="after")
    def _require_type(self) -> AssetCreate:
        if not self.type_id and not self.asset_type:
            raise ValueError("type_id or asset_type is required")
        return self


class AssetUpdate(_AssetExtensionPayloads):
    type_id: str | None = None
    company_id: str | None = None
    asset_tag: str | None = None
    name: str | None = None
    status: str | None = None
    serial_number: str | None = None
    location: str | None = None
    purchase_date: date | None = None
    warranty_end_date: date | None = None


class AssetCompanyRead(BaseModel):
    company_id: str
    company_name: str
    email: str
    phone_no: str
    address: str
    url: str
    is_inactive: bool
    credit_balance: int


class WorkstationAssetRead(WorkstationAssetFields):
    asset_id: str
    last_login: str | None = None


class NetworkDeviceAssetRead(NetworkDeviceAssetFields):
    asset_id: str


class ServerAssetRead(ServerAssetFields):
    asset_id: str


class MobileDeviceAssetRead(MobileDeviceAssetFields):
    asset_id: str
    last_check_in: str | None = None


class PrinterAssetRead(PrinterAssetFields):
    asset_id: str


class AssetRelationshipRead(BaseModel):
    parent_asset_id: str
    child_asset_id: str
    relationship_type: str
    created_at: str
    updated_at: str


class AssetRelationshipsRead(BaseModel):
    parents: list[AssetRelationshipRead] = PydanticField(default_factory=list)
    children: list[AssetRelationshipRead] = PydanticField(default_factory=list)


class AssetRead(BaseModel):
    """Composed asset. Dates arrive as ISO-8601 strings."""

    asset_id: str
    type_id: str
    asset_type: str | None = None
    company_id: str
    asset_tag: str
    serial_number: str | None = None
    name: str
    status: str
    location: str | None = None
    purchase_date: str | None = None
    warranty_end_date: str | None = None
    created_at: str
    updated_at: str
    company: AssetCompanyRead | None = None
    workstation: WorkstationAssetRead | None = None
    network_device: NetworkDeviceAssetRead | None = None
    server: ServerAssetRead | None = None
    mobile_device: MobileDeviceAssetRead | None = None
    printer: PrinterAssetRead | None = None
    relationships: AssetRelationshipsRead | None = None


class CompanySummaryRead(BaseModel):
    total_companies: int
    assets_by_company: dict[str, int]


class AssetListRead(BaseModel):
    assets: list[AssetRead]
    total: int
    page: int
    limit: int
    company_summary: CompanySummaryRead | None = None


class CompanyAssetReportRead(BaseModel):
    company_id: str
    company_name: str
    total_assets: int
    assets_with_maintenance: int
    total_schedules: int
    overdue_maintenances: int
    upcoming_maintenances: int
    completed_maintenances: int
    maintenance_by_type: dict[str, int]
    compliance_rate: float


class AssetAssociationCreate(BaseModel):
    entity_id: str
    entity_type: AssociationEntityType
    relationship_type: AssociationRelationshipType
    notes: str | None = None


class AssetAssociationRead(ORMReadModel):
    asset_id: str
    entity_id: str
    entity_type: AssociationEntityType
    relationship_type: AssociationRelationshipType
    notes: str | None = None
    created_by: str
    created_at: datetime


class AssetHistoryCreate(BaseModel):
    change_type: str
    changes: dict[str, Any] = PydanticField(default_factory=dict)


class AssetHistoryRead(ORMReadModel):
    history_id: str
    asset_id: str
    changed_by: str
    change_type: str
    changes: dict[str, Any]
    changed_at: datetime


class AssetRelationshipCreate(BaseModel):
    child_asset_id: str
    relationship_type: str = "depends_on"


class MaintenanceScheduleCreate(BaseModel):
    schedule_name: str
    description: str | None = None
    maintenance_type: MaintenanceType
    frequency: MaintenanceFrequency
    frequency_interval: int = 1
    schedule_config: dict[str, Any] = PydanticField(default_factory=dict)
    next_maintenance: datetime
    is_active: bool = True


class MaintenanceScheduleUpdate(BaseModel):
    schedule_name: str | None = None
    description: str | None = None
    maintenance_type: MaintenanceType | None = None
    frequency: MaintenanceFrequency | None = None
    frequency_interval: int | None = None
    schedule_config: dict[str, Any] | None = None
    next_maintenance: datetime | None = None
    is_active: bool | None = None


class MaintenanceScheduleRead(ORMReadModel):
    schedule_id: str
    asset_id: str
    schedule_name: str
    description: str | None = None
    maintenance_type: MaintenanceType
    frequency: MaintenanceFrequency
    frequency_interval: int
    schedule_config: dict[str, Any]
    last_maintenance: datetime | None = None
    next_maintenance: datetime
    is_active: bool
    created_by: str
    created_at: datetime
    updated_at: datetime


class MaintenanceRecordCreate(BaseModel):
    schedule_id: str
    description: str | None = None
    maintenance_data: dict[str, Any] = PydanticField(default_factory=dict)
    performed_at: datetime | None = None


class MaintenanceRecordRead(ORMReadModel):
    history_id: str
    schedule_id: str
    asset_id: str
    maintenance_type: MaintenanceType
    description: str | None = None
    maintenance_data: dict[str, Any]
    performed_at: datetime
    performed_by: str


# Billing requests


class ServiceTypeCreate(BaseModel):
    name: str
    billing_method: BillingMethod
    is_standard: bool = False


class ServiceTypeRead(ORMReadModel):
    id: str
    name: str
    billing_method: BillingMethod
    is_standard: bool
    created_at: datetime


class ServiceCategoryCreate(BaseModel):
    category_name: str
    description: str | None = None


class ServiceCategoryRead(ORMReadModel):
    category_id: str
    category_name: str
    description: str | None = None
    created_at: datetime


class ServiceCreate(BaseModel):
    service_name: str
    description: str | None = None
    standard_service_type_id: str | None = None
    custom_service_type_id: str | None = None
    billing_method: BillingMethod
    default_rate: int | None = None
    default_rate_display: str | None = None
    unit_of_measure: str | None = None
    category_id: str | None = None
    is_taxable: bool = True
    tax_region: str | None = None


class ServiceUpdate(BaseModel):
    service_name: str | None = None
    description: str | None = None
    standard_service_type_id: str | None = None
    custom_service_type_id: str | None = None
    billing_method: BillingMethod | None = None
    default_rate: int | None = None
    default_rate_display: str | None = None
    unit_of_measure: str | None = None
    category_id: str | None = None
    is_taxable: bool | None = None
    tax_region: str | None = None


class ServiceRead(ORMReadModel):
    service_id: str
    service_name: str
    description: str | None = None
    service_type_id: str | None = None
    standard_service_type_id: str | None = None
    custom_service_type_id: str | None = None
    billing_method: BillingMethod
    default_rate: int
    default_rate_display: str
    unit_of_measure: str | None = None
    category_id: str | None = None
    is_taxable: bool
    tax_region: str | None = None
    created_at: datetime
    updated_at: datetime


class BillingPlanCreate(BaseModel):
    plan_name: str
    description: str | None = None
    billing_frequency: str = "monthly"
    plan_type: BillingPlanType
    is_custom: bool = False


class BillingPlanUpdate(BaseModel):
    plan_name: str | None = None
    description: str | None = None
    billing_frequency: str | None = None
    plan_type: BillingPlanType | None = None
    is_custom: bool | None = None


class BillingPlanRead(ORMReadModel):
    plan_id: str
    plan_name: str
    description: str | None = None
    billing_frequency: str
    plan_type: BillingPlanType
    is_custom: bool
    created_at: datetime
    updated_at: datetime


class PlanServiceCreate(BaseModel):
    service_id: str
    quantity: int = 1
    custom_rate: int | None = None


class PlanServiceUpdate(BaseModel):
    quantity: int | None = None
    custom_rate: int | None = None


class PlanServiceRead(BaseModel):
    plan_id: str
    service_id: str
    service_name: str
    billing_method: BillingMethod
    unit_of_measure: str | None = None
    quantity: int
    custom_rate: int | None = None
    default_rate: int
    effective_rate: int


class PlanServiceBucketConfigUpsert(BaseModel):
    total_hours: int
    overage_rate: int = 0
    allow_rollover: bool = False
    billing_period: str | None = None


class PlanServiceBucketConfigRead(ORMReadModel):
    plan_id: str
    service_id: str
    total_hours: int
    billing_period: str
    overage_rate: int
    allow_rollover: bool
    created_at: datetime
    updated_at: datetime


class RateTierInput(BaseModel):
    min_quantity: int
    max_quantity: int | None = None
    rate: int


class RateTiersReplace(BaseModel):
    tiers: list[RateTierInput]


class RateTierRead(ORMReadModel):
    tier_id: str
    plan_id: str
    service_id: str
    min_quantity: int
    max_quantity: int | None = None
    rate: int


class CompanyBillingPlanCreate(BaseModel):
    plan_id: str
    service_category: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    is_active: bool = True


class CompanyBillingPlanUpdate(BaseModel):
    service_category: str | None = None
    end_date: datetime | None = None
    is_active: bool | None = None


class CompanyBillingPlanRead(ORMReadModel):
    company_billing_plan_id: str
    company_id: str
    plan_id: str
    service_category: str | None = None
    start_date: datetime
    end_date: datetime | None = None
    is_active: bool
    created_at: datetime


class EligibleBillingPlanRead(BaseModel):
    company_billing_plan_id: str
    plan_id: str
    plan_name: str
    plan_type: BillingPlanType


class BillingPlanSelectionRead(BaseModel):
    eligible_plans: list[EligibleBillingPlanRead]
    default_billing_plan_id: str | None = None
    requires_explicit_selection: bool
    warning: str | None = None


class UsageRecordCreate(BaseModel):
    company_id: str
    service_id: str
    quantity: float
    usage_date: datetime
    billing_plan_id: str | None = None
    comments: str | None = None


class UsageRecordUpdate(BaseModel):
    company_id: str | None = None
    service_id: str | None = None
    quantity: float | None = None
    usage_date: datetime | None = None
    billing_plan_id: str | None = None
    comments: str | None = None


class UsageRecordRead(BaseModel):
    usage_id: str
    company_id: str
    company_name: str | None = None
    service_id: str
    service_name: str | None = None
    quantity: float
    usage_date: datetime
    billing_plan_id: str | None = None
    comments: str | None = None
    is_billable: bool
    created_at: datetime
    updated_at: datetime


# Credit requests


class CreditIssueRequest(BaseModel):
    company_id: str
    amount: int
    description: str | None = None
    expiration_date: date | None = None


class CreditApplyRequest(BaseModel):
    company_id: str
    amount: int
    description: str | None = None


class CreditExpirationUpdateRequest(BaseModel):
    expiration_date: date | None = None


class CreditExpireRequest(BaseModel):
    reason: str | None = None


class TransactionRead(ORMReadModel):
    transaction_id: str
    company_id: str
    amount: int
    type: TransactionType
    status: str
    description: str | None = None
    related_transaction_id: str | None = None
    expiration_date: date | None = None
    balance_after: int | None = None
    created_at: datetime


class CreditTrackingRead(ORMReadModel):
    credit_id: str
    company_id: str
    transaction_id: str
    amount: int
    remaining_amount: int
    expiration_date: date | None = None
    is_expired: bool
    created_at: datetime
    updated_at: datetime


class CreditApplicationRead(BaseModel):
    company_id: str
    applied_amount: int
    credit_balance: int
    transactions: list[TransactionRead]


class CreditValidationSummaryRead(BaseModel):
    total_companies: int
    balance_valid_count: int
    balance_discrepancy_count: int
    missing_tracking_count: int
    inconsistent_tracking_count: int
    error_count: int


class ReconciliationReportRead(ORMReadModel):
    report_id: str
    company_id: str
    issue_type: ReconciliationIssueType
    expected_balance: int
    actual_balance: int
    difference: int
    detection_date: datetime
    status: ReconciliationStatus
    credit_id: str | None = None
    transaction_id: str | None = None
    resolution_date: datetime | None = None
    resolution_user: str | None = None
    resolution_notes: str | None = None
    resolution_transaction_id: str | None = None
    detail: dict[str, Any]


class ReconciliationReportListRead(BaseModel):
    reports: list[ReconciliationReportRead]
    total: int
    page: int
    page_size: int
    total_pages: int


class ReconciliationResolveRequest(BaseModel):
    notes: str | None = None
