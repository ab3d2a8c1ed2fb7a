from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import and_, func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, or_, select

from msp.domain.dates import as_utc, to_iso_strings
from msp.domain.models import (
    Asset,
    AssetChangeType,
    AssetCreate,
    AssetExtensionKind,
    AssetMaintenanceHistory,
    AssetMaintenanceSchedule,
    AssetType,
    AssetUpdate,
    Company,
    MaintenanceStatus,
    MaintenanceType,
    now_utc,
)
from msp.infra.db import get_engine
from msp.infra.events import event_bus
from msp.services.asset_association_service import ensure_scoped_asset, list_relationships, record_history
from msp.services.asset_extension_service import AssetExtensionStore, extension_kind_for
from msp.services.asset_type_service import find_asset_type_by_name, get_scoped_asset_type
from msp.services.company_service import get_scoped_company
from msp.services.errors import ConflictError, NotFoundError, ValidationError, foreign_key_conflict

logger = logging.getLogger(__name__)

_EXTENSION_KEYS = {kind.value for kind in AssetExtensionKind}
_REQUIRED_ASSET_FIELDS = {"type_id", "company_id", "asset_tag", "name", "status"}


def _company_view(company: Company | None) -> dict[str, Any] | None:
    if company is None:
        return None
    return {
        "company_id": company.company_id,
        "company_name": company.company_name or "",
        "email": company.email or "",
        "phone_no": company.phone_no or "",
        "address": company.address or "",
        "url": company.url or "",
        "is_inactive": bool(company.is_inactive),
        "credit_balance": company.credit_balance or 0,
    }


def _company_join():
    return and_(Company.tenant == Asset.tenant, Company.company_id == Asset.company_id)


def _asset_type_join():
    return and_(AssetType.tenant == Asset.tenant, AssetType.type_id == Asset.type_id)


def _integrity_conflict(exc: IntegrityError) -> ConflictError:
    # SQLite reports the column, PostgreSQL the constraint name; both contain "asset_tag".
    if "asset_tag" in str(exc.orig):
        return ConflictError("asset tag already exists in tenant")
    return foreign_key_conflict("asset references a row that does not exist")


class AssetService:
    """Base asset records composed with company, type and extension data.

    Every returned asset is a plain dict whose dates are ISO-8601 strings.
    """

    def __init__(self) -> None:
        self._extensions = AssetExtensionStore()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _resolve_type(self, session: Session, tenant_id: str, payload: AssetCreate) -> AssetType:
        if payload.type_id:
            return get_scoped_asset_type(session, tenant_id, payload.type_id)
        asset_type = find_asset_type_by_name(session, tenant_id, payload.asset_type or "")
        if asset_type is None:
            raise NotFoundError("Asset type not found")
        return asset_type

    def _ensure_matching_extension(
        self,
        kind: AssetExtensionKind | None,
        supplied: dict[AssetExtensionKind, dict[str, Any]],
    ) -> None:
        mismatched = sorted(item.value for item in supplied if item != kind)
        if mismatched:
            raise ValidationError(f"extension data {', '.join(mismatched)} does not match the asset type")

    def _compose(
        self,
        session: Session,
        tenant_id: str,
        asset: Asset,
        asset_type: AssetType | None,
        company: Company | None,
        *,
        include_extension: bool = True,
        include_relationships: bool = False,
    ) -> dict[str, Any]:
        data: dict[str, Any] = asset.model_dump(exclude={"tenant"})
        type_name = asset_type.type_name if asset_type is not None else None
        data["asset_type"] = type_name
        data["company"] = _company_view(company)
        if include_extension:
            kind = extension_kind_for(type_name)
            extension = self._extensions.get_extension_data(session, tenant_id, asset.asset_id, type_name)
            if kind is not None and extension is not None:
                data[kind.value] = extension.model_dump(exclude={"tenant"})
        if include_relationships:
            data["relationships"] = list_relationships(session, tenant_id, asset.asset_id)
        return to_iso_strings(data)

    def create_asset(self, tenant_id: str, payload: AssetCreate, actor_id: str) -> dict[str, Any]:
        with self._session() as session:
            company = get_scoped_company(session, tenant_id, payload.company_id)
            asset_type = self._resolve_type(session, tenant_id, payload)
            kind = extension_kind_for(asset_type.type_name)
            supplied = payload.extension_payloads()
            self._ensure_matching_extension(kind, supplied)

            asset = Asset(
                tenant=tenant_id,
                type_id=asset_type.type_id,
                company_id=company.company_id,
                asset_tag=payload.asset_tag,
                name=payload.name,
                status=payload.status,
                serial_number=payload.serial_number,
                location=payload.location,
                purchase_date=payload.purchase_date,
                warranty_end_date=payload.warranty_end_date,
            )
            session.add(asset)
            try:
                session.flush()
                if kind is not None:
                    self._extensions.upsert_extension_data(
                        session,
                        tenant_id,
                        asset.asset_id,
                        asset_type.type_name,
                        supplied.get(kind),
                    )
                record_history(
                    session,
                    tenant_id,
                    asset.asset_id,
                    actor_id,
                    AssetChangeType.CREATED,
                    {"asset_tag": asset.asset_tag, "name": asset.name, "type_id": asset.type_id},
                )
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise _integrity_conflict(exc) from exc
            result = self._compose(session, tenant_id, asset, asset_type, company)

        logger.info("asset %s created for company %s in tenant %s", result["asset_id"], company.company_id, tenant_id)
        event_bus.publish_dict(
            "asset.created",
            tenant_id,
            {
                "asset_id": result["asset_id"],
                "asset_tag": result["asset_tag"],
                "type_id": result["type_id"],
                "company_id": result["company_id"],
            },
            actor_id=actor_id,
        )
        return result

    def find_by_id(self, tenant_id: str, asset_id: str) -> dict[str, Any] | None:
        with self._session() as session:
            row = session.exec(
                select(Asset, Company, AssetType)
                .join(Company, _company_join(), isouter=True)
                .join(AssetType, _asset_type_join(), isouter=True)
                .where(Asset.tenant == tenant_id)
                .where(Asset.asset_id == asset_id)
            ).first()
            if row is None:
                return None
            asset, company, asset_type = row
            return self._compose(session, tenant_id, asset, asset_type, company, include_relationships=True)

    def update_asset(self, tenant_id: str, asset_id: str, payload: AssetUpdate, actor_id: str) -> dict[str, Any]:
        with self._session() as session:
            asset = ensure_scoped_asset(session, tenant_id, asset_id)
            changes = payload.model_dump(exclude_unset=True, exclude=_EXTENSION_KEYS)
            previous_type = get_scoped_asset_type(session, tenant_id, asset.type_id)
            asset_type = previous_type
            if changes.get("type_id") and changes["type_id"] != asset.type_id:
                asset_type = get_scoped_asset_type(session, tenant_id, changes["type_id"])
            company_id = changes.get("company_id") or asset.company_id
            company = get_scoped_company(session, tenant_id, company_id)

            previous_kind = extension_kind_for(previous_type.type_name)
            kind = extension_kind_for(asset_type.type_name)
            supplied = payload.extension_payloads()
            self._ensure_matching_extension(kind, supplied)

            diff: dict[str, Any] = {}
            for key, value in changes.items():
                if value is None and key in _REQUIRED_ASSET_FIELDS:
                    continue
                current = getattr(asset, key)
                if current != value:
                    diff[key] = {"old": current, "new": value}
                    setattr(asset, key, value)
            if previous_kind is not None and previous_kind != kind:
                self._extensions.delete_extension_data(session, tenant_id, asset_id, previous_type.type_name)
                diff[previous_kind.value] = {"old": "removed", "new": None}
            if kind is not None and supplied.get(kind):
                self._extensions.upsert_extension_data(session, tenant_id, asset_id, asset_type.type_name, supplied[kind])
                diff[kind.value] = {"new": supplied[kind]}

            asset.updated_at = now_utc()
            session.add(asset)
            if diff:
                record_history(session, tenant_id, asset_id, actor_id, AssetChangeType.UPDATED, diff)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise _integrity_conflict(exc) from exc
            result = self._compose(session, tenant_id, asset, asset_type, company, include_relationships=True)

        if diff:
            event_bus.publish_dict(
                "asset.updated",
                tenant_id,
                {"asset_id": asset_id, "fields": sorted(diff)},
                actor_id=actor_id,
            )
        return result

    def list_assets(
        self,
        tenant_id: str,
        *,
        company_id: str | None = None,
        company_name: str | None = None,
        type_id: str | None = None,
        asset_type: str | None = None,
        status: str | None = None,
        search: str | None = None,
        maintenance_status: MaintenanceStatus | None = None,
        maintenance_type: MaintenanceType | None = None,
        page: int = 1,
        limit: int = 10,
        include_company_details: bool = False,
        include_extension_data: bool = False,
    ) -> dict[str, Any]:
        conditions: list[Any] = [Asset.tenant == tenant_id]
        if company_id:
            conditions.append(Asset.company_id == company_id)
        if company_name:
            conditions.append(col(Company.company_name).ilike(f"%{company_name}%"))
        if type_id:
            conditions.append(Asset.type_id == type_id)
        if asset_type:
            conditions.append(func.lower(AssetType.type_name) == asset_type.strip().lower())
        if status:
            conditions.append(Asset.status == status)
        if search:
            pattern = f"%{search}%"
            conditions.append(
                or_(
                    col(Asset.name).ilike(pattern),
                    col(Asset.asset_tag).ilike(pattern),
                    col(Asset.serial_number).ilike(pattern),
                )
            )
        if maintenance_status is not None or maintenance_type is not None:
            schedules = (
                select(AssetMaintenanceSchedule.schedule_id)
                .where(AssetMaintenanceSchedule.tenant == tenant_id)
                .where(col(AssetMaintenanceSchedule.asset_id) == col(Asset.asset_id))
            )
            now = now_utc()
            if maintenance_status == MaintenanceStatus.DUE:
                schedules = schedules.where(col(AssetMaintenanceSchedule.next_maintenance) <= now)
            elif maintenance_status == MaintenanceStatus.OVERDUE:
                schedules = schedules.where(col(AssetMaintenanceSchedule.next_maintenance) < now)
            elif maintenance_status == MaintenanceStatus.UPCOMING:
                schedules = schedules.where(col(AssetMaintenanceSchedule.next_maintenance) > now)
            elif maintenance_status == MaintenanceStatus.COMPLETED:
                schedules = schedules.where(col(AssetMaintenanceSchedule.last_maintenance).is_not(None))
            if maintenance_type is not None:
                schedules = schedules.where(AssetMaintenanceSchedule.maintenance_type == maintenance_type)
            conditions.append(schedules.exists())

        limit = max(1, limit)
        offset = max(0, (page - 1) * limit)

        with self._session() as session:
            statement = (
                select(Asset, Company, AssetType)
                .join(Company, _company_join(), isouter=True)
                .join(AssetType, _asset_type_join(), isouter=True)
                .where(*conditions)
            )
            count_statement = (
                select(func.count(col(Asset.asset_id)))
                .select_from(Asset)
                .join(Company, _company_join(), isouter=True)
                .join(AssetType, _asset_type_join(), isouter=True)
                .where(*conditions)
            )
            total = session.exec(count_statement).one()
            rows = session.exec(
                statement.order_by(col(Asset.created_at).desc(), col(Asset.asset_id)).offset(offset).limit(limit)
            ).all()
            assets = [
                self._compose(
                    session,
                    tenant_id,
                    asset,
                    row_type,
                    company,
                    include_extension=include_extension_data,
                )
                for asset, company, row_type in rows
            ]
            result: dict[str, Any] = {"assets": assets, "total": total, "page": page, "limit": limit}
            if include_company_details:
                counts = session.exec(
                    select(Asset.company_id, func.count(col(Asset.asset_id)))
                    .where(Asset.tenant == tenant_id)
                    .group_by(col(Asset.company_id))
                ).all()
                assets_by_company = {company_key: count for company_key, count in counts}
                result["company_summary"] = {
                    "total_companies": len(assets_by_company),
                    "assets_by_company": assets_by_company,
                }
            return result

    def delete_asset(self, tenant_id: str, asset_id: str, actor_id: str) -> None:
        with self._session() as session:
            asset = ensure_scoped_asset(session, tenant_id, asset_id)
            record_history(
                session,
                tenant_id,
                asset_id,
                actor_id,
                AssetChangeType.DELETED,
                {"asset_tag": asset.asset_tag, "name": asset.name},
            )
            # Extension rows, associations, schedules and relationships cascade in storage.
            session.delete(asset)
            session.commit()

        logger.info("asset %s deleted in tenant %s", asset_id, tenant_id)
        event_bus.publish_dict("asset.deleted", tenant_id, {"asset_id": asset_id}, actor_id=actor_id)

    def get_company_asset_report(self, tenant_id: str, company_id: str) -> dict[str, Any]:
        with self._session() as session:
            company = get_scoped_company(session, tenant_id, company_id)
            asset_ids = list(
                session.exec(
                    select(Asset.asset_id).where(Asset.tenant == tenant_id).where(Asset.company_id == company_id)
                ).all()
            )
            schedules: list[AssetMaintenanceSchedule] = []
            completed = 0
            if asset_ids:
                schedules = list(
                    session.exec(
                        select(AssetMaintenanceSchedule)
                        .where(AssetMaintenanceSchedule.tenant == tenant_id)
                        .where(col(AssetMaintenanceSchedule.asset_id).in_(asset_ids))
                    ).all()
                )
                completed = session.exec(
                    select(func.count(col(AssetMaintenanceHistory.history_id)))
                    .where(AssetMaintenanceHistory.tenant == tenant_id)
                    .where(col(AssetMaintenanceHistory.asset_id).in_(asset_ids))
                ).one()

        now = now_utc()
        active = [item for item in schedules if item.is_active]
        by_type = {maintenance_type.value: 0 for maintenance_type in MaintenanceType}
        for schedule in schedules:
            key = MaintenanceType(schedule.maintenance_type).value
            by_type[key] = by_type.get(key, 0) + 1
        # Approximation: performed count over the summed schedule intervals.
        expected = sum(item.frequency_interval for item in schedules)
        compliance_rate = 100.0 if expected == 0 else round(completed / expected * 100, 2)
        return {
            "company_id": company.company_id,
            "company_name": company.company_name,
            "total_assets": len(asset_ids),
            "assets_with_maintenance": len({item.asset_id for item in schedules}),
            "total_schedules": len(schedules),
            "overdue_maintenances": sum(1 for item in active if as_utc(item.next_maintenance) < now),
            "upcoming_maintenances": sum(1 for item in active if as_utc(item.next_maintenance) >= now),
            "completed_maintenances": completed,
            "maintenance_by_type": by_type,
            "compliance_rate": compliance_rate,
        }
