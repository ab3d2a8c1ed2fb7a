from __future__ import annotations

import calendar
from datetime import datetime, timedelta

from sqlmodel import Session, col, select

from msp.domain.dates import as_utc
from msp.domain.models import (
    AssetMaintenanceHistory,
    AssetMaintenanceSchedule,
    MaintenanceFrequency,
    MaintenanceRecordCreate,
    MaintenanceScheduleCreate,
    MaintenanceScheduleUpdate,
    now_utc,
)
from msp.infra.db import get_engine
from msp.infra.events import event_bus
from msp.services.asset_association_service import ensure_scoped_asset
from msp.services.errors import ConflictError, ConflictKind, NotFoundError, ValidationError

_MONTHS_PER_STEP = {
    MaintenanceFrequency.MONTHLY: 1,
    MaintenanceFrequency.QUARTERLY: 3,
    MaintenanceFrequency.YEARLY: 12,
}


def _add_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def advance_next_maintenance(performed_at: datetime, frequency: MaintenanceFrequency, interval: int) -> datetime:
    if frequency == MaintenanceFrequency.WEEKLY:
        return performed_at + timedelta(weeks=interval)
    if frequency in _MONTHS_PER_STEP:
        return _add_months(performed_at, _MONTHS_PER_STEP[frequency] * interval)
    # daily and custom schedules count in days
    return performed_at + timedelta(days=interval)


class AssetMaintenanceService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _get_scoped_schedule(
        self,
        session: Session,
        tenant_id: str,
        schedule_id: str,
    ) -> AssetMaintenanceSchedule:
        schedule = session.exec(
            select(AssetMaintenanceSchedule)
            .where(AssetMaintenanceSchedule.tenant == tenant_id)
            .where(AssetMaintenanceSchedule.schedule_id == schedule_id)
        ).first()
        if schedule is None:
            raise NotFoundError("maintenance schedule not found")
        return schedule

    def create_schedule(
        self,
        tenant_id: str,
        asset_id: str,
        payload: MaintenanceScheduleCreate,
        created_by: str,
    ) -> AssetMaintenanceSchedule:
        if payload.frequency_interval < 1:
            raise ValidationError("frequency_interval must be a positive integer")
        with self._session() as session:
            ensure_scoped_asset(session, tenant_id, asset_id)
            values = payload.model_dump()
            values["next_maintenance"] = as_utc(payload.next_maintenance)
            schedule = AssetMaintenanceSchedule(tenant=tenant_id, asset_id=asset_id, created_by=created_by, **values)
            session.add(schedule)
            session.commit()
            session.refresh(schedule)
            return schedule

    def list_schedules(self, tenant_id: str, asset_id: str) -> list[AssetMaintenanceSchedule]:
        with self._session() as session:
            ensure_scoped_asset(session, tenant_id, asset_id)
            statement = (
                select(AssetMaintenanceSchedule)
                .where(AssetMaintenanceSchedule.tenant == tenant_id)
                .where(AssetMaintenanceSchedule.asset_id == asset_id)
                .order_by(col(AssetMaintenanceSchedule.next_maintenance))
            )
            return list(session.exec(statement).all())

    def update_schedule(
        self,
        tenant_id: str,
        schedule_id: str,
        payload: MaintenanceScheduleUpdate,
    ) -> AssetMaintenanceSchedule:
        with self._session() as session:
            schedule = self._get_scoped_schedule(session, tenant_id, schedule_id)
            changes = payload.model_dump(exclude_unset=True)
            interval = changes.get("frequency_interval")
            if "frequency_interval" in changes and (interval is None or interval < 1):
                raise ValidationError("frequency_interval must be a positive integer")
            if changes.get("next_maintenance") is not None:
                changes["next_maintenance"] = as_utc(changes["next_maintenance"])
            for key, value in changes.items():
                if value is None and key in {"schedule_name", "maintenance_type", "frequency", "next_maintenance"}:
                    continue
                setattr(schedule, key, value)
            schedule.updated_at = now_utc()
            session.add(schedule)
            session.commit()
            session.refresh(schedule)
            return schedule

    def delete_schedule(self, tenant_id: str, schedule_id: str) -> None:
        with self._session() as session:
            schedule = self._get_scoped_schedule(session, tenant_id, schedule_id)
            session.delete(schedule)
            session.commit()

    def record_maintenance(
        self,
        tenant_id: str,
        asset_id: str,
        payload: MaintenanceRecordCreate,
        performed_by: str,
    ) -> AssetMaintenanceHistory:
        with self._session() as session:
            ensure_scoped_asset(session, tenant_id, asset_id)
            schedule = self._get_scoped_schedule(session, tenant_id, payload.schedule_id)
            if schedule.asset_id != asset_id:
                raise NotFoundError("maintenance schedule not found")
            if not schedule.is_active:
                raise ConflictError("maintenance schedule is inactive", ConflictKind.INVALID_STATE)
            performed_at = as_utc(payload.performed_at) if payload.performed_at is not None else now_utc()
            record = AssetMaintenanceHistory(
                tenant=tenant_id,
                schedule_id=schedule.schedule_id,
                asset_id=asset_id,
                maintenance_type=schedule.maintenance_type,
                description=payload.description,
                maintenance_data=payload.maintenance_data,
                performed_at=performed_at,
                performed_by=performed_by,
            )
            schedule.last_maintenance = performed_at
            schedule.next_maintenance = advance_next_maintenance(
                performed_at,
                schedule.frequency,
                schedule.frequency_interval,
            )
            schedule.updated_at = now_utc()
            session.add(record)
            session.add(schedule)
            session.commit()
            session.refresh(record)

        event_bus.publish_dict(
            "asset.maintenance_recorded",
            tenant_id,
            {
                "asset_id": asset_id,
                "schedule_id": record.schedule_id,
                "maintenance_type": record.maintenance_type,
            },
            actor_id=performed_by,
        )
        return record

    def list_history(self, tenant_id: str, asset_id: str) -> list[AssetMaintenanceHistory]:
        with self._session() as session:
            ensure_scoped_asset(session, tenant_id, asset_id)
            statement = (
                select(AssetMaintenanceHistory)
                .where(AssetMaintenanceHistory.tenant == tenant_id)
                .where(AssetMaintenanceHistory.asset_id == asset_id)
                .order_by(col(AssetMaintenanceHistory.performed_at).desc())
            )
            return list(session.exec(statement).all())
