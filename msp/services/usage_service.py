from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlmodel import Session, col, select

from msp.domain.dates import as_utc
from msp.domain.models import (
    Company,
    Service,
    UsageRecord,
    UsageRecordCreate,
    UsageRecordUpdate,
    now_utc,
)
from msp.infra.db import get_engine
from msp.infra.events import event_bus
from msp.services.company_service import get_scoped_company
from msp.services.errors import NotFoundError, ValidationError
from msp.services.plan_disambiguation import (
    PlanSelection,
    get_eligible_billing_plans,
    resolve_billing_plan,
    select_billing_plan,
)
from msp.services.service_catalog_service import get_scoped_service

logger = logging.getLogger(__name__)


def usage_view(record: UsageRecord, company_name: str | None, service_name: str | None) -> dict[str, Any]:
    data = record.model_dump(exclude={"tenant"})
    data["company_name"] = company_name
    data["service_name"] = service_name
    data["is_billable"] = record.billing_plan_id is not None
    return data


class UsageService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _get_scoped_usage(self, session: Session, tenant_id: str, usage_id: str) -> UsageRecord:
        record = session.exec(
            select(UsageRecord).where(UsageRecord.tenant == tenant_id).where(UsageRecord.usage_id == usage_id)
        ).first()
        if record is None:
            raise NotFoundError("usage record not found")
        return record

    def _validate_quantity(self, quantity: float) -> None:
        if quantity <= 0:
            raise ValidationError("quantity must be greater than zero")

    def _choose_plan(
        self,
        session: Session,
        tenant_id: str,
        company_id: str,
        service_id: str,
        *,
        requested: str | None,
        explicit: bool,
        current: str | None,
    ) -> str | None:
        eligible = get_eligible_billing_plans(session, tenant_id, company_id, service_id, as_of=now_utc())
        if explicit and requested is not None:
            if not any(plan.company_billing_plan_id == requested for plan in eligible):
                raise ValidationError("billing plan is not eligible for this company and service")
            return requested
        if explicit:
            return resolve_billing_plan(eligible, None)
        return resolve_billing_plan(eligible, current)

    def get_plan_selection(self, tenant_id: str, company_id: str, service_id: str) -> PlanSelection:
        with self._session() as session:
            get_scoped_company(session, tenant_id, company_id)
            get_scoped_service(session, tenant_id, service_id)
            eligible = get_eligible_billing_plans(session, tenant_id, company_id, service_id, as_of=now_utc())
            return select_billing_plan(eligible)

    def create_usage(self, tenant_id: str, payload: UsageRecordCreate, actor_id: str | None = None) -> dict[str, Any]:
        self._validate_quantity(payload.quantity)
        with self._session() as session:
            company = get_scoped_company(session, tenant_id, payload.company_id)
            service = get_scoped_service(session, tenant_id, payload.service_id)
            billing_plan_id = self._choose_plan(
                session,
                tenant_id,
                company.company_id,
                service.service_id,
                requested=payload.billing_plan_id,
                explicit=payload.billing_plan_id is not None,
                current=None,
            )
            record = UsageRecord(
                tenant=tenant_id,
                company_id=company.company_id,
                service_id=service.service_id,
                quantity=payload.quantity,
                usage_date=as_utc(payload.usage_date),
                billing_plan_id=billing_plan_id,
                comments=payload.comments,
            )
            session.add(record)
            session.commit()
            session.refresh(record)
            result = usage_view(record, company.company_name, service.service_name)

        if billing_plan_id is None:
            logger.info("usage %s recorded without a billing plan; explicit selection required", record.usage_id)
        event_bus.publish_dict(
            "usage.recorded",
            tenant_id,
            {
                "usage_id": record.usage_id,
                "company_id": record.company_id,
                "service_id": record.service_id,
                "billing_plan_id": billing_plan_id,
            },
            actor_id=actor_id,
        )
        return result

    def get_usage(self, tenant_id: str, usage_id: str) -> dict[str, Any]:
        with self._session() as session:
            record = self._get_scoped_usage(session, tenant_id, usage_id)
            company = get_scoped_company(session, tenant_id, record.company_id)
            service = get_scoped_service(session, tenant_id, record.service_id)
            return usage_view(record, company.company_name, service.service_name)

    def update_usage(self, tenant_id: str, usage_id: str, payload: UsageRecordUpdate) -> dict[str, Any]:
        changes = payload.model_dump(exclude_unset=True)
        if changes.get("quantity") is not None:
            self._validate_quantity(changes["quantity"])
        with self._session() as session:
            record = self._get_scoped_usage(session, tenant_id, usage_id)
            company = get_scoped_company(session, tenant_id, changes.get("company_id") or record.company_id)
            service = get_scoped_service(session, tenant_id, changes.get("service_id") or record.service_id)
            record.company_id = company.company_id
            record.service_id = service.service_id
            if changes.get("quantity") is not None:
                record.quantity = changes["quantity"]
            if changes.get("usage_date") is not None:
                record.usage_date = as_utc(changes["usage_date"])
            if "comments" in changes:
                record.comments = changes["comments"]
            record.billing_plan_id = self._choose_plan(
                session,
                tenant_id,
                company.company_id,
                service.service_id,
                requested=changes.get("billing_plan_id"),
                explicit="billing_plan_id" in changes,
                current=record.billing_plan_id,
            )
            record.updated_at = now_utc()
            session.add(record)
            session.commit()
            session.refresh(record)
            return usage_view(record, company.company_name, service.service_name)

    def delete_usage(self, tenant_id: str, usage_id: str) -> None:
        with self._session() as session:
            record = self._get_scoped_usage(session, tenant_id, usage_id)
            session.delete(record)
            session.commit()

    def list_usage(
        self,
        tenant_id: str,
        *,
        company_id: str | None = None,
        service_id: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        unassigned_only: bool = False,
    ) -> list[dict[str, Any]]:
        with self._session() as session:
            statement = (
                select(UsageRecord, Company.company_name, Service.service_name)
                .join(
                    Company,
                    (col(Company.tenant) == col(UsageRecord.tenant))
                    & (col(Company.company_id) == col(UsageRecord.company_id)),
                )
                .join(
                    Service,
                    (col(Service.tenant) == col(UsageRecord.tenant))
                    & (col(Service.service_id) == col(UsageRecord.service_id)),
                )
                .where(UsageRecord.tenant == tenant_id)
            )
            if company_id is not None:
                statement = statement.where(UsageRecord.company_id == company_id)
            if service_id is not None:
                statement = statement.where(UsageRecord.service_id == service_id)
            if start_date is not None:
                statement = statement.where(col(UsageRecord.usage_date) >= as_utc(start_date))
            if end_date is not None:
                statement = statement.where(col(UsageRecord.usage_date) <= as_utc(end_date))
            if unassigned_only:
                statement = statement.where(col(UsageRecord.billing_plan_id).is_(None))
            statement = statement.order_by(col(UsageRecord.usage_date).desc())
            return [
                usage_view(record, company_name, service_name)
                for record, company_name, service_name in session.exec(statement).all()
            ]
