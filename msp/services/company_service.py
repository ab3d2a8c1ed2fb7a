from __future__ import annotations

import logging

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from msp.domain.models import (
    Asset,
    Company,
    CompanyBillingPlan,
    CompanyCreate,
    CompanyUpdate,
    Tenant,
    now_utc,
)
from msp.infra.db import get_engine
from msp.infra.events import event_bus
from msp.services.errors import ConflictError, ConflictKind, NotFoundError, foreign_key_conflict

logger = logging.getLogger(__name__)


def get_scoped_company(session: Session, tenant_id: str, company_id: str) -> Company:
    company = session.exec(
        select(Company).where(Company.tenant == tenant_id).where(Company.company_id == company_id)
    ).first()
    if company is None:
        raise NotFoundError("Company not found")
    return company


class CompanyService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def create_company(self, tenant_id: str, payload: CompanyCreate) -> Company:
        with self._session() as session:
            if session.get(Tenant, tenant_id) is None:
                raise NotFoundError("tenant not found")
            company = Company(tenant=tenant_id, **payload.model_dump())
            session.add(company)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("company name already exists in tenant") from exc
            session.refresh(company)

        event_bus.publish_dict(
            "company.created",
            tenant_id,
            {"company_id": company.company_id, "company_name": company.company_name},
        )
        return company

    def get_company(self, tenant_id: str, company_id: str) -> Company:
        with self._session() as session:
            return get_scoped_company(session, tenant_id, company_id)

    def list_companies(self, tenant_id: str, *, include_inactive: bool = False) -> list[Company]:
        with self._session() as session:
            statement = select(Company).where(Company.tenant == tenant_id)
            if not include_inactive:
                statement = statement.where(Company.is_inactive == False)  # noqa: E712
            statement = statement.order_by(Company.company_name)
            return list(session.exec(statement).all())

    def update_company(self, tenant_id: str, company_id: str, payload: CompanyUpdate) -> Company:
        with self._session() as session:
            company = get_scoped_company(session, tenant_id, company_id)
            for key, value in payload.model_dump(exclude_unset=True).items():
                setattr(company, key, value)
            company.updated_at = now_utc()
            session.add(company)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("company name already exists in tenant") from exc
            session.refresh(company)
            return company

    def delete_company(self, tenant_id: str, company_id: str) -> None:
        with self._session() as session:
            company = get_scoped_company(session, tenant_id, company_id)
            asset_count = session.exec(
                select(func.count())
                .select_from(Asset)
                .where(Asset.tenant == tenant_id)
                .where(Asset.company_id == company_id)
            ).one()
            if asset_count:
                raise ConflictError("company is in use by assets", ConflictKind.IN_USE)
            plan_count = session.exec(
                select(func.count())
                .select_from(CompanyBillingPlan)
                .where(CompanyBillingPlan.tenant == tenant_id)
                .where(CompanyBillingPlan.company_id == company_id)
            ).one()
            if plan_count:
                raise ConflictError("company is in use by billing plans", ConflictKind.IN_USE)
            session.delete(company)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise foreign_key_conflict("company is still referenced") from exc
        logger.info("company %s deleted in tenant %s", company_id, tenant_id)
