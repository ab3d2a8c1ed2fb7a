from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import delete, func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from msp.domain.dates import as_utc
from msp.domain.models import (
    BillingMethod,
    BillingPlan,
    BillingPlanCreate,
    BillingPlanType,
    BillingPlanUpdate,
    CompanyBillingPlan,
    CompanyBillingPlanCreate,
    CompanyBillingPlanUpdate,
    PlanService,
    PlanServiceBucketConfig,
    PlanServiceBucketConfigUpsert,
    PlanServiceCreate,
    PlanServiceRateTier,
    PlanServiceUpdate,
    RateTierInput,
    Service,
    ServiceCategory,
    Tenant,
    UsageRecord,
    now_utc,
)
from msp.infra.db import get_engine
from msp.infra.events import event_bus
from msp.services.company_service import get_scoped_company
from msp.services.errors import ConflictError, ConflictKind, NotFoundError, ValidationError
from msp.services.plan_disambiguation import get_eligible_billing_plans, resolve_billing_plan
from msp.services.service_catalog_service import get_scoped_service

logger = logging.getLogger(__name__)

# Plan types whose pricing cannot absorb a flat-fee service.
_FIXED_SERVICE_INCOMPATIBLE = {
    BillingPlanType.TIME_BASED: "an hourly",
    BillingPlanType.USAGE_BASED: "a usage-based",
}


def get_scoped_plan(session: Session, tenant_id: str, plan_id: str) -> BillingPlan:
    plan = session.exec(
        select(BillingPlan).where(BillingPlan.tenant == tenant_id).where(BillingPlan.plan_id == plan_id)
    ).first()
    if plan is None:
        raise NotFoundError(f"Plan {plan_id} not found")
    return plan


def plan_service_view(link: PlanService, service: Service) -> dict[str, Any]:
    return {
        "plan_id": link.plan_id,
        "service_id": link.service_id,
        "service_name": service.service_name,
        "billing_method": service.billing_method,
        "unit_of_measure": service.unit_of_measure,
        "quantity": link.quantity,
        "custom_rate": link.custom_rate,
        "default_rate": service.default_rate,
        "effective_rate": link.custom_rate if link.custom_rate is not None else service.default_rate,
    }


def _validate_quantity(quantity: Any) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise ValidationError("quantity must be a positive integer")
    return quantity


def _validate_custom_rate(custom_rate: int | None) -> int | None:
    if custom_rate is not None and custom_rate < 0:
        raise ValidationError("custom_rate cannot be negative")
    return custom_rate


def _validate_rate_tiers(tiers: list[RateTierInput]) -> list[RateTierInput]:
    ordered = sorted(tiers, key=lambda tier: tier.min_quantity)
    for tier in ordered:
        if tier.min_quantity <= 0:
            raise ValidationError("Minimum quantity must be greater than 0")
        if tier.max_quantity is not None and tier.max_quantity <= tier.min_quantity:
            raise ValidationError("Maximum quantity must be greater than minimum quantity")
        if tier.rate < 0:
            raise ValidationError("Rate cannot be negative")
    # Ranges are inclusive and an open-ended tier must come last.
    for previous, current in zip(ordered, ordered[1:]):
        if previous.max_quantity is None or current.min_quantity <= previous.max_quantity:
            raise ValidationError("Tier ranges cannot overlap")
    return ordered


class BillingPlanService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _get_scoped_link(self, session: Session, tenant_id: str, plan_id: str, service_id: str) -> PlanService:
        link = session.get(PlanService, (tenant_id, plan_id, service_id))
        if link is None:
            raise NotFoundError("plan service not found")
        return link

    def _get_scoped_company_plan(
        self,
        session: Session,
        tenant_id: str,
        company_id: str,
        company_billing_plan_id: str,
    ) -> CompanyBillingPlan:
        company_plan = session.exec(
            select(CompanyBillingPlan)
            .where(CompanyBillingPlan.tenant == tenant_id)
            .where(CompanyBillingPlan.company_id == company_id)
            .where(CompanyBillingPlan.company_billing_plan_id == company_billing_plan_id)
        ).first()
        if company_plan is None:
            raise NotFoundError("company billing plan not found")
        return company_plan

    def _ensure_category(self, session: Session, tenant_id: str, category_id: str) -> None:
        category = session.exec(
            select(ServiceCategory)
            .where(ServiceCategory.tenant == tenant_id)
            .where(ServiceCategory.category_id == category_id)
        ).first()
        if category is None:
            raise NotFoundError("service category not found")

    def _reselect_usage(
        self,
        session: Session,
        tenant_id: str,
        company_billing_plan_ids: list[str],
        *,
        service_id: str | None = None,
    ) -> int:
        """Re-resolve usage that points at assignments which may no longer be eligible."""
        if not company_billing_plan_ids:
            return 0
        session.flush()
        statement = (
            select(UsageRecord)
            .where(UsageRecord.tenant == tenant_id)
            .where(col(UsageRecord.billing_plan_id).in_(company_billing_plan_ids))
        )
        if service_id is not None:
            statement = statement.where(UsageRecord.service_id == service_id)
        as_of = now_utc()
        changed = 0
        for record in session.exec(statement).all():
            eligible = get_eligible_billing_plans(session, tenant_id, record.company_id, record.service_id, as_of=as_of)
            selected = resolve_billing_plan(eligible, record.billing_plan_id)
            if selected != record.billing_plan_id:
                record.billing_plan_id = selected
                record.updated_at = as_of
                session.add(record)
                changed += 1
        if changed:
            logger.info("re-resolved billing plan on %d usage records in tenant %s", changed, tenant_id)
        return changed

    # Plans

    def create_plan(self, tenant_id: str, payload: BillingPlanCreate) -> BillingPlan:
        if not payload.plan_name.strip():
            raise ValidationError("plan_name is required")
        with self._session() as session:
            if session.get(Tenant, tenant_id) is None:
                raise NotFoundError("tenant not found")
            plan = BillingPlan(tenant=tenant_id, **payload.model_dump())
            session.add(plan)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("billing plan name already exists in tenant") from exc
            session.refresh(plan)
            return plan

    def get_plan(self, tenant_id: str, plan_id: str) -> BillingPlan:
        with self._session() as session:
            return get_scoped_plan(session, tenant_id, plan_id)

    def list_plans(self, tenant_id: str, *, plan_type: BillingPlanType | None = None) -> list[BillingPlan]:
        with self._session() as session:
            statement = select(BillingPlan).where(BillingPlan.tenant == tenant_id)
            if plan_type is not None:
                statement = statement.where(BillingPlan.plan_type == plan_type)
            return list(session.exec(statement.order_by(col(BillingPlan.plan_name))).all())

    def update_plan(self, tenant_id: str, plan_id: str, payload: BillingPlanUpdate) -> BillingPlan:
        with self._session() as session:
            plan = get_scoped_plan(session, tenant_id, plan_id)
            new_type = payload.plan_type
            if plan.plan_type == BillingPlanType.BUCKET and new_type is not None and new_type != plan.plan_type:
                bucket_count = session.exec(
                    select(func.count())
                    .select_from(PlanServiceBucketConfig)
                    .where(PlanServiceBucketConfig.tenant == tenant_id)
                    .where(PlanServiceBucketConfig.plan_id == plan_id)
                ).one()
                if bucket_count:
                    raise ConflictError("billing plan has bucket configuration", ConflictKind.IN_USE)
            for key, value in payload.model_dump(exclude_unset=True).items():
                if value is None and key != "description":
                    continue
                setattr(plan, key, value)
            plan.updated_at = now_utc()
            session.add(plan)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("billing plan name already exists in tenant") from exc
            session.refresh(plan)
            return plan

    def delete_plan(self, tenant_id: str, plan_id: str) -> None:
        """Delete a plan that has no services and no company assignments."""
        with self._session() as session:
            plan = get_scoped_plan(session, tenant_id, plan_id)
            service_count = session.exec(
                select(func.count())
                .select_from(PlanService)
                .where(PlanService.tenant == tenant_id)
                .where(PlanService.plan_id == plan_id)
            ).one()
            if service_count:
                raise ConflictError("billing plan has associated services", ConflictKind.HAS_SERVICES)
            company_count = session.exec(
                select(func.count())
                .select_from(CompanyBillingPlan)
                .where(CompanyBillingPlan.tenant == tenant_id)
                .where(CompanyBillingPlan.plan_id == plan_id)
            ).one()
            if company_count:
                raise ConflictError("billing plan is in use by companies", ConflictKind.IN_USE_BY_COMPANIES)
            session.delete(plan)
            session.commit()
        logger.info("billing plan %s deleted in tenant %s", plan_id, tenant_id)

    # Plan services

    def add_service_to_plan(self, tenant_id: str, plan_id: str, payload: PlanServiceCreate) -> dict[str, Any]:
        quantity = _validate_quantity(payload.quantity)
        custom_rate = _validate_custom_rate(payload.custom_rate)
        with self._session() as session:
            service = get_scoped_service(session, tenant_id, payload.service_id)
            plan = get_scoped_plan(session, tenant_id, plan_id)
            if service.billing_method == BillingMethod.FIXED and plan.plan_type in _FIXED_SERVICE_INCOMPATIBLE:
                raise ValidationError(
                    f"Cannot add a fixed-price service ({service.service_name}) to "
                    f"{_FIXED_SERVICE_INCOMPATIBLE[plan.plan_type]} billing plan."
                )
            link = PlanService(
                tenant=tenant_id,
                plan_id=plan.plan_id,
                service_id=service.service_id,
                quantity=quantity,
                custom_rate=custom_rate,
            )
            session.add(link)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("service is already part of this plan") from exc
            session.refresh(link)
            return plan_service_view(link, service)

    def list_plan_services(self, tenant_id: str, plan_id: str) -> list[dict[str, Any]]:
        with self._session() as session:
            get_scoped_plan(session, tenant_id, plan_id)
            rows = session.exec(
                select(PlanService, Service)
                .join(
                    Service,
                    (col(Service.tenant) == col(PlanService.tenant))
                    & (col(Service.service_id) == col(PlanService.service_id)),
                )
                .where(PlanService.tenant == tenant_id)
                .where(PlanService.plan_id == plan_id)
                .order_by(col(Service.service_name))
            ).all()
            return [plan_service_view(link, service) for link, service in rows]

    def get_plan_service(self, tenant_id: str, plan_id: str, service_id: str) -> dict[str, Any]:
        with self._session() as session:
            link = self._get_scoped_link(session, tenant_id, plan_id, service_id)
            return plan_service_view(link, get_scoped_service(session, tenant_id, service_id))

    def update_plan_service(
        self,
        tenant_id: str,
        plan_id: str,
        service_id: str,
        payload: PlanServiceUpdate,
    ) -> dict[str, Any]:
        changes = payload.model_dump(exclude_unset=True)
        with self._session() as session:
            link = self._get_scoped_link(session, tenant_id, plan_id, service_id)
            if "quantity" in changes:
                link.quantity = _validate_quantity(changes["quantity"])
            if "custom_rate" in changes:
                # An explicit null falls back to the service default rate.
                link.custom_rate = _validate_custom_rate(changes["custom_rate"])
            link.updated_at = now_utc()
            session.add(link)
            session.commit()
            session.refresh(link)
            return plan_service_view(link, get_scoped_service(session, tenant_id, service_id))

    def remove_service_from_plan(self, tenant_id: str, plan_id: str, service_id: str) -> None:
        with self._session() as session:
            link = self._get_scoped_link(session, tenant_id, plan_id, service_id)
            for model in (PlanServiceRateTier, PlanServiceBucketConfig):
                session.execute(
                    delete(model)
                    .where(model.tenant == tenant_id)
                    .where(model.plan_id == plan_id)
                    .where(model.service_id == service_id)
                )
            session.delete(link)
            assignment_ids = session.exec(
                select(CompanyBillingPlan.company_billing_plan_id)
                .where(CompanyBillingPlan.tenant == tenant_id)
                .where(CompanyBillingPlan.plan_id == plan_id)
            ).all()
            self._reselect_usage(session, tenant_id, list(assignment_ids), service_id=service_id)
            session.commit()

    # Bucket and tier configuration

    def get_bucket_config(self, tenant_id: str, plan_id: str, service_id: str) -> PlanServiceBucketConfig:
        with self._session() as session:
            config = session.get(PlanServiceBucketConfig, (tenant_id, plan_id, service_id))
            if config is None:
                raise NotFoundError("bucket configuration not found")
            return config

    def upsert_bucket_config(
        self,
        tenant_id: str,
        plan_id: str,
        service_id: str,
        payload: PlanServiceBucketConfigUpsert,
    ) -> PlanServiceBucketConfig:
        """Create or replace the hour pool a bucket plan grants for one of its services."""
        if payload.total_hours <= 0:
            raise ValidationError("total_hours must be greater than zero")
        if payload.overage_rate < 0:
            raise ValidationError("overage_rate cannot be negative")
        with self._session() as session:
            plan = get_scoped_plan(session, tenant_id, plan_id)
            if plan.plan_type != BillingPlanType.BUCKET:
                raise ValidationError("bucket configuration requires a bucket plan")
            self._get_scoped_link(session, tenant_id, plan_id, service_id)
            config = session.get(PlanServiceBucketConfig, (tenant_id, plan_id, service_id))
            if config is None:
                config = PlanServiceBucketConfig(
                    tenant=tenant_id,
                    plan_id=plan_id,
                    service_id=service_id,
                    total_hours=payload.total_hours,
                )
            config.total_hours = payload.total_hours
            config.overage_rate = payload.overage_rate
            config.allow_rollover = payload.allow_rollover
            config.billing_period = payload.billing_period or plan.billing_frequency
            config.updated_at = now_utc()
            session.add(config)
            session.commit()
            session.refresh(config)
            return config

    def delete_bucket_config(self, tenant_id: str, plan_id: str, service_id: str) -> None:
        with self._session() as session:
            config = session.get(PlanServiceBucketConfig, (tenant_id, plan_id, service_id))
            if config is None:
                raise NotFoundError("bucket configuration not found")
            session.delete(config)
            session.commit()

    def list_rate_tiers(self, tenant_id: str, plan_id: str, service_id: str) -> list[PlanServiceRateTier]:
        with self._session() as session:
            self._get_scoped_link(session, tenant_id, plan_id, service_id)
            return list(
                session.exec(
                    select(PlanServiceRateTier)
                    .where(PlanServiceRateTier.tenant == tenant_id)
                    .where(PlanServiceRateTier.plan_id == plan_id)
                    .where(PlanServiceRateTier.service_id == service_id)
                    .order_by(col(PlanServiceRateTier.min_quantity))
                ).all()
            )

    def replace_rate_tiers(
        self,
        tenant_id: str,
        plan_id: str,
        service_id: str,
        tiers: list[RateTierInput],
    ) -> list[PlanServiceRateTier]:
        """Replace the quantity tiers of a per-unit service in a plan; an empty list clears them."""
        ordered = _validate_rate_tiers(tiers)
        with self._session() as session:
            self._get_scoped_link(session, tenant_id, plan_id, service_id)
            service = get_scoped_service(session, tenant_id, service_id)
            if ordered and service.billing_method != BillingMethod.PER_UNIT:
                raise ValidationError("rate tiers require a per-unit service")
            session.execute(
                delete(PlanServiceRateTier)
                .where(PlanServiceRateTier.tenant == tenant_id)
                .where(PlanServiceRateTier.plan_id == plan_id)
                .where(PlanServiceRateTier.service_id == service_id)
            )
            rows = [
                PlanServiceRateTier(
                    tenant=tenant_id,
                    plan_id=plan_id,
                    service_id=service_id,
                    min_quantity=tier.min_quantity,
                    max_quantity=tier.max_quantity,
                    rate=tier.rate,
                )
                for tier in ordered
            ]
            session.add_all(rows)
            session.commit()
            for row in rows:
                session.refresh(row)
        logger.info("stored %d rate tiers for service %s in plan %s", len(rows), service_id, plan_id)
        return rows

    # Company assignments

    def assign_plan_to_company(
        self,
        tenant_id: str,
        company_id: str,
        payload: CompanyBillingPlanCreate,
    ) -> CompanyBillingPlan:
        start_date = as_utc(payload.start_date) if payload.start_date is not None else now_utc()
        end_date = as_utc(payload.end_date) if payload.end_date is not None else None
        if end_date is not None and end_date <= start_date:
            raise ValidationError("end_date must be after start_date")
        with self._session() as session:
            get_scoped_company(session, tenant_id, company_id)
            plan = get_scoped_plan(session, tenant_id, payload.plan_id)
            if payload.service_category is not None:
                self._ensure_category(session, tenant_id, payload.service_category)
            company_plan = CompanyBillingPlan(
                tenant=tenant_id,
                company_id=company_id,
                plan_id=plan.plan_id,
                service_category=payload.service_category,
                start_date=start_date,
                end_date=end_date,
                is_active=payload.is_active,
            )
            session.add(company_plan)
            session.commit()
            session.refresh(company_plan)

        event_bus.publish_dict(
            "billing.plan_assigned",
            tenant_id,
            {
                "company_billing_plan_id": company_plan.company_billing_plan_id,
                "company_id": company_id,
                "plan_id": company_plan.plan_id,
            },
        )
        return company_plan

    def list_company_plans(self, tenant_id: str, company_id: str) -> list[CompanyBillingPlan]:
        with self._session() as session:
            get_scoped_company(session, tenant_id, company_id)
            statement = (
                select(CompanyBillingPlan)
                .where(CompanyBillingPlan.tenant == tenant_id)
                .where(CompanyBillingPlan.company_id == company_id)
                .order_by(col(CompanyBillingPlan.start_date).desc())
            )
            return list(session.exec(statement).all())

    def update_company_plan(
        self,
        tenant_id: str,
        company_id: str,
        company_billing_plan_id: str,
        payload: CompanyBillingPlanUpdate,
    ) -> CompanyBillingPlan:
        changes = payload.model_dump(exclude_unset=True)
        with self._session() as session:
            company_plan = self._get_scoped_company_plan(session, tenant_id, company_id, company_billing_plan_id)
            if "end_date" in changes:
                end_date = as_utc(changes["end_date"]) if changes["end_date"] is not None else None
                if end_date is not None and end_date <= as_utc(company_plan.start_date):
                    raise ValidationError("end_date must be after start_date")
                company_plan.end_date = end_date
            if changes.get("is_active") is not None:
                company_plan.is_active = changes["is_active"]
            if "service_category" in changes:
                if changes["service_category"] is not None:
                    self._ensure_category(session, tenant_id, changes["service_category"])
                company_plan.service_category = changes["service_category"]
            session.add(company_plan)
            self._reselect_usage(session, tenant_id, [company_plan.company_billing_plan_id])
            session.commit()
            session.refresh(company_plan)
            return company_plan

    def remove_company_plan(self, tenant_id: str, company_id: str, company_billing_plan_id: str) -> None:
        with self._session() as session:
            company_plan = self._get_scoped_company_plan(session, tenant_id, company_id, company_billing_plan_id)
            session.delete(company_plan)
            self._reselect_usage(session, tenant_id, [company_billing_plan_id])
            session.commit()
