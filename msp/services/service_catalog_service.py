from __future__ import annotations

from typing import Any

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, or_, select

from msp.domain.models import (
    BillingMethod,
    PlanService,
    Service,
    ServiceCategory,
    ServiceCategoryCreate,
    ServiceCreate,
    ServiceType,
    ServiceTypeCreate,
    ServiceUpdate,
    Tenant,
    UsageRecord,
    now_utc,
)
from msp.domain.money import format_minor_units, to_minor_units
from msp.infra.db import get_engine
from msp.services.errors import ConflictError, ConflictKind, NotFoundError, ValidationError, foreign_key_conflict


def get_scoped_service(session: Session, tenant_id: str, service_id: str) -> Service:
    service = session.exec(
        select(Service).where(Service.tenant == tenant_id).where(Service.service_id == service_id)
    ).first()
    if service is None:
        raise NotFoundError(f"Service {service_id} not found")
    return service


def service_view(service: Service) -> dict[str, Any]:
    data = service.model_dump(exclude={"tenant"})
    data["service_type_id"] = service.standard_service_type_id or service.custom_service_type_id
    data["default_rate_display"] = format_minor_units(service.default_rate)
    return data


def _resolve_rate(default_rate: int | None, default_rate_display: str | None) -> int | None:
    if default_rate is not None and default_rate_display is not None:
        raise ValidationError("provide either default_rate or default_rate_display, not both")
    if default_rate_display is not None:
        try:
            default_rate = to_minor_units(default_rate_display)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
    if default_rate is not None and default_rate < 0:
        raise ValidationError("default_rate cannot be negative")
    return default_rate


class ServiceCatalogService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _get_scoped_service_type(self, session: Session, tenant_id: str, type_id: str) -> ServiceType:
        service_type = session.exec(
            select(ServiceType).where(ServiceType.tenant == tenant_id).where(ServiceType.id == type_id)
        ).first()
        if service_type is None:
            raise NotFoundError("service type not found")
        return service_type

    def _get_scoped_category(self, session: Session, tenant_id: str, category_id: str) -> ServiceCategory:
        category = session.exec(
            select(ServiceCategory)
            .where(ServiceCategory.tenant == tenant_id)
            .where(ServiceCategory.category_id == category_id)
        ).first()
        if category is None:
            raise NotFoundError("service category not found")
        return category

    def _apply_service_type(
        self,
        session: Session,
        tenant_id: str,
        service: Service,
        standard_service_type_id: str | None,
        custom_service_type_id: str | None,
    ) -> None:
        if standard_service_type_id and custom_service_type_id:
            raise ValidationError("a service has either a standard or a custom service type, not both")
        if standard_service_type_id:
            service_type = self._get_scoped_service_type(session, tenant_id, standard_service_type_id)
            if not service_type.is_standard:
                raise ValidationError("standard_service_type_id must reference a standard service type")
            service.standard_service_type_id = service_type.id
            service.custom_service_type_id = None
        elif custom_service_type_id:
            service_type = self._get_scoped_service_type(session, tenant_id, custom_service_type_id)
            if service_type.is_standard:
                raise ValidationError("custom_service_type_id must reference a custom service type")
            service.custom_service_type_id = service_type.id
            service.standard_service_type_id = None

    def _validate_unit_of_measure(self, service: Service) -> None:
        if service.billing_method == BillingMethod.PER_UNIT and not (service.unit_of_measure or "").strip():
            raise ValidationError("unit_of_measure is required for per_unit services")

    # Service types

    def create_service_type(self, tenant_id: str, payload: ServiceTypeCreate) -> ServiceType:
        with self._session() as session:
            if session.get(Tenant, tenant_id) is None:
                raise NotFoundError("tenant not found")
            service_type = ServiceType(tenant=tenant_id, **payload.model_dump())
            session.add(service_type)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("service type name already exists in tenant") from exc
            session.refresh(service_type)
            return service_type

    def list_service_types(self, tenant_id: str) -> list[ServiceType]:
        with self._session() as session:
            statement = (
                select(ServiceType)
                .where(ServiceType.tenant == tenant_id)
                .order_by(col(ServiceType.is_standard).desc(), col(ServiceType.name))
            )
            return list(session.exec(statement).all())

    def delete_service_type(self, tenant_id: str, type_id: str) -> None:
        with self._session() as session:
            service_type = self._get_scoped_service_type(session, tenant_id, type_id)
            in_use = session.exec(
                select(func.count())
                .select_from(Service)
                .where(Service.tenant == tenant_id)
                .where(
                    or_(
                        col(Service.standard_service_type_id) == type_id,
                        col(Service.custom_service_type_id) == type_id,
                    )
                )
            ).one()
            if in_use:
                raise ConflictError("service type is in use by services", ConflictKind.IN_USE)
            session.delete(service_type)
            session.commit()

    # Categories

    def create_category(self, tenant_id: str, payload: ServiceCategoryCreate) -> ServiceCategory:
        with self._session() as session:
            if session.get(Tenant, tenant_id) is None:
                raise NotFoundError("tenant not found")
            category = ServiceCategory(tenant=tenant_id, **payload.model_dump())
            session.add(category)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("service category name already exists in tenant") from exc
            session.refresh(category)
            return category

    def list_categories(self, tenant_id: str) -> list[ServiceCategory]:
        with self._session() as session:
            statement = (
                select(ServiceCategory)
                .where(ServiceCategory.tenant == tenant_id)
                .order_by(col(ServiceCategory.category_name))
            )
            return list(session.exec(statement).all())

    def delete_category(self, tenant_id: str, category_id: str) -> None:
        with self._session() as session:
            category = self._get_scoped_category(session, tenant_id, category_id)
            in_use = session.exec(
                select(func.count())
                .select_from(Service)
                .where(Service.tenant == tenant_id)
                .where(Service.category_id == category_id)
            ).one()
            if in_use:
                raise ConflictError("service category is in use by services", ConflictKind.IN_USE)
            session.delete(category)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise foreign_key_conflict("service category is in use by company billing plans") from exc

    # Services

    def create_service(self, tenant_id: str, payload: ServiceCreate) -> dict[str, Any]:
        if not payload.service_name.strip():
            raise ValidationError("service_name is required")
        default_rate = _resolve_rate(payload.default_rate, payload.default_rate_display)
        if not payload.standard_service_type_id and not payload.custom_service_type_id:
            raise ValidationError("a service type is required")
        with self._session() as session:
            if session.get(Tenant, tenant_id) is None:
                raise NotFoundError("tenant not found")
            service = Service(
                tenant=tenant_id,
                service_name=payload.service_name.strip(),
                description=payload.description,
                billing_method=payload.billing_method,
                default_rate=default_rate or 0,
                unit_of_measure=payload.unit_of_measure,
                is_taxable=payload.is_taxable,
                tax_region=payload.tax_region,
            )
            self._apply_service_type(
                session,
                tenant_id,
                service,
                payload.standard_service_type_id,
                payload.custom_service_type_id,
            )
            if payload.category_id:
                service.category_id = self._get_scoped_category(session, tenant_id, payload.category_id).category_id
            self._validate_unit_of_measure(service)
            session.add(service)
            session.commit()
            session.refresh(service)
            return service_view(service)

    def get_service(self, tenant_id: str, service_id: str) -> dict[str, Any]:
        with self._session() as session:
            return service_view(get_scoped_service(session, tenant_id, service_id))

    def list_services(
        self,
        tenant_id: str,
        *,
        category_id: str | None = None,
        billing_method: BillingMethod | None = None,
        search: str | None = None,
    ) -> list[dict[str, Any]]:
        with self._session() as session:
            statement = select(Service).where(Service.tenant == tenant_id)
            if category_id is not None:
                statement = statement.where(Service.category_id == category_id)
            if billing_method is not None:
                statement = statement.where(Service.billing_method == billing_method)
            if search:
                statement = statement.where(col(Service.service_name).ilike(f"%{search}%"))
            statement = statement.order_by(col(Service.service_name))
            return [service_view(item) for item in session.exec(statement).all()]

    def update_service(self, tenant_id: str, service_id: str, payload: ServiceUpdate) -> dict[str, Any]:
        changes = payload.model_dump(exclude_unset=True)
        default_rate = _resolve_rate(changes.pop("default_rate", None), changes.pop("default_rate_display", None))
        with self._session() as session:
            service = get_scoped_service(session, tenant_id, service_id)
            standard_id = changes.pop("standard_service_type_id", None)
            custom_id = changes.pop("custom_service_type_id", None)
            self._apply_service_type(session, tenant_id, service, standard_id, custom_id)
            if "category_id" in changes:
                category_id = changes.pop("category_id")
                service.category_id = (
                    self._get_scoped_category(session, tenant_id, category_id).category_id if category_id else None
                )
            if "service_name" in changes and not (changes["service_name"] or "").strip():
                raise ValidationError("service_name is required")
            for key, value in changes.items():
                if value is None and key in {"service_name", "billing_method", "is_taxable"}:
                    continue
                setattr(service, key, value)
            if default_rate is not None:
                service.default_rate = default_rate
            self._validate_unit_of_measure(service)
            service.updated_at = now_utc()
            session.add(service)
            session.commit()
            session.refresh(service)
            return service_view(service)

    def delete_service(self, tenant_id: str, service_id: str) -> None:
        with self._session() as session:
            service = get_scoped_service(session, tenant_id, service_id)
            plan_links = session.exec(
                select(func.count())
                .select_from(PlanService)
                .where(PlanService.tenant == tenant_id)
                .where(PlanService.service_id == service_id)
            ).one()
            if plan_links:
                raise ConflictError("service is in use by billing plans", ConflictKind.IN_USE)
            usage = session.exec(
                select(func.count())
                .select_from(UsageRecord)
                .where(UsageRecord.tenant == tenant_id)
                .where(UsageRecord.service_id == service_id)
            ).one()
            if usage:
                raise ConflictError("service is in use by usage records", ConflictKind.IN_USE)
            session.delete(service)
            session.commit()
