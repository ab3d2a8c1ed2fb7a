from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Response, status

from msp.api.deps import get_current_claims, require_perm
from msp.api.errors import handle_service_error
from msp.domain.models import (
    BillingMethod,
    BillingPlanCreate,
    BillingPlanRead,
    BillingPlanSelectionRead,
    BillingPlanType,
    BillingPlanUpdate,
    EligibleBillingPlanRead,
    PlanServiceBucketConfigRead,
    PlanServiceBucketConfigUpsert,
    PlanServiceCreate,
    PlanServiceRead,
    PlanServiceUpdate,
    RateTierRead,
    RateTiersReplace,
    ServiceCategoryCreate,
    ServiceCategoryRead,
    ServiceCreate,
    ServiceRead,
    ServiceTypeCreate,
    ServiceTypeRead,
    ServiceUpdate,
)
from msp.domain.permissions import PERM_BILLING_READ, PERM_BILLING_WRITE
from msp.services.billing_plan_service import BillingPlanService
from msp.services.errors import ServiceError
from msp.services.plan_disambiguation import PlanSelection
from msp.services.service_catalog_service import ServiceCatalogService
from msp.services.usage_service import UsageService

router = APIRouter()


def get_catalog_service() -> ServiceCatalogService:
    return ServiceCatalogService()


def get_billing_plan_service() -> BillingPlanService:
    return BillingPlanService()


def get_usage_service() -> UsageService:
    return UsageService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Catalog = Annotated[ServiceCatalogService, Depends(get_catalog_service)]
Plans = Annotated[BillingPlanService, Depends(get_billing_plan_service)]
Usage = Annotated[UsageService, Depends(get_usage_service)]


def selection_read(selection: PlanSelection) -> BillingPlanSelectionRead:
    return BillingPlanSelectionRead(
        eligible_plans=[
            EligibleBillingPlanRead(
                company_billing_plan_id=plan.company_billing_plan_id,
                plan_id=plan.plan_id,
                plan_name=plan.plan_name,
                plan_type=plan.plan_type,
            )
            for plan in selection.eligible_plans
        ],
        default_billing_plan_id=selection.default_billing_plan_id,
        requires_explicit_selection=selection.requires_explicit_selection,
        warning=selection.warning,
    )


# Service types


@router.post(
    "/service-types",
    response_model=ServiceTypeRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_BILLING_WRITE))],
)
def create_service_type(payload: ServiceTypeCreate, claims: Claims, service: Catalog) -> ServiceTypeRead:
    try:
        return ServiceTypeRead.model_validate(service.create_service_type(claims["tenant_id"], payload))
    except ServiceError as exc:
        handle_service_error(exc)
        raise


@router.get(
    "/service-types",
    response_model=list[ServiceTypeRead],
    dependencies=[Depends(require_perm(PERM_BILLING_READ))],
)
def list_service_types(claims: Claims, service: Catalog) -> list[ServiceTypeRead]:
    return [ServiceTypeRead.model_validate(item) for item in service.list_service_types(claims["tenant_id"])]


@router.delete(
    "/service-types/{type_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_BILLING_WRITE))],
)
def delete_service_type(type_id: str, claims: Claims, service: Catalog) -> Response:
    try:
        service.delete_service_type(claims["tenant_id"], type_id)
    except ServiceError as exc:
        handle_service_error(exc)
        raise
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Categories


@router.post(
    "/categories",
    response_model=ServiceCategoryRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_BILLING_WRITE))],
)
def create_category(payload: ServiceCategoryCreate, claims: Claims, service: Catalog) -> ServiceCategoryRead:
    try:
        return ServiceCategoryRead.model_validate(service.create_category(claims["tenant_id"], payload))
    except ServiceError as exc:
        handle_service_error(exc)
        raise


@router.get(
    "/categories",
    response_model=list[ServiceCategoryRead],
    dependencies=[Depends(require_perm(PERM_BILLING_READ))],
)
def list_categories(claims: Claims, service: Catalog) -> list[ServiceCategoryRead]:
    return [ServiceCategoryRead.model_validate(item) for item in service.list_categories(claims["tenant_id"])]


@router.delete(
    "/categories/{category_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_BILLING_WRITE))],
)
def delete_category(category_id: str, claims: Claims, service: Catalog) -> Response:
    try:
        service.delete_category(claims["tenant_id"], category_id)
    except ServiceError as exc:
        handle_service_error(exc)
        raise
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Services


@router.post(
    "/services",
    response_model=ServiceRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_BILLING_WRITE))],
)
def create_service(payload: ServiceCreate, claims: Claims, service: Catalog) -> ServiceRead:
    try:
        return ServiceRead.model_validate(service.create_service(claims["tenant_id"], payload))
    except ServiceError as exc:
        handle_service_error(exc)
        raise


@router.get(
    "/services",
    response_model=list[ServiceRead],
    dependencies=[Depends(require_perm(PERM_BILLING_READ))],
)
def list_services(
    claims: Claims,
    service: Catalog,
    category_id: str | None = None,
    billing_method: BillingMethod | None = None,
    search: str | None = None,
) -> list[ServiceRead]:
    rows = service.list_services(
        claims["tenant_id"],
        category_id=category_id,
        billing_method=billing_method,
        search=search,
    )
    return [ServiceRead.model_validate(item) for item in rows]


@router.get(
    "/services/{service_id}",
    response_model=ServiceRead,
    dependencies=[Depends(require_perm(PERM_BILLING_READ))],
)
def get_service(service_id: str, claims: Claims, service: Catalog) -> ServiceRead:
    try:
        return ServiceRead.model_validate(service.get_service(claims["tenant_id"], service_id))
    except ServiceError as exc:
        handle_service_error(exc)
        raise


@router.patch(
    "/services/{service_id}",
    response_model=ServiceRead,
    dependencies=[Depends(require_perm(PERM_BILLING_WRITE))],
)
def update_service(service_id: str, payload: ServiceUpdate, claims: Claims, service: Catalog) -> ServiceRead:
    try:
        return ServiceRead.model_validate(service.update_service(claims["tenant_id"], service_id, payload))
    except ServiceError as exc:
        handle_service_error(exc)
        raise


@router.delete(
    "/services/{service_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_BILLING_WRITE))],
)
def delete_service(service_id: str, claims: Claims, service: Catalog) -> Response:
    try:
        service.delete_service(claims["tenant_id"], service_id)
    except ServiceError as exc:
        handle_service_error(exc)
        raise
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Plans


@router.post(
    "/plans",
    response_model=BillingPlanRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_BILLING_WRITE))],
)
def create_plan(payload: BillingPlanCreate, claims: Claims, service: Plans) -> BillingPlanRead:
    try:
        return BillingPlanRead.model_validate(service.create_plan(claims["tenant_id"], payload))
    except ServiceError as exc:
        handle_service_error(exc)
        raise


@router.get(
    "/plans",
    response_model=list[BillingPlanRead],
    dependencies=[Depends(require_perm(PERM_BILLING_READ))],
)
def list_plans(claims: Claims, service: Plans, plan_type: BillingPlanType | None = None) -> list[BillingPlanRead]:
    rows = service.list_plans(claims["tenant_id"], plan_type=plan_type)
    return [BillingPlanRead.model_validate(item) for item in rows]


@router.get(
    "/plans/{plan_id}",
    response_model=BillingPlanRead,
    dependencies=[Depends(require_perm(PERM_BILLING_READ))],
)
def get_plan(plan_id: str, claims: Claims, service: Plans) -> BillingPlanRead:
    try:
        return BillingPlanRead.model_validate(service.get_plan(claims["tenant_id"], plan_id))
    except ServiceError as exc:
        handle_service_error(exc)
        raise


@router.patch(
    "/plans/{plan_id}",
    response_model=BillingPlanRead,
    dependencies=[Depends(require_perm(PERM_BILLING_WRITE))],
)
def update_plan(plan_id: str, payload: BillingPlanUpdate, claims: Claims, service: Plans) -> BillingPlanRead:
    try:
        return BillingPlanRead.model_validate(service.update_plan(claims["tenant_id"], plan_id, payload))
    except ServiceError as exc:
        handle_service_error(exc)
        raise


@router.delete(
    "/plans/{plan_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_BILLING_WRITE))],
)
def delete_plan(plan_id: str, claims: Claims, service: Plans) -> Response:
    try:
        service.delete_plan(claims["tenant_id"], plan_id)
    except ServiceError as exc:
        handle_service_error(exc)
        raise
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Plan services


@router.post(
    "/plans/{plan_id}/services",
    response_model=PlanServiceRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_BILLING_WRITE))],
)
def add_plan_service(plan_id: str, payload: PlanServiceCreate, claims: Claims, service: Plans) -> PlanServiceRead:
    try:
        return PlanServiceRead.model_validate(service.add_service_to_plan(claims["tenant_id"], plan_id, payload))
    except ServiceError as exc:
        handle_service_error(exc)
        raise


@router.get(
    "/plans/{plan_id}/services",
    response_model=list[PlanServiceRead],
    dependencies=[Depends(require_perm(PERM_BILLING_READ))],
)
def list_plan_services(plan_id: str, claims: Claims, service: Plans) -> list[PlanServiceRead]:
    try:
        rows = service.list_plan_services(claims["tenant_id"], plan_id)
    except ServiceError as exc:
        handle_service_error(exc)
        raise
    return [PlanServiceRead.model_validate(item) for item in rows]


@router.get(
    "/plans/{plan_id}/services/{service_id}",
    response_model=PlanServiceRead,
    dependencies=[Depends(require_perm(PERM_BILLING_READ))],
)
def get_plan_service(plan_id: str, service_id: str, claims: Claims, service: Plans) -> PlanServiceRead:
    try:
        return PlanServiceRead.model_validate(service.get_plan_service(claims["tenant_id"], plan_id, service_id))
    except ServiceError as exc:
        handle_service_error(exc)
        raise


@router.patch(
    "/plans/{plan_id}/services/{service_id}",
    response_model=PlanServiceRead,
    dependencies=[Depends(require_perm(PERM_BILLING_WRITE))],
)
def update_plan_service(
    plan_id: str,
    service_id: str,
    payload: PlanServiceUpdate,
    claims: Claims,
    service: Plans,
) -> PlanServiceRead:
    try:
        link = service.update_plan_service(claims["tenant_id"], plan_id, service_id, payload)
        return PlanServiceRead.model_validate(link)
    except ServiceError as exc:
        handle_service_error(exc)
        raise


@router.delete(
    "/plans/{plan_id}/services/{service_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_BILLING_WRITE))],
)
def remove_plan_service(plan_id: str, service_id: str, claims: Claims, service: Plans) -> Response:
    try:
        service.remove_service_from_plan(claims["tenant_id"], plan_id, service_id)
    except ServiceError as exc:
        handle_service_error(exc)
        raise
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/plans/{plan_id}/services/{service_id}/bucket-config",
    response_model=PlanServiceBucketConfigRead,
    dependencies=[Depends(require_perm(PERM_BILLING_READ))],
)
def get_bucket_config(plan_id: str, service_id: str, claims: Claims, service: Plans) -> PlanServiceBucketConfigRead:
    try:
        config = service.get_bucket_config(claims["tenant_id"], plan_id, service_id)
    except ServiceError as exc:
        handle_service_error(exc)
        raise
    return PlanServiceBucketConfigRead.model_validate(config)


@router.put(
    "/plans/{plan_id}/services/{service_id}/bucket-config",
    response_model=PlanServiceBucketConfigRead,
    dependencies=[Depends(require_perm(PERM_BILLING_WRITE))],
)
def put_bucket_config(
    plan_id: str,
    service_id: str,
    payload: PlanServiceBucketConfigUpsert,
    claims: Claims,
    service: Plans,
) -> PlanServiceBucketConfigRead:
    try:
        config = service.upsert_bucket_config(claims["tenant_id"], plan_id, service_id, payload)
    except ServiceError as exc:
        handle_service_error(exc)
        raise
    return PlanServiceBucketConfigRead.model_validate(config)


@router.delete(
    "/plans/{plan_id}/services/{service_id}/bucket-config",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_BILLING_WRITE))],
)
def delete_bucket_config(plan_id: str, service_id: str, claims: Claims, service: Plans) -> Response:
    try:
        service.delete_bucket_config(claims["tenant_id"], plan_id, service_id)
    except ServiceError as exc:
        handle_service_error(exc)
        raise
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/plans/{plan_id}/services/{service_id}/rate-tiers",
    response_model=list[RateTierRead],
    dependencies=[Depends(require_perm(PERM_BILLING_READ))],
)
def list_rate_tiers(plan_id: str, service_id: str, claims: Claims, service: Plans) -> list[RateTierRead]:
    try:
        tiers = service.list_rate_tiers(claims["tenant_id"], plan_id, service_id)
    except ServiceError as exc:
        handle_service_error(exc)
        raise
    return [RateTierRead.model_validate(tier) for tier in tiers]


@router.put(
    "/plans/{plan_id}/services/{service_id}/rate-tiers",
    response_model=list[RateTierRead],
    dependencies=[Depends(require_perm(PERM_BILLING_WRITE))],
)
def replace_rate_tiers(
    plan_id: str,
    service_id: str,
    payload: RateTiersReplace,
    claims: Claims,
    service: Plans,
) -> list[RateTierRead]:
    try:
        tiers = service.replace_rate_tiers(claims["tenant_id"], plan_id, service_id, payload.tiers)
    except ServiceError as exc:
        handle_service_error(exc)
        raise
    return [RateTierRead.model_validate(tier) for tier in tiers]


# Disambiguation


@router.get(
    "/eligible-plans",
    response_model=BillingPlanSelectionRead,
    dependencies=[Depends(require_perm(PERM_BILLING_READ))],
)
def get_eligible_plans(company_id: str, service_id: str, claims: Claims, service: Usage) -> BillingPlanSelectionRead:
    try:
        selection = service.get_plan_selection(claims["tenant_id"], company_id, service_id)
    except ServiceError as exc:
        handle_service_error(exc)
        raise
    return selection_read(selection)
