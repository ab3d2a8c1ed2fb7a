from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Request, Response, status

from msp.api.deps import get_current_claims, require_perm
from msp.api.errors import handle_service_error
from msp.domain.models import (
    CompanyAssetReportRead,
    CompanyBillingPlanCreate,
    CompanyBillingPlanRead,
    CompanyBillingPlanUpdate,
    CompanyCreate,
    CompanyRead,
    CompanyUpdate,
)
from msp.domain.permissions import (
    PERM_ASSET_READ,
    PERM_BILLING_READ,
    PERM_BILLING_WRITE,
    PERM_COMPANY_READ,
    PERM_COMPANY_WRITE,
)
from msp.infra.audit import set_audit_context
from msp.services.asset_service import AssetService
from msp.services.billing_plan_service import BillingPlanService
from msp.services.company_service import CompanyService
from msp.services.errors import ServiceError

router = APIRouter()


def get_company_service() -> CompanyService:
    return CompanyService()


def get_asset_service() -> AssetService:
    return AssetService()


def get_billing_plan_service() -> BillingPlanService:
    return BillingPlanService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[CompanyService, Depends(get_company_service)]
Assets = Annotated[AssetService, Depends(get_asset_service)]
Plans = Annotated[BillingPlanService, Depends(get_billing_plan_service)]


@router.post(
    "",
    response_model=CompanyRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_COMPANY_WRITE))],
)
def create_company(payload: CompanyCreate, claims: Claims, service: Service) -> CompanyRead:
    try:
        company = service.create_company(claims["tenant_id"], payload)
        return CompanyRead.model_validate(company)
    except ServiceError as exc:
        handle_service_error(exc)
        raise


@router.get(
    "",
    response_model=list[CompanyRead],
    dependencies=[Depends(require_perm(PERM_COMPANY_READ))],
)
def list_companies(claims: Claims, service: Service, include_inactive: bool = False) -> list[CompanyRead]:
    companies = service.list_companies(claims["tenant_id"], include_inactive=include_inactive)
    return [CompanyRead.model_validate(item) for item in companies]


@router.get(
    "/{company_id}",
    response_model=CompanyRead,
    dependencies=[Depends(require_perm(PERM_COMPANY_READ))],
)
def get_company(company_id: str, claims: Claims, service: Service) -> CompanyRead:
    try:
        return CompanyRead.model_validate(service.get_company(claims["tenant_id"], company_id))
    except ServiceError as exc:
        handle_service_error(exc)
        raise


@router.patch(
    "/{company_id}",
    response_model=CompanyRead,
    dependencies=[Depends(require_perm(PERM_COMPANY_WRITE))],
)
def update_company(company_id: str, payload: CompanyUpdate, claims: Claims, service: Service) -> CompanyRead:
    try:
        company = service.update_company(claims["tenant_id"], company_id, payload)
        return CompanyRead.model_validate(company)
    except ServiceError as exc:
        handle_service_error(exc)
        raise


@router.delete(
    "/{company_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_COMPANY_WRITE))],
)
def delete_company(company_id: str, claims: Claims, service: Service) -> Response:
    try:
        service.delete_company(claims["tenant_id"], company_id)
    except ServiceError as exc:
        handle_service_error(exc)
        raise
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/{company_id}/asset-report",
    response_model=CompanyAssetReportRead,
    dependencies=[Depends(require_perm(PERM_ASSET_READ))],
)
def get_company_asset_report(
    company_id: str,
    request: Request,
    claims: Claims,
    service: Assets,
) -> CompanyAssetReportRead:
    set_audit_context(request, action="company.asset_report", detail={"what": {"company_id": company_id}})
    try:
        report = service.get_company_asset_report(claims["tenant_id"], company_id)
        return CompanyAssetReportRead.model_validate(report)
    except ServiceError as exc:
        handle_service_error(exc)
        raise


@router.post(
    "/{company_id}/billing-plans",
    response_model=CompanyBillingPlanRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_BILLING_WRITE))],
)
def assign_billing_plan(
    company_id: str,
    payload: CompanyBillingPlanCreate,
    claims: Claims,
    service: Plans,
) -> CompanyBillingPlanRead:
    try:
        company_plan = service.assign_plan_to_company(claims["tenant_id"], company_id, payload)
        return CompanyBillingPlanRead.model_validate(company_plan)
    except ServiceError as exc:
        handle_service_error(exc)
        raise


@router.get(
    "/{company_id}/billing-plans",
    response_model=list[CompanyBillingPlanRead],
    dependencies=[Depends(require_perm(PERM_BILLING_READ))],
)
def list_company_billing_plans(company_id: str, claims: Claims, service: Plans) -> list[CompanyBillingPlanRead]:
    try:
        rows = service.list_company_plans(claims["tenant_id"], company_id)
    except ServiceError as exc:
        handle_service_error(exc)
        raise
    return [CompanyBillingPlanRead.model_validate(item) for item in rows]


@router.patch(
    "/{company_id}/billing-plans/{company_billing_plan_id}",
    response_model=CompanyBillingPlanRead,
    dependencies=[Depends(require_perm(PERM_BILLING_WRITE))],
)
def update_company_billing_plan(
    company_id: str,
    company_billing_plan_id: str,
    payload: CompanyBillingPlanUpdate,
    claims: Claims,
    service: Plans,
) -> CompanyBillingPlanRead:
    try:
        company_plan = service.update_company_plan(
            claims["tenant_id"], company_id, company_billing_plan_id, payload
        )
        return CompanyBillingPlanRead.model_validate(company_plan)
    except ServiceError as exc:
        handle_service_error(exc)
        raise


@router.delete(
    "/{company_id}/billing-plans/{company_billing_plan_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_BILLING_WRITE))],
)
def remove_company_billing_plan(
    company_id: str,
    company_billing_plan_id: str,
    claims: Claims,
    service: Plans,
) -> Response:
    try:
        service.remove_company_plan(claims["tenant_id"], company_id, company_billing_plan_id)
    except ServiceError as exc:
        handle_service_error(exc)
        raise
    return Response(status_code=status.HTTP_204_NO_CONTENT)
