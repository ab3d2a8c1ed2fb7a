from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, Request

from msp.api.deps import get_current_claims, require_perm
from msp.api.errors import handle_service_error
from msp.domain.models import (
    CreditValidationSummaryRead,
    ReconciliationReportListRead,
    ReconciliationReportRead,
    ReconciliationResolveRequest,
)
from msp.domain.permissions import PERM_CREDIT_READ, PERM_CREDIT_WRITE
from msp.domain.state_machine import ReconciliationStatus
from msp.infra.audit import set_audit_context
from msp.services.credit_reconciliation_service import DEFAULT_PAGE_SIZE, CreditReconciliationService
from msp.services.errors import ServiceError

router = APIRouter()


def get_reconciliation_service() -> CreditReconciliationService:
    return CreditReconciliationService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[CreditReconciliationService, Depends(get_reconciliation_service)]


@router.post(
    "/validate",
    response_model=CreditValidationSummaryRead,
    dependencies=[Depends(require_perm(PERM_CREDIT_WRITE))],
)
def validate_all_companies(claims: Claims, service: Service) -> CreditValidationSummaryRead:
    summary = service.validate_all_companies(claims["tenant_id"], claims["sub"])
    return CreditValidationSummaryRead.model_validate(summary)


@router.post(
    "/validate/{company_id}",
    response_model=CreditValidationSummaryRead,
    dependencies=[Depends(require_perm(PERM_CREDIT_WRITE))],
)
def validate_company_credit(company_id: str, claims: Claims, service: Service) -> CreditValidationSummaryRead:
    try:
        summary = service.validate_company_credit(claims["tenant_id"], company_id, claims["sub"])
        return CreditValidationSummaryRead.model_validate(summary)
    except ServiceError as exc:
        handle_service_error(exc)
        raise


@router.get(
    "/reports",
    response_model=ReconciliationReportListRead,
    dependencies=[Depends(require_perm(PERM_CREDIT_READ))],
)
def list_reports(
    request: Request,
    claims: Claims,
    service: Service,
    company_id: str | None = None,
    report_status: Annotated[ReconciliationStatus | None, Query(alias="status")] = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=200)] = DEFAULT_PAGE_SIZE,
) -> ReconciliationReportListRead:
    set_audit_context(
        request,
        action="reconciliation.report.list",
        detail={"what": {"company_id": company_id, "status": report_status}},
    )
    result = service.list_reports(
        claims["tenant_id"],
        company_id=company_id,
        status=report_status,
        start_date=start_date,
        end_date=end_date,
        page=page,
        page_size=page_size,
    )
    return ReconciliationReportListRead.model_validate(result, from_attributes=True)


@router.get(
    "/reports/{report_id}",
    response_model=ReconciliationReportRead,
    dependencies=[Depends(require_perm(PERM_CREDIT_READ))],
)
def get_report(report_id: str, claims: Claims, service: Service) -> ReconciliationReportRead:
    try:
        return ReconciliationReportRead.model_validate(service.get_report(claims["tenant_id"], report_id))
    except ServiceError as exc:
        handle_service_error(exc)
        raise


@router.post(
    "/reports/{report_id}/review",
    response_model=ReconciliationReportRead,
    dependencies=[Depends(require_perm(PERM_CREDIT_WRITE))],
)
def start_review(report_id: str, claims: Claims, service: Service) -> ReconciliationReportRead:
    try:
        report = service.start_review(claims["tenant_id"], report_id, claims["sub"])
        return ReconciliationReportRead.model_validate(report)
    except ServiceError as exc:
        handle_service_error(exc)
        raise


@router.post(
    "/reports/{report_id}/resolve",
    response_model=ReconciliationReportRead,
    dependencies=[Depends(require_perm(PERM_CREDIT_WRITE))],
)
def resolve_report(
    report_id: str,
    payload: ReconciliationResolveRequest,
    claims: Claims,
    service: Service,
) -> ReconciliationReportRead:
    try:
        report = service.resolve(claims["tenant_id"], report_id, claims["sub"], payload.notes)
        return ReconciliationReportRead.model_validate(report)
    except ServiceError as exc:
        handle_service_error(exc)
        raise
