from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Request, status

from msp.api.deps import get_current_claims, require_perm
from msp.api.errors import handle_service_error
from msp.domain.models import (
    CreditApplicationRead,
    CreditApplyRequest,
    CreditExpirationUpdateRequest,
    CreditExpireRequest,
    CreditIssueRequest,
    CreditTrackingRead,
    TransactionRead,
    TransactionType,
)
from msp.domain.permissions import PERM_CREDIT_READ, PERM_CREDIT_WRITE
from msp.infra.audit import set_audit_context
from msp.services.credit_service import CreditService
from msp.services.errors import ServiceError

router = APIRouter()


def get_credit_service() -> CreditService:
    return CreditService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[CreditService, Depends(get_credit_service)]


@router.post(
    "",
    response_model=CreditTrackingRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_CREDIT_WRITE))],
)
def issue_credit(payload: CreditIssueRequest, claims: Claims, service: Service) -> CreditTrackingRead:
    try:
        credit = service.issue_credit(claims["tenant_id"], payload, claims["sub"])
        return CreditTrackingRead.model_validate(credit)
    except ServiceError as exc:
        handle_service_error(exc)
        raise


@router.post(
    "/apply",
    response_model=CreditApplicationRead,
    dependencies=[Depends(require_perm(PERM_CREDIT_WRITE))],
)
def apply_credit(payload: CreditApplyRequest, claims: Claims, service: Service) -> CreditApplicationRead:
    try:
        result = service.apply_credit(claims["tenant_id"], payload, claims["sub"])
        return CreditApplicationRead.model_validate(result, from_attributes=True)
    except ServiceError as exc:
        handle_service_error(exc)
        raise


@router.get(
    "",
    response_model=list[CreditTrackingRead],
    dependencies=[Depends(require_perm(PERM_CREDIT_READ))],
)
def list_credits(
    company_id: str,
    claims: Claims,
    service: Service,
    include_expired: bool = False,
) -> list[CreditTrackingRead]:
    try:
        rows = service.list_credits(claims["tenant_id"], company_id, include_expired=include_expired)
    except ServiceError as exc:
        handle_service_error(exc)
        raise
    return [CreditTrackingRead.model_validate(item) for item in rows]


@router.get(
    "/transactions",
    response_model=list[TransactionRead],
    dependencies=[Depends(require_perm(PERM_CREDIT_READ))],
)
def list_transactions(
    company_id: str,
    claims: Claims,
    service: Service,
    transaction_type: TransactionType | None = None,
) -> list[TransactionRead]:
    try:
        rows = service.list_transactions(claims["tenant_id"], company_id, transaction_type=transaction_type)
    except ServiceError as exc:
        handle_service_error(exc)
        raise
    return [TransactionRead.model_validate(item) for item in rows]


@router.get(
    "/{credit_id}",
    response_model=CreditTrackingRead,
    dependencies=[Depends(require_perm(PERM_CREDIT_READ))],
)
def get_credit(credit_id: str, claims: Claims, service: Service) -> CreditTrackingRead:
    try:
        return CreditTrackingRead.model_validate(service.get_credit(claims["tenant_id"], credit_id))
    except ServiceError as exc:
        handle_service_error(exc)
        raise


@router.patch(
    "/{credit_id}/expiration",
    response_model=CreditTrackingRead,
    dependencies=[Depends(require_perm(PERM_CREDIT_WRITE))],
)
def update_credit_expiration(
    credit_id: str,
    payload: CreditExpirationUpdateRequest,
    claims: Claims,
    service: Service,
) -> CreditTrackingRead:
    try:
        credit = service.update_credit_expiration(claims["tenant_id"], credit_id, payload, claims["sub"])
        return CreditTrackingRead.model_validate(credit)
    except ServiceError as exc:
        handle_service_error(exc)
        raise


@router.post(
    "/{credit_id}/expire",
    response_model=CreditTrackingRead,
    dependencies=[Depends(require_perm(PERM_CREDIT_WRITE))],
)
def expire_credit(
    credit_id: str,
    payload: CreditExpireRequest,
    request: Request,
    claims: Claims,
    service: Service,
) -> CreditTrackingRead:
    set_audit_context(request, action="credit.expire", detail={"what": {"reason": payload.reason}})
    try:
        credit = service.expire_credit(claims["tenant_id"], credit_id, payload.reason, claims["sub"])
        return CreditTrackingRead.model_validate(credit)
    except ServiceError as exc:
        handle_service_error(exc)
        raise
