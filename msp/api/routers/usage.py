from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Response, status

from msp.api.deps import get_current_claims, require_perm
from msp.api.errors import handle_service_error
from msp.domain.models import UsageRecordCreate, UsageRecordRead, UsageRecordUpdate
from msp.domain.permissions import PERM_BILLING_READ, PERM_BILLING_WRITE
from msp.services.errors import ServiceError
from msp.services.usage_service import UsageService

router = APIRouter()


def get_usage_service() -> UsageService:
    return UsageService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[UsageService, Depends(get_usage_service)]


@router.post(
    "",
    response_model=UsageRecordRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_BILLING_WRITE))],
)
def create_usage(payload: UsageRecordCreate, claims: Claims, service: Service) -> UsageRecordRead:
    try:
        return UsageRecordRead.model_validate(service.create_usage(claims["tenant_id"], payload, claims["sub"]))
    except ServiceError as exc:
        handle_service_error(exc)
        raise


@router.get(
    "",
    response_model=list[UsageRecordRead],
    dependencies=[Depends(require_perm(PERM_BILLING_READ))],
)
def list_usage(
    claims: Claims,
    service: Service,
    company_id: str | None = None,
    service_id: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    unassigned_only: bool = False,
) -> list[UsageRecordRead]:
    rows = service.list_usage(
        claims["tenant_id"],
        company_id=company_id,
        service_id=service_id,
        start_date=start_date,
        end_date=end_date,
        unassigned_only=unassigned_only,
    )
    return [UsageRecordRead.model_validate(item) for item in rows]


@router.get(
    "/{usage_id}",
    response_model=UsageRecordRead,
    dependencies=[Depends(require_perm(PERM_BILLING_READ))],
)
def get_usage(usage_id: str, claims: Claims, service: Service) -> UsageRecordRead:
    try:
        return UsageRecordRead.model_validate(service.get_usage(claims["tenant_id"], usage_id))
    except ServiceError as exc:
        handle_service_error(exc)
        raise


@router.patch(
    "/{usage_id}",
    response_model=UsageRecordRead,
    dependencies=[Depends(require_perm(PERM_BILLING_WRITE))],
)
def update_usage(usage_id: str, payload: UsageRecordUpdate, claims: Claims, service: Service) -> UsageRecordRead:
    try:
        return UsageRecordRead.model_validate(service.update_usage(claims["tenant_id"], usage_id, payload))
    except ServiceError as exc:
        handle_service_error(exc)
        raise


@router.delete(
    "/{usage_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_BILLING_WRITE))],
)
def delete_usage(usage_id: str, claims: Claims, service: Service) -> Response:
    try:
        service.delete_usage(claims["tenant_id"], usage_id)
    except ServiceError as exc:
        handle_service_error(exc)
        raise
    return Response(status_code=status.HTTP_204_NO_CONTENT)
