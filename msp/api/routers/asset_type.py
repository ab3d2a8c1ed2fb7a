from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Response, status

from msp.api.deps import get_current_claims, require_perm
from msp.api.errors import handle_service_error
from msp.domain.models import AssetTypeCreate, AssetTypeRead, AssetTypeUpdate
from msp.domain.permissions import PERM_ASSET_READ, PERM_ASSET_WRITE
from msp.services.asset_type_service import AssetTypeService
from msp.services.errors import ServiceError

router = APIRouter()


def get_asset_type_service() -> AssetTypeService:
    return AssetTypeService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[AssetTypeService, Depends(get_asset_type_service)]


@router.post(
    "",
    response_model=AssetTypeRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_ASSET_WRITE))],
)
def create_asset_type(payload: AssetTypeCreate, claims: Claims, service: Service) -> AssetTypeRead:
    try:
        return AssetTypeRead.model_validate(service.create_asset_type(claims["tenant_id"], payload))
    except ServiceError as exc:
        handle_service_error(exc)
        raise


@router.get(
    "",
    response_model=list[AssetTypeRead],
    dependencies=[Depends(require_perm(PERM_ASSET_READ))],
)
def list_asset_types(claims: Claims, service: Service) -> list[AssetTypeRead]:
    return [AssetTypeRead.model_validate(item) for item in service.list_asset_types(claims["tenant_id"])]


@router.get(
    "/{type_id}",
    response_model=AssetTypeRead,
    dependencies=[Depends(require_perm(PERM_ASSET_READ))],
)
def get_asset_type(type_id: str, claims: Claims, service: Service) -> AssetTypeRead:
    try:
        return AssetTypeRead.model_validate(service.get_asset_type(claims["tenant_id"], type_id))
    except ServiceError as exc:
        handle_service_error(exc)
        raise


@router.patch(
    "/{type_id}",
    response_model=AssetTypeRead,
    dependencies=[Depends(require_perm(PERM_ASSET_WRITE))],
)
def update_asset_type(type_id: str, payload: AssetTypeUpdate, claims: Claims, service: Service) -> AssetTypeRead:
    try:
        return AssetTypeRead.model_validate(service.update_asset_type(claims["tenant_id"], type_id, payload))
    except ServiceError as exc:
        handle_service_error(exc)
        raise


@router.delete(
    "/{type_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_ASSET_WRITE))],
)
def delete_asset_type(type_id: str, claims: Claims, service: Service) -> Response:
    try:
        service.delete_asset_type(claims["tenant_id"], type_id)
    except ServiceError as exc:
        handle_service_error(exc)
        raise
    return Response(status_code=status.HTTP_204_NO_CONTENT)
