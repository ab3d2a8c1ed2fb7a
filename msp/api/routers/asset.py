from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from msp.api.deps import get_current_claims, require_perm
from msp.api.errors import handle_service_error
from msp.domain.dates import to_iso_strings
from msp.domain.models import (
    AssetAssociationCreate,
    AssetAssociationRead,
    AssetCreate,
    AssetHistoryCreate,
    AssetHistoryRead,
    AssetListRead,
    AssetRead,
    AssetRelationshipCreate,
    AssetRelationshipRead,
    AssetRelationshipsRead,
    AssetUpdate,
    AssociationEntityType,
    MaintenanceRecordCreate,
    MaintenanceRecordRead,
    MaintenanceScheduleCreate,
    MaintenanceScheduleRead,
    MaintenanceScheduleUpdate,
    MaintenanceStatus,
    MaintenanceType,
)
from msp.domain.permissions import PERM_ASSET_READ, PERM_ASSET_WRITE
from msp.infra.audit import set_audit_context
from msp.services.asset_association_service import (
    AssetAssociationService,
    AssetHistoryService,
    AssetRelationshipService,
)
from msp.services.asset_maintenance_service import AssetMaintenanceService
from msp.services.asset_service import AssetService
from msp.services.errors import ServiceError

router = APIRouter()


def get_asset_service() -> AssetService:
    return AssetService()


def get_association_service() -> AssetAssociationService:
    return AssetAssociationService()


def get_history_service() -> AssetHistoryService:
    return AssetHistoryService()


def get_relationship_service() -> AssetRelationshipService:
    return AssetRelationshipService()


def get_maintenance_service() -> AssetMaintenanceService:
    return AssetMaintenanceService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[AssetService, Depends(get_asset_service)]
Associations = Annotated[AssetAssociationService, Depends(get_association_service)]
History = Annotated[AssetHistoryService, Depends(get_history_service)]
Relationships = Annotated[AssetRelationshipService, Depends(get_relationship_service)]
Maintenance = Annotated[AssetMaintenanceService, Depends(get_maintenance_service)]


@router.post(
    "",
    response_model=AssetRead,
    response_model_exclude_unset=True,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_ASSET_WRITE))],
)
def create_asset(payload: AssetCreate, request: Request, claims: Claims, service: Service) -> AssetRead:
    try:
        asset = service.create_asset(claims["tenant_id"], payload, claims["sub"])
    except ServiceError as exc:
        handle_service_error(exc)
        raise
    set_audit_context(request, action="asset.create", resource=f"/api/assets/{asset['asset_id']}")
    return AssetRead.model_validate(asset)


@router.get(
    "",
    response_model=AssetListRead,
    response_model_exclude_unset=True,
    dependencies=[Depends(require_perm(PERM_ASSET_READ))],
)
def list_assets(
    claims: Claims,
    service: Service,
    company_id: str | None = None,
    company_name: str | None = None,
    type_id: str | None = None,
    asset_type: str | None = None,
    asset_status: Annotated[str | None, Query(alias="status")] = None,
    search: str | None = None,
    maintenance_status: MaintenanceStatus | None = None,
    maintenance_type: MaintenanceType | None = None,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=500)] = 10,
    include_company_details: bool = False,
    include_extension_data: bool = False,
) -> AssetListRead:
    result = service.list_assets(
        claims["tenant_id"],
        company_id=company_id,
        company_name=company_name,
        type_id=type_id,
        asset_type=asset_type,
        status=asset_status,
        search=search,
        maintenance_status=maintenance_status,
        maintenance_type=maintenance_type,
        page=page,
        limit=limit,
        include_company_details=include_company_details,
        include_extension_data=include_extension_data,
    )
    return AssetListRead.model_validate(result)


@router.get(
    "/associations/by-entity",
    response_model=list[AssetAssociationRead],
    dependencies=[Depends(require_perm(PERM_ASSET_READ))],
)
def list_associations_by_entity(
    entity_id: str,
    entity_type: AssociationEntityType,
    claims: Claims,
    service: Associations,
) -> list[AssetAssociationRead]:
    rows = service.list_by_entity(claims["tenant_id"], entity_id, entity_type)
    return [AssetAssociationRead.model_validate(item) for item in rows]


@router.patch(
    "/maintenance-schedules/{schedule_id}",
    response_model=MaintenanceScheduleRead,
    dependencies=[Depends(require_perm(PERM_ASSET_WRITE))],
)
def update_maintenance_schedule(
    schedule_id: str,
    payload: MaintenanceScheduleUpdate,
    claims: Claims,
    service: Maintenance,
) -> MaintenanceScheduleRead:
    try:
        schedule = service.update_schedule(claims["tenant_id"], schedule_id, payload)
        return MaintenanceScheduleRead.model_validate(schedule)
    except ServiceError as exc:
        handle_service_error(exc)
        raise


@router.delete(
    "/maintenance-schedules/{schedule_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_ASSET_WRITE))],
)
def delete_maintenance_schedule(schedule_id: str, claims: Claims, service: Maintenance) -> Response:
    try:
        service.delete_schedule(claims["tenant_id"], schedule_id)
    except ServiceError as exc:
        handle_service_error(exc)
        raise
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/{asset_id}",
    response_model=AssetRead,
    response_model_exclude_unset=True,
    dependencies=[Depends(require_perm(PERM_ASSET_READ))],
)
def get_asset(asset_id: str, claims: Claims, service: Service) -> AssetRead:
    asset = service.find_by_id(claims["tenant_id"], asset_id)
    if asset is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"kind": "not_found", "message": "Asset not found"},
        )
    return AssetRead.model_validate(asset)


@router.patch(
    "/{asset_id}",
    response_model=AssetRead,
    response_model_exclude_unset=True,
    dependencies=[Depends(require_perm(PERM_ASSET_WRITE))],
)
def update_asset(asset_id: str, payload: AssetUpdate, claims: Claims, service: Service) -> AssetRead:
    try:
        asset = service.update_asset(claims["tenant_id"], asset_id, payload, claims["sub"])
        return AssetRead.model_validate(asset)
    except ServiceError as exc:
        handle_service_error(exc)
        raise


@router.delete(
    "/{asset_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_ASSET_WRITE))],
)
def delete_asset(asset_id: str, claims: Claims, service: Service) -> Response:
    try:
        service.delete_asset(claims["tenant_id"], asset_id, claims["sub"])
    except ServiceError as exc:
        handle_service_error(exc)
        raise
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Associations


@router.post(
    "/{asset_id}/associations",
    response_model=AssetAssociationRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_ASSET_WRITE))],
)
def create_association(
    asset_id: str,
    payload: AssetAssociationCreate,
    claims: Claims,
    service: Associations,
) -> AssetAssociationRead:
    try:
        association = service.create_association(claims["tenant_id"], asset_id, payload, claims["sub"])
        return AssetAssociationRead.model_validate(association)
    except ServiceError as exc:
        handle_service_error(exc)
        raise


@router.get(
    "/{asset_id}/associations",
    response_model=list[AssetAssociationRead],
    dependencies=[Depends(require_perm(PERM_ASSET_READ))],
)
def list_associations(asset_id: str, claims: Claims, service: Associations) -> list[AssetAssociationRead]:
    rows = service.list_by_asset(claims["tenant_id"], asset_id)
    return [AssetAssociationRead.model_validate(item) for item in rows]


@router.delete(
    "/{asset_id}/associations/{entity_type}/{entity_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_ASSET_WRITE))],
)
def delete_association(
    asset_id: str,
    entity_type: AssociationEntityType,
    entity_id: str,
    claims: Claims,
    service: Associations,
) -> Response:
    try:
        service.delete_association(claims["tenant_id"], asset_id, entity_id, entity_type)
    except ServiceError as exc:
        handle_service_error(exc)
        raise
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# History


@router.get(
    "/{asset_id}/history",
    response_model=list[AssetHistoryRead],
    dependencies=[Depends(require_perm(PERM_ASSET_READ))],
)
def list_history(asset_id: str, claims: Claims, service: History) -> list[AssetHistoryRead]:
    return [AssetHistoryRead.model_validate(item) for item in service.list_by_asset(claims["tenant_id"], asset_id)]


@router.post(
    "/{asset_id}/history",
    response_model=AssetHistoryRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_ASSET_WRITE))],
)
def create_history_entry(
    asset_id: str,
    payload: AssetHistoryCreate,
    claims: Claims,
    service: History,
) -> AssetHistoryRead:
    try:
        entry = service.create_entry(claims["tenant_id"], asset_id, claims["sub"], payload)
        return AssetHistoryRead.model_validate(entry)
    except ServiceError as exc:
        handle_service_error(exc)
        raise


# Relationships


@router.post(
    "/{asset_id}/relationships",
    response_model=AssetRelationshipRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_ASSET_WRITE))],
)
def create_relationship(
    asset_id: str,
    payload: AssetRelationshipCreate,
    claims: Claims,
    service: Relationships,
) -> AssetRelationshipRead:
    try:
        relationship = service.create_relationship(claims["tenant_id"], asset_id, payload)
    except ServiceError as exc:
        handle_service_error(exc)
        raise
    return AssetRelationshipRead.model_validate(to_iso_strings(relationship.model_dump(exclude={"tenant"})))


@router.get(
    "/{asset_id}/relationships",
    response_model=AssetRelationshipsRead,
    dependencies=[Depends(require_perm(PERM_ASSET_READ))],
)
def list_relationships(asset_id: str, claims: Claims, service: Relationships) -> AssetRelationshipsRead:
    try:
        return AssetRelationshipsRead.model_validate(service.list_for_asset(claims["tenant_id"], asset_id))
    except ServiceError as exc:
        handle_service_error(exc)
        raise


@router.delete(
    "/{asset_id}/relationships/{child_asset_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_ASSET_WRITE))],
)
def delete_relationship(asset_id: str, child_asset_id: str, claims: Claims, service: Relationships) -> Response:
    try:
        service.delete_relationship(claims["tenant_id"], asset_id, child_asset_id)
    except ServiceError as exc:
        handle_service_error(exc)
        raise
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Maintenance


@router.post(
    "/{asset_id}/maintenance-schedules",
    response_model=MaintenanceScheduleRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_ASSET_WRITE))],
)
def create_maintenance_schedule(
    asset_id: str,
    payload: MaintenanceScheduleCreate,
    claims: Claims,
    service: Maintenance,
) -> MaintenanceScheduleRead:
    try:
        schedule = service.create_schedule(claims["tenant_id"], asset_id, payload, claims["sub"])
        return MaintenanceScheduleRead.model_validate(schedule)
    except ServiceError as exc:
        handle_service_error(exc)
        raise


@router.get(
    "/{asset_id}/maintenance-schedules",
    response_model=list[MaintenanceScheduleRead],
    dependencies=[Depends(require_perm(PERM_ASSET_READ))],
)
def list_maintenance_schedules(asset_id: str, claims: Claims, service: Maintenance) -> list[MaintenanceScheduleRead]:
    try:
        rows = service.list_schedules(claims["tenant_id"], asset_id)
    except ServiceError as exc:
        handle_service_error(exc)
        raise
    return [MaintenanceScheduleRead.model_validate(item) for item in rows]


@router.post(
    "/{asset_id}/maintenance-history",
    response_model=MaintenanceRecordRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_ASSET_WRITE))],
)
def record_maintenance(
    asset_id: str,
    payload: MaintenanceRecordCreate,
    claims: Claims,
    service: Maintenance,
) -> MaintenanceRecordRead:
    try:
        record = service.record_maintenance(claims["tenant_id"], asset_id, payload, claims["sub"])
        return MaintenanceRecordRead.model_validate(record)
    except ServiceError as exc:
        handle_service_error(exc)
        raise


@router.get(
    "/{asset_id}/maintenance-history",
    response_model=list[MaintenanceRecordRead],
    dependencies=[Depends(require_perm(PERM_ASSET_READ))],
)
def list_maintenance_history(asset_id: str, claims: Claims, service: Maintenance) -> list[MaintenanceRecordRead]:
    try:
        rows = service.list_history(claims["tenant_id"], asset_id)
    except ServiceError as exc:
        handle_service_error(exc)
        raise
    return [MaintenanceRecordRead.model_validate(item) for item in rows]
