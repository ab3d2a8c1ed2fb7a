from __future__ import annotations

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from msp.domain.models import Asset, AssetType, AssetTypeCreate, AssetTypeUpdate, Tenant, now_utc
from msp.infra.db import get_engine
from msp.services.asset_extension_service import extension_kind_for
from msp.services.errors import ConflictError, ConflictKind, NotFoundError, ValidationError


def get_scoped_asset_type(session: Session, tenant_id: str, type_id: str) -> AssetType:
    asset_type = session.exec(
        select(AssetType).where(AssetType.tenant == tenant_id).where(AssetType.type_id == type_id)
    ).first()
    if asset_type is None:
        raise NotFoundError("Asset type not found")
    return asset_type


def find_asset_type_by_name(session: Session, tenant_id: str, type_name: str) -> AssetType | None:
    return session.exec(
        select(AssetType)
        .where(AssetType.tenant == tenant_id)
        .where(func.lower(AssetType.type_name) == type_name.strip().lower())
    ).first()


class AssetTypeService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _ensure_parent(self, session: Session, tenant_id: str, type_id: str | None, parent_type_id: str) -> None:
        if parent_type_id == type_id:
            raise ValidationError("asset type cannot be its own parent")
        parent = get_scoped_asset_type(session, tenant_id, parent_type_id)
        # Walk upwards so a re-parent cannot close a loop.
        seen = {parent.type_id}
        while parent.parent_type_id is not None:
            if parent.parent_type_id == type_id:
                raise ValidationError("asset type hierarchy cannot contain cycles")
            if parent.parent_type_id in seen:
                break
            seen.add(parent.parent_type_id)
            parent = get_scoped_asset_type(session, tenant_id, parent.parent_type_id)

    def create_asset_type(self, tenant_id: str, payload: AssetTypeCreate) -> AssetType:
        if not payload.type_name.strip():
            raise ValidationError("type_name is required")
        with self._session() as session:
            if session.get(Tenant, tenant_id) is None:
                raise NotFoundError("tenant not found")
            if payload.parent_type_id is not None:
                self._ensure_parent(session, tenant_id, None, payload.parent_type_id)
            asset_type = AssetType(
                tenant=tenant_id,
                type_name=payload.type_name.strip(),
                parent_type_id=payload.parent_type_id,
                attributes_schema=payload.attributes_schema,
            )
            session.add(asset_type)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("asset type name already exists in tenant") from exc
            session.refresh(asset_type)
            return asset_type

    def get_asset_type(self, tenant_id: str, type_id: str) -> AssetType:
        with self._session() as session:
            return get_scoped_asset_type(session, tenant_id, type_id)

    def list_asset_types(self, tenant_id: str) -> list[AssetType]:
        with self._session() as session:
            statement = select(AssetType).where(AssetType.tenant == tenant_id).order_by(AssetType.type_name)
            return list(session.exec(statement).all())

    def update_asset_type(self, tenant_id: str, type_id: str, payload: AssetTypeUpdate) -> AssetType:
        with self._session() as session:
            asset_type = get_scoped_asset_type(session, tenant_id, type_id)
            changes = payload.model_dump(exclude_unset=True)
            if changes.get("parent_type_id") is not None:
                self._ensure_parent(session, tenant_id, type_id, changes["parent_type_id"])
            if "type_name" in changes:
                if not (changes["type_name"] or "").strip():
                    raise ValidationError("type_name is required")
                changes["type_name"] = changes["type_name"].strip()
                if extension_kind_for(changes["type_name"]) != extension_kind_for(asset_type.type_name):
                    asset_count = session.exec(
                        select(func.count())
                        .select_from(Asset)
                        .where(Asset.tenant == tenant_id)
                        .where(Asset.type_id == type_id)
                    ).one()
                    if asset_count:
                        # Extension rows live in the table named by the type.
                        raise ConflictError(
                            "asset type rename would change the extension table of existing assets",
                            ConflictKind.IN_USE,
                        )
            for key, value in changes.items():
                setattr(asset_type, key, value)
            asset_type.updated_at = now_utc()
            session.add(asset_type)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("asset type name already exists in tenant") from exc
            session.refresh(asset_type)
            return asset_type

    def delete_asset_type(self, tenant_id: str, type_id: str) -> None:
        with self._session() as session:
            asset_type = get_scoped_asset_type(session, tenant_id, type_id)
            asset_count = session.exec(
                select(func.count()).select_from(Asset).where(Asset.tenant == tenant_id).where(Asset.type_id == type_id)
            ).one()
            if asset_count:
                raise ConflictError("asset type is in use by assets", ConflictKind.IN_USE)
            child_count = session.exec(
                select(func.count())
                .select_from(AssetType)
                .where(AssetType.tenant == tenant_id)
                .where(AssetType.parent_type_id == type_id)
            ).one()
            if child_count:
                raise ConflictError("asset type is in use as a parent type", ConflictKind.IN_USE)
            session.delete(asset_type)
            session.commit()
