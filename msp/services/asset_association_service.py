from __future__ import annotations

import logging
from collections import deque
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, or_, select

from msp.domain.dates import to_iso_strings
from msp.domain.models import (
    Asset,
    AssetAssociation,
    AssetAssociationCreate,
    AssetHistory,
    AssetHistoryCreate,
    AssetRelationship,
    AssetRelationshipCreate,
    AssociationEntityType,
    now_utc,
)
from msp.infra.db import get_engine
from msp.services.errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def ensure_scoped_asset(session: Session, tenant_id: str, asset_id: str) -> Asset:
    asset = session.exec(select(Asset).where(Asset.tenant == tenant_id).where(Asset.asset_id == asset_id)).first()
    if asset is None:
        raise NotFoundError("Asset not found")
    return asset


def record_history(
    session: Session,
    tenant_id: str,
    asset_id: str,
    changed_by: str,
    change_type: str,
    changes: dict[str, Any],
) -> AssetHistory:
    entry = AssetHistory(
        tenant=tenant_id,
        asset_id=asset_id,
        changed_by=changed_by,
        change_type=change_type,
        changes=to_iso_strings(changes),
    )
    session.add(entry)
    return entry


def list_relationships(session: Session, tenant_id: str, asset_id: str) -> dict[str, list[dict[str, Any]]]:
    rows = session.exec(
        select(AssetRelationship)
        .where(AssetRelationship.tenant == tenant_id)
        .where(
            or_(
                col(AssetRelationship.parent_asset_id) == asset_id,
                col(AssetRelationship.child_asset_id) == asset_id,
            )
        )
        .order_by(col(AssetRelationship.created_at).desc())
    ).all()
    parents: list[dict[str, Any]] = []
    children: list[dict[str, Any]] = []
    for row in rows:
        item = to_iso_strings(row.model_dump(exclude={"tenant"}))
        if row.child_asset_id == asset_id:
            parents.append(item)
        else:
            children.append(item)
    return {"parents": parents, "children": children}


class AssetAssociationService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def create_association(
        self,
        tenant_id: str,
        asset_id: str,
        payload: AssetAssociationCreate,
        created_by: str,
    ) -> AssetAssociation:
        with self._session() as session:
            ensure_scoped_asset(session, tenant_id, asset_id)
            association = AssetAssociation(
                tenant=tenant_id,
                asset_id=asset_id,
                entity_id=payload.entity_id,
                entity_type=payload.entity_type,
                relationship_type=payload.relationship_type,
                notes=payload.notes,
                created_by=created_by,
                created_at=now_utc(),
            )
            session.add(association)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("asset is already associated with this entity") from exc
            session.refresh(association)
            return association

    def find_by_asset_and_entity(
        self,
        tenant_id: str,
        asset_id: str,
        entity_id: str,
        entity_type: AssociationEntityType,
    ) -> AssetAssociation | None:
        with self._session() as session:
            return session.exec(
                select(AssetAssociation)
                .where(AssetAssociation.tenant == tenant_id)
                .where(AssetAssociation.asset_id == asset_id)
                .where(AssetAssociation.entity_id == entity_id)
                .where(AssetAssociation.entity_type == entity_type)
            ).first()

    def list_by_asset(self, tenant_id: str, asset_id: str) -> list[AssetAssociation]:
        with self._session() as session:
            statement = (
                select(AssetAssociation)
                .where(AssetAssociation.tenant == tenant_id)
                .where(AssetAssociation.asset_id == asset_id)
                .order_by(col(AssetAssociation.created_at).desc())
            )
            return list(session.exec(statement).all())

    def list_by_entity(
        self,
        tenant_id: str,
        entity_id: str,
        entity_type: AssociationEntityType,
    ) -> list[AssetAssociation]:
        with self._session() as session:
            statement = (
                select(AssetAssociation)
                .where(AssetAssociation.tenant == tenant_id)
                .where(AssetAssociation.entity_id == entity_id)
                .where(AssetAssociation.entity_type == entity_type)
                .order_by(col(AssetAssociation.created_at).desc())
            )
            return list(session.exec(statement).all())

    def delete_association(
        self,
        tenant_id: str,
        asset_id: str,
        entity_id: str,
        entity_type: AssociationEntityType,
    ) -> None:
        with self._session() as session:
            association = session.get(AssetAssociation, (tenant_id, asset_id, entity_id, entity_type))
            if association is None:
                raise NotFoundError("asset association not found")
            session.delete(association)
            session.commit()


class AssetHistoryService:
    """Append-only change log per asset."""

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def create_entry(
        self,
        tenant_id: str,
        asset_id: str,
        changed_by: str,
        payload: AssetHistoryCreate,
    ) -> AssetHistory:
        with self._session() as session:
            ensure_scoped_asset(session, tenant_id, asset_id)
            entry = record_history(session, tenant_id, asset_id, changed_by, payload.change_type, payload.changes)
            session.commit()
            session.refresh(entry)
            return entry

    def list_by_asset(self, tenant_id: str, asset_id: str) -> list[AssetHistory]:
        with self._session() as session:
            statement = (
                select(AssetHistory)
                .where(AssetHistory.tenant == tenant_id)
                .where(AssetHistory.asset_id == asset_id)
                .order_by(col(AssetHistory.changed_at).desc())
            )
            return list(session.exec(statement).all())


class AssetRelationshipService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _creates_cycle(self, session: Session, tenant_id: str, parent_asset_id: str, child_asset_id: str) -> bool:
        # A cycle exists if the parent is already reachable from the child.
        edges = session.exec(
            select(AssetRelationship.parent_asset_id, AssetRelationship.child_asset_id).where(
                AssetRelationship.tenant == tenant_id
            )
        ).all()
        children_of: dict[str, list[str]] = {}
        for parent, child in edges:
            children_of.setdefault(parent, []).append(child)
        queue = deque([child_asset_id])
        visited: set[str] = set()
        while queue:
            current = queue.popleft()
            if current == parent_asset_id:
                return True
            if current in visited:
                continue
            visited.add(current)
            queue.extend(children_of.get(current, []))
        return False

    def create_relationship(
        self,
        tenant_id: str,
        parent_asset_id: str,
        payload: AssetRelationshipCreate,
    ) -> AssetRelationship:
        if parent_asset_id == payload.child_asset_id:
            raise ValidationError("An asset cannot be related to itself")
        with self._session() as session:
            ensure_scoped_asset(session, tenant_id, parent_asset_id)
            ensure_scoped_asset(session, tenant_id, payload.child_asset_id)
            if self._creates_cycle(session, tenant_id, parent_asset_id, payload.child_asset_id):
                raise ValidationError("This relationship would create a circular dependency")
            relationship = AssetRelationship(
                tenant=tenant_id,
                parent_asset_id=parent_asset_id,
                child_asset_id=payload.child_asset_id,
                relationship_type=payload.relationship_type,
            )
            session.add(relationship)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("relationship already exists") from exc
            session.refresh(relationship)
            return relationship

    def list_for_asset(self, tenant_id: str, asset_id: str) -> dict[str, list[dict[str, Any]]]:
        with self._session() as session:
            ensure_scoped_asset(session, tenant_id, asset_id)
            return list_relationships(session, tenant_id, asset_id)

    def delete_relationship(self, tenant_id: str, parent_asset_id: str, child_asset_id: str) -> None:
        with self._session() as session:
            relationship = session.get(AssetRelationship, (tenant_id, parent_asset_id, child_asset_id))
            if relationship is None:
                raise NotFoundError("relationship not found")
            session.delete(relationship)
            session.commit()
