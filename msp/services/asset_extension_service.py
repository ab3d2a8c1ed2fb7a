"""Extension tables keyed by asset type name.

Each asset owns at most one extension row, stored in the table implied by its
type name. Writes go through a native ``INSERT ... ON CONFLICT DO UPDATE`` on
``(tenant, asset_id)`` so repeated upserts always leave exactly one row.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import delete
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlmodel import Session, SQLModel, select

from msp.domain.models import (
    AssetExtensionKind,
    MobileDeviceAsset,
    NetworkDeviceAsset,
    PrinterAsset,
    ServerAsset,
    WorkstationAsset,
)
from msp.services.errors import ValidationError

logger = logging.getLogger(__name__)

EXTENSION_TABLES: dict[AssetExtensionKind, type[SQLModel]] = {
    AssetExtensionKind.WORKSTATION: WorkstationAsset,
    AssetExtensionKind.NETWORK_DEVICE: NetworkDeviceAsset,
    AssetExtensionKind.SERVER: ServerAsset,
    AssetExtensionKind.MOBILE_DEVICE: MobileDeviceAsset,
    AssetExtensionKind.PRINTER: PrinterAsset,
}

_KEY_COLUMNS = ("tenant", "asset_id")


def extension_kind_for(type_name: str | None) -> AssetExtensionKind | None:
    """Map a type name to its extension table, case-insensitively.

    Unknown and custom type names carry no extension data.
    """
    if not type_name:
        return None
    try:
        return AssetExtensionKind(type_name.strip().lower())
    except ValueError:
        return None


def _upsert_statement(session: Session, model: type[SQLModel], values: dict[str, Any], update_keys: list[str]):
    dialect_name = session.get_bind().dialect.name
    if dialect_name == "postgresql":
        stmt = postgresql_insert(model).values(**values)
    elif dialect_name == "sqlite":
        stmt = sqlite_insert(model).values(**values)
    else:
        raise RuntimeError(f"extension upsert is not supported on dialect {dialect_name!r}")
    if not update_keys:
        return stmt.on_conflict_do_nothing(index_elements=list(_KEY_COLUMNS))
    return stmt.on_conflict_do_update(
        index_elements=list(_KEY_COLUMNS),
        set_={key: getattr(stmt.excluded, key) for key in update_keys},
    )


class AssetExtensionStore:
    """Reads and writes extension rows inside the caller's session."""

    def get_extension_data(
        self,
        session: Session,
        tenant_id: str,
        asset_id: str,
        type_name: str | None,
    ) -> SQLModel | None:
        kind = extension_kind_for(type_name)
        if kind is None:
            return None
        model = EXTENSION_TABLES[kind]
        statement = (
            select(model)
            .where(model.tenant == tenant_id)  # type: ignore[attr-defined]
            .where(model.asset_id == asset_id)  # type: ignore[attr-defined]
            .execution_options(populate_existing=True)
        )
        return session.exec(statement).first()

    def upsert_extension_data(
        self,
        session: Session,
        tenant_id: str,
        asset_id: str,
        type_name: str | None,
        data: dict[str, Any] | None,
    ) -> None:
        if not data:
            return
        kind = extension_kind_for(type_name)
        if kind is None:
            return
        model = EXTENSION_TABLES[kind]
        supplied = {key: value for key, value in data.items() if key not in _KEY_COLUMNS}
        try:
            row = model.model_validate({**supplied, "tenant": tenant_id, "asset_id": asset_id})
        except PydanticValidationError as exc:
            raise ValidationError(f"invalid {kind.value} data: {exc.errors()[0]['msg']}") from exc
        values = row.model_dump()
        update_keys = [key for key in supplied if key in values]
        session.execute(_upsert_statement(session, model, values, update_keys))
        logger.debug("upserted %s extension for asset %s", kind.value, asset_id)

    def delete_extension_data(
        self,
        session: Session,
        tenant_id: str,
        asset_id: str,
        type_name: str | None,
    ) -> None:
        kind = extension_kind_for(type_name)
        if kind is None:
            return
        model = EXTENSION_TABLES[kind]
        session.execute(
            delete(model)
            .where(model.tenant == tenant_id)  # type: ignore[attr-defined]
            .where(model.asset_id == asset_id)  # type: ignore[attr-defined]
        )
