from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlmodel import Session, SQLModel, create_engine, select

from msp import main as app_main
from msp.domain.models import ServerAsset
from msp.infra import audit, db, events


@pytest.fixture()
def asset_type_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "asset_type_test.db"
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(test_engine, "connect")
    def _enable_foreign_keys(dbapi_connection: object, _connection_record: object) -> None:
        cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    monkeypatch.setattr(audit, "engine", test_engine)
    monkeypatch.setattr(events, "engine", test_engine)
    client = TestClient(app_main.app)
    yield client
    client.close()


def _auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _setup_tenant(client: TestClient, name: str) -> str:
    tenant_resp = client.post("/api/identity/tenants", json={"name": name})
    assert tenant_resp.status_code == 201
    tenant_id = tenant_resp.json()["id"]
    bootstrap_resp = client.post(
        "/api/identity/bootstrap-admin",
        json={"tenant_id": tenant_id, "username": "admin", "password": "admin-pass"},
    )
    assert bootstrap_resp.status_code == 201
    login_resp = client.post(
        "/api/identity/dev-login",
        json={"tenant_id": tenant_id, "username": "admin", "password": "admin-pass"},
    )
    assert login_resp.status_code == 200
    return login_resp.json()["access_token"]


def _create_type(client: TestClient, token: str, name: str, parent_type_id: str | None = None) -> str:
    response = client.post(
        "/api/asset-types",
        json={"type_name": name, "parent_type_id": parent_type_id},
        headers=_auth_header(token),
    )
    assert response.status_code == 201
    return response.json()["type_id"]


def test_asset_type_crud(asset_type_client: TestClient) -> None:
    token = _setup_tenant(asset_type_client, "asset-type-tenant")
    hardware_id = _create_type(asset_type_client, token, "Hardware")

    create_resp = asset_type_client.post(
        "/api/asset-types",
        json={
            "type_name": "Server",
            "parent_type_id": hardware_id,
            "attributes_schema": {"rack_units": {"type": "integer"}},
        },
        headers=_auth_header(token),
    )
    assert create_resp.status_code == 201
    server_type = create_resp.json()
    assert server_type["parent_type_id"] == hardware_id
    assert server_type["attributes_schema"] == {"rack_units": {"type": "integer"}}

    listed = asset_type_client.get("/api/asset-types", headers=_auth_header(token))
    assert [item["type_name"] for item in listed.json()] == ["Hardware", "Server"]

    rename = asset_type_client.patch(
        f"/api/asset-types/{server_type['type_id']}",
        json={"type_name": "  Rack Server  "},
        headers=_auth_header(token),
    )
    assert rename.status_code == 200
    assert rename.json()["type_name"] == "Rack Server"

    duplicate = asset_type_client.post(
        "/api/asset-types",
        json={"type_name": "Hardware"},
        headers=_auth_header(token),
    )
    assert duplicate.status_code == 409

    blank = asset_type_client.post("/api/asset-types", json={"type_name": "  "}, headers=_auth_header(token))
    assert blank.status_code == 400

    delete_parent = asset_type_client.delete(f"/api/asset-types/{hardware_id}", headers=_auth_header(token))
    assert delete_parent.status_code == 409
    assert delete_parent.json()["detail"]["conflict"] == "in_use"

    delete_child = asset_type_client.delete(
        f"/api/asset-types/{server_type['type_id']}",
        headers=_auth_header(token),
    )
    assert delete_child.status_code == 204
    missing = asset_type_client.get(f"/api/asset-types/{server_type['type_id']}", headers=_auth_header(token))
    assert missing.status_code == 404


def test_asset_type_hierarchy_rejects_cycles(asset_type_client: TestClient) -> None:
    token = _setup_tenant(asset_type_client, "asset-type-cycle-tenant")
    root_id = _create_type(asset_type_client, token, "Device")
    child_id = _create_type(asset_type_client, token, "Mobile", parent_type_id=root_id)
    grandchild_id = _create_type(asset_type_client, token, "Tablet", parent_type_id=child_id)

    self_parent = asset_type_client.patch(
        f"/api/asset-types/{root_id}",
        json={"parent_type_id": root_id},
        headers=_auth_header(token),
    )
    assert self_parent.status_code == 400

    loop = asset_type_client.patch(
        f"/api/asset-types/{root_id}",
        json={"parent_type_id": grandchild_id},
        headers=_auth_header(token),
    )
    assert loop.status_code == 400
    assert loop.json()["detail"]["message"] == "asset type hierarchy cannot contain cycles"

    unknown_parent = asset_type_client.post(
        "/api/asset-types",
        json={"type_name": "Orphan", "parent_type_id": "missing-type"},
        headers=_auth_header(token),
    )
    assert unknown_parent.status_code == 404


def test_asset_type_tenant_isolation(asset_type_client: TestClient) -> None:
    token_a = _setup_tenant(asset_type_client, "asset-type-a")
    token_b = _setup_tenant(asset_type_client, "asset-type-b")
    type_id = _create_type(asset_type_client, token_a, "Printer")

    cross = asset_type_client.get(f"/api/asset-types/{type_id}", headers=_auth_header(token_b))
    assert cross.status_code == 404
    listed = asset_type_client.get("/api/asset-types", headers=_auth_header(token_b))
    assert listed.json() == []


def test_rename_that_changes_extension_table_is_blocked_while_in_use(asset_type_client: TestClient) -> None:
    token = _setup_tenant(asset_type_client, "asset-type-rename-tenant")
    server_type = _create_type(asset_type_client, token, "Server")
    company_resp = asset_type_client.post(
        "/api/companies",
        json={"company_name": "Rename Co"},
        headers=_auth_header(token),
    )
    asset_resp = asset_type_client.post(
        "/api/assets",
        json={
            "type_id": server_type,
            "company_id": company_resp.json()["company_id"],
            "asset_tag": "SRV-RN",
            "name": "file-server",
            "server": {"os_type": "Ubuntu"},
        },
        headers=_auth_header(token),
    )
    assert asset_resp.status_code == 201
    asset_id = asset_resp.json()["asset_id"]

    to_workstation = asset_type_client.patch(
        f"/api/asset-types/{server_type}",
        json={"type_name": "Workstation"},
        headers=_auth_header(token),
    )
    assert to_workstation.status_code == 409
    assert to_workstation.json()["detail"]["conflict"] == "in_use"

    to_custom = asset_type_client.patch(
        f"/api/asset-types/{server_type}",
        json={"type_name": "Rack Server"},
        headers=_auth_header(token),
    )
    assert to_custom.status_code == 409

    same_table = asset_type_client.patch(
        f"/api/asset-types/{server_type}",
        json={"type_name": "SERVER"},
        headers=_auth_header(token),
    )
    assert same_table.status_code == 200

    fetched = asset_type_client.get(f"/api/assets/{asset_id}", headers=_auth_header(token))
    assert fetched.json()["server"]["os_type"] == "Ubuntu"
    with Session(db.engine) as session:
        assert len(session.exec(select(ServerAsset)).all()) == 1

    unused = _create_type(asset_type_client, token, "Printer")
    free_rename = asset_type_client.patch(
        f"/api/asset-types/{unused}",
        json={"type_name": "Mobile Device"},
        headers=_auth_header(token),
    )
    assert free_rename.status_code == 200
