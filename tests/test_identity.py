from __future__ import annotations

from collections.abc import Generator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlmodel import SQLModel, create_engine

from msp import main as app_main
from msp.infra import audit, auth, db, events


@pytest.fixture()
def identity_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "identity_test.db"
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


def _create_tenant(client: TestClient, name: str) -> str:
    response = client.post("/api/identity/tenants", json={"name": name})
    assert response.status_code == 201
    return response.json()["id"]


def _bootstrap_admin(client: TestClient, tenant_id: str, username: str, password: str) -> None:
    response = client.post(
        "/api/identity/bootstrap-admin",
        json={"tenant_id": tenant_id, "username": username, "password": password},
    )
    assert response.status_code == 201


def _login(client: TestClient, tenant_id: str, username: str, password: str) -> str:
    response = client.post(
        "/api/identity/dev-login",
        json={"tenant_id": tenant_id, "username": username, "password": password},
    )
    assert response.status_code == 200
    return response.json()["access_token"]


def test_identity_bootstrap_and_login(identity_client: TestClient) -> None:
    tenant_id = _create_tenant(identity_client, "identity-tenant")
    _bootstrap_admin(identity_client, tenant_id, "admin", "admin-pass")

    login_resp = identity_client.post(
        "/api/identity/dev-login",
        json={"tenant_id": tenant_id, "username": "admin", "password": "admin-pass"},
    )
    assert login_resp.status_code == 200
    body = login_resp.json()
    assert body["token_type"] == "bearer"
    assert "*" in body["permissions"]
    assert "credit.write" in body["permissions"]

    tenant_resp = identity_client.get(
        f"/api/identity/tenants/{tenant_id}",
        headers=_auth_header(body["access_token"]),
    )
    assert tenant_resp.status_code == 200
    assert tenant_resp.json()["name"] == "identity-tenant"


def test_identity_rejects_bad_credentials_and_second_bootstrap(identity_client: TestClient) -> None:
    tenant_id = _create_tenant(identity_client, "identity-guard-tenant")
    _bootstrap_admin(identity_client, tenant_id, "admin", "admin-pass")

    bad_login = identity_client.post(
        "/api/identity/dev-login",
        json={"tenant_id": tenant_id, "username": "admin", "password": "wrong"},
    )
    assert bad_login.status_code == 401

    second = identity_client.post(
        "/api/identity/bootstrap-admin",
        json={"tenant_id": tenant_id, "username": "admin2", "password": "pass"},
    )
    assert second.status_code == 409
    assert second.json()["detail"]["kind"] == "conflict"

    duplicate_tenant = identity_client.post("/api/identity/tenants", json={"name": "identity-guard-tenant"})
    assert duplicate_tenant.status_code == 409


def test_identity_missing_token_and_permission(identity_client: TestClient) -> None:
    tenant_id = _create_tenant(identity_client, "identity-perm-tenant")
    _bootstrap_admin(identity_client, tenant_id, "admin", "admin-pass")
    admin_token = _login(identity_client, tenant_id, "admin", "admin-pass")

    no_token = identity_client.get("/api/companies")
    assert no_token.status_code == 401

    user_resp = identity_client.post(
        "/api/identity/users",
        json={"username": "viewer", "password": "viewer-pass"},
        headers=_auth_header(admin_token),
    )
    assert user_resp.status_code == 201
    assert user_resp.json()["tenant_id"] == tenant_id

    viewer_token = _login(identity_client, tenant_id, "viewer", "viewer-pass")
    denied = identity_client.get("/api/companies", headers=_auth_header(viewer_token))
    assert denied.status_code == 403
    assert denied.json()["detail"] == "Missing permission: company.read"

    users = identity_client.get("/api/identity/users", headers=_auth_header(admin_token))
    assert users.status_code == 200
    assert sorted(item["username"] for item in users.json()) == ["admin", "viewer"]


def test_identity_tenant_isolation(identity_client: TestClient) -> None:
    tenant_a = _create_tenant(identity_client, "identity-a")
    tenant_b = _create_tenant(identity_client, "identity-b")
    _bootstrap_admin(identity_client, tenant_a, "admin_a", "pass-a")
    _bootstrap_admin(identity_client, tenant_b, "admin_b", "pass-b")
    token_a = _login(identity_client, tenant_a, "admin_a", "pass-a")

    cross = identity_client.get(f"/api/identity/tenants/{tenant_b}", headers=_auth_header(token_a))
    assert cross.status_code == 404

    users = identity_client.get("/api/identity/users", headers=_auth_header(token_a))
    assert [item["username"] for item in users.json()] == ["admin_a"]


def test_tokens_are_bound_to_issuer_and_tenant(identity_client: TestClient) -> None:
    tenant_id = _create_tenant(identity_client, "identity-token-tenant")
    _bootstrap_admin(identity_client, tenant_id, "admin", "admin-pass")
    token = _login(identity_client, tenant_id, "admin", "admin-pass")

    claims = auth.decode_access_token(token)
    assert claims["iss"] == auth.JWT_ISSUER
    assert claims["tenant_id"] == tenant_id
    assert claims["username"] == "admin"

    issued_at = datetime.now(UTC)
    base_claims = {
        "sub": claims["sub"],
        "permissions": ["*"],
        "iat": issued_at,
        "exp": issued_at + timedelta(minutes=5),
    }
    foreign = jwt.encode(
        {**base_claims, "iss": "another-service", "tenant_id": tenant_id},
        auth.JWT_SECRET,
        algorithm=auth.JWT_ALGORITHM,
    )
    assert identity_client.get("/api/companies", headers=_auth_header(foreign)).status_code == 401

    tenantless = jwt.encode({**base_claims, "iss": auth.JWT_ISSUER}, auth.JWT_SECRET, algorithm=auth.JWT_ALGORITHM)
    assert identity_client.get("/api/companies", headers=_auth_header(tenantless)).status_code == 401

    expired = jwt.encode(
        {**base_claims, "iss": auth.JWT_ISSUER, "tenant_id": tenant_id, "exp": issued_at - timedelta(minutes=1)},
        auth.JWT_SECRET,
        algorithm=auth.JWT_ALGORITHM,
    )
    assert identity_client.get("/api/companies", headers=_auth_header(expired)).status_code == 401
