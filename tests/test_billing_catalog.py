from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlmodel import SQLModel, create_engine

from msp import main as app_main
from msp.infra import audit, db, events


@pytest.fixture()
def catalog_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "catalog_test.db"
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


def _create_service_type(client: TestClient, token: str, name: str, *, is_standard: bool) -> str:
    response = client.post(
        "/api/billing/service-types",
        json={"name": name, "billing_method": "fixed", "is_standard": is_standard},
        headers=_auth_header(token),
    )
    assert response.status_code == 201
    return response.json()["id"]


def test_service_rates_are_stored_in_minor_units(catalog_client: TestClient) -> None:
    token = _setup_tenant(catalog_client, "catalog-rate-tenant")
    standard_type = _create_service_type(catalog_client, token, "Managed Services", is_standard=True)

    create_resp = catalog_client.post(
        "/api/billing/services",
        json={
            "service_name": "Endpoint Monitoring",
            "standard_service_type_id": standard_type,
            "billing_method": "fixed",
            "default_rate_display": "12.50",
        },
        headers=_auth_header(token),
    )
    assert create_resp.status_code == 201
    service = create_resp.json()
    assert service["default_rate"] == 1250
    assert service["default_rate_display"] == "12.50"
    assert service["service_type_id"] == standard_type
    assert service["custom_service_type_id"] is None

    update_resp = catalog_client.patch(
        f"/api/billing/services/{service['service_id']}",
        json={"default_rate": 999},
        headers=_auth_header(token),
    )
    assert update_resp.status_code == 200
    assert update_resp.json()["default_rate_display"] == "9.99"

    both_rates = catalog_client.post(
        "/api/billing/services",
        json={
            "service_name": "Confused",
            "standard_service_type_id": standard_type,
            "billing_method": "fixed",
            "default_rate": 100,
            "default_rate_display": "1.00",
        },
        headers=_auth_header(token),
    )
    assert both_rates.status_code == 400

    negative = catalog_client.post(
        "/api/billing/services",
        json={
            "service_name": "Refund",
            "standard_service_type_id": standard_type,
            "billing_method": "fixed",
            "default_rate": -1,
        },
        headers=_auth_header(token),
    )
    assert negative.status_code == 400


def test_service_type_reference_is_exclusive(catalog_client: TestClient) -> None:
    token = _setup_tenant(catalog_client, "catalog-type-tenant")
    standard_type = _create_service_type(catalog_client, token, "Standard Support", is_standard=True)
    custom_type = _create_service_type(catalog_client, token, "Custom Project", is_standard=False)

    both = catalog_client.post(
        "/api/billing/services",
        json={
            "service_name": "Ambiguous",
            "standard_service_type_id": standard_type,
            "custom_service_type_id": custom_type,
            "billing_method": "fixed",
        },
        headers=_auth_header(token),
    )
    assert both.status_code == 400

    neither = catalog_client.post(
        "/api/billing/services",
        json={"service_name": "Untyped", "billing_method": "fixed"},
        headers=_auth_header(token),
    )
    assert neither.status_code == 400

    wrong_kind = catalog_client.post(
        "/api/billing/services",
        json={"service_name": "Misfiled", "standard_service_type_id": custom_type, "billing_method": "fixed"},
        headers=_auth_header(token),
    )
    assert wrong_kind.status_code == 400

    create_resp = catalog_client.post(
        "/api/billing/services",
        json={"service_name": "Migration", "custom_service_type_id": custom_type, "billing_method": "fixed"},
        headers=_auth_header(token),
    )
    assert create_resp.status_code == 201
    service_id = create_resp.json()["service_id"]

    switch = catalog_client.patch(
        f"/api/billing/services/{service_id}",
        json={"standard_service_type_id": standard_type},
        headers=_auth_header(token),
    )
    assert switch.status_code == 200
    assert switch.json()["standard_service_type_id"] == standard_type
    assert switch.json()["custom_service_type_id"] is None

    in_use = catalog_client.delete(f"/api/billing/service-types/{standard_type}", headers=_auth_header(token))
    assert in_use.status_code == 409
    free = catalog_client.delete(f"/api/billing/service-types/{custom_type}", headers=_auth_header(token))
    assert free.status_code == 204

    types = catalog_client.get("/api/billing/service-types", headers=_auth_header(token))
    assert [item["name"] for item in types.json()] == ["Standard Support"]


def test_per_unit_services_need_unit_of_measure(catalog_client: TestClient) -> None:
    token = _setup_tenant(catalog_client, "catalog-unit-tenant")
    standard_type = _create_service_type(catalog_client, token, "Cloud", is_standard=True)

    missing_unit = catalog_client.post(
        "/api/billing/services",
        json={"service_name": "Backup Storage", "standard_service_type_id": standard_type, "billing_method": "per_unit"},
        headers=_auth_header(token),
    )
    assert missing_unit.status_code == 400

    create_resp = catalog_client.post(
        "/api/billing/services",
        json={
            "service_name": "Backup Storage",
            "standard_service_type_id": standard_type,
            "billing_method": "per_unit",
            "unit_of_measure": "GB",
            "default_rate": 15,
        },
        headers=_auth_header(token),
    )
    assert create_resp.status_code == 201

    clear_unit = catalog_client.patch(
        f"/api/billing/services/{create_resp.json()['service_id']}",
        json={"unit_of_measure": None},
        headers=_auth_header(token),
    )
    assert clear_unit.status_code == 400

    per_unit = catalog_client.get(
        "/api/billing/services",
        params={"billing_method": "per_unit", "search": "backup"},
        headers=_auth_header(token),
    )
    assert [item["service_name"] for item in per_unit.json()] == ["Backup Storage"]


def test_category_delete_guards(catalog_client: TestClient) -> None:
    token = _setup_tenant(catalog_client, "catalog-category-tenant")
    standard_type = _create_service_type(catalog_client, token, "Security", is_standard=True)
    category_resp = catalog_client.post(
        "/api/billing/categories",
        json={"category_name": "Security", "description": "security services"},
        headers=_auth_header(token),
    )
    assert category_resp.status_code == 201
    category_id = category_resp.json()["category_id"]

    duplicate = catalog_client.post(
        "/api/billing/categories",
        json={"category_name": "Security"},
        headers=_auth_header(token),
    )
    assert duplicate.status_code == 409

    service_resp = catalog_client.post(
        "/api/billing/services",
        json={
            "service_name": "EDR",
            "standard_service_type_id": standard_type,
            "billing_method": "fixed",
            "category_id": category_id,
        },
        headers=_auth_header(token),
    )
    assert service_resp.status_code == 201
    by_category = catalog_client.get(
        "/api/billing/services",
        params={"category_id": category_id},
        headers=_auth_header(token),
    )
    assert len(by_category.json()) == 1

    used_by_service = catalog_client.delete(f"/api/billing/categories/{category_id}", headers=_auth_header(token))
    assert used_by_service.status_code == 409
    assert used_by_service.json()["detail"]["conflict"] == "in_use"

    delete_service = catalog_client.delete(
        f"/api/billing/services/{service_resp.json()['service_id']}",
        headers=_auth_header(token),
    )
    assert delete_service.status_code == 204

    company_resp = catalog_client.post("/api/companies", json={"company_name": "Cat Co"}, headers=_auth_header(token))
    plan_resp = catalog_client.post(
        "/api/billing/plans",
        json={"plan_name": "Security Plan", "plan_type": "fixed"},
        headers=_auth_header(token),
    )
    assign = catalog_client.post(
        f"/api/companies/{company_resp.json()['company_id']}/billing-plans",
        json={"plan_id": plan_resp.json()["plan_id"], "service_category": category_id},
        headers=_auth_header(token),
    )
    assert assign.status_code == 201

    used_by_plan = catalog_client.delete(f"/api/billing/categories/{category_id}", headers=_auth_header(token))
    assert used_by_plan.status_code == 409
    assert used_by_plan.json()["detail"]["message"].startswith("FOREIGN_KEY_ERROR")
