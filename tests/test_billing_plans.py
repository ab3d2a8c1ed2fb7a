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
def plan_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "plan_test.db"
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


def _create_service(
    client: TestClient,
    token: str,
    name: str,
    *,
    billing_method: str = "fixed",
    default_rate: int = 1000,
) -> str:
    type_resp = client.post(
        "/api/billing/service-types",
        json={"name": f"{name} type", "billing_method": billing_method, "is_standard": True},
        headers=_auth_header(token),
    )
    assert type_resp.status_code == 201
    payload = {
        "service_name": name,
        "standard_service_type_id": type_resp.json()["id"],
        "billing_method": billing_method,
        "default_rate": default_rate,
    }
    if billing_method == "per_unit":
        payload["unit_of_measure"] = "hour"
    response = client.post("/api/billing/services", json=payload, headers=_auth_header(token))
    assert response.status_code == 201
    return response.json()["service_id"]


def _create_plan(client: TestClient, token: str, name: str, plan_type: str) -> str:
    response = client.post(
        "/api/billing/plans",
        json={"plan_name": name, "plan_type": plan_type},
        headers=_auth_header(token),
    )
    assert response.status_code == 201
    return response.json()["plan_id"]


def test_plan_crud_and_type_filter(plan_client: TestClient) -> None:
    token = _setup_tenant(plan_client, "plan-crud-tenant")
    fixed_plan = _create_plan(plan_client, token, "Managed Flat", "fixed")
    _create_plan(plan_client, token, "Support Hours", "bucket")

    duplicate = plan_client.post(
        "/api/billing/plans",
        json={"plan_name": "Managed Flat", "plan_type": "fixed"},
        headers=_auth_header(token),
    )
    assert duplicate.status_code == 409

    bad_type = plan_client.post(
        "/api/billing/plans",
        json={"plan_name": "Mystery", "plan_type": "subscription"},
        headers=_auth_header(token),
    )
    assert bad_type.status_code == 422

    buckets = plan_client.get("/api/billing/plans", params={"plan_type": "bucket"}, headers=_auth_header(token))
    assert [item["plan_name"] for item in buckets.json()] == ["Support Hours"]

    update = plan_client.patch(
        f"/api/billing/plans/{fixed_plan}",
        json={"description": "flat monthly fee", "billing_frequency": "quarterly"},
        headers=_auth_header(token),
    )
    assert update.status_code == 200
    assert update.json()["billing_frequency"] == "quarterly"
    assert update.json()["plan_type"] == "fixed"

    delete_resp = plan_client.delete(f"/api/billing/plans/{fixed_plan}", headers=_auth_header(token))
    assert delete_resp.status_code == 204
    missing = plan_client.get(f"/api/billing/plans/{fixed_plan}", headers=_auth_header(token))
    assert missing.status_code == 404


def test_plan_delete_guards(plan_client: TestClient) -> None:
    token = _setup_tenant(plan_client, "plan-guard-tenant")
    service_id = _create_service(plan_client, token, "Helpdesk")
    plan_id = _create_plan(plan_client, token, "Guarded", "fixed")

    add = plan_client.post(
        f"/api/billing/plans/{plan_id}/services",
        json={"service_id": service_id},
        headers=_auth_header(token),
    )
    assert add.status_code == 201

    has_services = plan_client.delete(f"/api/billing/plans/{plan_id}", headers=_auth_header(token))
    assert has_services.status_code == 409
    assert has_services.json()["detail"]["conflict"] == "has_services"

    service_in_use = plan_client.delete(f"/api/billing/services/{service_id}", headers=_auth_header(token))
    assert service_in_use.status_code == 409
    assert service_in_use.json()["detail"]["conflict"] == "in_use"

    remove = plan_client.delete(f"/api/billing/plans/{plan_id}/services/{service_id}", headers=_auth_header(token))
    assert remove.status_code == 204

    company_resp = plan_client.post("/api/companies", json={"company_name": "Guard Co"}, headers=_auth_header(token))
    assign = plan_client.post(
        f"/api/companies/{company_resp.json()['company_id']}/billing-plans",
        json={"plan_id": plan_id},
        headers=_auth_header(token),
    )
    assert assign.status_code == 201

    in_use = plan_client.delete(f"/api/billing/plans/{plan_id}", headers=_auth_header(token))
    assert in_use.status_code == 409
    assert in_use.json()["detail"]["conflict"] == "in_use_by_companies"


def test_plan_services_quantity_and_rates(plan_client: TestClient) -> None:
    token = _setup_tenant(plan_client, "plan-service-tenant")
    service_id = _create_service(plan_client, token, "Backup", default_rate=2500)
    plan_id = _create_plan(plan_client, token, "Backup Plan", "fixed")

    for quantity in (0, -2, 1.5):
        response = plan_client.post(
            f"/api/billing/plans/{plan_id}/services",
            json={"service_id": service_id, "quantity": quantity},
            headers=_auth_header(token),
        )
        assert response.status_code in {400, 422}

    negative_rate = plan_client.post(
        f"/api/billing/plans/{plan_id}/services",
        json={"service_id": service_id, "custom_rate": -5},
        headers=_auth_header(token),
    )
    assert negative_rate.status_code == 400

    add = plan_client.post(
        f"/api/billing/plans/{plan_id}/services",
        json={"service_id": service_id, "quantity": 3},
        headers=_auth_header(token),
    )
    assert add.status_code == 201
    assert add.json()["quantity"] == 3
    assert add.json()["custom_rate"] is None
    assert add.json()["effective_rate"] == 2500

    duplicate = plan_client.post(
        f"/api/billing/plans/{plan_id}/services",
        json={"service_id": service_id},
        headers=_auth_header(token),
    )
    assert duplicate.status_code == 409

    custom = plan_client.patch(
        f"/api/billing/plans/{plan_id}/services/{service_id}",
        json={"custom_rate": 1999},
        headers=_auth_header(token),
    )
    assert custom.status_code == 200
    assert custom.json()["effective_rate"] == 1999
    assert custom.json()["default_rate"] == 2500

    zero_quantity = plan_client.patch(
        f"/api/billing/plans/{plan_id}/services/{service_id}",
        json={"quantity": 0},
        headers=_auth_header(token),
    )
    assert zero_quantity.status_code == 400

    cleared = plan_client.patch(
        f"/api/billing/plans/{plan_id}/services/{service_id}",
        json={"custom_rate": None},
        headers=_auth_header(token),
    )
    assert cleared.json()["effective_rate"] == 2500

    listed = plan_client.get(f"/api/billing/plans/{plan_id}/services", headers=_auth_header(token))
    assert [item["service_name"] for item in listed.json()] == ["Backup"]
    single = plan_client.get(f"/api/billing/plans/{plan_id}/services/{service_id}", headers=_auth_header(token))
    assert single.json()["quantity"] == 3


def test_fixed_services_rejected_from_hourly_and_usage_plans(plan_client: TestClient) -> None:
    token = _setup_tenant(plan_client, "plan-compat-tenant")
    fixed_service = _create_service(plan_client, token, "Firewall Management")
    hourly_service = _create_service(plan_client, token, "Onsite Labor", billing_method="per_unit")
    hourly_plan = _create_plan(plan_client, token, "Hourly", "time-based")
    usage_plan = _create_plan(plan_client, token, "Metered", "usage-based")

    hourly = plan_client.post(
        f"/api/billing/plans/{hourly_plan}/services",
        json={"service_id": fixed_service},
        headers=_auth_header(token),
    )
    assert hourly.status_code == 400
    assert hourly.json()["detail"]["message"] == (
        "Cannot add a fixed-price service (Firewall Management) to an hourly billing plan."
    )

    metered = plan_client.post(
        f"/api/billing/plans/{usage_plan}/services",
        json={"service_id": fixed_service},
        headers=_auth_header(token),
    )
    assert metered.status_code == 400
    assert metered.json()["detail"]["message"] == (
        "Cannot add a fixed-price service (Firewall Management) to a usage-based billing plan."
    )

    per_unit = plan_client.post(
        f"/api/billing/plans/{hourly_plan}/services",
        json={"service_id": hourly_service},
        headers=_auth_header(token),
    )
    assert per_unit.status_code == 201
