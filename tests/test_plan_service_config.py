from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlmodel import Session, SQLModel, create_engine, select

from msp import main as app_main
from msp.domain.models import PlanServiceBucketConfig, PlanServiceRateTier
from msp.infra import audit, db, events


@pytest.fixture()
def config_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "plan_config_test.db"
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


def _create_service(client: TestClient, token: str, name: str, billing_method: str) -> str:
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
        "default_rate": 9500,
    }
    if billing_method == "per_unit":
        payload["unit_of_measure"] = "hour"
    response = client.post("/api/billing/services", json=payload, headers=_auth_header(token))
    assert response.status_code == 201
    return response.json()["service_id"]


def _plan_with_service(client: TestClient, token: str, name: str, plan_type: str, service_id: str) -> str:
    plan_resp = client.post(
        "/api/billing/plans",
        json={"plan_name": name, "plan_type": plan_type},
        headers=_auth_header(token),
    )
    assert plan_resp.status_code == 201
    plan_id = plan_resp.json()["plan_id"]
    link_resp = client.post(
        f"/api/billing/plans/{plan_id}/services",
        json={"service_id": service_id},
        headers=_auth_header(token),
    )
    assert link_resp.status_code == 201
    return plan_id


def _count_rows(model: type[SQLModel]) -> int:
    with Session(db.engine) as session:
        return len(session.exec(select(model)).all())


def test_bucket_configuration_lifecycle(config_client: TestClient) -> None:
    token = _setup_tenant(config_client, "bucket-config-tenant")
    service_id = _create_service(config_client, token, "Helpdesk", "per_unit")
    plan_id = _plan_with_service(config_client, token, "20 Hour Block", "bucket", service_id)
    url = f"/api/billing/plans/{plan_id}/services/{service_id}/bucket-config"

    missing = config_client.get(url, headers=_auth_header(token))
    assert missing.status_code == 404

    no_hours = config_client.put(url, json={"total_hours": 0}, headers=_auth_header(token))
    assert no_hours.status_code == 400
    assert no_hours.json()["detail"]["message"] == "total_hours must be greater than zero"
    negative = config_client.put(url, json={"total_hours": 20, "overage_rate": -1}, headers=_auth_header(token))
    assert negative.status_code == 400

    created = config_client.put(
        url,
        json={"total_hours": 20, "overage_rate": 12500, "allow_rollover": True},
        headers=_auth_header(token),
    )
    assert created.status_code == 200
    body = created.json()
    assert body["total_hours"] == 20
    assert body["overage_rate"] == 12500
    assert body["allow_rollover"] is True
    assert body["billing_period"] == "monthly"

    replaced = config_client.put(
        url,
        json={"total_hours": 30, "billing_period": "quarterly"},
        headers=_auth_header(token),
    )
    assert replaced.status_code == 200
    assert replaced.json()["total_hours"] == 30
    assert replaced.json()["overage_rate"] == 0
    assert replaced.json()["allow_rollover"] is False
    assert replaced.json()["billing_period"] == "quarterly"
    assert _count_rows(PlanServiceBucketConfig) == 1

    fetched = config_client.get(url, headers=_auth_header(token))
    assert fetched.json()["total_hours"] == 30

    change_type = config_client.patch(
        f"/api/billing/plans/{plan_id}",
        json={"plan_type": "time-based"},
        headers=_auth_header(token),
    )
    assert change_type.status_code == 409
    assert change_type.json()["detail"]["conflict"] == "in_use"

    delete_resp = config_client.delete(url, headers=_auth_header(token))
    assert delete_resp.status_code == 204
    assert config_client.get(url, headers=_auth_header(token)).status_code == 404
    assert config_client.delete(url, headers=_auth_header(token)).status_code == 404

    change_type = config_client.patch(
        f"/api/billing/plans/{plan_id}",
        json={"plan_type": "time-based"},
        headers=_auth_header(token),
    )
    assert change_type.status_code == 200


def test_bucket_configuration_requires_bucket_plan_and_linked_service(config_client: TestClient) -> None:
    token = _setup_tenant(config_client, "bucket-guard-tenant")
    service_id = _create_service(config_client, token, "Remote Labor", "per_unit")
    other_service = _create_service(config_client, token, "Onsite Labor", "per_unit")
    hourly_plan = _plan_with_service(config_client, token, "Hourly Labor", "time-based", service_id)
    bucket_plan = _plan_with_service(config_client, token, "Labor Block", "bucket", service_id)

    not_bucket = config_client.put(
        f"/api/billing/plans/{hourly_plan}/services/{service_id}/bucket-config",
        json={"total_hours": 10},
        headers=_auth_header(token),
    )
    assert not_bucket.status_code == 400
    assert not_bucket.json()["detail"]["message"] == "bucket configuration requires a bucket plan"

    unlinked = config_client.put(
        f"/api/billing/plans/{bucket_plan}/services/{other_service}/bucket-config",
        json={"total_hours": 10},
        headers=_auth_header(token),
    )
    assert unlinked.status_code == 404

    token_b = _setup_tenant(config_client, "bucket-guard-other")
    cross = config_client.put(
        f"/api/billing/plans/{bucket_plan}/services/{service_id}/bucket-config",
        json={"total_hours": 10},
        headers=_auth_header(token_b),
    )
    assert cross.status_code == 404


def test_rate_tiers_are_validated_and_replaced(config_client: TestClient) -> None:
    token = _setup_tenant(config_client, "rate-tier-tenant")
    service_id = _create_service(config_client, token, "Cloud Backup", "per_unit")
    plan_id = _plan_with_service(config_client, token, "Metered Backup", "usage-based", service_id)
    url = f"/api/billing/plans/{plan_id}/services/{service_id}/rate-tiers"

    assert config_client.get(url, headers=_auth_header(token)).json() == []

    stored = config_client.put(
        url,
        json={
            "tiers": [
                {"min_quantity": 101, "max_quantity": None, "rate": 600},
                {"min_quantity": 1, "max_quantity": 100, "rate": 800},
            ]
        },
        headers=_auth_header(token),
    )
    assert stored.status_code == 200
    assert [(tier["min_quantity"], tier["max_quantity"], tier["rate"]) for tier in stored.json()] == [
        (1, 100, 800),
        (101, None, 600),
    ]

    invalid_sets = {
        "Tier ranges cannot overlap": [
            {"min_quantity": 1, "max_quantity": 50, "rate": 800},
            {"min_quantity": 50, "max_quantity": 100, "rate": 700},
        ],
        "Maximum quantity must be greater than minimum quantity": [
            {"min_quantity": 10, "max_quantity": 10, "rate": 800},
        ],
        "Minimum quantity must be greater than 0": [
            {"min_quantity": 0, "max_quantity": 10, "rate": 800},
        ],
        "Rate cannot be negative": [
            {"min_quantity": 1, "max_quantity": None, "rate": -5},
        ],
    }
    for message, tiers in invalid_sets.items():
        response = config_client.put(url, json={"tiers": tiers}, headers=_auth_header(token))
        assert response.status_code == 400
        assert response.json()["detail"]["message"] == message

    open_ended_first = config_client.put(
        url,
        json={
            "tiers": [
                {"min_quantity": 1, "max_quantity": None, "rate": 800},
                {"min_quantity": 500, "max_quantity": 900, "rate": 700},
            ]
        },
        headers=_auth_header(token),
    )
    assert open_ended_first.status_code == 400

    listed = config_client.get(url, headers=_auth_header(token))
    assert [tier["min_quantity"] for tier in listed.json()] == [1, 101]

    cleared = config_client.put(url, json={"tiers": []}, headers=_auth_header(token))
    assert cleared.status_code == 200
    assert cleared.json() == []
    assert _count_rows(PlanServiceRateTier) == 0


def test_rate_tiers_need_per_unit_service(config_client: TestClient) -> None:
    token = _setup_tenant(config_client, "rate-tier-fixed-tenant")
    service_id = _create_service(config_client, token, "Firewall Management", "fixed")
    plan_id = _plan_with_service(config_client, token, "Managed Security", "fixed", service_id)

    response = config_client.put(
        f"/api/billing/plans/{plan_id}/services/{service_id}/rate-tiers",
        json={"tiers": [{"min_quantity": 1, "max_quantity": None, "rate": 100}]},
        headers=_auth_header(token),
    )
    assert response.status_code == 400
    assert response.json()["detail"]["message"] == "rate tiers require a per-unit service"


def test_removing_plan_service_drops_its_configuration(config_client: TestClient) -> None:
    token = _setup_tenant(config_client, "config-cleanup-tenant")
    service_id = _create_service(config_client, token, "Project Hours", "per_unit")
    plan_id = _plan_with_service(config_client, token, "Project Block", "bucket", service_id)
    base = f"/api/billing/plans/{plan_id}/services/{service_id}"

    bucket = config_client.put(f"{base}/bucket-config", json={"total_hours": 40}, headers=_auth_header(token))
    assert bucket.status_code == 200
    tiers = config_client.put(
        f"{base}/rate-tiers",
        json={"tiers": [{"min_quantity": 1, "max_quantity": None, "rate": 15000}]},
        headers=_auth_header(token),
    )
    assert tiers.status_code == 200

    removed = config_client.delete(base, headers=_auth_header(token))
    assert removed.status_code == 204
    assert _count_rows(PlanServiceBucketConfig) == 0
    assert _count_rows(PlanServiceRateTier) == 0
    assert config_client.get(f"{base}/rate-tiers", headers=_auth_header(token)).status_code == 404

    delete_plan = config_client.delete(f"/api/billing/plans/{plan_id}", headers=_auth_header(token))
    assert delete_plan.status_code == 204
