from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlmodel import Session, SQLModel, create_engine, select

from msp import main as app_main
from msp.domain.models import EventRecord
from msp.infra import audit, db, events


@pytest.fixture()
def usage_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "usage_test.db"
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


def _company(client: TestClient, token: str, name: str) -> str:
    response = client.post("/api/companies", json={"company_name": name}, headers=_auth_header(token))
    assert response.status_code == 201
    return response.json()["company_id"]


def _plan_with_service(client: TestClient, token: str, name: str, plan_type: str, service_id: str) -> str:
    plan_id = _create_plan(client, token, name, plan_type)
    response = client.post(
        f"/api/billing/plans/{plan_id}/services",
        json={"service_id": service_id},
        headers=_auth_header(token),
    )
    assert response.status_code == 201
    return plan_id


def _assign(client: TestClient, token: str, company_id: str, plan_id: str) -> str:
    response = client.post(
        f"/api/companies/{company_id}/billing-plans",
        json={"plan_id": plan_id},
        headers=_auth_header(token),
    )
    assert response.status_code == 201
    return response.json()["company_billing_plan_id"]


def _record(client: TestClient, token: str, company_id: str, service_id: str, **extra: object) -> dict:
    payload = {
        "company_id": company_id,
        "service_id": service_id,
        "quantity": 2.5,
        "usage_date": "2026-10-01T12:00:00Z",
        **extra,
    }
    response = client.post("/api/usage", json=payload, headers=_auth_header(token))
    assert response.status_code == 201
    return response.json()


def test_usage_assigned_to_single_eligible_plan(usage_client: TestClient) -> None:
    token = _setup_tenant(usage_client, "usage-single-tenant")
    company_id = _company(usage_client, token, "Usage Co")
    service_id = _create_service(usage_client, token, "Remote Labor", billing_method="per_unit")
    plan_id = _plan_with_service(usage_client, token, "Labor Hours", "time-based", service_id)
    cbp_id = _assign(usage_client, token, company_id, plan_id)

    usage = _record(usage_client, token, company_id, service_id, comments="server patching")
    assert usage["billing_plan_id"] == cbp_id
    assert usage["is_billable"] is True
    assert usage["company_name"] == "Usage Co"
    assert usage["service_name"] == "Remote Labor"
    assert usage["quantity"] == 2.5

    fetched = usage_client.get(f"/api/usage/{usage['usage_id']}", headers=_auth_header(token))
    assert fetched.json()["comments"] == "server patching"

    with Session(db.engine) as session:
        recorded = session.exec(select(EventRecord).where(EventRecord.event_type == "usage.recorded")).all()
    assert len(recorded) == 1
    assert recorded[0].payload["billing_plan_id"] == cbp_id

    delete_resp = usage_client.delete(f"/api/usage/{usage['usage_id']}", headers=_auth_header(token))
    assert delete_resp.status_code == 204
    missing = usage_client.get(f"/api/usage/{usage['usage_id']}", headers=_auth_header(token))
    assert missing.status_code == 404


def test_usage_validation(usage_client: TestClient) -> None:
    token = _setup_tenant(usage_client, "usage-validation-tenant")
    company_id = _company(usage_client, token, "Strict Co")
    service_id = _create_service(usage_client, token, "Cloud Storage", billing_method="per_unit")

    for quantity in (0, -1):
        response = usage_client.post(
            "/api/usage",
            json={
                "company_id": company_id,
                "service_id": service_id,
                "quantity": quantity,
                "usage_date": "2026-10-01T12:00:00Z",
            },
            headers=_auth_header(token),
        )
        assert response.status_code == 400

    unknown_company = usage_client.post(
        "/api/usage",
        json={
            "company_id": "missing",
            "service_id": service_id,
            "quantity": 1,
            "usage_date": "2026-10-01T12:00:00Z",
        },
        headers=_auth_header(token),
    )
    assert unknown_company.status_code == 404

    unbillable = _record(usage_client, token, company_id, service_id)
    assert unbillable["billing_plan_id"] is None
    assert unbillable["is_billable"] is False


def test_bucket_plan_preferred_when_several_plans_match(usage_client: TestClient) -> None:
    token = _setup_tenant(usage_client, "usage-bucket-tenant")
    company_id = _company(usage_client, token, "Bucket Co")
    service_id = _create_service(usage_client, token, "Helpdesk Hours", billing_method="per_unit")
    hourly_plan = _plan_with_service(usage_client, token, "Overage Hours", "time-based", service_id)
    bucket_plan = _plan_with_service(usage_client, token, "Prepaid Hours", "bucket", service_id)
    _assign(usage_client, token, company_id, hourly_plan)
    bucket_cbp = _assign(usage_client, token, company_id, bucket_plan)

    usage = _record(usage_client, token, company_id, service_id)
    assert usage["billing_plan_id"] == bucket_cbp


def test_ambiguous_usage_requires_explicit_plan(usage_client: TestClient) -> None:
    token = _setup_tenant(usage_client, "usage-ambiguous-tenant")
    company_id = _company(usage_client, token, "Ambiguous Co")
    other_company = _company(usage_client, token, "Other Co")
    service_id = _create_service(usage_client, token, "Project Labor", billing_method="per_unit")
    first_plan = _plan_with_service(usage_client, token, "Project A", "time-based", service_id)
    second_plan = _plan_with_service(usage_client, token, "Project B", "time-based", service_id)
    first_cbp = _assign(usage_client, token, company_id, first_plan)
    second_cbp = _assign(usage_client, token, company_id, second_plan)
    foreign_cbp = _assign(usage_client, token, other_company, first_plan)

    usage = _record(usage_client, token, company_id, service_id)
    assert usage["billing_plan_id"] is None

    unassigned = usage_client.get(
        "/api/usage",
        params={"company_id": company_id, "unassigned_only": True},
        headers=_auth_header(token),
    )
    assert [item["usage_id"] for item in unassigned.json()] == [usage["usage_id"]]

    foreign = usage_client.patch(
        f"/api/usage/{usage['usage_id']}",
        json={"billing_plan_id": foreign_cbp},
        headers=_auth_header(token),
    )
    assert foreign.status_code == 400
    assert foreign.json()["detail"]["message"] == "billing plan is not eligible for this company and service"

    chosen = usage_client.patch(
        f"/api/usage/{usage['usage_id']}",
        json={"billing_plan_id": second_cbp},
        headers=_auth_header(token),
    )
    assert chosen.status_code == 200
    assert chosen.json()["billing_plan_id"] == second_cbp

    unrelated_edit = usage_client.patch(
        f"/api/usage/{usage['usage_id']}",
        json={"comments": "reviewed"},
        headers=_auth_header(token),
    )
    assert unrelated_edit.json()["billing_plan_id"] == second_cbp

    explicit_create = _record(usage_client, token, company_id, service_id, billing_plan_id=first_cbp)
    assert explicit_create["billing_plan_id"] == first_cbp

    unassigned = usage_client.get(
        "/api/usage",
        params={"company_id": company_id, "unassigned_only": True},
        headers=_auth_header(token),
    )
    assert unassigned.json() == []


def test_stale_plan_replaced_on_update(usage_client: TestClient) -> None:
    token = _setup_tenant(usage_client, "usage-stale-tenant")
    company_id = _company(usage_client, token, "Stale Co")
    service_id = _create_service(usage_client, token, "Network Labor", billing_method="per_unit")
    first_plan = _plan_with_service(usage_client, token, "Old Rates", "time-based", service_id)
    second_plan = _plan_with_service(usage_client, token, "New Rates", "time-based", service_id)
    first_cbp = _assign(usage_client, token, company_id, first_plan)

    usage = _record(usage_client, token, company_id, service_id)
    assert usage["billing_plan_id"] == first_cbp

    deactivate = usage_client.patch(
        f"/api/companies/{company_id}/billing-plans/{first_cbp}",
        json={"is_active": False},
        headers=_auth_header(token),
    )
    assert deactivate.status_code == 200
    second_cbp = _assign(usage_client, token, company_id, second_plan)

    updated = usage_client.patch(
        f"/api/usage/{usage['usage_id']}",
        json={"quantity": 4},
        headers=_auth_header(token),
    )
    assert updated.status_code == 200
    assert updated.json()["quantity"] == 4
    assert updated.json()["billing_plan_id"] == second_cbp


def test_usage_selection_follows_assignment_changes(usage_client: TestClient) -> None:
    token = _setup_tenant(usage_client, "usage-reselect-tenant")
    company_id = _company(usage_client, token, "Reselect Co")
    service_id = _create_service(usage_client, token, "Desk Hours", billing_method="per_unit")
    hourly_plan = _plan_with_service(usage_client, token, "Hourly Desk", "time-based", service_id)
    bucket_plan = _plan_with_service(usage_client, token, "Desk Bucket", "bucket", service_id)
    hourly_cbp = _assign(usage_client, token, company_id, hourly_plan)
    bucket_cbp = _assign(usage_client, token, company_id, bucket_plan)

    usage = _record(usage_client, token, company_id, service_id)
    assert usage["billing_plan_id"] == bucket_cbp

    future_end = usage_client.patch(
        f"/api/companies/{company_id}/billing-plans/{bucket_cbp}",
        json={"end_date": "2099-01-01T00:00:00Z"},
        headers=_auth_header(token),
    )
    assert future_end.status_code == 200
    kept = usage_client.get(f"/api/usage/{usage['usage_id']}", headers=_auth_header(token))
    assert kept.json()["billing_plan_id"] == bucket_cbp

    deactivate = usage_client.patch(
        f"/api/companies/{company_id}/billing-plans/{bucket_cbp}",
        json={"is_active": False},
        headers=_auth_header(token),
    )
    assert deactivate.status_code == 200
    moved = usage_client.get(f"/api/usage/{usage['usage_id']}", headers=_auth_header(token))
    assert moved.json()["billing_plan_id"] == hourly_cbp

    drop_service = usage_client.delete(
        f"/api/billing/plans/{hourly_plan}/services/{service_id}",
        headers=_auth_header(token),
    )
    assert drop_service.status_code == 204
    cleared = usage_client.get(f"/api/usage/{usage['usage_id']}", headers=_auth_header(token))
    assert cleared.json()["billing_plan_id"] is None
    assert cleared.json()["is_billable"] is False


def test_removing_assignment_clears_usage_selection(usage_client: TestClient) -> None:
    token = _setup_tenant(usage_client, "usage-remove-tenant")
    company_id = _company(usage_client, token, "Removal Co")
    service_id = _create_service(usage_client, token, "Patch Labor", billing_method="per_unit")
    plan_id = _plan_with_service(usage_client, token, "Patch Hours", "time-based", service_id)
    cbp_id = _assign(usage_client, token, company_id, plan_id)
    usage = _record(usage_client, token, company_id, service_id)
    assert usage["billing_plan_id"] == cbp_id

    removed = usage_client.delete(
        f"/api/companies/{company_id}/billing-plans/{cbp_id}",
        headers=_auth_header(token),
    )
    assert removed.status_code == 204

    fetched = usage_client.get(f"/api/usage/{usage['usage_id']}", headers=_auth_header(token))
    assert fetched.json()["billing_plan_id"] is None
    assert fetched.json()["is_billable"] is False
    unassigned = usage_client.get(
        "/api/usage",
        params={"unassigned_only": True},
        headers=_auth_header(token),
    )
    assert [item["usage_id"] for item in unassigned.json()] == [usage["usage_id"]]


def test_usage_list_filters(usage_client: TestClient) -> None:
    token = _setup_tenant(usage_client, "usage-filter-tenant")
    company_id = _company(usage_client, token, "Filter Co")
    service_id = _create_service(usage_client, token, "Backup GB", billing_method="per_unit")
    other_service = _create_service(usage_client, token, "Email GB", billing_method="per_unit")
    september = _record(usage_client, token, company_id, service_id, usage_date="2026-09-15T08:00:00Z")
    october = _record(usage_client, token, company_id, service_id, usage_date="2026-10-05T08:00:00Z")
    _record(usage_client, token, company_id, other_service, usage_date="2026-10-06T08:00:00Z")

    by_service = usage_client.get(
        "/api/usage",
        params={"service_id": service_id},
        headers=_auth_header(token),
    )
    assert [item["usage_id"] for item in by_service.json()] == [october["usage_id"], september["usage_id"]]

    windowed = usage_client.get(
        "/api/usage",
        params={"service_id": service_id, "start_date": "2026-10-01T00:00:00Z", "end_date": "2026-10-31T23:59:59Z"},
        headers=_auth_header(token),
    )
    assert [item["usage_id"] for item in windowed.json()] == [october["usage_id"]]

    token_b = _setup_tenant(usage_client, "usage-filter-other")
    assert usage_client.get("/api/usage", headers=_auth_header(token_b)).json() == []
