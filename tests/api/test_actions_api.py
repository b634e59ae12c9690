"""Tests for the action plan HTTP endpoints."""

import pytest
from fastapi.testclient import TestClient

from salesdesk.actions.types import ActionPlan, ActionStep
from salesdesk.api.dependencies import get_mailer
from salesdesk.main import app


@pytest.fixture
def client(db_session, mailer):
    app.dependency_overrides[get_mailer] = lambda: mailer
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def headers(test_user_id: str) -> dict[str, str]:
    return {"X-User-Id": test_user_id}


def _create_plan(company_name: str = "Acme") -> ActionPlan:
    return ActionPlan(
        intent="create_client",
        entities={"company_name": company_name},
        actions=[ActionStep(type="supabase.insert", table="clients", values={"company_name": company_name})],
    )


def _delete_plan(client_id: str) -> ActionPlan:
    return ActionPlan(
        intent="delete_client",
        entities={"client_id": client_id},
        actions=[ActionStep(type="supabase.delete", table="clients", where={"id": client_id})],
    )


def _execute_body(plan: ActionPlan, user_id: str) -> dict:
    return {"plan": plan.model_dump(mode="json"), "userId": user_id}


def test_health(client) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_missing_user_header_is_unauthorized(client) -> None:
    response = client.get("/api/plans")

    assert response.status_code == 401


def test_execute_auto_applied_plan(client, headers, test_user_id: str) -> None:
    response = client.post("/api/chat/execute", json=_execute_body(_create_plan(), test_user_id), headers=headers)

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "success"
    assert body["step_results"][0]["status"] == "success"


def test_execute_status_codes(client, headers, make_client, test_user_id: str) -> None:
    plan = _create_plan()
    assert client.post("/api/chat/execute", json=_execute_body(plan, test_user_id), headers=headers).status_code == 200

    again = client.post("/api/chat/execute", json=_execute_body(plan, test_user_id), headers=headers)
    assert again.status_code == 409
    assert again.json()["data"]["error_code"] == "already_executed"

    risky = client.post(
        "/api/chat/execute",
        json=_execute_body(_delete_plan(make_client("Zenith")["id"]), test_user_id),
        headers=headers,
    )
    assert risky.status_code == 403
    assert risky.json()["data"]["error_code"] == "not_approved"

    invalid = ActionPlan(
        intent="create_client",
        entities={"company_name": "Acme"},
        actions=[ActionStep(type="supabase.insert", table="invoices", values={"amount": 1})],
    )
    bad = client.post("/api/chat/execute", json=_execute_body(invalid, test_user_id), headers=headers)
    assert bad.status_code == 400


def test_malformed_plan_body_is_rejected(client, headers, test_user_id: str) -> None:
    body = _execute_body(_create_plan(), test_user_id)
    body["plan"]["entities"] = ["x"]

    response = client.post("/api/chat/execute", json=body, headers=headers)

    assert response.status_code == 422
    assert response.json()["detail"][0]["loc"][-1] == "entities"


def test_execute_for_another_user_is_forbidden(client, headers, other_user_id: str) -> None:
    response = client.post("/api/chat/execute", json=_execute_body(_create_plan(), other_user_id), headers=headers)

    assert response.status_code == 403


def test_rolled_back_plan_is_ok(client, headers, test_user_id: str) -> None:
    plan = ActionPlan(
        intent="create_client",
        entities={"company_name": "Acme"},
        actions=[
            ActionStep(type="supabase.insert", table="clients", values={"company_name": "Acme"}),
            ActionStep(type="supabase.update", table="clients", where={"id": "missing"}, values={"notes": "x"}),
        ],
    )

    response = client.post("/api/chat/execute", json=_execute_body(plan, test_user_id), headers=headers)

    assert response.status_code == 200
    assert response.json()["status"] == "rolled_back"
    assert response.json()["rolled_back"] is True


def test_approval_workflow(client, headers, make_client, test_user_id: str) -> None:
    target = make_client("Zenith")
    plan = _delete_plan(target["id"])

    created = client.post("/api/plans", json=plan.model_dump(mode="json"), headers=headers)
    assert created.status_code == 201
    assert created.json()["status"] == "pending"

    listed = client.get("/api/plans", params={"status": "pending"}, headers=headers)
    assert [p["plan_id"] for p in listed.json()] == [plan.plan_id]

    approved = client.post(f"/api/plans/{plan.plan_id}/approve", json={"reason": "confirmed"}, headers=headers)
    assert approved.status_code == 200
    assert approved.json()["status"] == "approved"

    executed = client.post("/api/chat/execute", json=_execute_body(plan, test_user_id), headers=headers)
    assert executed.status_code == 200
    assert executed.json()["status"] == "success"

    detail = client.get(f"/api/plans/{plan.plan_id}", headers=headers)
    assert detail.json()["status"] == "executed"
    assert detail.json()["result"]["status"] == "success"

    late_reject = client.post(f"/api/plans/{plan.plan_id}/reject", headers=headers)
    assert late_reject.status_code == 409


def test_rejected_plan_cannot_execute(client, headers, make_client, test_user_id: str) -> None:
    plan = _delete_plan(make_client("Zenith")["id"])
    client.post("/api/plans", json=plan.model_dump(mode="json"), headers=headers)

    rejected = client.post(f"/api/plans/{plan.plan_id}/reject", headers=headers)
    assert rejected.json()["status"] == "rejected"

    response = client.post("/api/chat/execute", json=_execute_body(plan, test_user_id), headers=headers)
    assert response.status_code == 403


def test_modify_plan(client, headers) -> None:
    plan = ActionPlan(intent="create_schedule", entities={"title": "Kickoff"})
    client.post("/api/plans", json=plan.model_dump(mode="json"), headers=headers)

    response = client.patch(f"/api/plans/{plan.plan_id}", json={"entities": {"date": "2024-05-02"}}, headers=headers)

    assert response.status_code == 200
    assert response.json()["status"] == "modified"
    assert response.json()["needs_confirmation"] is False


def test_other_users_plan_is_not_found(client, headers, other_user_id: str) -> None:
    plan = _create_plan()
    client.post("/api/plans", json=plan.model_dump(mode="json"), headers={"X-User-Id": other_user_id})

    assert client.get(f"/api/plans/{plan.plan_id}", headers=headers).status_code == 404
    assert client.post(f"/api/plans/{plan.plan_id}/approve", headers=headers).status_code == 404
