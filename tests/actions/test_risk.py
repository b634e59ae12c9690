"""Tests for risk flags and the confirmation gate."""

import pytest
from pydantic import ValidationError

from salesdesk.actions.risk import (
    build_confirmation_message,
    evaluate_plan_risk,
    find_missing_fields,
    has_missing_date,
    parse_date_value,
)
from salesdesk.actions.types import ActionPlan, ActionStep, DuplicateCandidate


def _insert(table: str, **values) -> ActionStep:
    return ActionStep(type="supabase.insert", table=table, values=values)


def test_clean_plan_is_auto_applied() -> None:
    """A plan with no flags and no missing fields needs no confirmation."""
    plan = ActionPlan(
        intent="log_activity",
        entities={"client_name": "Acme", "activity_type": "call", "description": "Intro call"},
        actions=[_insert("activity_logs", client_id="c-1", activity_type="call")],
    )

    assert plan.risk_flags == []
    assert plan.missing_fields == []
    assert plan.needs_confirmation is False


@pytest.mark.parametrize("intent", ["delete_schedule", "send_email"])
def test_always_confirm_intents(intent: str) -> None:
    plan = ActionPlan(
        intent=intent,
        entities={"title": "Demo", "to": "a@b.com", "subject": "Hi", "body": "Hello"},
    )

    assert plan.needs_confirmation is True


def test_delete_client_always_flagged() -> None:
    """delete_client carries delete_risk and needs confirmation whatever else is set."""
    plan = ActionPlan(
        intent="delete_client",
        confidence=1.0,
        entities={"client_id": "c-1"},
        actions=[ActionStep(type="supabase.delete", table="clients", where={"id": "c-1"})],
        risk_flags=[],
        needs_confirmation=False,
    )

    assert "delete_risk" in plan.risk_flags
    assert plan.needs_confirmation is True


def test_supplied_safety_fields_are_ignored() -> None:
    """Callers cannot mark a risky plan as safe."""
    plan = ActionPlan.model_validate(
        {
            "intent": "move_pipeline",
            "entities": {"client_name": "Acme", "new_stage": "won_big"},
            "needs_confirmation": False,
            "risk_flags": [],
            "missing_fields": [],
            "confirmation_message": "all good",
        }
    )

    assert plan.risk_flags == ["unknown_stage"]
    assert plan.needs_confirmation is True
    assert plan.confirmation_message != "all good"


def test_flags_are_additive_and_ordered() -> None:
    candidates = [DuplicateCandidate(id="c-9", company_name="Acme", similarity="high")]
    actions = [
        ActionStep(
            type="supabase.update",
            table="clients",
            where={"id": "c-9"},
            values={"pipeline_stage": "completed"},
        ),
        ActionStep(type="groupware.send_email", values={"to": "x@y.com", "subject": "s", "body": "b"}),
    ]

    assessment = evaluate_plan_risk("update_client", {"client_id": "c-9"}, actions, candidates)

    assert assessment.risk_flags == ["duplicate_client", "send_email_risk", "high_value_change"]
    assert assessment.needs_confirmation is True


def test_high_value_change_only_for_terminal_stage() -> None:
    to_meeting = [ActionStep(type="supabase.update", table="clients", where={"id": "1"}, values={"pipeline_stage": "meeting"})]
    to_failed = [ActionStep(type="supabase.update", table="clients", where={"id": "1"}, values={"pipeline_stage": "failed"})]
    contract = [ActionStep(type="supabase.update", table="contracts", where={"id": "1"}, values={"status": "sent"})]

    assert "high_value_change" not in evaluate_plan_risk("update_client", {"client_id": "1"}, to_meeting).risk_flags
    assert "high_value_change" in evaluate_plan_risk("update_client", {"client_id": "1"}, to_failed).risk_flags
    assert "high_value_change" in evaluate_plan_risk("update_client", {"client_id": "1"}, contract).risk_flags


def test_missing_date_for_schedule() -> None:
    assert has_missing_date("create_schedule", {"title": "Demo"}) is True
    assert has_missing_date("create_schedule", {"title": "Demo", "date": "next tuesday"}) is True
    assert has_missing_date("create_schedule", {"title": "Demo", "date": "2024-05-02"}) is False
    assert has_missing_date("update_schedule", {"title": "Demo"}) is False
    assert has_missing_date("log_activity", {}) is False


def test_parse_date_value() -> None:
    assert parse_date_value("2024-05-02").isoformat() == "2024-05-02"
    assert parse_date_value("2024-05-02T10:00:00Z").isoformat() == "2024-05-02"
    assert parse_date_value("tomorrow") is None
    assert parse_date_value(None) is None


def test_missing_fields_with_alternatives() -> None:
    assert find_missing_fields("add_contact", {"client_name": "Acme"}) == ["contact_name|name"]
    assert find_missing_fields("add_contact", {"client_id": "c-1", "name": "Kim"}) == []
    assert find_missing_fields("create_client", {"company_name": "   "}) == ["company_name"]


def test_missing_fields_force_confirmation() -> None:
    plan = ActionPlan(intent="create_client", entities={}, actions=[_insert("clients", industry="retail")])

    assert plan.missing_fields == ["company_name"]
    assert plan.risk_flags == []
    assert plan.needs_confirmation is True


def test_confirmation_message_is_stable() -> None:
    entities = {"title": "Kickoff", "date": "2024-05-02"}

    first = build_confirmation_message("create_schedule", entities)
    second = build_confirmation_message("create_schedule", dict(entities))

    assert first == second
    assert first == 'Create schedule "Kickoff" on 2024-05-02 at 10:00. Proceed?'


def test_confirmation_message_marks_missing_values() -> None:
    message = build_confirmation_message("move_pipeline", {"client_name": "Acme"})

    assert message == "Move Acme to pipeline stage ?. Proceed?"


@pytest.mark.parametrize(
    "payload",
    [
        {"intent": "create_client", "entities": ["x"]},
        {"intent": "create_client", "entities": "Acme"},
        {"intent": ["create_client"], "entities": {}},
    ],
)
def test_malformed_plan_fails_field_validation(payload: dict) -> None:
    with pytest.raises(ValidationError):
        ActionPlan.model_validate(payload)
