"""Tests for compensation of partially executed plans."""

from salesdesk.actions.executor import PlanExecutor
from salesdesk.actions.repository import approve_plan, get_plan_record, save_plan
from salesdesk.actions.types import ActionPlan, ActionStep


def test_update_compensation_restores_snapshot(db_session, store, mailer, make_client, test_user_id: str) -> None:
    """Every field an update step changed is back to its pre-update value."""
    client = make_client("Acme", pipeline_stage="meeting", notes="original notes", industry="retail")
    before = store.select("clients", {"id": client["id"]}, user_id=test_user_id)[0]
    plan = ActionPlan(
        intent="update_client",
        entities={"client_id": client["id"]},
        actions=[
            ActionStep(
                type="supabase.update",
                table="clients",
                where={"id": client["id"]},
                values={"pipeline_stage": "reviewing", "notes": "changed", "industry": "food"},
            ),
            ActionStep(type="supabase.update", table="clients", where={"id": "missing"}, values={"notes": "x"}),
        ],
    )

    result = PlanExecutor(db_session, store=store, mailer=mailer).execute(plan, test_user_id)

    assert result.status == "rolled_back"
    db_session.expire_all()
    after = store.select("clients", {"id": client["id"]}, user_id=test_user_id)[0]
    assert after == before


def test_delete_compensation_reinserts_rows(db_session, store, mailer, make_client, test_user_id: str) -> None:
    client = make_client("Acme", ceo_name="Park")
    contact = store.insert("contacts", {"client_id": client["id"], "name": "Kim"}, user_id=test_user_id)[0]
    plan = ActionPlan(
        intent="delete_client",
        entities={"client_id": client["id"]},
        actions=[
            ActionStep(type="supabase.delete", table="contacts", where={"client_id": client["id"]}),
            ActionStep(type="supabase.delete", table="clients", where={"id": client["id"]}),
            ActionStep(type="supabase.update", table="clients", where={"id": "missing"}, values={"notes": "x"}),
        ],
    )
    save_plan(db_session, plan=plan, user_id=test_user_id)
    approve_plan(db_session, plan_id=plan.plan_id, user_id=test_user_id)

    result = PlanExecutor(db_session, store=store, mailer=mailer).execute(plan, test_user_id)

    assert result.status == "rolled_back"
    restored = store.select("clients", {"id": client["id"]}, user_id=test_user_id)
    assert restored[0]["ceo_name"] == "Park"
    assert store.select("contacts", {"id": contact["id"]}, user_id=test_user_id)[0]["name"] == "Kim"


def test_compensation_failure_is_reported(db_session, store, counting_store, mailer, test_user_id: str) -> None:
    """A failed compensation yields status error with both failures in the message."""
    failing = counting_store(fail_on={("delete", "clients")})
    plan = ActionPlan(
        intent="create_client",
        entities={"company_name": "Orphan Inc"},
        actions=[
            ActionStep(type="supabase.insert", table="clients", values={"company_name": "Orphan Inc"}),
            ActionStep(type="supabase.update", table="clients", where={"id": "missing"}, values={"notes": "x"}),
        ],
    )

    result = PlanExecutor(db_session, store=failing, mailer=mailer).execute(plan, test_user_id)

    assert result.status == "error"
    assert result.rolled_back is False
    assert result.failed_step == 1
    assert "Step 1 failed" in result.message
    assert "compensation of step 0" in result.message
    assert "connection reset" in result.message
    assert result.data["error_code"] == "compensation_error"
    assert result.data["rollback"][0]["status"] == "failed"

    # The orphan is still there; the record says so for manual remediation.
    assert len(store.select("clients", {"company_name": "Orphan Inc"}, user_id=test_user_id)) == 1
    assert get_plan_record(db_session, plan_id=plan.plan_id, user_id=test_user_id).status == "failed"


def test_compensation_continues_after_a_failure(db_session, store, counting_store, mailer, make_client, test_user_id: str) -> None:
    client = make_client("Acme")
    failing = counting_store(fail_on={("delete", "activity_logs")})
    plan = ActionPlan(
        intent="update_client",
        entities={"client_id": client["id"]},
        actions=[
            ActionStep(type="supabase.update", table="clients", where={"id": client["id"]}, values={"notes": "new"}),
            ActionStep(
                type="supabase.insert",
                table="activity_logs",
                values={"client_id": client["id"], "activity_type": "note"},
            ),
            ActionStep(type="supabase.update", table="clients", where={"id": "missing"}, values={"notes": "x"}),
        ],
    )

    result = PlanExecutor(db_session, store=failing, mailer=mailer).execute(plan, test_user_id)

    assert result.status == "error"
    assert [entry["status"] for entry in result.data["rollback"]] == ["failed", "compensated"]
    assert store.select("clients", {"id": client["id"]}, user_id=test_user_id)[0]["notes"] is None


def test_sent_email_is_irreversible_not_a_failure(db_session, store, mailer, make_client, test_user_id: str) -> None:
    make_client("Acme")
    plan = ActionPlan(
        intent="send_email",
        entities={"to": "kim@acme.example", "subject": "Proposal", "body": "Attached."},
        actions=[
            ActionStep(
                type="groupware.send_email",
                values={"to": "kim@acme.example", "subject": "Proposal", "body": "Attached."},
            ),
            ActionStep(type="supabase.update", table="clients", where={"id": "missing"}, values={"notes": "x"}),
        ],
    )
    save_plan(db_session, plan=plan, user_id=test_user_id)
    approve_plan(db_session, plan_id=plan.plan_id, user_id=test_user_id)

    result = PlanExecutor(db_session, store=store, mailer=mailer).execute(plan, test_user_id)

    assert result.status == "rolled_back"
    assert result.rolled_back is True
    assert result.data["rollback"][0]["status"] == "irreversible"
    assert result.data["irreversible_steps"] == [0]
    assert len(mailer.sent) == 1
    assert result.step_results[0].data["message_id"] == "msg-1"


def test_groupware_failure_is_a_failed_step(db_session, store, failing_mailer, make_client, test_user_id: str) -> None:
    client = make_client("Acme")
    plan = ActionPlan(
        intent="send_email",
        entities={"to": "kim@acme.example", "subject": "Hello", "body": "Hi"},
        actions=[
            ActionStep(
                type="supabase.insert",
                table="activity_logs",
                values={"client_id": client["id"], "activity_type": "email_sent"},
            ),
            ActionStep(type="groupware.send_email", values={"to": "kim@acme.example", "subject": "Hello", "body": "Hi"}),
        ],
    )
    save_plan(db_session, plan=plan, user_id=test_user_id)
    approve_plan(db_session, plan_id=plan.plan_id, user_id=test_user_id)

    result = PlanExecutor(db_session, store=store, mailer=failing_mailer).execute(plan, test_user_id)

    assert result.status == "rolled_back"
    assert result.failed_step == 1
    assert "timed out" in result.step_results[1].error
    assert store.select("activity_logs", {"client_id": client["id"]}, user_id=test_user_id) == []
