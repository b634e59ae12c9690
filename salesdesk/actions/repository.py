"""Repository functions for action plan lifecycle persistence.

Handles storing plans and moving them through their lifecycle:
pending -> (modified) -> approved | rejected -> executing -> executed | failed

Single responsibility: database operations only.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from salesdesk.actions.errors import AlreadyExecutedError, PlanNotFoundError, ValidationError
from salesdesk.actions.types import ActionPlan, PlanLifecycleStatus
from salesdesk.db.models import ActionPlanRecord

AWAITING_DECISION: tuple[PlanLifecycleStatus, ...] = ("pending", "modified")
IN_FLIGHT_OR_TERMINAL: tuple[PlanLifecycleStatus, ...] = ("executing", "executed", "failed")


def _load(session: Session, plan_id: str, user_id: str) -> ActionPlanRecord:
    record = get_plan_record(session, plan_id=plan_id, user_id=user_id)
    if record is None:
        raise PlanNotFoundError(f"Plan {plan_id} not found")
    return record


def get_plan_record(session: Session, *, plan_id: str, user_id: str) -> ActionPlanRecord | None:
    """Get a plan record owned by user_id, or None."""
    return session.execute(
        select(ActionPlanRecord).where(
            ActionPlanRecord.plan_id == plan_id,
            ActionPlanRecord.user_id == user_id,
        )
    ).scalar_one_or_none()


def plan_id_taken(session: Session, plan_id: str) -> bool:
    return session.execute(
        select(ActionPlanRecord.plan_id).where(ActionPlanRecord.plan_id == plan_id)
    ).scalar_one_or_none() is not None


def save_plan(
    session: Session,
    *,
    plan: ActionPlan,
    user_id: str,
    status: PlanLifecycleStatus = "pending",
    decided_by: str | None = None,
) -> ActionPlanRecord:
    """Store a newly created plan.

    Saving the same plan twice for the same user returns the existing record,
    also when a concurrent save wins the insert.

    Args:
        session: Database session
        plan: Plan as produced by the plan builder
        user_id: Acting user the plan belongs to
        status: Initial lifecycle status (pending, or approved for auto-applied plans)
        decided_by: Who approved the plan when it starts out approved

    Returns:
        Stored ActionPlanRecord

    Raises:
        PlanNotFoundError: If the plan_id is already used by another user
    """
    existing = get_plan_record(session, plan_id=plan.plan_id, user_id=user_id)
    if existing is not None:
        return existing
    if plan_id_taken(session, plan.plan_id):
        raise PlanNotFoundError(f"Plan {plan.plan_id} not found")

    now = datetime.now(timezone.utc)
    record = ActionPlanRecord(
        plan_id=plan.plan_id,
        user_id=user_id,
        intent=plan.intent,
        status=status,
        confidence=plan.confidence,
        needs_confirmation=plan.needs_confirmation,
        plan=plan.model_dump(mode="json"),
        decided_by=decided_by,
        decided_at=now if status == "approved" else None,
    )
    session.add(record)
    try:
        session.commit()
    except IntegrityError:
        # Another request stored the same plan_id first.
        session.rollback()
        existing = get_plan_record(session, plan_id=plan.plan_id, user_id=user_id)
        if existing is None:
            raise PlanNotFoundError(f"Plan {plan.plan_id} not found") from None
        logger.info("Action plan was stored concurrently", plan_id=plan.plan_id, status=existing.status)
        return existing
    logger.info("Stored action plan", plan_id=plan.plan_id, user_id=user_id, status=status)
    return record


def list_plan_records(
    session: Session,
    *,
    user_id: str,
    statuses: Iterable[str] | None = None,
) -> list[ActionPlanRecord]:
    """List a user's plans, newest first, optionally filtered by status."""
    query = select(ActionPlanRecord).where(ActionPlanRecord.user_id == user_id)
    if statuses is not None:
        query = query.where(ActionPlanRecord.status.in_(list(statuses)))
    query = query.order_by(ActionPlanRecord.created_at.desc())
    return list(session.execute(query).scalars().all())


def _ensure_awaiting_decision(record: ActionPlanRecord) -> None:
    if record.status in IN_FLIGHT_OR_TERMINAL:
        raise AlreadyExecutedError(f"Plan {record.plan_id} was already executed (status: {record.status})")
    if record.status not in AWAITING_DECISION:
        raise ValidationError(f"Plan {record.plan_id} is not awaiting a decision (status: {record.status})")


def approve_plan(session: Session, *, plan_id: str, user_id: str, reason: str | None = None) -> ActionPlanRecord:
    """Approve a pending or modified plan."""
    record = _load(session, plan_id, user_id)
    _ensure_awaiting_decision(record)
    record.status = "approved"
    record.decided_by = user_id
    record.decision_reason = reason
    record.decided_at = datetime.now(timezone.utc)
    session.commit()
    logger.info("Approved action plan", plan_id=plan_id, user_id=user_id)
    return record


def reject_plan(session: Session, *, plan_id: str, user_id: str, reason: str | None = None) -> ActionPlanRecord:
    """Reject a pending or modified plan. Rejected plans can never be executed."""
    record = _load(session, plan_id, user_id)
    _ensure_awaiting_decision(record)
    record.status = "rejected"
    record.decided_by = user_id
    record.decision_reason = reason
    record.decided_at = datetime.now(timezone.utc)
    session.commit()
    logger.info("Rejected action plan", plan_id=plan_id, user_id=user_id)
    return record


def modify_plan(session: Session, *, plan_id: str, user_id: str, entities: dict[str, Any]) -> ActionPlanRecord:
    """Apply human entity edits to a stored plan.

    The plan's safety fields are re-derived and it goes back to awaiting approval.
    """
    record = _load(session, plan_id, user_id)
    _ensure_awaiting_decision(record)
    plan = ActionPlan.model_validate(record.plan)
    modified = plan.with_entities({**plan.entities, **entities})
    record.plan = modified.model_dump(mode="json")
    record.needs_confirmation = modified.needs_confirmation
    record.status = "modified"
    session.commit()
    logger.info("Modified action plan", plan_id=plan_id, user_id=user_id, fields=sorted(entities))
    return record


def claim_for_execution(
    session: Session,
    *,
    plan_id: str,
    user_id: str,
    from_statuses: Iterable[PlanLifecycleStatus],
) -> bool:
    """Atomically move a plan to "executing".

    The status check and the status change are one conditional UPDATE, so of
    several concurrent executors of the same plan exactly one gets True.
    """
    result = session.execute(
        update(ActionPlanRecord)
        .where(
            ActionPlanRecord.plan_id == plan_id,
            ActionPlanRecord.user_id == user_id,
            ActionPlanRecord.status.in_(list(from_statuses)),
        )
        .values(status="executing")
        .execution_options(synchronize_session=False)
    )
    session.commit()
    claimed = result.rowcount == 1
    logger.debug("Execution claim", plan_id=plan_id, claimed=claimed)
    return claimed


def mark_finished(
    session: Session,
    *,
    plan_id: str,
    user_id: str,
    status: PlanLifecycleStatus,
    result: dict[str, Any],
) -> None:
    """Record the terminal status and final result of an executed plan."""
    session.execute(
        update(ActionPlanRecord)
        .where(ActionPlanRecord.plan_id == plan_id, ActionPlanRecord.user_id == user_id)
        .values(status=status, result=result, executed_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    session.commit()
    logger.info("Action plan finished", plan_id=plan_id, status=status)
