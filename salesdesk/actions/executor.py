"""Plan executor.

Runs an approved plan's steps strictly in declared order against the data
store and the groupware mailer, capturing one StepResult per step and halting
on the first failure, after which the rollback coordinator undoes the steps
that already succeeded.

Flow:
1. Refuse plans that are executing or already finished (AlreadyExecuted)
2. Merge human modifications into entities and step values/where
3. Validate the plan as a whole (ValidationError, no step runs)
4. Check approval, auto-approving plans that need no confirmation (NotApproved)
5. Atomically claim the plan for execution
6. Run steps: resolve references, dispatch to the step's handler, record the result
7. On failure: mark later steps skipped and roll back earlier ones
8. Persist the terminal status and result

Every data-store and groupware call is bounded by the timeouts configured on
the engine and the HTTP client; a timed-out call is an ordinary failed step.
"""

from __future__ import annotations

from typing import Any

from loguru import logger
from sqlalchemy.orm import Session

from salesdesk.actions.errors import (
    AlreadyExecutedError,
    CompensationError,
    NotApprovedError,
    StepExecutionError,
    UnresolvedReferenceError,
    ValidationError,
)
from salesdesk.actions.handlers import StepHandler, StepOutcome, build_handlers
from salesdesk.actions.references import (
    captured_value,
    find_references,
    is_composite,
    reference_key,
    resolve_mapping,
)
from salesdesk.actions.repository import (
    IN_FLIGHT_OR_TERMINAL,
    claim_for_execution,
    get_plan_record,
    mark_finished,
    save_plan,
)
from salesdesk.actions.rollback import RollbackCoordinator
from salesdesk.actions.store import DataStore, SqlAlchemyDataStore
from salesdesk.actions.types import ActionPlan, ActionPlanResult, ActionStep, PlanLifecycleStatus, StepResult
from salesdesk.db.models import ActionPlanRecord
from salesdesk.integrations.groupware.client import EmailSender, GroupwareMailClient

AUTO_APPROVER = "auto"


def _step_index(key: Any) -> int | None:
    if isinstance(key, bool):
        return None
    if isinstance(key, int):
        return key
    if isinstance(key, str) and key.isdigit():
        return int(key)
    return None


def _result_keys(plan: ActionPlan) -> set[str]:
    return {step.result_key for step in plan.actions if step.result_key}


def apply_modifications(plan: ActionPlan, modifications: dict[str, Any] | None) -> ActionPlan:
    """Merge confirmation-UI edits into a plan.

    Integer-like keys patch one step's values/where. Any other key overrides the
    entity of that name and every step value already using that key. The
    returned plan has its safety fields re-derived.

    Raises:
        ValidationError: If a step patch is malformed or targets a missing step
    """
    if not modifications:
        return plan

    entity_overrides: dict[str, Any] = {}
    step_patches: dict[int, dict[str, Any]] = {}
    for key, value in modifications.items():
        index = _step_index(key)
        if index is None:
            entity_overrides[str(key)] = value
            continue
        if not 0 <= index < len(plan.actions):
            raise ValidationError(f"Modification targets step {index}, but the plan has {len(plan.actions)} steps")
        if not isinstance(value, dict) or not set(value) <= {"values", "where"}:
            raise ValidationError(f"Modification for step {index} must only contain 'values' and 'where'")
        for part in ("values", "where"):
            if not isinstance(value.get(part) or {}, dict):
                raise ValidationError(
                    f"Modification for step {index}: '{part}' must be a mapping of column to value",
                    details={"step_index": index},
                )
        step_patches[index] = value

    actions: list[ActionStep] = []
    for index, step in enumerate(plan.actions):
        values = dict(step.values)
        where = dict(step.where)
        for key, value in entity_overrides.items():
            if key in values:
                values[key] = value
        patch = step_patches.get(index, {})
        values.update(patch.get("values") or {})
        where.update(patch.get("where") or {})
        actions.append(step.model_copy(update={"values": values, "where": where}))

    return plan.revise(entities={**plan.entities, **entity_overrides}, actions=actions)


class PlanExecutor:
    """Executes action plans for one acting user at a time.

    One executor instance works on one database session. Independent plans may
    run concurrently in separate executors; one plan_id can only be claimed once.
    """

    def __init__(
        self,
        session: Session,
        store: DataStore | None = None,
        mailer: EmailSender | None = None,
    ) -> None:
        self.session = session
        self.store = store if store is not None else SqlAlchemyDataStore(session)
        self.handlers: dict[str, StepHandler] = build_handlers(
            self.store,
            mailer if mailer is not None else GroupwareMailClient(),
        )
        self.rollback_coordinator = RollbackCoordinator(self.handlers)

    def execute(
        self,
        plan: ActionPlan,
        user_id: str,
        modifications: dict[str, Any] | None = None,
    ) -> ActionPlanResult:
        """Execute a plan on behalf of user_id.

        Args:
            plan: Plan to execute. If the plan is stored, the stored (approved)
                version is executed and this argument only supplies the plan_id.
            user_id: Acting user; every data-store operation is scoped to this user
            modifications: Human edits from the confirmation UI

        Returns:
            ActionPlanResult with status success, rolled_back or error

        Raises:
            ValidationError: Malformed plan, step or modification
            NotApprovedError: The plan needs a confirmation that was not granted
            AlreadyExecutedError: The plan is executing or already finished
        """
        if not user_id or not user_id.strip():
            raise ValidationError("user_id is required")

        record = get_plan_record(self.session, plan_id=plan.plan_id, user_id=user_id)
        if record is not None and record.status in IN_FLIGHT_OR_TERMINAL:
            raise AlreadyExecutedError(f"Plan {plan.plan_id} was already executed (status: {record.status})")

        base = ActionPlan.model_validate(record.plan) if record is not None else plan
        effective = apply_modifications(base, modifications)
        self.validate(effective)

        claimable = self._authorize(effective, record, user_id)
        if not claim_for_execution(self.session, plan_id=effective.plan_id, user_id=user_id, from_statuses=claimable):
            raise AlreadyExecutedError(f"Plan {effective.plan_id} is already being executed")

        logger.info(
            "Executing action plan",
            plan_id=effective.plan_id,
            intent=effective.intent,
            user_id=user_id,
            steps=len(effective.actions),
        )
        result = self._run(effective, user_id)

        final_status: PlanLifecycleStatus = "executed" if result.status == "success" else "failed"
        mark_finished(
            self.session,
            plan_id=effective.plan_id,
            user_id=user_id,
            status=final_status,
            result=result.model_dump(mode="json"),
        )
        return result

    def validate(self, plan: ActionPlan) -> None:
        """Whole-plan checks. Nothing has run when these fail."""
        if plan.missing_fields:
            raise ValidationError(
                f"Missing required fields: {', '.join(plan.missing_fields)}",
                details={"missing_fields": plan.missing_fields},
            )
        if not plan.actions:
            raise ValidationError("Plan has no steps")

        plan_keys = _result_keys(plan)
        declared: set[str] = set()
        for index, step in enumerate(plan.actions):
            self.handlers[step.type].validate(step, index)
            for reference in find_references(step.where, plan_keys) + find_references(step.values, plan_keys):
                if is_composite(reference):
                    raise UnresolvedReferenceError(
                        f"UnresolvedReference: step {index} uses composite reference '{reference}'",
                        details={"step_index": index, "reference": reference},
                    )
                if reference_key(reference) not in declared:
                    raise UnresolvedReferenceError(
                        f"UnresolvedReference: step {index} refers to '{reference}', which no earlier step produces",
                        details={"step_index": index, "reference": reference},
                    )
            if step.result_key:
                if step.result_key in declared:
                    raise ValidationError(
                        f"Step {index}: result_key '{step.result_key}' is already used by an earlier step",
                        details={"step_index": index},
                    )
                declared.add(step.result_key)

    def _authorize(
        self,
        plan: ActionPlan,
        record: ActionPlanRecord | None,
        user_id: str,
    ) -> tuple[PlanLifecycleStatus, ...]:
        """Return the statuses the plan may be claimed from, or raise NotApproved."""
        if record is None:
            if plan.needs_confirmation:
                raise NotApprovedError(
                    f"Plan {plan.plan_id} needs confirmation: {plan.confirmation_message}",
                    details={"risk_flags": list(plan.risk_flags)},
                )
            save_plan(self.session, plan=plan, user_id=user_id, status="approved", decided_by=AUTO_APPROVER)
            return ("approved",)

        if record.status == "rejected":
            raise NotApprovedError(f"Plan {plan.plan_id} was rejected")
        if record.status == "approved":
            return ("approved",)
        if plan.needs_confirmation:
            raise NotApprovedError(
                f"Plan {plan.plan_id} is awaiting confirmation (status: {record.status})",
                details={"risk_flags": list(plan.risk_flags)},
            )
        return ("pending", "modified")

    def _run(self, plan: ActionPlan, user_id: str) -> ActionPlanResult:
        results: list[StepResult] = []
        outcomes: dict[int, StepOutcome] = {}
        captured: dict[str, Any] = {}
        plan_keys = _result_keys(plan)
        failure: StepExecutionError | None = None

        for index, step in enumerate(plan.actions):
            handler = self.handlers[step.type]
            try:
                values = resolve_mapping(step.values, captured, plan_keys)
                where = resolve_mapping(step.where, captured, plan_keys)
                outcome = handler.apply(step, values, where, user_id=user_id)
            except UnresolvedReferenceError as e:
                failure = StepExecutionError(e.message, step_index=index, details=e.details)
            except Exception as e:
                # Any collaborator failure, timeouts included, is a failed step.
                logger.error(
                    "Step failed",
                    plan_id=plan.plan_id,
                    step_index=index,
                    action_type=step.type,
                    error=str(e),
                )
                failure = StepExecutionError(str(e) or type(e).__name__, step_index=index)

            if failure is not None:
                results.append(
                    StepResult(
                        step_index=index,
                        action_type=step.type,
                        table=step.table,
                        status="error",
                        error=failure.message,
                    )
                )
                break

            outcomes[index] = outcome
            if step.result_key:
                captured[step.result_key] = captured_value(outcome.rows)
            results.append(
                StepResult(
                    step_index=index,
                    action_type=step.type,
                    table=step.table,
                    status="success",
                    data=outcome.result_data(),
                )
            )
            logger.debug("Step succeeded", plan_id=plan.plan_id, step_index=index, action_type=step.type)

        if failure is None:
            logger.info("Action plan succeeded", plan_id=plan.plan_id)
            return ActionPlanResult(
                plan_id=plan.plan_id,
                status="success",
                message=f"{plan.intent} completed ({len(results)} of {len(plan.actions)} steps).",
                rolled_back=False,
                failed_step=None,
                data={"results": captured},
                step_results=results,
            )

        return self._fail(plan, results, outcomes, failure, user_id)

    def _fail(
        self,
        plan: ActionPlan,
        results: list[StepResult],
        outcomes: dict[int, StepOutcome],
        failure: StepExecutionError,
        user_id: str,
    ) -> ActionPlanResult:
        report = self.rollback_coordinator.rollback(
            results,
            plan.actions,
            outcomes,
            user_id=user_id,
            plan_id=plan.plan_id,
        )

        step_results = list(results)
        for index in range(failure.step_index + 1, len(plan.actions)):
            step = plan.actions[index]
            step_results.append(
                StepResult(step_index=index, action_type=step.type, table=step.table, status="skipped")
            )

        original = f"Step {failure.step_index} failed: {failure.message}"
        irreversible = [r.step_index for r in report.records if r.status == "irreversible"]
        data: dict[str, Any] = {"rollback": report.to_list(), "irreversible_steps": irreversible}

        if report.succeeded:
            compensated = sum(1 for r in report.records if r.status == "compensated")
            message = f"{original}. Rolled back {compensated} completed step(s)."
            if irreversible:
                message += f" Steps {irreversible} could not be undone (email already sent)."
            data["error_code"] = StepExecutionError.code
            logger.warning("Action plan rolled back", plan_id=plan.plan_id, failed_step=failure.step_index)
            return ActionPlanResult(
                plan_id=plan.plan_id,
                status="rolled_back",
                message=message,
                rolled_back=True,
                failed_step=failure.step_index,
                data=data,
                step_results=step_results,
            )

        message = (
            f"{original}. Rollback incomplete: {report.failure_summary()}. "
            "Manual remediation required."
        )
        data["error_code"] = CompensationError.code
        logger.error("Action plan rollback incomplete", plan_id=plan.plan_id, failed_step=failure.step_index)
        return ActionPlanResult(
            plan_id=plan.plan_id,
            status="error",
            message=message,
            rolled_back=False,
            failed_step=failure.step_index,
            data=data,
            step_results=step_results,
        )
