"""Rollback coordinator for partially executed plans.

Implements the compensation half of the saga: every step that reported
success is undone in strict reverse order, one attempt per step.

Flow:
1. Walk the step results backwards
2. Skip steps that did not succeed or that only read data
3. Record send_email steps as irreversible (logged, not a failure)
4. Compensate every other step through its handler
5. Record (never retry) compensation failures for manual remediation
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import asdict, dataclass, field
from typing import Literal

from loguru import logger

from salesdesk.actions.errors import CompensationError
from salesdesk.actions.handlers import StepHandler, StepOutcome
from salesdesk.actions.types import ActionStep, ActionType, StepResult

CompensationStatus = Literal["compensated", "irreversible", "failed", "skipped"]


@dataclass
class CompensationRecord:
    step_index: int
    action_type: ActionType
    table: str
    status: CompensationStatus
    error: str | None = None


@dataclass
class RollbackReport:
    """Outcome of one rollback pass, in the order compensations were attempted."""

    records: list[CompensationRecord] = field(default_factory=list)
    errors: list[CompensationError] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.errors

    def failure_summary(self) -> str:
        return "; ".join(error.message for error in self.errors)

    def to_list(self) -> list[dict]:
        return [asdict(record) for record in self.records]


class RollbackCoordinator:
    """Undo the successful steps of a halted plan."""

    def __init__(self, handlers: Mapping[ActionType, StepHandler]) -> None:
        self.handlers = handlers

    def rollback(
        self,
        step_results: Sequence[StepResult],
        steps: Sequence[ActionStep],
        outcomes: Mapping[int, StepOutcome],
        *,
        user_id: str,
        plan_id: str,
    ) -> RollbackReport:
        """Compensate successful steps in reverse order.

        Args:
            step_results: Ordered results up to and including the failing step
            steps: Plan steps, indexed like step_results
            outcomes: Applied-step outcomes (with snapshots) keyed by step index
            user_id: Acting user; compensations are scoped like the original steps
            plan_id: Plan being rolled back (for logging)

        Returns:
            RollbackReport; succeeded is False if any compensation failed
        """
        report = RollbackReport()
        logger.info("Rolling back plan", plan_id=plan_id, attempted_steps=len(step_results))

        for result in reversed(step_results):
            if result.status != "success":
                continue

            index = result.step_index
            step = steps[index]
            handler = self.handlers[step.type]

            if not handler.mutates:
                report.records.append(CompensationRecord(index, step.type, step.table, "skipped"))
                continue

            if not handler.reversible:
                logger.warning(
                    "Step has no compensation, leaving its effect in place",
                    plan_id=plan_id,
                    step_index=index,
                    action_type=step.type,
                )
                report.records.append(CompensationRecord(index, step.type, step.table, "irreversible"))
                continue

            outcome = outcomes.get(index)
            try:
                if outcome is None:
                    raise RuntimeError("no captured outcome for this step")
                handler.compensate(step, outcome, user_id=user_id)
            except Exception as e:
                error = CompensationError(
                    f"compensation of step {index} ({step.type} on {step.table}) failed: {e}",
                    step_index=index,
                )
                logger.error(
                    "Compensation failed, manual remediation required",
                    plan_id=plan_id,
                    step_index=index,
                    error=str(e),
                )
                report.errors.append(error)
                report.records.append(CompensationRecord(index, step.type, step.table, "failed", str(e)))
                continue

            logger.debug("Step compensated", plan_id=plan_id, step_index=index)
            report.records.append(CompensationRecord(index, step.type, step.table, "compensated"))

        logger.info(
            "Rollback complete",
            plan_id=plan_id,
            succeeded=report.succeeded,
            failed_compensations=len(report.errors),
        )
        return report
