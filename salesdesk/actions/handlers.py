"""Step handlers, one per step type.

Each handler knows how to validate, apply and compensate its kind of step:
- insert: compensated by deleting the created records by id
- update: snapshots matching rows first; compensated by restoring the previous values
- delete: the deleted rows are the snapshot; compensated by re-inserting them
- select: read-only, nothing to compensate
- send_email: irreversible side effect, never compensated

The executor picks a handler by the step's declared type and never branches on
step types itself.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from salesdesk.actions.constants import (
    ACTIVITY_TYPES,
    CONTRACT_STATUSES,
    FAILURE_CATEGORIES,
    KNOWN_TABLES,
    PIPELINE_STAGES,
    PROTECTED_COLUMNS,
    SCHEDULE_TYPES,
)
from salesdesk.actions.errors import DataStoreError, ValidationError
from salesdesk.actions.store import CONTAINS_SUFFIX, DataStore, Row
from salesdesk.actions.types import ActionStep, ActionType
from salesdesk.integrations.groupware.client import EmailSender

# (table, column) -> allowed values
_VOCABULARIES: dict[tuple[str, str], tuple[str, ...]] = {
    ("clients", "pipeline_stage"): PIPELINE_STAGES,
    ("clients", "failure_category"): FAILURE_CATEGORIES,
    ("activity_logs", "activity_type"): ACTIVITY_TYPES,
    ("schedules", "schedule_type"): SCHEDULE_TYPES,
    ("contracts", "status"): CONTRACT_STATUSES,
}


@dataclass
class StepOutcome:
    """What a successfully applied step produced, plus what is needed to undo it.

    Attributes:
        values: Resolved values actually written
        where: Resolved predicate actually used
        rows: Records returned by the operation
        snapshot: Records as they were before an update or delete
        receipt: Groupware delivery receipt for send_email
    """

    values: dict[str, Any] = field(default_factory=dict)
    where: dict[str, Any] = field(default_factory=dict)
    rows: list[Row] = field(default_factory=list)
    snapshot: list[Row] = field(default_factory=list)
    receipt: dict[str, Any] | None = None

    def result_data(self) -> dict[str, Any]:
        if self.receipt is not None:
            return dict(self.receipt)
        return {"rows": self.rows, "count": len(self.rows)}


class StepHandler(ABC):
    """Capability for one step type."""

    reversible = True
    mutates = True

    def validate(self, step: ActionStep, index: int) -> None:
        """Structural checks run for every step before the first step executes."""
        if step.table not in KNOWN_TABLES:
            raise ValidationError(f"Step {index}: unknown table '{step.table}'", details={"step_index": index})
        protected = sorted(PROTECTED_COLUMNS & set(step.values))
        if protected:
            raise ValidationError(
                f"Step {index}: columns {', '.join(protected)} cannot be written by a plan",
                details={"step_index": index},
            )
        for column, value in step.values.items():
            allowed = _VOCABULARIES.get((step.table, column))
            if allowed is None or value is None:
                continue
            if value not in allowed:
                raise ValidationError(
                    f"Step {index}: invalid {column} '{value}'",
                    details={"step_index": index, "allowed": list(allowed)},
                )

    @abstractmethod
    def apply(self, step: ActionStep, values: dict[str, Any], where: dict[str, Any], *, user_id: str) -> StepOutcome:
        """Run the step with references already resolved."""

    @abstractmethod
    def compensate(self, step: ActionStep, outcome: StepOutcome, *, user_id: str) -> None:
        """Undo a previously applied step. Raises on failure."""


def _reject_contains(step: ActionStep, index: int) -> None:
    """Writes only take exact predicates; containment matching is for lookups."""
    if any(column.endswith(CONTAINS_SUFFIX) for column in step.where):
        raise ValidationError(
            f"Step {index}: {step.type} cannot use a containment predicate",
            details={"step_index": index},
        )


class InsertHandler(StepHandler):
    def __init__(self, store: DataStore) -> None:
        self.store = store

    def validate(self, step: ActionStep, index: int) -> None:
        super().validate(step, index)
        if not step.values:
            raise ValidationError(f"Step {index}: insert needs values", details={"step_index": index})

    def apply(self, step, values, where, *, user_id):
        rows = self.store.insert(step.table, values, user_id=user_id)
        return StepOutcome(values=values, where=where, rows=rows)

    def compensate(self, step, outcome, *, user_id):
        for row in outcome.rows:
            deleted = self.store.delete(step.table, {"id": row["id"]}, user_id=user_id)
            if not deleted:
                logger.warning(f"Inserted {step.table} row already gone during rollback", row_id=row["id"])


class UpdateHandler(StepHandler):
    def __init__(self, store: DataStore) -> None:
        self.store = store

    def validate(self, step: ActionStep, index: int) -> None:
        super().validate(step, index)
        if not step.where:
            raise ValidationError(f"Step {index}: update needs a where predicate", details={"step_index": index})
        _reject_contains(step, index)
        if not step.values:
            raise ValidationError(f"Step {index}: update needs values", details={"step_index": index})

    def apply(self, step, values, where, *, user_id):
        snapshot = self.store.select(step.table, where, user_id=user_id)
        if not snapshot:
            raise DataStoreError(f"No {step.table} record matches {where}")
        rows = self.store.update(step.table, where, values, user_id=user_id)
        return StepOutcome(values=values, where=where, rows=rows, snapshot=snapshot)

    def compensate(self, step, outcome, *, user_id):
        restored_columns = [column for column in outcome.values if column != "id"]
        for before in outcome.snapshot:
            previous = {column: before[column] for column in restored_columns if column in before}
            if "updated_at" in before:
                previous["updated_at"] = before["updated_at"]
            self.store.update(step.table, {"id": before["id"]}, previous, user_id=user_id)


class DeleteHandler(StepHandler):
    def __init__(self, store: DataStore) -> None:
        self.store = store

    def validate(self, step: ActionStep, index: int) -> None:
        super().validate(step, index)
        if not step.where:
            raise ValidationError(f"Step {index}: delete needs a where predicate", details={"step_index": index})
        _reject_contains(step, index)

    def apply(self, step, values, where, *, user_id):
        deleted = self.store.delete(step.table, where, user_id=user_id)
        if not deleted:
            raise DataStoreError(f"No {step.table} record matches {where}")
        return StepOutcome(values=values, where=where, rows=deleted, snapshot=deleted)

    def compensate(self, step, outcome, *, user_id):
        for before in outcome.snapshot:
            self.store.insert(step.table, dict(before), user_id=user_id)


class SelectHandler(StepHandler):
    mutates = False

    def __init__(self, store: DataStore) -> None:
        self.store = store

    def apply(self, step, values, where, *, user_id):
        rows = self.store.select(step.table, where, user_id=user_id)
        return StepOutcome(values=values, where=where, rows=rows)

    def compensate(self, step, outcome, *, user_id):
        return None


class SendEmailHandler(StepHandler):
    reversible = False

    def __init__(self, mailer: EmailSender) -> None:
        self.mailer = mailer

    def validate(self, step: ActionStep, index: int) -> None:
        missing = [key for key in ("to", "subject", "body") if not step.values.get(key)]
        if missing:
            raise ValidationError(
                f"Step {index}: send_email needs {', '.join(missing)}",
                details={"step_index": index},
            )

    def apply(self, step, values, where, *, user_id):
        receipt = self.mailer.send(str(values["to"]), str(values["subject"]), str(values["body"]))
        return StepOutcome(values=values, where=where, receipt=receipt or {"to": values["to"]})

    def compensate(self, step, outcome, *, user_id):
        raise NotImplementedError("Sent email cannot be recalled")


def build_handlers(store: DataStore, mailer: EmailSender) -> dict[ActionType, StepHandler]:
    """Registry of handlers keyed by step type."""
    return {
        "supabase.insert": InsertHandler(store),
        "supabase.update": UpdateHandler(store),
        "supabase.delete": DeleteHandler(store),
        "supabase.select": SelectHandler(store),
        "groupware.send_email": SendEmailHandler(mailer),
    }
