"""Action plan data contracts.

An ActionPlan is an immutable, ordered proposal of data mutations produced by
the upstream intent interpreter. Its safety fields (risk_flags,
needs_confirmation, confirmation_message, missing_fields) are derived: they
are recomputed from intent, entities, actions and duplicate candidates every
time a plan is built or parsed, so a caller can never hand in a plan that
claims to be safe.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from salesdesk.actions.risk import evaluate_plan_risk

ActionIntent = Literal[
    "create_client",
    "update_client",
    "delete_client",
    "add_contact",
    "log_activity",
    "move_pipeline",
    "create_schedule",
    "update_schedule",
    "delete_schedule",
    "create_reminder",
    "draft_email",
    "send_email",
    "create_proposal",
    "attach_document",
]

ActionType = Literal[
    "supabase.insert",
    "supabase.update",
    "supabase.delete",
    "supabase.select",
    "groupware.send_email",
]

RiskFlag = Literal[
    "duplicate_client",
    "unknown_stage",
    "missing_date",
    "send_email_risk",
    "delete_risk",
    "high_value_change",
]

Similarity = Literal["high", "medium", "low"]

StepStatus = Literal["success", "error", "skipped"]

PlanResultStatus = Literal["success", "error", "rolled_back"]

PlanLifecycleStatus = Literal["pending", "modified", "approved", "rejected", "executing", "executed", "failed"]

_DERIVED_FIELDS = ("risk_flags", "needs_confirmation", "confirmation_message", "missing_fields")


class ActionStep(BaseModel):
    """One atomic operation within a plan.

    Attributes:
        type: Data-store operation or groupware send
        table: Target entity collection (ignored for groupware.send_email)
        where: Column equalities selecting rows; select may also match "<column>__ilike" by containment
        values: Fields to write (for send_email: to, subject, body)
        notes: Free-form explanation from the interpreter
        result_key: Name under which this step's output is available to later steps
    """

    model_config = ConfigDict(frozen=True)

    type: ActionType
    table: str = ""
    where: dict[str, Any] = Field(default_factory=dict)
    values: dict[str, Any] = Field(default_factory=dict)
    notes: str | None = None
    result_key: str | None = None


class DuplicateCandidate(BaseModel):
    """An existing client whose name is close to the proposed one."""

    model_config = ConfigDict(frozen=True)

    id: str
    company_name: str
    brand_name: str | None = None
    similarity: Similarity


class ActionPlan(BaseModel):
    """Ordered, risk-annotated proposal for a sequence of data mutations."""

    model_config = ConfigDict(frozen=True)

    plan_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    intent: ActionIntent
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    entities: dict[str, Any] = Field(default_factory=dict)
    actions: list[ActionStep] = Field(default_factory=list)
    needs_confirmation: bool = True
    confirmation_message: str = ""
    missing_fields: list[str] = Field(default_factory=list)
    risk_flags: list[RiskFlag] = Field(default_factory=list)
    duplicate_candidates: list[DuplicateCandidate] | None = None

    @model_validator(mode="before")
    @classmethod
    def derive_safety_fields(cls, data: Any) -> Any:
        """Recompute the derived safety fields, ignoring any supplied values."""
        if not isinstance(data, dict) or not isinstance(data.get("intent"), str):
            return data
        # Left to field validation to report.
        if not isinstance(data.get("entities") or {}, Mapping):
            return data

        actions = [ActionStep.model_validate(step) for step in data.get("actions") or []]
        candidates = [DuplicateCandidate.model_validate(c) for c in data.get("duplicate_candidates") or []]
        assessment = evaluate_plan_risk(
            data["intent"],
            data.get("entities") or {},
            actions,
            candidates,
        )

        derived = {key: value for key, value in data.items() if key not in _DERIVED_FIELDS}
        derived["actions"] = actions
        derived["risk_flags"] = assessment.risk_flags
        derived["needs_confirmation"] = assessment.needs_confirmation
        derived["confirmation_message"] = assessment.confirmation_message
        derived["missing_fields"] = assessment.missing_fields
        return derived

    def revise(self, **changes: Any) -> ActionPlan:
        """Return a copy with the given source fields replaced and safety fields re-derived.

        Use this instead of model_copy(update=...), which would skip the derivation.
        """
        return ActionPlan.model_validate({**self._raw(), **changes})

    def with_entities(self, entities: dict[str, Any]) -> ActionPlan:
        return self.revise(entities=entities)

    def with_duplicates(self, candidates: list[DuplicateCandidate] | None) -> ActionPlan:
        return self.revise(duplicate_candidates=candidates)

    def _raw(self) -> dict[str, Any]:
        return {
            "plan_id": self.plan_id,
            "intent": self.intent,
            "confidence": self.confidence,
            "entities": dict(self.entities),
            "actions": list(self.actions),
            "duplicate_candidates": list(self.duplicate_candidates) if self.duplicate_candidates is not None else None,
        }


class StepResult(BaseModel):
    """Outcome of one executed (or skipped) step."""

    step_index: int
    action_type: ActionType
    table: str
    status: StepStatus
    data: dict[str, Any] | None = None
    error: str | None = None


class ActionPlanResult(BaseModel):
    """Outcome of a whole plan, returned to the chat UI."""

    plan_id: str
    status: PlanResultStatus
    message: str
    rolled_back: bool = False
    failed_step: int | None = None
    data: dict[str, Any] | None = None
    step_results: list[StepResult] = Field(default_factory=list)


class ExecuteRequest(BaseModel):
    """Caller-facing execution request.

    modifications holds human edits made in the confirmation UI:
    - integer-like keys ("0", 1, ...) patch that step: {"values": {...}, "where": {...}}
    - any other key overrides the entity of that name and every step value with that key
    """

    model_config = ConfigDict(populate_by_name=True)

    plan: ActionPlan
    user_id: str = Field(validation_alias=AliasChoices("user_id", "userId"))
    modifications: dict[str, Any] | None = None
