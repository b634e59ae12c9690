"""Risk & confirmation evaluation for action plans.

Pure and deterministic: the same (intent, entities, actions, duplicate
candidates) always yields the same assessment. Nothing here touches the data
store; duplicate candidates are looked up beforehand by the duplicate detector.

Rules are evaluated independently and flags are additive:
- duplicate_client: near-duplicate clients exist for a create/update-client intent
- unknown_stage: a pipeline stage outside PIPELINE_STAGES is requested
- missing_date: a schedule/reminder intent has no parseable date
- send_email_risk: some step sends email through groupware
- delete_risk: the intent deletes a client or schedule
- high_value_change: an update step writes a business-critical field
"""

from __future__ import annotations

import string
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from salesdesk.actions.constants import (
    ALWAYS_CONFIRM_INTENTS,
    CLIENT_WRITE_INTENTS,
    CONFIRMATION_TEMPLATES,
    DATE_KEYS,
    DATED_INTENTS,
    DEFAULT_START_TIME,
    DELETE_INTENTS,
    HIGH_VALUE_FIELDS,
    PIPELINE_STAGES,
    REQUIRED_FIELDS,
    RISK_FLAGS,
    STAGE_KEYS,
    TEMPLATE_ALIASES,
)

if TYPE_CHECKING:
    from salesdesk.actions.types import ActionStep, DuplicateCandidate

_TEMPLATE_DEFAULTS = {"start_time": DEFAULT_START_TIME}
_MISSING_PLACEHOLDER = "?"


@dataclass(frozen=True)
class RiskAssessment:
    """Derived safety fields of a plan."""

    risk_flags: list[str] = field(default_factory=list)
    needs_confirmation: bool = False
    confirmation_message: str = ""
    missing_fields: list[str] = field(default_factory=list)


def is_present(value: Any) -> bool:
    """A field counts as present when it is a non-blank string or any other non-None value."""
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def parse_date_value(value: Any) -> date | None:
    """Parse an ISO date or datetime value. Returns None when unparseable."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def find_missing_fields(intent: str, entities: Mapping[str, Any]) -> list[str]:
    """List required-by-intent fields absent from entities.

    Alternatives are written "a|b" and reported in that form when none of them is present.
    """
    missing: list[str] = []
    for required in REQUIRED_FIELDS.get(intent, ()):
        alternatives = required.split("|")
        if not any(is_present(entities.get(name)) for name in alternatives):
            missing.append(required)
    return missing


def _stage_values(entities: Mapping[str, Any], actions: Sequence[ActionStep]) -> Iterable[Any]:
    for key in STAGE_KEYS:
        if key in entities and entities[key] is not None:
            yield entities[key]
    for step in actions:
        value = step.values.get("pipeline_stage")
        if value is not None:
            yield value


def has_unknown_stage(intent: str, entities: Mapping[str, Any], actions: Sequence[ActionStep]) -> bool:
    """True when a requested pipeline stage is not in the closed stage set.

    A move_pipeline intent with no stage at all also counts: the target is unknown.
    """
    values = list(_stage_values(entities, actions))
    if intent == "move_pipeline" and not values:
        return True
    return any(not isinstance(value, str) or value not in PIPELINE_STAGES for value in values)


def has_missing_date(intent: str, entities: Mapping[str, Any]) -> bool:
    if intent not in DATED_INTENTS:
        return False
    supplied = [entities[key] for key in DATE_KEYS if is_present(entities.get(key))]
    if intent == "update_schedule":
        # Rescheduling is optional; only a supplied but unreadable date is a problem.
        return any(parse_date_value(value) is None for value in supplied)
    return not any(parse_date_value(value) is not None for value in supplied)


def has_high_value_change(actions: Sequence[ActionStep]) -> bool:
    for step in actions:
        if step.type != "supabase.update":
            continue
        for column, value in step.values.items():
            watched = HIGH_VALUE_FIELDS.get((step.table, column), ...)
            if watched is ...:
                continue
            if watched is None or (isinstance(value, str) and value in watched):
                return True
    return False


def _template_value(name: str, entities: Mapping[str, Any]) -> str:
    for key in TEMPLATE_ALIASES.get(name, (name,)):
        value = entities.get(key)
        if is_present(value):
            return str(value).strip()
    return _TEMPLATE_DEFAULTS.get(name, _MISSING_PLACEHOLDER)


def build_confirmation_message(intent: str, entities: Mapping[str, Any]) -> str:
    """Render the per-intent confirmation prompt shown verbatim in the confirmation UI."""
    template = CONFIRMATION_TEMPLATES.get(intent)
    if template is None:
        return f"Run {intent}. Proceed?"
    fields = {
        name: _template_value(name, entities)
        for _, name, _, _ in string.Formatter().parse(template)
        if name
    }
    return template.format(**fields)


def evaluate_plan_risk(
    intent: str,
    entities: Mapping[str, Any],
    actions: Sequence[ActionStep],
    duplicate_candidates: Sequence[DuplicateCandidate] | None = None,
) -> RiskAssessment:
    """Compute risk flags, missing fields and the confirmation gate for a plan.

    Args:
        intent: Plan intent
        entities: Extracted entity fields
        actions: Ordered plan steps
        duplicate_candidates: Near-duplicate clients found by the duplicate detector

    Returns:
        RiskAssessment with flags in declaration order
    """
    flags: set[str] = set()

    if duplicate_candidates and intent in CLIENT_WRITE_INTENTS:
        flags.add("duplicate_client")
    if has_unknown_stage(intent, entities, actions):
        flags.add("unknown_stage")
    if has_missing_date(intent, entities):
        flags.add("missing_date")
    if any(step.type == "groupware.send_email" for step in actions):
        flags.add("send_email_risk")
    if intent in DELETE_INTENTS:
        flags.add("delete_risk")
    if has_high_value_change(actions):
        flags.add("high_value_change")

    risk_flags = [flag for flag in RISK_FLAGS if flag in flags]
    missing_fields = find_missing_fields(intent, entities)
    needs_confirmation = bool(risk_flags) or bool(missing_fields) or intent in ALWAYS_CONFIRM_INTENTS

    return RiskAssessment(
        risk_flags=risk_flags,
        needs_confirmation=needs_confirmation,
        confirmation_message=build_confirmation_message(intent, entities),
        missing_fields=missing_fields,
    )
