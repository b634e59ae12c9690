"""Plan builder: turns interpreted tool input into ActionPlans.

The interpreter hands over a flat dict of extracted fields per intent. Each
factory lays out the ordered steps for that intent; build_action_plan assigns
the plan_id and lets the plan schema derive the risk fields.

Client lookups are expressed as a leading select step with a result_key, and
later steps refer to the looked-up client as "$client".
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from salesdesk.actions.constants import DEFAULT_END_TIME, DEFAULT_START_TIME
from salesdesk.actions.duplicates import find_duplicate_clients
from salesdesk.actions.store import CONTAINS_SUFFIX, DataStore
from salesdesk.actions.types import ActionIntent, ActionPlan, ActionStep, DuplicateCandidate
from salesdesk.config.settings import settings

CLIENT_REF = "$client"
NEW_CLIENT_REF = "$new_client"


def _compact(mapping: dict[str, Any]) -> dict[str, Any]:
    """Drop keys whose value is None."""
    return {key: value for key, value in mapping.items() if value is not None}


def _client_lookup(client_name: Any) -> ActionStep:
    return ActionStep(
        type="supabase.select",
        table="clients",
        where={f"company_name{CONTAINS_SUFFIX}": client_name},
        result_key="client",
        notes="Look up the client whose company name contains the given name",
    )


def build_action_plan(
    *,
    intent: ActionIntent,
    entities: dict[str, Any],
    actions: list[ActionStep],
    confidence: float = 0.0,
    duplicate_candidates: list[DuplicateCandidate] | None = None,
    plan_id: str | None = None,
) -> ActionPlan:
    """Assemble a plan. Risk flags, missing fields and the confirmation gate are derived."""
    return ActionPlan(
        plan_id=plan_id or str(uuid.uuid4()),
        intent=intent,
        confidence=confidence,
        entities=_compact(entities),
        actions=actions,
        duplicate_candidates=duplicate_candidates or None,
    )


def build_create_client_plan(
    store: DataStore,
    *,
    user_id: str,
    data: dict[str, Any],
    confidence: float = 0.0,
    limit: int | None = None,
) -> ActionPlan:
    """Register a client, its primary contact and a creation note.

    Near-duplicate clients of the acting user are attached as candidates.
    """
    candidates = find_duplicate_clients(
        store,
        user_id=user_id,
        company_name=data.get("company_name"),
        brand_name=data.get("brand_name"),
        limit=limit if limit is not None else settings.duplicate_candidate_limit,
    )

    actions = [
        ActionStep(
            type="supabase.insert",
            table="clients",
            values=_compact(
                {
                    "company_name": data.get("company_name"),
                    "brand_name": data.get("brand_name"),
                    "industry": data.get("industry"),
                    "ceo_name": data.get("ceo_name"),
                    "inquiry_source": data.get("inquiry_source"),
                    "interest_product": data.get("interest_product"),
                    "notes": data.get("notes"),
                    "pipeline_stage": "inquiry",
                }
            ),
            result_key="new_client",
            notes="Register the new client",
        )
    ]
    if data.get("contact_name"):
        actions.append(
            ActionStep(
                type="supabase.insert",
                table="contacts",
                values=_compact(
                    {
                        "client_id": NEW_CLIENT_REF,
                        "name": data.get("contact_name"),
                        "phone": data.get("contact_phone"),
                        "email": data.get("contact_email"),
                        "is_primary": True,
                    }
                ),
                notes="Register the primary contact",
            )
        )
    actions.append(
        ActionStep(
            type="supabase.insert",
            table="activity_logs",
            values={"client_id": NEW_CLIENT_REF, "activity_type": "note", "description": "New client registered"},
            notes="Record the creation",
        )
    )

    return build_action_plan(
        intent="create_client",
        entities={
            key: data.get(key)
            for key in (
                "company_name",
                "brand_name",
                "industry",
                "ceo_name",
                "inquiry_source",
                "interest_product",
                "notes",
                "contact_name",
                "contact_phone",
                "contact_email",
            )
        },
        actions=actions,
        confidence=confidence,
        duplicate_candidates=candidates,
    )


def build_log_activity_plan(data: dict[str, Any], *, confidence: float = 0.0, now: str | None = None) -> ActionPlan:
    """Log an activity against a client and touch its last-contacted time."""
    contacted_at = now or datetime.now(timezone.utc).isoformat()
    client_name = data.get("client_name")
    actions = [
        _client_lookup(client_name),
        ActionStep(
            type="supabase.insert",
            table="activity_logs",
            values=_compact(
                {
                    "client_id": CLIENT_REF,
                    "activity_type": data.get("activity_type"),
                    "description": data.get("description"),
                }
            ),
            notes="Log the client activity",
        ),
        ActionStep(
            type="supabase.update",
            table="clients",
            where={"id": CLIENT_REF},
            values={"last_contacted_at": contacted_at},
            notes="Update the last contact time",
        ),
    ]
    return build_action_plan(
        intent="log_activity",
        entities={
            "client_name": client_name,
            "activity_type": data.get("activity_type"),
            "description": data.get("description"),
        },
        actions=actions,
        confidence=confidence,
    )


def build_move_pipeline_plan(data: dict[str, Any], *, confidence: float = 0.0) -> ActionPlan:
    """Move a client to another pipeline stage and record the change."""
    client_name = data.get("client_name")
    new_stage = data.get("new_stage")
    actions = [
        _client_lookup(client_name),
        ActionStep(
            type="supabase.update",
            table="clients",
            where={"id": CLIENT_REF},
            values=_compact(
                {
                    "pipeline_stage": new_stage,
                    "failure_reason": data.get("failure_reason"),
                    "failure_category": data.get("failure_category"),
                }
            ),
            notes="Change the pipeline stage",
        ),
        ActionStep(
            type="supabase.insert",
            table="activity_logs",
            values={
                "client_id": CLIENT_REF,
                "activity_type": "stage_change",
                "description": f"Pipeline stage changed: {new_stage}",
            },
            notes="Record the stage change",
        ),
    ]
    return build_action_plan(
        intent="move_pipeline",
        entities={
            "client_name": client_name,
            "new_stage": new_stage,
            "failure_reason": data.get("failure_reason"),
            "failure_category": data.get("failure_category"),
        },
        actions=actions,
        confidence=confidence,
    )


def build_create_schedule_plan(data: dict[str, Any], *, confidence: float = 0.0) -> ActionPlan:
    """Create a calendar entry, linked to a client when one is named."""
    start_time = data.get("start_time") or DEFAULT_START_TIME
    end_time = data.get("end_time") or DEFAULT_END_TIME
    schedule_type = data.get("schedule_type") or "meeting"
    day = data.get("date")
    client_name = data.get("client_name")

    actions: list[ActionStep] = []
    if client_name:
        actions.append(_client_lookup(client_name))
    actions.append(
        ActionStep(
            type="supabase.insert",
            table="schedules",
            values=_compact(
                {
                    "client_id": CLIENT_REF if client_name else None,
                    "title": data.get("title"),
                    "schedule_type": schedule_type,
                    "description": data.get("description"),
                    "start_date": f"{day}T{start_time}:00" if day else None,
                    "end_date": f"{day}T{end_time}:00" if day else None,
                    "location": data.get("location"),
                    "contact_name": data.get("contact_name"),
                    "contact_phone": data.get("contact_phone"),
                }
            ),
            notes="Create the schedule",
        )
    )
    return build_action_plan(
        intent="create_schedule",
        entities={
            "title": data.get("title"),
            "date": day,
            "start_time": start_time,
            "end_time": end_time,
            "schedule_type": schedule_type,
            "client_name": client_name,
            "location": data.get("location"),
            "contact_name": data.get("contact_name"),
            "contact_phone": data.get("contact_phone"),
            "description": data.get("description"),
        },
        actions=actions,
        confidence=confidence,
    )


def build_delete_client_plan(data: dict[str, Any], *, confidence: float = 0.0) -> ActionPlan:
    """Delete a client record. Always needs confirmation."""
    client_id = data.get("client_id")
    client_name = data.get("client_name")
    actions: list[ActionStep] = []
    if client_id:
        where: dict[str, Any] = {"id": client_id}
    else:
        actions.append(_client_lookup(client_name))
        where = {"id": CLIENT_REF}
    actions.append(ActionStep(type="supabase.delete", table="clients", where=where, notes="Delete the client"))
    return build_action_plan(
        intent="delete_client",
        entities={"client_id": client_id, "client_name": client_name},
        actions=actions,
        confidence=confidence,
    )


def build_send_email_plan(data: dict[str, Any], *, confidence: float = 0.0) -> ActionPlan:
    """Send an email through groupware, logging it on the client when one is named."""
    client_name = data.get("client_name")
    actions: list[ActionStep] = []
    if client_name:
        actions.append(_client_lookup(client_name))
    actions.append(
        ActionStep(
            type="groupware.send_email",
            values=_compact({"to": data.get("to"), "subject": data.get("subject"), "body": data.get("body")}),
            notes="Send the email",
        )
    )
    if client_name:
        actions.append(
            ActionStep(
                type="supabase.insert",
                table="activity_logs",
                values={
                    "client_id": CLIENT_REF,
                    "activity_type": "email_sent",
                    "description": f"Email sent: {data.get('subject')}",
                },
                notes="Record the sent email",
            )
        )
    return build_action_plan(
        intent="send_email",
        entities={
            "to": data.get("to"),
            "subject": data.get("subject"),
            "body": data.get("body"),
            "client_name": client_name,
        },
        actions=actions,
        confidence=confidence,
    )
