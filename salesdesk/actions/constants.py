"""CRM vocabularies and fixed lookup tables used by plan evaluation and execution.

These tables are the single place where business rules are declared:
- Which pipeline stages, activity types and schedule types exist
- Which fields each intent requires
- Which field changes count as high value
- Which tables are owned directly by a user and which through a client
"""

from typing import Final

PIPELINE_STAGES: Final[tuple[str, ...]] = (
    "inquiry",
    "called",
    "email_sent",
    "meeting",
    "meeting_followup",
    "reviewing",
    "failed",
    "on_hold",
    "in_progress",
    "completed",
)

# A deal in one of these stages is closed, won or lost.
TERMINAL_STAGES: Final[frozenset[str]] = frozenset({"completed", "failed"})

ACTIVITY_TYPES: Final[tuple[str, ...]] = (
    "call",
    "email_sent",
    "email_received",
    "kakao",
    "sms",
    "meeting",
    "note",
    "stage_change",
    "proposal_sent",
    "contract_sent",
)

SCHEDULE_TYPES: Final[tuple[str, ...]] = ("meeting", "call", "demo", "contract", "internal", "other")

CONTRACT_STATUSES: Final[tuple[str, ...]] = ("pending", "sent", "signed", "rejected", "expired")

FAILURE_CATEGORIES: Final[tuple[str, ...]] = ("price", "timing", "competitor", "internal", "feature", "other")

# Keys that carry a pipeline stage, in entities or in step values.
STAGE_KEYS: Final[tuple[str, ...]] = ("new_stage", "pipeline_stage")

# Keys that carry a date for schedule/reminder intents.
DATE_KEYS: Final[tuple[str, ...]] = ("date", "start_date", "due_date")

DATED_INTENTS: Final[frozenset[str]] = frozenset({"create_schedule", "update_schedule", "create_reminder"})
DELETE_INTENTS: Final[frozenset[str]] = frozenset({"delete_client", "delete_schedule"})
CLIENT_WRITE_INTENTS: Final[frozenset[str]] = frozenset({"create_client", "update_client"})

# Intents that always go through a human, whatever the risk evaluation says.
ALWAYS_CONFIRM_INTENTS: Final[frozenset[str]] = frozenset({"delete_client", "delete_schedule", "send_email"})

# Required entity fields per intent. "a|b" is satisfied by either field.
REQUIRED_FIELDS: Final[dict[str, tuple[str, ...]]] = {
    "create_client": ("company_name",),
    "update_client": ("client_id|client_name",),
    "delete_client": ("client_id|client_name",),
    "add_contact": ("client_id|client_name", "contact_name|name"),
    "log_activity": ("client_name", "activity_type", "description"),
    "move_pipeline": ("client_name", "new_stage|pipeline_stage"),
    "create_schedule": ("title", "date"),
    "update_schedule": ("schedule_id|title",),
    "delete_schedule": ("schedule_id|title",),
    "create_reminder": ("message", "due_date"),
    "draft_email": ("to", "subject"),
    "send_email": ("to", "subject", "body"),
    "create_proposal": ("client_id|client_name",),
    "attach_document": ("client_id|client_name", "file_url"),
}

# Business-critical fields. A value of None means any write to the field counts;
# otherwise only writes of one of the listed values count.
HIGH_VALUE_FIELDS: Final[dict[tuple[str, str], frozenset[str] | None]] = {
    ("clients", "pipeline_stage"): TERMINAL_STAGES,
    ("contracts", "status"): None,
    ("proposals", "monthly_cost"): None,
}

# Tables carrying their own user_id column.
USER_OWNED_TABLES: Final[frozenset[str]] = frozenset({"clients", "activity_logs", "schedules", "reminders"})

# Tables owned through clients.id.
CLIENT_OWNED_TABLES: Final[frozenset[str]] = frozenset({"contacts", "proposals", "documents", "contracts"})

KNOWN_TABLES: Final[frozenset[str]] = USER_OWNED_TABLES | CLIENT_OWNED_TABLES

# Columns the executor never lets a plan write; ownership is set by the store.
PROTECTED_COLUMNS: Final[frozenset[str]] = frozenset({"user_id", "created_at"})

CONFIRMATION_TEMPLATES: Final[dict[str, str]] = {
    "create_client": "Register {company_name} as a new client. Proceed?",
    "update_client": "Update client {client_name}. Proceed?",
    "delete_client": "Delete client {client_name} and its record. This cannot be undone from the chat. Proceed?",
    "add_contact": "Add contact {contact_name} to {client_name}. Proceed?",
    "log_activity": "Log a {activity_type} activity for {client_name}. Proceed?",
    "move_pipeline": "Move {client_name} to pipeline stage {new_stage}. Proceed?",
    "create_schedule": 'Create schedule "{title}" on {date} at {start_time}. Proceed?',
    "update_schedule": 'Update schedule "{title}". Proceed?',
    "delete_schedule": 'Delete schedule "{title}". Proceed?',
    "create_reminder": "Create a reminder for {due_date}: {message}. Proceed?",
    "draft_email": 'Draft an email to {to} with subject "{subject}". Proceed?',
    "send_email": 'Send an email to {to} with subject "{subject}". Sent email cannot be recalled. Proceed?',
    "create_proposal": "Create a proposal for {client_name}. Proceed?",
    "attach_document": "Attach {file_name} to {client_name}. Proceed?",
}

# Entity aliases used when filling confirmation templates.
TEMPLATE_ALIASES: Final[dict[str, tuple[str, ...]]] = {
    "client_name": ("client_name", "company_name", "client_id"),
    "contact_name": ("contact_name", "name"),
    "new_stage": ("new_stage", "pipeline_stage"),
    "title": ("title", "schedule_id"),
    "date": ("date", "start_date"),
    "file_name": ("file_name", "file_url"),
}

DEFAULT_START_TIME: Final[str] = "10:00"
DEFAULT_END_TIME: Final[str] = "11:00"

# Declaration order of risk flags; evaluated flags are always reported in this order.
RISK_FLAGS: Final[tuple[str, ...]] = (
    "duplicate_client",
    "unknown_stage",
    "missing_date",
    "send_email_risk",
    "delete_risk",
    "high_value_change",
)
