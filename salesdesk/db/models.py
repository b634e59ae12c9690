from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all database models."""


class Client(Base):
    """Customer company tracked through the sales pipeline.

    Stores:
    - id: Client ID (string UUID)
    - user_id: Owning salesperson; every query is scoped by this column
    - company_name / brand_name: Identifying names (used for duplicate detection)
    - pipeline_stage: Current stage (see PIPELINE_STAGES)
    - failure_reason / failure_category: Set when the deal moves to "failed"
    """

    __tablename__ = "clients"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    company_name: Mapped[str] = mapped_column(String, nullable=False)
    brand_name: Mapped[str | None] = mapped_column(String, nullable=True)
    industry: Mapped[str | None] = mapped_column(String, nullable=True)
    store_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    ceo_name: Mapped[str | None] = mapped_column(String, nullable=True)
    inquiry_source: Mapped[str | None] = mapped_column(String, nullable=True)
    interest_product: Mapped[str | None] = mapped_column(String, nullable=True)
    expected_date: Mapped[str | None] = mapped_column(String, nullable=True)
    pipeline_stage: Mapped[str] = mapped_column(String, nullable=False, default="inquiry")
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    failure_category: Mapped[str | None] = mapped_column(String, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_contacted_at: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (Index("idx_clients_user_company", "user_id", "company_name"),)


class Contact(Base):
    """Person at a client company. Owned through its client."""

    __tablename__ = "contacts"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    client_id: Mapped[str] = mapped_column(String, ForeignKey("clients.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    position: Mapped[str | None] = mapped_column(String, nullable=True)
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    phone: Mapped[str | None] = mapped_column(String, nullable=True)
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)


class ActivityLog(Base):
    """Timeline entry for a client (call, email, meeting, stage change, ...)."""

    __tablename__ = "activity_logs"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    client_id: Mapped[str] = mapped_column(String, ForeignKey("clients.id"), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    activity_type: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    call_duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
    next_action: Mapped[str | None] = mapped_column(String, nullable=True)
    next_action_date: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)


class Schedule(Base):
    """Calendar entry, optionally linked to a client."""

    __tablename__ = "schedules"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    client_id: Mapped[str | None] = mapped_column(String, ForeignKey("clients.id"), nullable=True)
    title: Mapped[str] = mapped_column(String, nullable=False)
    schedule_type: Mapped[str] = mapped_column(String, nullable=False, default="meeting")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    start_date: Mapped[str] = mapped_column(String, nullable=False)
    end_date: Mapped[str] = mapped_column(String, nullable=False)
    all_day: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    location: Mapped[str | None] = mapped_column(String, nullable=True)
    contact_name: Mapped[str | None] = mapped_column(String, nullable=True)
    contact_phone: Mapped[str | None] = mapped_column(String, nullable=True)
    meeting_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    checklist: Mapped[list | None] = mapped_column(JSON, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="scheduled")
    reminder_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)


class Reminder(Base):
    __tablename__ = "reminders"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    client_id: Mapped[str | None] = mapped_column(String, ForeignKey("clients.id"), nullable=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    reminder_type: Mapped[str | None] = mapped_column(String, nullable=True)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    due_date: Mapped[str | None] = mapped_column(String, nullable=True)
    is_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)


class Proposal(Base):
    __tablename__ = "proposals"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    client_id: Mapped[str] = mapped_column(String, ForeignKey("clients.id"), nullable=False, index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    company_name: Mapped[str | None] = mapped_column(String, nullable=True)
    contact_name: Mapped[str | None] = mapped_column(String, nullable=True)
    contact_info: Mapped[str | None] = mapped_column(String, nullable=True)
    monthly_cost: Mapped[str | None] = mapped_column(String, nullable=True)
    features: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)


class Document(Base):
    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    client_id: Mapped[str] = mapped_column(String, ForeignKey("clients.id"), nullable=False, index=True)
    document_type: Mapped[str | None] = mapped_column(String, nullable=True)
    file_name: Mapped[str | None] = mapped_column(String, nullable=True)
    file_url: Mapped[str | None] = mapped_column(String, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)


class Contract(Base):
    __tablename__ = "contracts"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    client_id: Mapped[str] = mapped_column(String, ForeignKey("clients.id"), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="pending")
    signed_at: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)


class ActionPlanRecord(Base):
    """Lifecycle record for an AI-proposed action plan.

    Stores:
    - plan_id: Upstream plan identifier (primary key, so a plan is stored once)
    - user_id: Acting user the plan belongs to
    - status: pending, modified, approved, rejected, executing, executed, failed
    - plan: Full plan payload (JSON) as last stored
    - result: Final ActionPlanResult payload once the plan reached a terminal status

    The status column is the execution gate: moving to "executing" is a
    conditional UPDATE so two executors of one plan cannot both win.
    """

    __tablename__ = "action_plans"

    plan_id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    intent: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="pending")
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    needs_confirmation: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    plan: Mapped[dict] = mapped_column(JSON, nullable=False)
    result: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    decided_by: Mapped[str | None] = mapped_column(String, nullable=True)
    decision_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)
    decided_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    executed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


# Table name -> model, for the generic data-store collaborator.
TABLE_MODELS: dict[str, type[Base]] = {
    "clients": Client,
    "contacts": Contact,
    "activity_logs": ActivityLog,
    "schedules": Schedule,
    "reminders": Reminder,
    "proposals": Proposal,
    "documents": Document,
    "contracts": Contract,
}
