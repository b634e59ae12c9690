"""API endpoints for action plans.

Includes plan execution for the chat UI and the approval workflow (store,
list, modify, approve, reject).
"""

from typing import Any, NoReturn

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel, Field

from salesdesk.actions.errors import (
    ActionPlanError,
    AlreadyExecutedError,
    NotApprovedError,
    PlanNotFoundError,
    ValidationError,
)
from salesdesk.actions.repository import (
    approve_plan,
    get_plan_record,
    list_plan_records,
    modify_plan,
    reject_plan,
    save_plan,
)
from salesdesk.actions.service import execute_request
from salesdesk.actions.types import ActionPlan, ActionPlanResult, ExecuteRequest
from salesdesk.api.dependencies import get_current_user_id, get_mailer
from salesdesk.db.models import ActionPlanRecord
from salesdesk.db.session import get_session
from salesdesk.integrations.groupware.client import EmailSender

router = APIRouter(prefix="/api", tags=["actions"])

# error_code -> HTTP status for refused or failed executions
_ERROR_STATUS: dict[str, int] = {
    ValidationError.code: status.HTTP_400_BAD_REQUEST,
    "UnresolvedReference": status.HTTP_400_BAD_REQUEST,
    NotApprovedError.code: status.HTTP_403_FORBIDDEN,
    AlreadyExecutedError.code: status.HTTP_409_CONFLICT,
    PlanNotFoundError.code: status.HTTP_404_NOT_FOUND,
}


class PlanRecordResponse(BaseModel):
    """Response model for a stored action plan."""

    plan_id: str
    intent: str
    status: str
    confidence: float | None
    needs_confirmation: bool
    plan: dict
    result: dict | None
    decided_by: str | None
    decision_reason: str | None
    created_at: str  # ISO datetime string
    decided_at: str | None  # ISO datetime string
    executed_at: str | None  # ISO datetime string

    @classmethod
    def from_model(cls, record: ActionPlanRecord) -> "PlanRecordResponse":
        return cls(
            plan_id=record.plan_id,
            intent=record.intent,
            status=record.status,
            confidence=record.confidence,
            needs_confirmation=record.needs_confirmation,
            plan=record.plan,
            result=record.result,
            decided_by=record.decided_by,
            decision_reason=record.decision_reason,
            created_at=record.created_at.isoformat(),
            decided_at=record.decided_at.isoformat() if record.decided_at else None,
            executed_at=record.executed_at.isoformat() if record.executed_at else None,
        )


class DecisionRequest(BaseModel):
    reason: str | None = None


class ModifyPlanRequest(BaseModel):
    entities: dict[str, Any] = Field(default_factory=dict)


def result_status_code(result: ActionPlanResult) -> int:
    """HTTP status for an execution result.

    Successful and cleanly rolled back plans are 200; refused plans map by
    error code; any other error (including incomplete rollback) is 500.
    """
    if result.status != "error":
        return status.HTTP_200_OK
    code = (result.data or {}).get("error_code")
    return _ERROR_STATUS.get(code, status.HTTP_500_INTERNAL_SERVER_ERROR)


def _raise_http(error: ActionPlanError) -> NoReturn:
    raise HTTPException(
        status_code=_ERROR_STATUS.get(error.code, status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail=error.message,
    )


@router.post("/chat/execute", response_model=ActionPlanResult)
def execute_plan(
    request: ExecuteRequest,
    user_id: str = Depends(get_current_user_id),
    mailer: EmailSender = Depends(get_mailer),
) -> JSONResponse:
    """Execute an action plan for the authenticated user.

    Args:
        request: Plan, acting user and optional modifications
        user_id: Current authenticated user ID
        mailer: Groupware mail collaborator

    Returns:
        ActionPlanResult with an HTTP status derived from its outcome

    Raises:
        HTTPException: 403 if the request names another user
    """
    if request.user_id != user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Plans can only be executed by their own user",
        )

    logger.info("Executing plan via API", plan_id=request.plan.plan_id, user_id=user_id)
    with get_session() as session:
        result = execute_request(request, session, mailer)

    return JSONResponse(status_code=result_status_code(result), content=result.model_dump(mode="json"))


@router.post("/plans", response_model=PlanRecordResponse, status_code=status.HTTP_201_CREATED)
def create_plan(
    plan: ActionPlan,
    user_id: str = Depends(get_current_user_id),
) -> PlanRecordResponse:
    """Store a plan so it can be confirmed in the UI.

    The plan's safety fields are re-derived on parse; whatever the caller sent
    for them is ignored.
    """
    logger.info("Storing plan", plan_id=plan.plan_id, user_id=user_id, intent=plan.intent)
    with get_session() as session:
        try:
            record = save_plan(session, plan=plan, user_id=user_id)
        except ActionPlanError as e:
            _raise_http(e)
        return PlanRecordResponse.from_model(record)


@router.get("/plans", response_model=list[PlanRecordResponse])
def get_plans(
    plan_status: list[str] | None = Query(default=None, alias="status"),
    user_id: str = Depends(get_current_user_id),
) -> list[PlanRecordResponse]:
    """List the user's plans, newest first, optionally filtered by status."""
    with get_session() as session:
        records = list_plan_records(session, user_id=user_id, statuses=plan_status)
        return [PlanRecordResponse.from_model(record) for record in records]


@router.get("/plans/{plan_id}", response_model=PlanRecordResponse)
def get_plan(
    plan_id: str,
    user_id: str = Depends(get_current_user_id),
) -> PlanRecordResponse:
    """Get one of the user's plans.

    Raises:
        HTTPException: 404 if the plan does not exist or belongs to someone else
    """
    with get_session() as session:
        record = get_plan_record(session, plan_id=plan_id, user_id=user_id)
        if record is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Plan {plan_id} not found",
            )
        return PlanRecordResponse.from_model(record)


@router.patch("/plans/{plan_id}", response_model=PlanRecordResponse)
def patch_plan(
    plan_id: str,
    request: ModifyPlanRequest,
    user_id: str = Depends(get_current_user_id),
) -> PlanRecordResponse:
    """Apply entity edits to a plan awaiting confirmation."""
    logger.info("Modifying plan", plan_id=plan_id, user_id=user_id)
    with get_session() as session:
        try:
            record = modify_plan(session, plan_id=plan_id, user_id=user_id, entities=request.entities)
        except ActionPlanError as e:
            _raise_http(e)
        return PlanRecordResponse.from_model(record)


@router.post("/plans/{plan_id}/approve", response_model=PlanRecordResponse)
def approve(
    plan_id: str,
    request: DecisionRequest | None = None,
    user_id: str = Depends(get_current_user_id),
) -> PlanRecordResponse:
    """Approve a pending plan.

    Raises:
        HTTPException: 404 if not found, 409 if already executed, 400 if not awaiting a decision
    """
    logger.info("Approving plan", plan_id=plan_id, user_id=user_id)
    with get_session() as session:
        try:
            record = approve_plan(
                session,
                plan_id=plan_id,
                user_id=user_id,
                reason=request.reason if request else None,
            )
        except ActionPlanError as e:
            _raise_http(e)
        return PlanRecordResponse.from_model(record)


@router.post("/plans/{plan_id}/reject", response_model=PlanRecordResponse)
def reject(
    plan_id: str,
    request: DecisionRequest | None = None,
    user_id: str = Depends(get_current_user_id),
) -> PlanRecordResponse:
    """Reject a pending plan. Rejected plans can never be executed.

    Raises:
        HTTPException: 404 if not found, 409 if already executed, 400 if not awaiting a decision
    """
    logger.info("Rejecting plan", plan_id=plan_id, user_id=user_id)
    with get_session() as session:
        try:
            record = reject_plan(
                session,
                plan_id=plan_id,
                user_id=user_id,
                reason=request.reason if request else None,
            )
        except ActionPlanError as e:
            _raise_http(e)
        return PlanRecordResponse.from_model(record)
