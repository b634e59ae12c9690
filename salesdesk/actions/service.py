"""Caller-facing entry point: ExecuteRequest in, ActionPlanResult out.

Domain errors never escape this function. Each ActionPlanError becomes an
ActionPlanResult with status "error" and the error's code in data.error_code,
so the chat UI can render every outcome the same way.
"""

from __future__ import annotations

from loguru import logger
from sqlalchemy.orm import Session

from salesdesk.actions.errors import ActionPlanError, StepExecutionError
from salesdesk.actions.executor import PlanExecutor
from salesdesk.actions.store import DataStore
from salesdesk.actions.types import ActionPlanResult, ExecuteRequest
from salesdesk.integrations.groupware.client import EmailSender


def error_result(plan_id: str, error: ActionPlanError) -> ActionPlanResult:
    data: dict = {"error_code": error.code}
    if error.details:
        data["details"] = error.details
    return ActionPlanResult(
        plan_id=plan_id,
        status="error",
        message=error.message,
        rolled_back=False,
        failed_step=error.step_index if isinstance(error, StepExecutionError) else None,
        data=data,
    )


def execute_request(
    request: ExecuteRequest,
    session: Session,
    mailer: EmailSender | None = None,
    store: DataStore | None = None,
) -> ActionPlanResult:
    """Execute a plan on behalf of the request's user.

    Args:
        request: Plan, acting user and optional confirmation-UI modifications
        session: Database session for the plan lifecycle and the default data store
        mailer: Groupware mail collaborator (defaults to the configured client)
        store: Data-store collaborator (defaults to the SQLAlchemy store)

    Returns:
        ActionPlanResult; status "error" with data.error_code for refused plans
    """
    executor = PlanExecutor(session, store=store, mailer=mailer)
    try:
        return executor.execute(request.plan, request.user_id, request.modifications)
    except ActionPlanError as e:
        logger.warning(
            "Action plan refused",
            plan_id=request.plan.plan_id,
            user_id=request.user_id,
            error_code=e.code,
            error=e.message,
        )
        return error_result(request.plan.plan_id, e)
