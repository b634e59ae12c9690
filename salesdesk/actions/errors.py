"""Error types for action-plan execution.

Each error carries a stable ``code`` that ends up in ActionPlanResult.data so
the chat UI can explain the outcome without parsing messages.
"""


class ActionPlanError(Exception):
    """Base class for all action-plan errors."""

    code = "action_plan_error"

    def __init__(self, message: str, *, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(ActionPlanError):
    """Malformed plan or step. Raised before any step runs."""

    code = "validation_error"


class UnresolvedReferenceError(ValidationError):
    """A step refers to a result_key that no earlier successful step produced."""

    code = "UnresolvedReference"


class NotApprovedError(ActionPlanError):
    """The plan needs human confirmation that was never granted."""

    code = "not_approved"


class AlreadyExecutedError(ActionPlanError):
    """The plan is executing or already reached a terminal status."""

    code = "already_executed"


class PlanNotFoundError(ActionPlanError):
    code = "plan_not_found"


class StepExecutionError(ActionPlanError):
    """A data-store or groupware operation failed while running a step."""

    code = "step_execution_error"

    def __init__(self, message: str, *, step_index: int, details: dict | None = None) -> None:
        super().__init__(message, details=details)
        self.step_index = step_index


class CompensationError(ActionPlanError):
    """A rollback action failed. The plan needs manual remediation."""

    code = "compensation_error"

    def __init__(self, message: str, *, step_index: int, details: dict | None = None) -> None:
        super().__init__(message, details=details)
        self.step_index = step_index


class DataStoreError(RuntimeError):
    """Raised by the data-store collaborator for any failed operation."""


class GroupwareError(RuntimeError):
    """Raised by the groupware mail collaborator when a send fails."""
