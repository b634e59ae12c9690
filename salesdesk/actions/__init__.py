"""Action plans - safe execution of AI-proposed CRM mutations.

This module provides:
- The plan schema with derived risk fields
- Duplicate detection and risk evaluation
- In-order step execution with saga-style rollback
- The plan approval lifecycle

Import the executor and service from their own modules; only data contracts
and errors are re-exported here.
"""

from salesdesk.actions.errors import (
    ActionPlanError,
    AlreadyExecutedError,
    CompensationError,
    DataStoreError,
    GroupwareError,
    NotApprovedError,
    PlanNotFoundError,
    StepExecutionError,
    UnresolvedReferenceError,
    ValidationError,
)
from salesdesk.actions.types import (
    ActionPlan,
    ActionPlanResult,
    ActionStep,
    DuplicateCandidate,
    ExecuteRequest,
    StepResult,
)

__all__ = [
    "ActionPlan",
    "ActionPlanError",
    "ActionPlanResult",
    "ActionStep",
    "AlreadyExecutedError",
    "CompensationError",
    "DataStoreError",
    "DuplicateCandidate",
    "ExecuteRequest",
    "GroupwareError",
    "NotApprovedError",
    "PlanNotFoundError",
    "StepExecutionError",
    "StepResult",
    "UnresolvedReferenceError",
    "ValidationError",
]
