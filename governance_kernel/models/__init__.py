"""ORM models for the governance kernel."""

from governance_kernel.models.workflow import (
    ApprovalStepModel,
    ApprovalWorkflowModel,
    WorkflowCommentModel,
)

__all__ = [
    "ApprovalStepModel",
    "ApprovalWorkflowModel",
    "WorkflowCommentModel",
]
