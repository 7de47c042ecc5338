"""
Governance engines -- pure calculation layer.

No I/O, no clock, no database.  Imports only governance_kernel.domain and
governance_kernel.exceptions.
"""

from governance_engines.approval_chain import (
    DEFAULT_APPROVAL_COMMENT,
    ReviewActor,
    append_comment,
    approve_step,
    delegate_step,
    new_workflow,
    reject_step,
    skip_step,
    validate_review_target,
    workflow_invariant_violations,
)
from governance_engines.permissions import (
    NO_ACCESS_LEVEL,
    AccessLevel,
    accessible_regions,
    accessible_targets,
    can_access_project,
    can_skip_step,
    effective_level,
    evaluate,
    granted_permissions,
    has_sufficient_authority,
    highest_level,
    is_global_admin,
    qualifying_assignment,
    review_assignment,
)
from governance_engines.reviews import (
    ReviewNotice,
    assigned_elsewhere,
    pending_reviews_for,
    review_request_notice,
    role_display_name,
    select_assignees,
    submitted_pending_review,
)

__all__ = [
    "DEFAULT_APPROVAL_COMMENT",
    "ReviewActor",
    "append_comment",
    "approve_step",
    "delegate_step",
    "new_workflow",
    "reject_step",
    "skip_step",
    "validate_review_target",
    "workflow_invariant_violations",
    "NO_ACCESS_LEVEL",
    "AccessLevel",
    "accessible_regions",
    "accessible_targets",
    "can_access_project",
    "can_skip_step",
    "effective_level",
    "evaluate",
    "granted_permissions",
    "has_sufficient_authority",
    "highest_level",
    "is_global_admin",
    "qualifying_assignment",
    "review_assignment",
    "ReviewNotice",
    "assigned_elsewhere",
    "pending_reviews_for",
    "review_request_notice",
    "role_display_name",
    "select_assignees",
    "submitted_pending_review",
]
