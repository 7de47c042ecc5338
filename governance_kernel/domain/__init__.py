"""
Pure domain layer.

This module contains pure value objects with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- Time/clock (except the injectable Clock abstraction)
- I/O

All domain objects are immutable and deterministic.
"""

from governance_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from governance_kernel.domain.events import (
    WorkflowEvent,
    WorkflowEventSink,
    WorkflowEventType,
)
from governance_kernel.domain.roles import (
    BROAD_SCOPES,
    GLOBAL_ADMIN_ROLE,
    TARGETED_SCOPES,
    AssignmentScope,
    PermissionKey,
    PermissionScope,
    Principal,
    PrincipalResolver,
    Role,
    RoleAssignment,
    RoleCatalog,
    RoleScopeKind,
    parse_permissions,
)
from governance_kernel.domain.workflow import (
    DEFAULT_APPROVAL_CHAIN,
    STEP_TRANSITIONS,
    TERMINAL_STEP_STATUSES,
    TERMINAL_WORKFLOW_STATUSES,
    USER_COMMENT_KINDS,
    WORKFLOW_TRANSITIONS,
    ApprovalChain,
    ApprovalStep,
    ApprovalWorkflow,
    Comment,
    CommentKind,
    StepStatus,
    WorkflowRepository,
    WorkflowStatus,
    current_step,
    is_terminal,
)

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "WorkflowEvent",
    "WorkflowEventSink",
    "WorkflowEventType",
    "BROAD_SCOPES",
    "GLOBAL_ADMIN_ROLE",
    "TARGETED_SCOPES",
    "AssignmentScope",
    "PermissionKey",
    "PermissionScope",
    "Principal",
    "PrincipalResolver",
    "Role",
    "RoleAssignment",
    "RoleCatalog",
    "RoleScopeKind",
    "parse_permissions",
    "DEFAULT_APPROVAL_CHAIN",
    "STEP_TRANSITIONS",
    "TERMINAL_STEP_STATUSES",
    "TERMINAL_WORKFLOW_STATUSES",
    "USER_COMMENT_KINDS",
    "WORKFLOW_TRANSITIONS",
    "ApprovalChain",
    "ApprovalStep",
    "ApprovalWorkflow",
    "Comment",
    "CommentKind",
    "StepStatus",
    "WorkflowRepository",
    "WorkflowStatus",
    "current_step",
    "is_terminal",
]
