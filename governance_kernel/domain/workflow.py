"""
Approval workflow domain types (``governance_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for the sequential report-approval workflow: the
approval chain, step and workflow status lifecycles, immutable comments,
and the ``ApprovalWorkflow`` aggregate root.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  Transition
logic lives in ``governance_engines.approval_chain``; this module only
defines the shapes and the legal status edges.

Invariants enforced
-------------------
* ``STEP_TRANSITIONS`` and ``WORKFLOW_TRANSITIONS`` define the only legal
  status edges.  Terminal states have no outgoing edges.
* ``ApprovalWorkflow.current_step_number`` is the single source of truth
  for the current step; ``ApprovalStep.is_current_step`` is a derived
  flag recomputed on every transition.
* All types are frozen.  A transition produces a new aggregate, so a
  reader sees either the whole before state or the whole after state.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Protocol
from uuid import UUID


# =========================================================================
# Approval chain
# =========================================================================


@dataclass(frozen=True)
class ApprovalChain:
    """Fixed, ordered list of required role names.  Step N requires ``roles[N-1]``."""

    roles: tuple[str, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "roles", tuple(self.roles))
        if not self.roles:
            raise ValueError("Approval chain must contain at least one role")
        if len(set(self.roles)) != len(self.roles):
            raise ValueError(f"Approval chain roles must be unique: {self.roles}")

    def __len__(self) -> int:
        return len(self.roles)

    def role_at(self, step_number: int) -> str:
        if not 1 <= step_number <= len(self.roles):
            raise ValueError(
                f"Step number {step_number} outside chain of length {len(self.roles)}"
            )
        return self.roles[step_number - 1]

    def step_number_of(self, role_name: str) -> int | None:
        try:
            return self.roles.index(role_name) + 1
        except ValueError:
            return None

    def next_role(self, role_name: str) -> str | None:
        """Role of the following step, or None for the last role or an unknown one."""
        number = self.step_number_of(role_name)
        if number is None or number == len(self.roles):
            return None
        return self.roles[number]

    def previous_role(self, role_name: str) -> str | None:
        number = self.step_number_of(role_name)
        if number is None or number == 1:
            return None
        return self.roles[number - 2]


DEFAULT_APPROVAL_CHAIN = ApprovalChain(
    ("branch-admin", "project-admin", "country-admin", "global-admin")
)


# =========================================================================
# Status lifecycles
# =========================================================================


class StepStatus(str, Enum):
    """Approval step lifecycle states."""

    PENDING = "pending"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    SKIPPED = "skipped"


STEP_TRANSITIONS: dict[StepStatus, frozenset[StepStatus]] = {
    StepStatus.PENDING: frozenset({StepStatus.IN_REVIEW}),
    StepStatus.IN_REVIEW: frozenset({
        StepStatus.APPROVED,
        StepStatus.REJECTED,
        StepStatus.SKIPPED,
    }),
    StepStatus.APPROVED: frozenset(),
    StepStatus.REJECTED: frozenset(),
    StepStatus.SKIPPED: frozenset(),
}

TERMINAL_STEP_STATUSES: frozenset[StepStatus] = frozenset({
    StepStatus.APPROVED,
    StepStatus.REJECTED,
    StepStatus.SKIPPED,
})


class WorkflowStatus(str, Enum):
    """Workflow lifecycle states."""

    IN_PROGRESS = "in_progress"
    APPROVED = "approved"
    REJECTED = "rejected"


WORKFLOW_TRANSITIONS: dict[WorkflowStatus, frozenset[WorkflowStatus]] = {
    WorkflowStatus.IN_PROGRESS: frozenset({
        WorkflowStatus.APPROVED,
        WorkflowStatus.REJECTED,
    }),
    WorkflowStatus.APPROVED: frozenset(),
    WorkflowStatus.REJECTED: frozenset(),
}

TERMINAL_WORKFLOW_STATUSES: frozenset[WorkflowStatus] = frozenset({
    WorkflowStatus.APPROVED,
    WorkflowStatus.REJECTED,
})


class CommentKind(str, Enum):
    """Kind of an audit comment."""

    COMMENT = "comment"
    APPROVAL = "approval"
    REJECTION = "rejection"
    CHANGE_REQUEST = "change_request"


# Kinds a participant may post directly; the others are written by decisions.
USER_COMMENT_KINDS: frozenset[CommentKind] = frozenset({
    CommentKind.COMMENT,
    CommentKind.CHANGE_REQUEST,
})


# =========================================================================
# Aggregate
# =========================================================================


@dataclass(frozen=True)
class Comment:
    """Append-only audit record.  Never edited or deleted."""

    id: UUID
    step_id: UUID
    principal_id: str
    principal_display_name: str
    role_at_time_of_comment: str
    body: str
    timestamp: datetime
    kind: CommentKind = CommentKind.COMMENT


@dataclass(frozen=True)
class ApprovalStep:
    """One level of the approval chain for a single workflow."""

    id: UUID
    step_number: int
    required_role: str
    status: StepStatus = StepStatus.PENDING
    assigned_principal_id: str | None = None
    submitted_at: datetime | None = None
    reviewed_at: datetime | None = None
    comments: tuple[Comment, ...] = ()
    is_current_step: bool = False


@dataclass(frozen=True)
class ApprovalWorkflow:
    """Aggregate root: one report travelling through the approval chain.

    ``version`` is the optimistic-concurrency stamp assigned by the
    repository on every successful save.  Transitions carry it through
    unchanged; the repository bumps it.
    """

    id: UUID
    subject_id: str
    owner_project_id: str
    created_by: str
    created_at: datetime
    steps: tuple[ApprovalStep, ...]
    current_step_number: int
    status: WorkflowStatus = WorkflowStatus.IN_PROGRESS
    final_decision_at: datetime | None = None
    final_decision_by: str | None = None
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_WORKFLOW_STATUSES

    @property
    def current_step(self) -> ApprovalStep | None:
        return current_step(self)

    def step_by_id(self, step_id: UUID) -> ApprovalStep | None:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def step_by_number(self, step_number: int) -> ApprovalStep | None:
        if 1 <= step_number <= len(self.steps):
            return self.steps[step_number - 1]
        return None

    @property
    def comments(self) -> tuple[Comment, ...]:
        """All comments across steps, in step order then append order."""
        return tuple(c for step in self.steps for c in step.comments)


def current_step(workflow: ApprovalWorkflow) -> ApprovalStep | None:
    """The step flagged current, or None once the workflow is terminal."""
    for step in workflow.steps:
        if step.is_current_step:
            return step
    return None


def is_terminal(workflow: ApprovalWorkflow) -> bool:
    return workflow.status in TERMINAL_WORKFLOW_STATUSES


# =========================================================================
# Persistence port
# =========================================================================


class WorkflowRepository(Protocol):
    """Persistence collaborator for workflow aggregates."""

    def load_workflow(self, workflow_id: UUID) -> ApprovalWorkflow | None:
        ...

    def save_workflow(
        self, workflow: ApprovalWorkflow, expected_version: int,
    ) -> ApprovalWorkflow:
        """Compare-and-swap on ``version``.

        ``expected_version == 0`` inserts a new aggregate.  Returns the
        stored aggregate carrying its new version.  Raises
        ``OptimisticLockError`` when the stored version differs.
        """
        ...

    def load_active_workflow_for_subject(
        self, subject_id: str,
    ) -> ApprovalWorkflow | None:
        ...

    def list_workflows(
        self, status: WorkflowStatus | None = None,
    ) -> list[ApprovalWorkflow]:
        ...
