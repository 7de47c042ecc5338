"""
governance_engines.approval_chain -- Pure approval-workflow transitions.

Responsibility:
    Materialize a workflow from the approval chain and compute the next
    aggregate for approve, reject, skip, delegate and comment.  Every function
    takes an ``ApprovalWorkflow`` and returns a NEW one; the input is
    never modified.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import governance_kernel.domain and governance_kernel.exceptions.
    Authorization is NOT decided here: callers pass an already-authorized
    ``ReviewActor``.  Time and ids are injected.

Invariants enforced:
    - Status edges follow ``STEP_TRANSITIONS``/``WORKFLOW_TRANSITIONS``.
    - ``current_step_number`` is the single source of truth; every
      ``is_current_step`` flag is recomputed from it on each transition.
    - Rejection is terminal: later steps stay Pending forever.
    - The final step is approved or rejected, never skipped.
    - Comments only ever grow.
    - Terminal workflows accept no transition and no comment.

Failure modes:
    - WorkflowTerminalError: the workflow is approved or rejected.
    - StepNotFoundError: step id not in this workflow.
    - StaleStepError: step is not the current InReview step.
    - FinalStepSkipError: skip aimed at the last step of the chain.
    - MissingReasonError / EmptyCommentError / InvalidCommentKindError.
    - IllegalStatusTransitionError: a status edge outside the tables.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from datetime import datetime
from uuid import UUID, uuid4

from governance_kernel.domain.workflow import (
    STEP_TRANSITIONS,
    USER_COMMENT_KINDS,
    WORKFLOW_TRANSITIONS,
    ApprovalChain,
    ApprovalStep,
    ApprovalWorkflow,
    Comment,
    CommentKind,
    StepStatus,
    WorkflowStatus,
)
from governance_kernel.exceptions import (
    EmptyCommentError,
    FinalStepSkipError,
    IllegalStatusTransitionError,
    InvalidCommentKindError,
    MissingReasonError,
    StaleStepError,
    StepNotFoundError,
    WorkflowTerminalError,
)

DEFAULT_APPROVAL_COMMENT = "Approved"
SKIP_COMMENT_PREFIX = "Step skipped: "
DELEGATION_COMMENT_PREFIX = "Review delegated to "

IdFactory = Callable[[], UUID]


@dataclass(frozen=True)
class ReviewActor:
    """Who is acting, under which role, as recorded on the audit comment."""

    principal_id: str
    display_name: str
    role_name: str


# =========================================================================
# Creation
# =========================================================================


def new_workflow(
    *,
    subject_id: str,
    owner_project_id: str,
    creator_id: str,
    chain: ApprovalChain,
    now: datetime,
    assignees: Sequence[str | None] | None = None,
    id_factory: IdFactory = uuid4,
) -> ApprovalWorkflow:
    """Materialize every step up front: step 1 InReview, the rest Pending."""
    if assignees is not None and len(assignees) != len(chain):
        raise ValueError(
            f"Expected {len(chain)} assignees, got {len(assignees)}"
        )
    steps = tuple(
        ApprovalStep(
            id=id_factory(),
            step_number=number,
            required_role=role,
            status=StepStatus.IN_REVIEW if number == 1 else StepStatus.PENDING,
            assigned_principal_id=assignees[number - 1] if assignees else None,
            submitted_at=now if number == 1 else None,
            is_current_step=number == 1,
        )
        for number, role in enumerate(chain.roles, start=1)
    )
    return ApprovalWorkflow(
        id=id_factory(),
        subject_id=subject_id,
        owner_project_id=owner_project_id,
        created_by=creator_id,
        created_at=now,
        steps=steps,
        current_step_number=1,
        status=WorkflowStatus.IN_PROGRESS,
    )


# =========================================================================
# Precondition checks
# =========================================================================


def ensure_not_terminal(workflow: ApprovalWorkflow) -> None:
    if workflow.is_terminal:
        raise WorkflowTerminalError(str(workflow.id), workflow.status.value)


def find_step(workflow: ApprovalWorkflow, step_id: UUID) -> ApprovalStep:
    step = workflow.step_by_id(step_id)
    if step is None:
        raise StepNotFoundError(str(workflow.id), str(step_id))
    return step


def validate_review_target(
    workflow: ApprovalWorkflow, step_id: UUID,
) -> ApprovalStep:
    """Terminal, then existence, then current-and-InReview."""
    ensure_not_terminal(workflow)
    step = find_step(workflow, step_id)
    if (
        step.step_number != workflow.current_step_number
        or step.status != StepStatus.IN_REVIEW
    ):
        raise StaleStepError(str(workflow.id), str(step_id), workflow.current_step_number)
    return step


def ensure_skippable(workflow: ApprovalWorkflow, step: ApprovalStep) -> None:
    """The final step always needs an explicit decision."""
    if step.step_number == len(workflow.steps):
        raise FinalStepSkipError(str(workflow.id), str(step.id))


def require_reason(reason: str | None, operation: str) -> str:
    if reason is None or not reason.strip():
        raise MissingReasonError(operation)
    return reason.strip()


def validate_comment(
    step_id: UUID, body: str | None, kind: CommentKind | str,
) -> tuple[str, CommentKind]:
    try:
        comment_kind = CommentKind(kind)
    except ValueError:
        raise InvalidCommentKindError(str(kind)) from None
    if comment_kind not in USER_COMMENT_KINDS:
        raise InvalidCommentKindError(comment_kind.value)
    if body is None or not body.strip():
        raise EmptyCommentError(str(step_id))
    return body.strip(), comment_kind


# =========================================================================
# Internal helpers
# =========================================================================


def _move_step(step: ApprovalStep, to_status: StepStatus, **changes) -> ApprovalStep:
    if to_status not in STEP_TRANSITIONS[step.status]:
        raise IllegalStatusTransitionError(
            "ApprovalStep", step.status.value, to_status.value,
        )
    return replace(step, status=to_status, **changes)


def _move_workflow(
    workflow: ApprovalWorkflow, to_status: WorkflowStatus, **changes,
) -> ApprovalWorkflow:
    if to_status not in WORKFLOW_TRANSITIONS[workflow.status]:
        raise IllegalStatusTransitionError(
            "ApprovalWorkflow", workflow.status.value, to_status.value,
        )
    return replace(workflow, status=to_status, **changes)


def _comment(
    step: ApprovalStep,
    actor: ReviewActor,
    body: str,
    kind: CommentKind,
    now: datetime,
    id_factory: IdFactory,
) -> Comment:
    return Comment(
        id=id_factory(),
        step_id=step.id,
        principal_id=actor.principal_id,
        principal_display_name=actor.display_name,
        role_at_time_of_comment=actor.role_name,
        body=body,
        timestamp=now,
        kind=kind,
    )


def _with_current_flags(
    steps: list[ApprovalStep], current_number: int | None,
) -> tuple[ApprovalStep, ...]:
    return tuple(
        s if s.is_current_step == (s.step_number == current_number)
        else replace(s, is_current_step=s.step_number == current_number)
        for s in steps
    )


def _decide_and_advance(
    workflow: ApprovalWorkflow,
    step: ApprovalStep,
    to_status: StepStatus,
    comment: Comment,
    actor: ReviewActor,
    now: datetime,
) -> ApprovalWorkflow:
    """Close ``step`` and activate the next one, or approve the workflow."""
    steps = list(workflow.steps)
    index = step.step_number - 1
    steps[index] = _move_step(
        step, to_status, reviewed_at=now, comments=step.comments + (comment,),
    )

    if step.step_number == len(steps):
        return _move_workflow(
            workflow,
            WorkflowStatus.APPROVED,
            steps=_with_current_flags(steps, None),
            current_step_number=len(steps),
            final_decision_at=now,
            final_decision_by=actor.principal_id,
        )

    next_step = steps[index + 1]
    steps[index + 1] = _move_step(next_step, StepStatus.IN_REVIEW, submitted_at=now)
    return replace(
        workflow,
        steps=_with_current_flags(steps, step.step_number + 1),
        current_step_number=step.step_number + 1,
    )


# =========================================================================
# Transitions
# =========================================================================


def approve_step(
    workflow: ApprovalWorkflow,
    step_id: UUID,
    actor: ReviewActor,
    now: datetime,
    comment: str | None = None,
    *,
    id_factory: IdFactory = uuid4,
) -> ApprovalWorkflow:
    step = validate_review_target(workflow, step_id)
    body = comment.strip() if comment and comment.strip() else DEFAULT_APPROVAL_COMMENT
    record = _comment(step, actor, body, CommentKind.APPROVAL, now, id_factory)
    return _decide_and_advance(workflow, step, StepStatus.APPROVED, record, actor, now)


def skip_step(
    workflow: ApprovalWorkflow,
    step_id: UUID,
    actor: ReviewActor,
    reason: str,
    now: datetime,
    *,
    id_factory: IdFactory = uuid4,
) -> ApprovalWorkflow:
    step = validate_review_target(workflow, step_id)
    ensure_skippable(workflow, step)
    reason = require_reason(reason, "skip a step")
    record = _comment(
        step, actor, f"{SKIP_COMMENT_PREFIX}{reason}", CommentKind.COMMENT, now, id_factory,
    )
    return _decide_and_advance(workflow, step, StepStatus.SKIPPED, record, actor, now)


def reject_step(
    workflow: ApprovalWorkflow,
    step_id: UUID,
    actor: ReviewActor,
    reason: str,
    now: datetime,
    *,
    id_factory: IdFactory = uuid4,
) -> ApprovalWorkflow:
    step = validate_review_target(workflow, step_id)
    reason = require_reason(reason, "reject a step")
    record = _comment(step, actor, reason, CommentKind.REJECTION, now, id_factory)

    steps = list(workflow.steps)
    steps[step.step_number - 1] = _move_step(
        step, StepStatus.REJECTED, reviewed_at=now, comments=step.comments + (record,),
    )
    return _move_workflow(
        workflow,
        WorkflowStatus.REJECTED,
        steps=_with_current_flags(steps, None),
        current_step_number=step.step_number,
        final_decision_at=now,
        final_decision_by=actor.principal_id,
    )


def delegate_step(
    workflow: ApprovalWorkflow,
    step_id: UUID,
    actor: ReviewActor,
    delegate_id: str,
    reason: str,
    now: datetime,
    *,
    id_factory: IdFactory = uuid4,
) -> ApprovalWorkflow:
    """Reassign the current step.  Status and position do not move."""
    step = validate_review_target(workflow, step_id)
    reason = require_reason(reason, "delegate a step")
    record = _comment(
        step, actor, f"{DELEGATION_COMMENT_PREFIX}{delegate_id}: {reason}",
        CommentKind.COMMENT, now, id_factory,
    )
    steps = list(workflow.steps)
    steps[step.step_number - 1] = replace(
        step, assigned_principal_id=delegate_id, comments=step.comments + (record,),
    )
    return replace(workflow, steps=tuple(steps))


def append_comment(
    workflow: ApprovalWorkflow,
    step_id: UUID,
    actor: ReviewActor,
    body: str,
    now: datetime,
    kind: CommentKind | str = CommentKind.COMMENT,
    *,
    id_factory: IdFactory = uuid4,
) -> ApprovalWorkflow:
    """Append to any step, current or historical.  No status change."""
    ensure_not_terminal(workflow)
    step = find_step(workflow, step_id)
    text, comment_kind = validate_comment(step_id, body, kind)
    record = _comment(step, actor, text, comment_kind, now, id_factory)
    steps = list(workflow.steps)
    steps[step.step_number - 1] = replace(step, comments=step.comments + (record,))
    return replace(workflow, steps=tuple(steps))


# =========================================================================
# Invariant checker
# =========================================================================


def workflow_invariant_violations(
    workflow: ApprovalWorkflow, chain: ApprovalChain,
) -> list[str]:
    """Every structural invariant the aggregate breaks, as messages."""
    violations: list[str] = []
    steps = workflow.steps

    if len(steps) != len(chain):
        violations.append(f"{len(steps)} steps for a chain of {len(chain)}")
    for index, step in enumerate(steps):
        if step.step_number != index + 1:
            violations.append(f"step at position {index} numbered {step.step_number}")
        if index < len(chain) and step.required_role != chain.roles[index]:
            violations.append(
                f"step {index + 1} requires {step.required_role}, chain says {chain.roles[index]}"
            )

    flagged = [s.step_number for s in steps if s.is_current_step]
    if workflow.is_terminal:
        if flagged:
            violations.append(f"terminal workflow has current steps {flagged}")
    else:
        if flagged != [workflow.current_step_number]:
            violations.append(
                f"current flags {flagged} disagree with current_step_number "
                f"{workflow.current_step_number}"
            )
        current = workflow.step_by_number(workflow.current_step_number)
        if current is None or current.status != StepStatus.IN_REVIEW:
            violations.append("in-progress workflow has no InReview current step")
        for step in steps:
            if step.step_number < workflow.current_step_number and step.status not in (
                StepStatus.APPROVED, StepStatus.SKIPPED,
            ):
                violations.append(f"earlier step {step.step_number} is {step.status.value}")
            if step.step_number > workflow.current_step_number and step.status != StepStatus.PENDING:
                violations.append(f"later step {step.step_number} is {step.status.value}")

    last = steps[-1] if steps else None
    approved = workflow.status == WorkflowStatus.APPROVED
    if approved != (last is not None and last.status == StepStatus.APPROVED):
        violations.append("workflow approval disagrees with the last step")
    if approved and workflow.current_step_number != len(steps):
        violations.append("approved workflow must point at the last step")

    rejected = [s for s in steps if s.status == StepStatus.REJECTED]
    if (workflow.status == WorkflowStatus.REJECTED) != bool(rejected):
        violations.append("workflow rejection disagrees with step statuses")
    if rejected:
        number = rejected[0].step_number
        if len(rejected) > 1:
            violations.append("more than one rejected step")
        if workflow.current_step_number != number:
            violations.append("rejected workflow must point at the rejecting step")
        for step in steps[number:]:
            if step.status != StepStatus.PENDING:
                violations.append(f"step {step.step_number} advanced after rejection")

    return violations
