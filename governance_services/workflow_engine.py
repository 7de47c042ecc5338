"""
governance_services.workflow_engine -- Approval workflow coordinator.

Responsibility:
    Public entry point for the workflow operations (create, approve,
    reject, skip, delegate, comment) plus review queues and bulk review.  Thin
    coordinator: transitions come from ``governance_engines.approval_chain``,
    authorization from ``governance_engines.permissions``, persistence from
    the injected ``WorkflowRepository``, delivery from the event sink.

Architecture position:
    Services layer.  May import from governance_engines/ and
    governance_kernel/.

Invariants enforced:
    - At most one writer per workflow id: every mutation runs
      load -> validate -> authorize -> transition -> save under the
      workflow's lock, and the save is a version compare-and-swap, so
      writers in other processes lose with ``OptimisticLockError``.
    - No partial application: the aggregate is saved only after every
      precondition passes.
    - Precondition order: workflow exists -> not terminal -> step exists
      -> step is current and InReview -> mandatory text present ->
      authority.
    - A step with an assignee is approved or rejected by that assignee
      only.  Skip and delegation by a strictly senior reviewer override it.
    - Events are published after the save.  A failing sink is logged and
      never undoes the mutation.
    - Reads take no lock and see either the before or the after state.

Failure modes:
    - WorkflowNotFoundError, StepNotFoundError
    - WorkflowTerminalError, StaleStepError, DuplicateWorkflowError
    - FinalStepSkipError
    - MissingReasonError, EmptyCommentError, InvalidCommentKindError
    - UnauthorizedError (message never says why)
    - OptimisticLockError (retry with ``retry_on_conflict``)
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Hashable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any
from uuid import UUID, uuid4

from governance_engines.approval_chain import (
    ReviewActor,
    append_comment,
    approve_step,
    delegate_step,
    ensure_skippable,
    ensure_not_terminal,
    find_step,
    new_workflow,
    reject_step,
    require_reason,
    skip_step,
    validate_comment,
    validate_review_target,
)
from governance_engines.permissions import (
    is_global_admin,
    is_well_formed,
    most_senior_assignment,
    review_assignment,
)
from governance_engines.reviews import (
    assigned_elsewhere,
    pending_reviews_for,
    review_request_notice,
    select_assignees,
    submitted_pending_review,
)
from governance_kernel.domain.clock import Clock, SystemClock
from governance_kernel.domain.events import (
    WorkflowEvent,
    WorkflowEventSink,
    WorkflowEventType,
)
from governance_kernel.domain.roles import GLOBAL_ADMIN_ROLE, Principal, RoleCatalog
from governance_kernel.domain.workflow import (
    DEFAULT_APPROVAL_CHAIN,
    ApprovalChain,
    ApprovalStep,
    ApprovalWorkflow,
    CommentKind,
    WorkflowRepository,
    WorkflowStatus,
)
from governance_kernel.exceptions import (
    ConflictError,
    DuplicateWorkflowError,
    GovernanceKernelError,
    InvalidTransitionError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
    WorkflowNotFoundError,
)
from governance_kernel.logging_config import LogContext, get_logger

logger = get_logger("services.workflow_engine")

# Outcome codes for the workflow_transition trace record
OUTCOME_SUCCESS = "success"
OUTCOME_UNAUTHORIZED = "unauthorized"
OUTCOME_INVALID_TRANSITION = "invalid_transition"
OUTCOME_VALIDATION_FAILED = "validation_failed"
OUTCOME_CONFLICT = "conflict"
OUTCOME_NOT_FOUND = "not_found"
OUTCOME_ERROR = "error"

_OUTCOMES: tuple[tuple[type[GovernanceKernelError], str], ...] = (
    (UnauthorizedError, OUTCOME_UNAUTHORIZED),
    (InvalidTransitionError, OUTCOME_INVALID_TRANSITION),
    (ValidationError, OUTCOME_VALIDATION_FAILED),
    (ConflictError, OUTCOME_CONFLICT),
    (NotFoundError, OUTCOME_NOT_FOUND),
)


def _outcome_for(exc: GovernanceKernelError) -> str:
    for exc_type, outcome in _OUTCOMES:
        if isinstance(exc, exc_type):
            return outcome
    return OUTCOME_ERROR


def _emit_workflow_trace(
    operation: str,
    workflow_id: UUID | None,
    outcome: str,
    duration_ms: float,
    *,
    step_number: int | None = None,
    status: str | None = None,
    error_code: str | None = None,
) -> None:
    """One structured record per workflow operation, success or not."""
    record: dict[str, Any] = {
        "operation": operation,
        "target_workflow_id": str(workflow_id) if workflow_id is not None else None,
        "outcome": outcome,
        "duration_ms": round(duration_ms, 3),
    }
    if step_number is not None:
        record["step_number"] = step_number
    if status is not None:
        record["workflow_status"] = status
    if error_code is not None:
        record["error_code"] = error_code
    if outcome == OUTCOME_SUCCESS:
        logger.info("workflow_transition", extra=record)
    else:
        logger.warning("workflow_transition", extra=record)


@dataclass(frozen=True)
class BulkReviewError:
    workflow_id: UUID
    code: str
    message: str


@dataclass(frozen=True)
class BulkReviewResult:
    """Per-workflow outcome of a bulk review.  One failure never stops the rest."""

    succeeded: tuple[UUID, ...] = ()
    failed: tuple[UUID, ...] = ()
    errors: tuple[BulkReviewError, ...] = ()

    @property
    def success_count(self) -> int:
        return len(self.succeeded)

    @property
    def failure_count(self) -> int:
        return len(self.failed)


class WorkflowEngine:
    """Coordinates workflow transitions for one role catalog and chain.

    Contract:
        Every mutating call returns the saved aggregate (with its new
        version) or raises a typed ``GovernanceKernelError``.

    Guarantees:
        - Concurrent calls on the same workflow id are serialized.
        - A losing racer sees ``StaleStepError`` or ``WorkflowTerminalError``
          from re-validation, never a double-applied transition.

    Non-goals:
        Retrying.  ``ConflictError`` surfaces to the caller; see
        ``governance_services.retry.retry_on_conflict``.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        catalog: RoleCatalog,
        chain: ApprovalChain = DEFAULT_APPROVAL_CHAIN,
        clock: Clock | None = None,
        event_sink: WorkflowEventSink | None = None,
        id_factory: Callable[[], UUID] = uuid4,
    ) -> None:
        missing = [r for r in chain.roles if r not in catalog]
        if missing:
            raise ValueError(f"Approval chain roles missing from catalog: {missing}")
        self._repository = repository
        self._catalog = catalog
        self._chain = chain
        self._clock = clock or SystemClock()
        self._event_sink = event_sink
        self._id_factory = id_factory
        self._locks: dict[Hashable, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @property
    def chain(self) -> ApprovalChain:
        return self._chain

    @property
    def catalog(self) -> RoleCatalog:
        return self._catalog

    # -----------------------------------------------------------------
    # Locking
    # -----------------------------------------------------------------

    def _lock_for(self, key: Hashable) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    # -----------------------------------------------------------------
    # Reads (lock-free)
    # -----------------------------------------------------------------

    def get_workflow(self, workflow_id: UUID) -> ApprovalWorkflow:
        workflow = self._repository.load_workflow(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(str(workflow_id))
        return workflow

    def active_workflow_for(self, subject_id: str) -> ApprovalWorkflow | None:
        return self._repository.load_active_workflow_for_subject(subject_id)

    def pending_reviews(self, principal: Principal) -> list[ApprovalWorkflow]:
        return pending_reviews_for(
            principal,
            self._repository.list_workflows(WorkflowStatus.IN_PROGRESS),
            self._catalog,
        )

    def submitted_pending_review(self, creator_id: str) -> list[ApprovalWorkflow]:
        return submitted_pending_review(
            creator_id, self._repository.list_workflows(WorkflowStatus.IN_PROGRESS),
        )

    # -----------------------------------------------------------------
    # Create
    # -----------------------------------------------------------------

    def create_workflow(
        self,
        subject_id: str,
        owner_project_id: str,
        creator_id: str,
        reviewer_pool: Sequence[Principal] | None = None,
    ) -> ApprovalWorkflow:
        """Materialize a workflow for ``subject_id``: step 1 InReview, rest Pending."""
        t0 = time.monotonic()
        with LogContext.bind(subject_id=subject_id, principal_id=creator_id):
            try:
                for name, value in (
                    ("subject_id", subject_id),
                    ("owner_project_id", owner_project_id),
                    ("creator_id", creator_id),
                ):
                    if not value or not str(value).strip():
                        raise ValidationError(f"{name} must not be empty")

                with self._lock_for(("subject", subject_id)):
                    live = self._repository.load_active_workflow_for_subject(subject_id)
                    if live is not None:
                        raise DuplicateWorkflowError(subject_id, str(live.id))
                    assignees = (
                        select_assignees(
                            self._chain, owner_project_id, reviewer_pool, self._catalog,
                        )
                        if reviewer_pool
                        else None
                    )
                    workflow = new_workflow(
                        subject_id=subject_id,
                        owner_project_id=owner_project_id,
                        creator_id=creator_id,
                        chain=self._chain,
                        now=self._clock.now(),
                        assignees=assignees,
                        id_factory=self._id_factory,
                    )
                    saved = self._repository.save_workflow(workflow, expected_version=0)
            except GovernanceKernelError as exc:
                _emit_workflow_trace(
                    "create", None, _outcome_for(exc),
                    (time.monotonic() - t0) * 1000, error_code=exc.code,
                )
                raise

            with LogContext.bind(workflow_id=str(saved.id)):
                _emit_workflow_trace(
                    "create", saved.id, OUTCOME_SUCCESS,
                    (time.monotonic() - t0) * 1000,
                    step_number=1, status=saved.status.value,
                )
        self._publish(
            self._event(WorkflowEventType.WORKFLOW_CREATED, saved, creator_id),
            *self._review_requested(saved),
        )
        return saved

    # -----------------------------------------------------------------
    # Transitions
    # -----------------------------------------------------------------

    def approve(
        self,
        workflow_id: UUID,
        step_id: UUID,
        principal: Principal,
        comment: str | None = None,
    ) -> ApprovalWorkflow:
        def decide(workflow: ApprovalWorkflow) -> ApprovalWorkflow:
            step = validate_review_target(workflow, step_id)
            actor = self._review_actor(principal, workflow, step, "approve this step")
            return approve_step(
                workflow, step_id, actor, self._clock.now(), comment,
                id_factory=self._id_factory,
            )

        saved = self._mutate("approve", workflow_id, principal, decide)
        self._publish_decision(saved, step_id, WorkflowEventType.STEP_APPROVED, principal)
        return saved

    def reject(
        self,
        workflow_id: UUID,
        step_id: UUID,
        principal: Principal,
        reason: str,
    ) -> ApprovalWorkflow:
        def decide(workflow: ApprovalWorkflow) -> ApprovalWorkflow:
            step = validate_review_target(workflow, step_id)
            require_reason(reason, "reject a step")
            actor = self._review_actor(principal, workflow, step, "reject this step")
            return reject_step(
                workflow, step_id, actor, reason, self._clock.now(),
                id_factory=self._id_factory,
            )

        saved = self._mutate("reject", workflow_id, principal, decide)
        self._publish_decision(saved, step_id, WorkflowEventType.STEP_REJECTED, principal)
        return saved

    def skip(
        self,
        workflow_id: UUID,
        step_id: UUID,
        principal: Principal,
        reason: str,
    ) -> ApprovalWorkflow:
        def decide(workflow: ApprovalWorkflow) -> ApprovalWorkflow:
            step = validate_review_target(workflow, step_id)
            ensure_skippable(workflow, step)
            require_reason(reason, "skip a step")
            actor = self._review_actor(
                principal, workflow, step, "skip this step", skip=True,
            )
            return skip_step(
                workflow, step_id, actor, reason, self._clock.now(),
                id_factory=self._id_factory,
            )

        saved = self._mutate("skip", workflow_id, principal, decide)
        self._publish_decision(saved, step_id, WorkflowEventType.STEP_SKIPPED, principal)
        return saved

    def delegate(
        self,
        workflow_id: UUID,
        step_id: UUID,
        principal: Principal,
        delegate_to: Principal,
        reason: str,
    ) -> ApprovalWorkflow:
        """Hand the current step to another reviewer who can decide it.

        The current assignee, or any qualified reviewer of an unassigned
        step, may delegate.  Taking a step away from someone else needs
        the strict seniority that skipping needs.
        """
        def decide(workflow: ApprovalWorkflow) -> ApprovalWorkflow:
            step = validate_review_target(workflow, step_id)
            require_reason(reason, "delegate a step")
            actor = self._review_actor(
                principal, workflow, step, "delegate this step",
                skip=is_well_formed(principal) and assigned_elsewhere(step, principal.id),
            )
            if review_assignment(
                delegate_to, step.required_role, self._catalog, workflow.owner_project_id,
            ) is None:
                raise UnauthorizedError(
                    getattr(delegate_to, "id", None), "review this step",
                )
            return delegate_step(
                workflow, step_id, actor, delegate_to.id, reason, self._clock.now(),
                id_factory=self._id_factory,
            )

        saved = self._mutate("delegate", workflow_id, principal, decide)
        step = saved.step_by_id(step_id)
        self._publish(
            self._event(
                WorkflowEventType.STEP_DELEGATED, saved, principal.id, step,
                body=step.comments[-1].body,
            ),
            *self._review_requested(saved),
        )
        return saved

    def add_comment(
        self,
        workflow_id: UUID,
        step_id: UUID,
        principal: Principal,
        body: str,
        kind: CommentKind | str = CommentKind.COMMENT,
    ) -> ApprovalWorkflow:
        """Append to any step, current or historical, of an in-progress workflow."""
        def decide(workflow: ApprovalWorkflow) -> ApprovalWorkflow:
            ensure_not_terminal(workflow)
            find_step(workflow, step_id)
            validate_comment(step_id, body, kind)
            actor = self._participant_actor(principal)
            return append_comment(
                workflow, step_id, actor, body, self._clock.now(), kind,
                id_factory=self._id_factory,
            )

        saved = self._mutate("comment", workflow_id, principal, decide)
        step = saved.step_by_id(step_id)
        self._publish(
            self._event(
                WorkflowEventType.COMMENT_ADDED, saved, principal.id, step,
                body=step.comments[-1].body if step and step.comments else "",
            )
        )
        return saved

    # -----------------------------------------------------------------
    # Bulk review
    # -----------------------------------------------------------------

    def bulk_approve(
        self,
        workflow_ids: Iterable[UUID],
        principal: Principal,
        comment: str | None = None,
    ) -> BulkReviewResult:
        return self._bulk(
            workflow_ids,
            lambda wid, sid: self.approve(wid, sid, principal, comment),
        )

    def bulk_reject(
        self,
        workflow_ids: Iterable[UUID],
        principal: Principal,
        reason: str,
    ) -> BulkReviewResult:
        return self._bulk(
            workflow_ids,
            lambda wid, sid: self.reject(wid, sid, principal, reason),
        )

    def _bulk(
        self,
        workflow_ids: Iterable[UUID],
        apply: Callable[[UUID, UUID], ApprovalWorkflow],
    ) -> BulkReviewResult:
        succeeded: list[UUID] = []
        failed: list[UUID] = []
        errors: list[BulkReviewError] = []
        # One correlation id ties the per-workflow traces of a batch together.
        with LogContext.bind(correlation_id=str(uuid4())):
            for workflow_id in workflow_ids:
                try:
                    workflow = self.get_workflow(workflow_id)
                    ensure_not_terminal(workflow)
                    apply(workflow_id, workflow.current_step.id)
                except GovernanceKernelError as exc:
                    failed.append(workflow_id)
                    errors.append(BulkReviewError(workflow_id, exc.code, str(exc)))
                else:
                    succeeded.append(workflow_id)
            logger.info(
                "bulk_review_completed",
                extra={"succeeded": len(succeeded), "failed": len(failed)},
            )
        return BulkReviewResult(tuple(succeeded), tuple(failed), tuple(errors))

    # -----------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------

    def _mutate(
        self,
        operation: str,
        workflow_id: UUID,
        principal: Principal,
        decide: Callable[[ApprovalWorkflow], ApprovalWorkflow],
    ) -> ApprovalWorkflow:
        t0 = time.monotonic()
        principal_id = getattr(principal, "id", None)
        with LogContext.bind(
            workflow_id=str(workflow_id),
            principal_id=principal_id if isinstance(principal_id, str) else None,
        ):
            step_number = None
            try:
                with self._lock_for(workflow_id):
                    workflow = self._repository.load_workflow(workflow_id)
                    if workflow is None:
                        raise WorkflowNotFoundError(str(workflow_id))
                    step_number = workflow.current_step_number
                    updated = decide(workflow)
                    saved = self._repository.save_workflow(
                        updated, expected_version=workflow.version,
                    )
            except GovernanceKernelError as exc:
                _emit_workflow_trace(
                    operation, workflow_id, _outcome_for(exc),
                    (time.monotonic() - t0) * 1000,
                    step_number=step_number, error_code=exc.code,
                )
                raise
            _emit_workflow_trace(
                operation, workflow_id, OUTCOME_SUCCESS,
                (time.monotonic() - t0) * 1000,
                step_number=step_number, status=saved.status.value,
            )
        return saved

    def _review_actor(
        self,
        principal: Principal,
        workflow: ApprovalWorkflow,
        step: ApprovalStep,
        operation: str,
        *,
        skip: bool = False,
    ) -> ReviewActor:
        assignment = review_assignment(
            principal, step.required_role, self._catalog,
            workflow.owner_project_id, skip=skip,
        )
        if assignment is None:
            raise UnauthorizedError(getattr(principal, "id", None), operation)
        if not skip and assigned_elsewhere(step, principal.id):
            raise UnauthorizedError(principal.id, operation)
        return ReviewActor(principal.id, principal.label, assignment.role_name)

    def _participant_actor(self, principal: Principal) -> ReviewActor:
        """Any recognized participant may comment: one active assignment suffices."""
        if not is_well_formed(principal):
            raise UnauthorizedError(getattr(principal, "id", None), "comment")
        if is_global_admin(principal):
            return ReviewActor(principal.id, principal.label, GLOBAL_ADMIN_ROLE)
        assignment = most_senior_assignment(principal, self._catalog)
        if assignment is None:
            raise UnauthorizedError(principal.id, "comment")
        return ReviewActor(principal.id, principal.label, assignment.role_name)

    # -----------------------------------------------------------------
    # Events
    # -----------------------------------------------------------------

    def _event(
        self,
        event_type: WorkflowEventType,
        workflow: ApprovalWorkflow,
        actor_id: str | None,
        step: ApprovalStep | None = None,
        **fields: Any,
    ) -> WorkflowEvent:
        return WorkflowEvent(
            event_id=self._id_factory(),
            event_type=event_type,
            workflow_id=workflow.id,
            subject_id=workflow.subject_id,
            occurred_at=self._clock.now(),
            actor_id=actor_id,
            step_id=step.id if step is not None else None,
            step_number=step.step_number if step is not None else None,
            **fields,
        )

    def _review_requested(self, workflow: ApprovalWorkflow) -> list[WorkflowEvent]:
        notice = review_request_notice(workflow, self._catalog)
        if notice is None:
            return []
        return [
            self._event(
                WorkflowEventType.REVIEW_REQUESTED,
                workflow,
                None,
                workflow.current_step,
                recipient_id=notice.recipient_id,
                title=notice.title,
                message=notice.message,
            )
        ]

    def _publish_decision(
        self,
        saved: ApprovalWorkflow,
        step_id: UUID,
        event_type: WorkflowEventType,
        principal: Principal,
    ) -> None:
        step = saved.step_by_id(step_id)
        events = [
            self._event(
                event_type, saved, principal.id, step,
                body=step.comments[-1].body if step and step.comments else "",
            )
        ]
        if saved.status == WorkflowStatus.APPROVED:
            events.append(self._event(WorkflowEventType.WORKFLOW_APPROVED, saved, principal.id))
        elif saved.status == WorkflowStatus.REJECTED:
            events.append(self._event(WorkflowEventType.WORKFLOW_REJECTED, saved, principal.id))
        else:
            events.extend(self._review_requested(saved))
        self._publish(*events)

    def _publish(self, *events: WorkflowEvent) -> None:
        if self._event_sink is None:
            return
        for event in events:
            try:
                self._event_sink.publish(event)
            except Exception:
                # Delivery is fire-and-forget; the saved mutation stands.
                logger.error(
                    "event_publish_failed",
                    extra={
                        "event_type": event.event_type.value,
                        "event_workflow_id": str(event.workflow_id),
                    },
                    exc_info=True,
                )
