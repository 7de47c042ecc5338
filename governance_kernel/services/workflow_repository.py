"""
governance_kernel.services.workflow_repository -- SQL persistence for workflows.

Responsibility:
    Implements the ``WorkflowRepository`` port on a SQLAlchemy session:
    load by id, load the live workflow for a subject, list, and save with
    an optimistic compare-and-swap on ``version``.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Invariants enforced:
    - Compare-and-swap: an update is a single
      ``UPDATE approval_workflows ... WHERE workflow_id = :id AND
      version = :expected AND status = 'in_progress'``.  Zero rows
      matched means someone else won.
    - Terminal workflows are never rewritten (status guard in the CAS).
    - Comments are inserted, never updated.  The rows already stored for
      a step must be a prefix of the aggregate's comment list.
    - Flush only, never commit: the caller owns the transaction.

Failure modes:
    - OptimisticLockError on version mismatch or a missing row.
    - WorkflowTerminalError when saving over an approved/rejected workflow.
    - DuplicateWorkflowError when inserting a second live workflow for a
      subject already visible to this session.
    - ImmutabilityViolationError if the aggregate drops or rewrites a
      stored comment.
"""

from __future__ import annotations

from dataclasses import replace
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from governance_kernel.domain.workflow import (
    ApprovalWorkflow,
    WorkflowStatus,
)
from governance_kernel.exceptions import (
    DuplicateWorkflowError,
    ImmutabilityViolationError,
    OptimisticLockError,
    WorkflowTerminalError,
)
from governance_kernel.logging_config import get_logger
from governance_kernel.models.workflow import (
    ApprovalStepModel,
    ApprovalWorkflowModel,
    WorkflowCommentModel,
)

logger = get_logger("services.workflow_repository")

_STEP_FIELDS = (
    "status",
    "assigned_principal_id",
    "submitted_at",
    "reviewed_at",
    "is_current_step",
)


class SqlAlchemyWorkflowRepository:
    """Workflow repository backed by a SQLAlchemy session."""

    def __init__(self, session: Session) -> None:
        self._session = session

    # -----------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------

    def load_workflow(self, workflow_id: UUID) -> ApprovalWorkflow | None:
        model = self._session.execute(
            select(ApprovalWorkflowModel)
            .where(ApprovalWorkflowModel.workflow_id == workflow_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def load_active_workflow_for_subject(
        self, subject_id: str,
    ) -> ApprovalWorkflow | None:
        model = self._session.execute(
            select(ApprovalWorkflowModel)
            .where(
                ApprovalWorkflowModel.subject_id == subject_id,
                ApprovalWorkflowModel.status == WorkflowStatus.IN_PROGRESS.value,
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def list_workflows(
        self, status: WorkflowStatus | None = None,
    ) -> list[ApprovalWorkflow]:
        stmt = select(ApprovalWorkflowModel).order_by(
            ApprovalWorkflowModel.created_at, ApprovalWorkflowModel.workflow_id,
        )
        if status is not None:
            stmt = stmt.where(ApprovalWorkflowModel.status == status.value)
        models = self._session.execute(
            stmt.execution_options(populate_existing=True)
        ).scalars().all()
        return [m.to_dto() for m in models]

    # -----------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------

    def save_workflow(
        self, workflow: ApprovalWorkflow, expected_version: int,
    ) -> ApprovalWorkflow:
        if expected_version == 0:
            self._insert(workflow)
        else:
            self._compare_and_swap(workflow, expected_version)
            self._sync_steps(workflow)

        self._session.flush()
        self._session.expire_all()

        new_version = expected_version + 1
        logger.debug(
            "workflow_saved",
            extra={
                "workflow_id": str(workflow.id),
                "version": new_version,
                "status": workflow.status.value,
            },
        )
        return replace(workflow, version=new_version)

    def _insert(self, workflow: ApprovalWorkflow) -> None:
        existing = self._session.execute(
            select(ApprovalWorkflowModel.version).where(
                ApprovalWorkflowModel.workflow_id == workflow.id,
            )
        ).scalar_one_or_none()
        if existing is not None:
            raise OptimisticLockError("ApprovalWorkflow", str(workflow.id), 0, existing)

        live = self._session.execute(
            select(ApprovalWorkflowModel.workflow_id).where(
                ApprovalWorkflowModel.subject_id == workflow.subject_id,
                ApprovalWorkflowModel.status == WorkflowStatus.IN_PROGRESS.value,
            )
        ).scalar_one_or_none()
        if live is not None and not workflow.is_terminal:
            raise DuplicateWorkflowError(workflow.subject_id, str(live))

        # Parents flushed before children: the relationships are view-only.
        self._session.add(ApprovalWorkflowModel.from_dto(workflow, version=1))
        self._session.flush()
        for step in workflow.steps:
            self._session.add(ApprovalStepModel.from_dto(step, workflow.id))
        self._session.flush()
        for step in workflow.steps:
            for sequence, comment in enumerate(step.comments, start=1):
                self._session.add(
                    WorkflowCommentModel.from_dto(comment, workflow.id, sequence)
                )

    def _compare_and_swap(
        self, workflow: ApprovalWorkflow, expected_version: int,
    ) -> None:
        result = self._session.execute(
            update(ApprovalWorkflowModel)
            .where(
                ApprovalWorkflowModel.workflow_id == workflow.id,
                ApprovalWorkflowModel.version == expected_version,
                ApprovalWorkflowModel.status == WorkflowStatus.IN_PROGRESS.value,
            )
            .values(
                current_step_number=workflow.current_step_number,
                status=workflow.status.value,
                final_decision_at=workflow.final_decision_at,
                final_decision_by=workflow.final_decision_by,
                version=expected_version + 1,
            )
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount == 1:
            return

        row = self._session.execute(
            select(ApprovalWorkflowModel.version, ApprovalWorkflowModel.status)
            .where(ApprovalWorkflowModel.workflow_id == workflow.id)
        ).one_or_none()
        if row is not None and row.version == expected_version:
            raise WorkflowTerminalError(str(workflow.id), row.status)
        logger.warning(
            "workflow_version_conflict",
            extra={
                "workflow_id": str(workflow.id),
                "expected_version": expected_version,
                "actual_version": row.version if row is not None else None,
            },
        )
        raise OptimisticLockError(
            "ApprovalWorkflow",
            str(workflow.id),
            expected_version,
            row.version if row is not None else None,
        )

    def _sync_steps(self, workflow: ApprovalWorkflow) -> None:
        step_models = {
            m.step_id: m
            for m in self._session.execute(
                select(ApprovalStepModel).where(
                    ApprovalStepModel.workflow_id == workflow.id,
                )
            ).scalars()
        }
        stored_comment_ids: dict[UUID, list[UUID]] = {}
        for step_id, comment_id in self._session.execute(
            select(WorkflowCommentModel.step_id, WorkflowCommentModel.comment_id)
            .where(WorkflowCommentModel.workflow_id == workflow.id)
            .order_by(WorkflowCommentModel.sequence)
        ):
            stored_comment_ids.setdefault(step_id, []).append(comment_id)

        for step in workflow.steps:
            model = step_models[step.id]
            values = {
                "status": step.status.value,
                "assigned_principal_id": step.assigned_principal_id,
                "submitted_at": step.submitted_at,
                "reviewed_at": step.reviewed_at,
                "is_current_step": step.is_current_step,
            }
            # Assign only net changes so untouched steps are never marked dirty.
            for field_name in _STEP_FIELDS:
                if getattr(model, field_name) != values[field_name]:
                    setattr(model, field_name, values[field_name])

            stored = stored_comment_ids.get(step.id, [])
            if [c.id for c in step.comments[: len(stored)]] != stored:
                raise ImmutabilityViolationError(
                    entity_type="WorkflowComment",
                    entity_id=str(step.id),
                    reason="Stored comments must remain a prefix of the step's comments",
                )
            for sequence, comment in enumerate(
                step.comments[len(stored):], start=len(stored) + 1,
            ):
                self._session.add(
                    WorkflowCommentModel.from_dto(comment, workflow.id, sequence)
                )
