"""
Module: governance_kernel.models.workflow
Responsibility: ORM persistence for approval workflows, their steps, and
    the append-only comment trail.

Architecture position: Kernel > Models.  May import from db/base.py,
    exceptions.py and (lazily, for DTO conversion) domain/.

Invariants enforced:
    - One live workflow per subject: partial UNIQUE index on subject_id
      where status = 'in_progress' (PostgreSQL and SQLite).
    - Valid status values: CHECK constraints on workflow, step and comment
      status/kind columns.
    - Steps are unique per (workflow_id, step_number).
    - Comments are append-only: ORM listeners reject UPDATE and DELETE.
    - Steps whose stored status is terminal accept no further changes.

Failure modes:
    - IntegrityError on a second in-progress workflow for a subject.
    - ImmutabilityViolationError on comment UPDATE/DELETE or on changing a
      decided step.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    event,
    inspect,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from governance_kernel.db.base import Base, UUIDString
from governance_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from governance_kernel.domain.workflow import (
        ApprovalStep,
        ApprovalWorkflow,
        Comment,
    )

_TERMINAL_STEP_VALUES = frozenset({"approved", "rejected", "skipped"})


class ApprovalWorkflowModel(Base):
    """Persistent workflow aggregate root.

    Contract:
        ``version`` is bumped by the repository's compare-and-swap UPDATE;
        nothing else writes it.

    Guarantees:
        - At most one row per subject_id has status 'in_progress'.
    """

    __tablename__ = "approval_workflows"

    __table_args__ = (
        CheckConstraint(
            "status IN ('in_progress', 'approved', 'rejected')",
            name="ck_approval_workflows_valid_status",
        ),
        CheckConstraint(
            "version >= 1",
            name="ck_approval_workflows_version_positive",
        ),
        Index(
            "ix_approval_workflows_active_subject",
            "subject_id",
            unique=True,
            postgresql_where=text("status = 'in_progress'"),
            sqlite_where=text("status = 'in_progress'"),
        ),
        Index("ix_approval_workflows_status", "status", "created_at"),
    )

    workflow_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    subject_id: Mapped[str] = mapped_column(String(200), nullable=False)
    owner_project_id: Mapped[str] = mapped_column(String(200), nullable=False)
    created_by: Mapped[str] = mapped_column(String(200), nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    current_step_number: Mapped[int] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="in_progress",
    )
    final_decision_at: Mapped[datetime | None] = mapped_column(nullable=True)
    final_decision_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    version: Mapped[int] = mapped_column(nullable=False, default=1)

    steps: Mapped[list["ApprovalStepModel"]] = relationship(
        "ApprovalStepModel",
        primaryjoin="ApprovalWorkflowModel.workflow_id == ApprovalStepModel.workflow_id",
        foreign_keys="ApprovalStepModel.workflow_id",
        order_by="ApprovalStepModel.step_number",
        lazy="selectin",
        viewonly=True,
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalWorkflow {self.workflow_id} subject={self.subject_id} "
            f"status={self.status} v{self.version}>"
        )

    def to_dto(self) -> ApprovalWorkflow:
        """Convert ORM model to frozen domain aggregate."""
        from governance_kernel.domain.workflow import (
            ApprovalWorkflow as ApprovalWorkflowDTO,
            WorkflowStatus,
        )

        return ApprovalWorkflowDTO(
            id=self.workflow_id,
            subject_id=self.subject_id,
            owner_project_id=self.owner_project_id,
            created_by=self.created_by,
            created_at=self.created_at,
            steps=tuple(s.to_dto() for s in self.steps),
            current_step_number=self.current_step_number,
            status=WorkflowStatus(self.status),
            final_decision_at=self.final_decision_at,
            final_decision_by=self.final_decision_by,
            version=self.version,
        )

    @classmethod
    def from_dto(cls, dto: ApprovalWorkflow, version: int) -> ApprovalWorkflowModel:
        return cls(
            workflow_id=dto.id,
            subject_id=dto.subject_id,
            owner_project_id=dto.owner_project_id,
            created_by=dto.created_by,
            created_at=dto.created_at,
            current_step_number=dto.current_step_number,
            status=dto.status.value,
            final_decision_at=dto.final_decision_at,
            final_decision_by=dto.final_decision_by,
            version=version,
        )


class ApprovalStepModel(Base):
    """Persistent approval step.  Mutable until its status is decided."""

    __tablename__ = "approval_workflow_steps"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'in_review', 'approved', 'rejected', 'skipped')",
            name="ck_approval_workflow_steps_valid_status",
        ),
        UniqueConstraint(
            "workflow_id", "step_number",
            name="uq_approval_workflow_steps_number",
        ),
    )

    step_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    workflow_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_workflows.workflow_id"),
        nullable=False,
        index=True,
    )
    step_number: Mapped[int] = mapped_column(nullable=False)
    required_role: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    assigned_principal_id: Mapped[str | None] = mapped_column(
        String(200), nullable=True,
    )
    submitted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    is_current_step: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )

    comments: Mapped[list["WorkflowCommentModel"]] = relationship(
        "WorkflowCommentModel",
        primaryjoin="ApprovalStepModel.step_id == WorkflowCommentModel.step_id",
        foreign_keys="WorkflowCommentModel.step_id",
        order_by="WorkflowCommentModel.sequence",
        lazy="selectin",
        viewonly=True,
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalStep {self.step_id} #{self.step_number} "
            f"{self.required_role} status={self.status}>"
        )

    def to_dto(self) -> ApprovalStep:
        from governance_kernel.domain.workflow import (
            ApprovalStep as ApprovalStepDTO,
            StepStatus,
        )

        return ApprovalStepDTO(
            id=self.step_id,
            step_number=self.step_number,
            required_role=self.required_role,
            status=StepStatus(self.status),
            assigned_principal_id=self.assigned_principal_id,
            submitted_at=self.submitted_at,
            reviewed_at=self.reviewed_at,
            comments=tuple(c.to_dto() for c in self.comments),
            is_current_step=self.is_current_step,
        )

    @classmethod
    def from_dto(cls, dto: ApprovalStep, workflow_id: UUID) -> ApprovalStepModel:
        return cls(
            step_id=dto.id,
            workflow_id=workflow_id,
            step_number=dto.step_number,
            required_role=dto.required_role,
            status=dto.status.value,
            assigned_principal_id=dto.assigned_principal_id,
            submitted_at=dto.submitted_at,
            reviewed_at=dto.reviewed_at,
            is_current_step=dto.is_current_step,
        )


class WorkflowCommentModel(Base):
    """Persistent comment.  Append-only: no UPDATE, no DELETE."""

    __tablename__ = "approval_workflow_comments"

    __table_args__ = (
        CheckConstraint(
            "kind IN ('comment', 'approval', 'rejection', 'change_request')",
            name="ck_approval_workflow_comments_valid_kind",
        ),
        UniqueConstraint(
            "step_id", "sequence",
            name="uq_approval_workflow_comments_sequence",
        ),
        Index("ix_approval_workflow_comments_workflow", "workflow_id"),
    )

    comment_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    step_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_workflow_steps.step_id"),
        nullable=False,
    )
    workflow_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    sequence: Mapped[int] = mapped_column(nullable=False)
    principal_id: Mapped[str] = mapped_column(String(200), nullable=False)
    principal_display_name: Mapped[str] = mapped_column(
        String(200), nullable=False, default="",
    )
    role_at_time_of_comment: Mapped[str] = mapped_column(String(100), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<WorkflowComment {self.comment_id} step={self.step_id} kind={self.kind}>"

    def to_dto(self) -> Comment:
        from governance_kernel.domain.workflow import Comment as CommentDTO, CommentKind

        return CommentDTO(
            id=self.comment_id,
            step_id=self.step_id,
            principal_id=self.principal_id,
            principal_display_name=self.principal_display_name,
            role_at_time_of_comment=self.role_at_time_of_comment,
            body=self.body,
            timestamp=self.timestamp,
            kind=CommentKind(self.kind),
        )

    @classmethod
    def from_dto(
        cls, dto: Comment, workflow_id: UUID, sequence: int,
    ) -> WorkflowCommentModel:
        return cls(
            comment_id=dto.id,
            step_id=dto.step_id,
            workflow_id=workflow_id,
            sequence=sequence,
            principal_id=dto.principal_id,
            principal_display_name=dto.principal_display_name,
            role_at_time_of_comment=dto.role_at_time_of_comment,
            body=dto.body,
            kind=dto.kind.value,
            timestamp=dto.timestamp,
        )


# =============================================================================
# ORM-Level Immutability
# =============================================================================


def _has_column_changes(target) -> bool:
    state = inspect(target)
    return any(
        state.attrs[attr.key].history.has_changes()
        for attr in state.mapper.column_attrs
    )


@event.listens_for(ApprovalStepModel, "before_update")
def prevent_decided_step_update(mapper, connection, target):
    """A step that was approved, rejected or skipped never changes again."""
    if not _has_column_changes(target):
        return
    history = inspect(target).attrs.status.history
    previous = history.deleted[0] if history.deleted else target.status
    if previous in _TERMINAL_STEP_VALUES:
        raise ImmutabilityViolationError(
            entity_type="ApprovalStep",
            entity_id=str(target.step_id),
            reason=f"Step is {previous} -- cannot modify",
        )


@event.listens_for(WorkflowCommentModel, "before_update")
def prevent_comment_update(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="WorkflowComment",
        entity_id=str(target.comment_id),
        reason="Comments are append-only -- cannot modify",
    )


@event.listens_for(WorkflowCommentModel, "before_delete")
def prevent_comment_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="WorkflowComment",
        entity_id=str(target.comment_id),
        reason="Comments are append-only -- cannot delete",
    )
