"""
governance_services.memory_repository -- In-process workflow repository.

Responsibility:
    ``WorkflowRepository`` implementation over a dict, for single-process
    deployments and tests.  Same compare-and-swap contract as the SQL
    repository.

Invariants enforced:
    - Compare-and-swap on ``version`` under one internal lock.
    - At most one in-progress workflow per subject.
    - Terminal workflows are never overwritten.
    - Stored aggregates are frozen, so readers share them without copying.

Failure modes:
    - OptimisticLockError, WorkflowTerminalError, DuplicateWorkflowError.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from uuid import UUID

from governance_kernel.domain.workflow import ApprovalWorkflow, WorkflowStatus
from governance_kernel.exceptions import (
    DuplicateWorkflowError,
    OptimisticLockError,
    WorkflowTerminalError,
)


class InMemoryWorkflowRepository:
    """Dict-backed workflow store."""

    def __init__(self) -> None:
        self._workflows: dict[UUID, ApprovalWorkflow] = {}
        self._lock = threading.Lock()

    def load_workflow(self, workflow_id: UUID) -> ApprovalWorkflow | None:
        return self._workflows.get(workflow_id)

    def load_active_workflow_for_subject(
        self, subject_id: str,
    ) -> ApprovalWorkflow | None:
        for workflow in list(self._workflows.values()):
            if (
                workflow.subject_id == subject_id
                and workflow.status == WorkflowStatus.IN_PROGRESS
            ):
                return workflow
        return None

    def list_workflows(
        self, status: WorkflowStatus | None = None,
    ) -> list[ApprovalWorkflow]:
        workflows = sorted(
            self._workflows.values(), key=lambda w: (w.created_at, str(w.id)),
        )
        if status is None:
            return workflows
        return [w for w in workflows if w.status == status]

    def save_workflow(
        self, workflow: ApprovalWorkflow, expected_version: int,
    ) -> ApprovalWorkflow:
        with self._lock:
            stored = self._workflows.get(workflow.id)
            if expected_version == 0:
                if stored is not None:
                    raise OptimisticLockError(
                        "ApprovalWorkflow", str(workflow.id), 0, stored.version,
                    )
                live = self.load_active_workflow_for_subject(workflow.subject_id)
                if live is not None and not workflow.is_terminal:
                    raise DuplicateWorkflowError(workflow.subject_id, str(live.id))
            else:
                if stored is None or stored.version != expected_version:
                    raise OptimisticLockError(
                        "ApprovalWorkflow",
                        str(workflow.id),
                        expected_version,
                        stored.version if stored is not None else None,
                    )
                if stored.is_terminal:
                    raise WorkflowTerminalError(str(workflow.id), stored.status.value)

            saved = replace(workflow, version=expected_version + 1)
            self._workflows[workflow.id] = saved
            return saved

    def __len__(self) -> int:
        return len(self._workflows)
