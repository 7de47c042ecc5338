"""
Workflow events handed to downstream notification collaborators.

Events are published after a successful save.  Sinks are fire-and-forget:
a sink failure never rolls back the mutation that produced the event.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Protocol
from uuid import UUID


class WorkflowEventType(str, Enum):
    WORKFLOW_CREATED = "workflow_created"
    STEP_APPROVED = "step_approved"
    STEP_REJECTED = "step_rejected"
    STEP_SKIPPED = "step_skipped"
    STEP_DELEGATED = "step_delegated"
    COMMENT_ADDED = "comment_added"
    WORKFLOW_APPROVED = "workflow_approved"
    WORKFLOW_REJECTED = "workflow_rejected"
    REVIEW_REQUESTED = "review_requested"


@dataclass(frozen=True)
class WorkflowEvent:
    """Immutable notification of one workflow change.

    ``recipient_id``, ``title`` and ``message`` are filled for
    ``REVIEW_REQUESTED`` events addressed to a step's assignee.
    """

    event_id: UUID
    event_type: WorkflowEventType
    workflow_id: UUID
    subject_id: str
    occurred_at: datetime
    actor_id: str | None = None
    step_id: UUID | None = None
    step_number: int | None = None
    body: str = ""
    recipient_id: str | None = None
    title: str = ""
    message: str = ""


class WorkflowEventSink(Protocol):
    """Receives workflow events for downstream delivery."""

    def publish(self, event: WorkflowEvent) -> None:
        ...
