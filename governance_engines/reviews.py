"""
governance_engines.reviews -- Review queues, assignee selection, notices.

Pure queries over workflow aggregates: which workflows wait on a given
reviewer, which of a submitter's reports are still in review, who in a
reviewer pool should own each step, and the human-readable notice sent
when a step enters review.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from governance_kernel.domain.roles import Principal, RoleCatalog
from governance_kernel.domain.workflow import (
    ApprovalChain,
    ApprovalStep,
    ApprovalWorkflow,
    StepStatus,
    WorkflowStatus,
)
from governance_engines.permissions import review_assignment

_FALLBACK_DISPLAY_NAMES: dict[str, str] = {
    "branch-admin": "Branch Administrator",
    "project-admin": "Project Administrator",
    "country-admin": "Country Administrator",
    "global-admin": "Global Administrator",
}


@dataclass(frozen=True)
class ReviewNotice:
    recipient_id: str | None
    title: str
    message: str


def role_display_name(role_name: str, catalog: RoleCatalog | None = None) -> str:
    if catalog is not None:
        role = catalog.get(role_name)
        if role is not None and role.display_name:
            return role.display_name
    return _FALLBACK_DISPLAY_NAMES.get(role_name, role_name)


def assigned_elsewhere(step: ApprovalStep, principal_id: str) -> bool:
    """True when the step has an assignee and it is not ``principal_id``."""
    return step.assigned_principal_id is not None and step.assigned_principal_id != principal_id


def pending_reviews_for(
    principal: Principal,
    workflows: Iterable[ApprovalWorkflow],
    catalog: RoleCatalog,
) -> list[ApprovalWorkflow]:
    """Workflows whose current InReview step this principal can act on.

    A step assigned to someone else is excluded even when the principal
    is senior enough.
    """
    pending = []
    for workflow in workflows:
        if workflow.status != WorkflowStatus.IN_PROGRESS:
            continue
        step = workflow.current_step
        if step is None or step.status != StepStatus.IN_REVIEW:
            continue
        if assigned_elsewhere(step, principal.id):
            continue
        if review_assignment(
            principal, step.required_role, catalog, workflow.owner_project_id,
        ) is not None:
            pending.append(workflow)
    return pending


def submitted_pending_review(
    creator_id: str, workflows: Iterable[ApprovalWorkflow],
) -> list[ApprovalWorkflow]:
    return [
        w for w in workflows
        if w.created_by == creator_id and w.status == WorkflowStatus.IN_PROGRESS
    ]


def select_assignees(
    chain: ApprovalChain,
    owner_project_id: str,
    reviewer_pool: Sequence[Principal],
    catalog: RoleCatalog,
) -> list[str | None]:
    """First pool member with sufficient authority for each step, else None."""
    return [
        next(
            (
                p.id for p in reviewer_pool
                if review_assignment(p, role, catalog, owner_project_id) is not None
            ),
            None,
        )
        for role in chain.roles
    ]


def review_request_notice(
    workflow: ApprovalWorkflow,
    catalog: RoleCatalog | None = None,
    subject_name: str | None = None,
) -> ReviewNotice | None:
    """Notice for the assignee of the current step, or None when terminal."""
    step = workflow.current_step
    if step is None:
        return None
    name = subject_name or workflow.subject_id
    return ReviewNotice(
        recipient_id=step.assigned_principal_id,
        title=f"Report Review Required: {name}",
        message=(
            f'A report "{name}" requires your review and approval at the '
            f"{role_display_name(step.required_role, catalog)} level."
        ),
    )
