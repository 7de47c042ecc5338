"""
Tests for the WorkflowEngine coordinator.

Tests cover:
- End-to-end scenarios on the four-step chain
- Create: validation, one live workflow per subject, assignee selection
- Authorization: seniority gates for approve and skip, project binding
- Assignees: only the assignee decides; delegation hands a step over
- Precondition order: not found -> terminal -> step -> stale -> reason -> authority
- Comments: historical steps, participants only, terminal rejection
- Event publication and sink-failure isolation
- Structured workflow_transition trace records
"""

from uuid import uuid4

import pytest

from governance_engines.approval_chain import workflow_invariant_violations
from governance_kernel.domain.events import WorkflowEventType
from governance_kernel.domain.workflow import (
    CommentKind,
    StepStatus,
    WorkflowStatus,
)
from governance_kernel.exceptions import (
    DuplicateWorkflowError,
    EmptyCommentError,
    FinalStepSkipError,
    InvalidCommentKindError,
    InvalidTransitionError,
    MissingReasonError,
    StaleStepError,
    StepNotFoundError,
    UnauthorizedError,
    ValidationError,
    WorkflowNotFoundError,
    WorkflowTerminalError,
)
from governance_services import InMemoryWorkflowRepository, WorkflowEngine

PROJECT_ID = "P1"
REPORT_ID = "report-2024-q1"


def step_id(workflow, number):
    return workflow.steps[number - 1].id


class TestScenarios:
    def test_approve_then_reject(self, engine, workflow, branch_admin, project_admin):
        assert [s.status for s in workflow.steps] == [
            StepStatus.IN_REVIEW, StepStatus.PENDING, StepStatus.PENDING, StepStatus.PENDING,
        ]
        assert workflow.status == WorkflowStatus.IN_PROGRESS
        assert workflow.current_step_number == 1

        wf = engine.approve(workflow.id, step_id(workflow, 1), branch_admin)
        assert wf.steps[0].status == StepStatus.APPROVED
        assert wf.steps[1].status == StepStatus.IN_REVIEW
        assert wf.current_step_number == 2

        wf = engine.reject(wf.id, step_id(wf, 2), project_admin, "incomplete data")
        assert wf.steps[1].status == StepStatus.REJECTED
        assert wf.status == WorkflowStatus.REJECTED

        with pytest.raises(InvalidTransitionError):
            engine.approve(wf.id, step_id(wf, 3), project_admin)

    def test_skip_by_more_senior_reviewer(self, engine, workflow, branch_admin, country_admin):
        wf = engine.approve(workflow.id, step_id(workflow, 1), branch_admin)
        wf = engine.skip(wf.id, step_id(wf, 2), country_admin, "pre-approved offline")
        assert wf.steps[1].status == StepStatus.SKIPPED
        assert wf.steps[2].status == StepStatus.IN_REVIEW
        assert wf.current_step_number == 3

    def test_full_approval(self, engine, workflow, reviewers, chain):
        wf = workflow
        for number, reviewer in enumerate(reviewers, start=1):
            wf = engine.approve(wf.id, step_id(wf, number), reviewer)
            assert workflow_invariant_violations(wf, chain) == []
        assert wf.status == WorkflowStatus.APPROVED
        assert wf.final_decision_by == "u-global"
        assert engine.get_workflow(wf.id) == wf

    def test_version_bumps_on_every_save(self, engine, workflow, branch_admin):
        assert workflow.version == 1
        wf = engine.approve(workflow.id, step_id(workflow, 1), branch_admin)
        assert wf.version == 2


class TestCreate:
    @pytest.mark.parametrize(
        "subject,project,creator",
        [("", "P1", "c"), ("r", " ", "c"), ("r", "P1", "")],
    )
    def test_required_fields(self, engine, subject, project, creator):
        with pytest.raises(ValidationError):
            engine.create_workflow(subject, project, creator)

    def test_one_live_workflow_per_subject(self, engine, workflow, creator):
        with pytest.raises(DuplicateWorkflowError):
            engine.create_workflow(REPORT_ID, PROJECT_ID, creator.id)

    def test_resubmission_after_rejection(self, engine, workflow, branch_admin, creator):
        engine.reject(workflow.id, step_id(workflow, 1), branch_admin, "redo")
        again = engine.create_workflow(REPORT_ID, PROJECT_ID, creator.id)
        assert again.id != workflow.id
        assert engine.active_workflow_for(REPORT_ID) == again

    def test_assignees_from_reviewer_pool(self, engine, reviewers, creator):
        wf = engine.create_workflow("r-pool", PROJECT_ID, creator.id, reviewer_pool=reviewers)
        assert [s.assigned_principal_id for s in wf.steps] == [
            "u-branch", "u-project", "u-country", "u-global",
        ]

    def test_chain_roles_must_exist_in_catalog(self, catalog):
        from governance_kernel.domain.workflow import ApprovalChain

        with pytest.raises(ValueError):
            WorkflowEngine(InMemoryWorkflowRepository(), catalog, ApprovalChain(("ghost",)))


class TestAuthorization:
    def test_equal_level_may_approve_but_not_skip(self, engine, workflow, branch_admin, project_admin):
        wf = engine.approve(workflow.id, step_id(workflow, 1), branch_admin)
        with pytest.raises(UnauthorizedError):
            engine.skip(wf.id, step_id(wf, 2), project_admin, "mine anyway")
        wf = engine.approve(wf.id, step_id(wf, 2), project_admin)
        assert wf.steps[1].status == StepStatus.APPROVED

    def test_junior_cannot_approve(self, engine, workflow, branch_admin, project_admin):
        wf = engine.approve(workflow.id, step_id(workflow, 1), branch_admin)
        with pytest.raises(UnauthorizedError) as exc_info:
            engine.approve(wf.id, step_id(wf, 2), branch_admin)
        assert str(exc_info.value) == "Insufficient authority to approve this step"

    def test_other_project_denied(self, engine, workflow, outsider):
        with pytest.raises(UnauthorizedError):
            engine.approve(workflow.id, step_id(workflow, 1), outsider)

    def test_senior_approves_junior_step(self, engine, workflow, country_admin):
        wf = engine.approve(workflow.id, step_id(workflow, 1), country_admin)
        comment = wf.steps[0].comments[-1]
        assert comment.role_at_time_of_comment == "country-admin"
        assert comment.principal_display_name == "Juma"

    def test_global_admin_cannot_skip_final_step(self, engine, workflow, reviewers, global_admin):
        wf = workflow
        for number, reviewer in enumerate(reviewers[:3], start=1):
            wf = engine.approve(wf.id, step_id(wf, number), reviewer)
        with pytest.raises(FinalStepSkipError):
            engine.skip(wf.id, step_id(wf, 4), global_admin, "self-skip")
        assert engine.get_workflow(wf.id) == wf

    def test_zero_level_assignment_rejected(self, assign):
        with pytest.raises(ValueError):
            assign("auditor", level=0)

    def test_forced_zero_level_cannot_skip(self, engine, workflow, make_principal, assign):
        assignment = assign("auditor", level=2)
        object.__setattr__(assignment, "level", 0)
        rogue = make_principal("u-rogue", assignment, permissions=("reports:approve",))
        with pytest.raises(UnauthorizedError):
            engine.skip(workflow.id, step_id(workflow, 1), rogue, "fast track")
        assert engine.get_workflow(workflow.id) == workflow

    def test_global_admin_can_skip_lower_steps(self, engine, workflow, global_admin):
        wf = engine.skip(workflow.id, step_id(workflow, 1), global_admin, "fast track")
        assert wf.steps[0].status == StepStatus.SKIPPED

    def test_unauthorized_leaves_workflow_unchanged(self, engine, workflow, outsider):
        with pytest.raises(UnauthorizedError):
            engine.reject(workflow.id, step_id(workflow, 1), outsider, "no")
        assert engine.get_workflow(workflow.id) == workflow

    def test_revoked_assignment_denied(self, engine, workflow, make_principal, assign):
        revoked = make_principal("u-rev", assign("branch-admin", project=PROJECT_ID, active=False))
        with pytest.raises(UnauthorizedError):
            engine.approve(workflow.id, step_id(workflow, 1), revoked)


class TestAssignees:
    @pytest.fixture
    def assigned(self, engine, reviewers, creator):
        return engine.create_workflow("r-assigned", PROJECT_ID, creator.id, reviewer_pool=reviewers)

    @pytest.fixture
    def second_branch_admin(self, make_principal, assign):
        return make_principal(
            "u-branch-2", assign("branch-admin", project=PROJECT_ID), display_name="Neema",
        )

    def test_only_assignee_may_approve(self, engine, assigned, branch_admin, second_branch_admin):
        with pytest.raises(UnauthorizedError):
            engine.approve(assigned.id, step_id(assigned, 1), second_branch_admin)
        assert engine.get_workflow(assigned.id) == assigned
        wf = engine.approve(assigned.id, step_id(assigned, 1), branch_admin)
        assert wf.steps[0].status == StepStatus.APPROVED

    def test_only_assignee_may_reject(self, engine, assigned, country_admin):
        with pytest.raises(UnauthorizedError):
            engine.reject(assigned.id, step_id(assigned, 1), country_admin, "no")

    def test_queue_matches_decision_rights(self, engine, assigned, branch_admin, second_branch_admin):
        assert [w.id for w in engine.pending_reviews(branch_admin)] == [assigned.id]
        assert engine.pending_reviews(second_branch_admin) == []

    def test_senior_may_still_skip(self, engine, assigned, country_admin):
        wf = engine.skip(assigned.id, step_id(assigned, 1), country_admin, "pre-approved offline")
        assert wf.steps[0].status == StepStatus.SKIPPED

    def test_delegate_hands_step_over(
        self, engine, event_sink, assigned, branch_admin, second_branch_admin,
    ):
        event_sink.clear()
        wf = engine.delegate(
            assigned.id, step_id(assigned, 1), branch_admin, second_branch_admin, "on leave",
        )
        step = wf.steps[0]
        assert step.assigned_principal_id == "u-branch-2"
        assert step.status == StepStatus.IN_REVIEW
        assert step.comments[-1].body == "Review delegated to u-branch-2: on leave"
        assert step.comments[-1].principal_id == "u-branch"
        assert wf.current_step_number == 1
        assert wf.version == assigned.version + 1
        assert workflow_invariant_violations(wf, engine.chain) == []

        assert [e.event_type for e in event_sink.events] == [
            WorkflowEventType.STEP_DELEGATED, WorkflowEventType.REVIEW_REQUESTED,
        ]
        assert event_sink.events[1].recipient_id == "u-branch-2"

        with pytest.raises(UnauthorizedError):
            engine.approve(wf.id, step_id(wf, 1), branch_admin)
        assert engine.pending_reviews(branch_admin) == []
        assert [w.id for w in engine.pending_reviews(second_branch_admin)] == [wf.id]
        wf = engine.approve(wf.id, step_id(wf, 1), second_branch_admin)
        assert wf.steps[0].comments[-1].principal_display_name == "Neema"

    def test_delegate_must_be_able_to_review(self, engine, assigned, branch_admin, outsider):
        with pytest.raises(UnauthorizedError):
            engine.delegate(assigned.id, step_id(assigned, 1), branch_admin, outsider, "busy")
        assert engine.get_workflow(assigned.id) == assigned

    def test_peer_cannot_take_step_from_assignee(
        self, engine, assigned, second_branch_admin,
    ):
        with pytest.raises(UnauthorizedError):
            engine.delegate(
                assigned.id, step_id(assigned, 1), second_branch_admin, second_branch_admin, "mine",
            )

    def test_senior_may_reassign(self, engine, assigned, country_admin, second_branch_admin):
        wf = engine.delegate(
            assigned.id, step_id(assigned, 1), country_admin, second_branch_admin, "rebalance",
        )
        assert wf.steps[0].assigned_principal_id == "u-branch-2"

    def test_unassigned_step_delegated_by_qualified_reviewer(
        self, engine, workflow, branch_admin, second_branch_admin,
    ):
        wf = engine.delegate(
            workflow.id, step_id(workflow, 1), branch_admin, second_branch_admin, "handover",
        )
        assert wf.steps[0].assigned_principal_id == "u-branch-2"
        with pytest.raises(UnauthorizedError):
            engine.approve(wf.id, step_id(wf, 1), branch_admin)

    def test_delegate_reason_required(self, engine, assigned, branch_admin, second_branch_admin):
        with pytest.raises(MissingReasonError):
            engine.delegate(
                assigned.id, step_id(assigned, 1), branch_admin, second_branch_admin, " ",
            )

    def test_delegate_only_current_step(self, engine, assigned, branch_admin, second_branch_admin):
        with pytest.raises(StaleStepError):
            engine.delegate(
                assigned.id, step_id(assigned, 2), branch_admin, second_branch_admin, "busy",
            )


class TestPreconditionOrder:
    def test_unknown_workflow(self, engine, branch_admin):
        with pytest.raises(WorkflowNotFoundError):
            engine.approve(uuid4(), uuid4(), branch_admin)

    def test_terminal_before_unknown_step(self, engine, workflow, branch_admin):
        engine.reject(workflow.id, step_id(workflow, 1), branch_admin, "no")
        with pytest.raises(WorkflowTerminalError):
            engine.approve(workflow.id, uuid4(), branch_admin)

    def test_unknown_step(self, engine, workflow, branch_admin):
        with pytest.raises(StepNotFoundError):
            engine.approve(workflow.id, uuid4(), branch_admin)

    def test_stale_before_authority(self, engine, workflow, outsider):
        with pytest.raises(StaleStepError):
            engine.approve(workflow.id, step_id(workflow, 2), outsider)

    def test_reason_before_authority(self, engine, workflow, outsider):
        with pytest.raises(MissingReasonError):
            engine.reject(workflow.id, step_id(workflow, 1), outsider, "  ")
        with pytest.raises(MissingReasonError):
            engine.skip(workflow.id, step_id(workflow, 1), outsider, "")

    def test_terminal_immutability(self, engine, workflow, reviewers, global_admin):
        wf = workflow
        for number, reviewer in enumerate(reviewers, start=1):
            wf = engine.approve(wf.id, step_id(wf, number), reviewer)
        for step in wf.steps:
            with pytest.raises(InvalidTransitionError):
                engine.approve(wf.id, step.id, global_admin)
            with pytest.raises(InvalidTransitionError):
                engine.reject(wf.id, step.id, global_admin, "late")
            with pytest.raises(InvalidTransitionError):
                engine.skip(wf.id, step.id, global_admin, "late")


class TestComments:
    def test_comment_on_historical_step(self, engine, workflow, branch_admin, project_admin):
        wf = engine.approve(workflow.id, step_id(workflow, 1), branch_admin)
        wf = engine.add_comment(
            wf.id, step_id(wf, 1), project_admin, "Attach the receipts", CommentKind.CHANGE_REQUEST,
        )
        comment = wf.steps[0].comments[-1]
        assert comment.kind == CommentKind.CHANGE_REQUEST
        assert comment.role_at_time_of_comment == "project-admin"
        assert comment.body == "Attach the receipts"
        assert wf.current_step_number == 2

    def test_any_participant_may_comment(self, engine, workflow, creator):
        wf = engine.add_comment(workflow.id, step_id(workflow, 3), creator, "FYI")
        assert wf.steps[2].comments[-1].role_at_time_of_comment == "project-officer"

    def test_principal_without_assignment_cannot_comment(self, engine, workflow, make_principal):
        with pytest.raises(UnauthorizedError):
            engine.add_comment(workflow.id, step_id(workflow, 1), make_principal("ghost"), "hi")

    def test_validation(self, engine, workflow, creator):
        with pytest.raises(EmptyCommentError):
            engine.add_comment(workflow.id, step_id(workflow, 1), creator, "   ")
        with pytest.raises(InvalidCommentKindError):
            engine.add_comment(workflow.id, step_id(workflow, 1), creator, "ok", "approval")

    def test_terminal_workflow(self, engine, workflow, branch_admin, creator):
        engine.reject(workflow.id, step_id(workflow, 1), branch_admin, "no")
        with pytest.raises(WorkflowTerminalError):
            engine.add_comment(workflow.id, step_id(workflow, 1), creator, "why?")

    def test_comments_never_shrink(self, engine, workflow, creator, branch_admin):
        before = len(workflow.comments)
        wf = engine.add_comment(workflow.id, step_id(workflow, 1), creator, "one")
        wf = engine.approve(wf.id, step_id(wf, 1), branch_admin, "fine")
        assert len(wf.comments) == before + 2
        assert [c.body for c in wf.steps[0].comments] == ["one", "fine"]


class TestQueues:
    def test_pending_reviews(self, engine, workflow, branch_admin, outsider):
        assert engine.pending_reviews(branch_admin) == [workflow]
        assert engine.pending_reviews(outsider) == []

    def test_submitted_pending_review(self, engine, workflow, creator, branch_admin):
        assert engine.submitted_pending_review(creator.id) == [workflow]
        engine.reject(workflow.id, step_id(workflow, 1), branch_admin, "no")
        assert engine.submitted_pending_review(creator.id) == []


class TestEvents:
    def test_create_publishes_created_and_review_request(self, event_sink, workflow):
        types = [e.event_type for e in event_sink.events]
        assert types == [WorkflowEventType.WORKFLOW_CREATED, WorkflowEventType.REVIEW_REQUESTED]
        request = event_sink.events[1]
        assert request.step_number == 1
        assert request.title == f"Report Review Required: {REPORT_ID}"

    def test_decision_events(self, engine, event_sink, workflow, branch_admin, project_admin):
        event_sink.clear()
        wf = engine.approve(workflow.id, step_id(workflow, 1), branch_admin)
        engine.reject(wf.id, step_id(wf, 2), project_admin, "incomplete data")
        assert [e.event_type for e in event_sink.events] == [
            WorkflowEventType.STEP_APPROVED,
            WorkflowEventType.REVIEW_REQUESTED,
            WorkflowEventType.STEP_REJECTED,
            WorkflowEventType.WORKFLOW_REJECTED,
        ]
        rejected = event_sink.of_type(WorkflowEventType.STEP_REJECTED)[0]
        assert rejected.body == "incomplete data"
        assert rejected.actor_id == "u-project"

    def test_final_approval_event(self, engine, event_sink, workflow, reviewers):
        wf = workflow
        for number, reviewer in enumerate(reviewers, start=1):
            wf = engine.approve(wf.id, step_id(wf, number), reviewer)
        assert len(event_sink.of_type(WorkflowEventType.WORKFLOW_APPROVED)) == 1

    def test_failed_operation_publishes_nothing(self, engine, event_sink, workflow, outsider):
        event_sink.clear()
        with pytest.raises(UnauthorizedError):
            engine.approve(workflow.id, step_id(workflow, 1), outsider)
        assert event_sink.events == []

    def test_sink_failure_does_not_roll_back(
        self, repository, catalog, chain, deterministic_clock, creator, branch_admin, captured_logs,
    ):
        class ExplodingSink:
            def publish(self, event):
                raise RuntimeError("mail server down")

        engine = WorkflowEngine(
            repository, catalog, chain, clock=deterministic_clock, event_sink=ExplodingSink(),
        )
        wf = engine.create_workflow("r-sink", PROJECT_ID, creator.id)
        wf = engine.approve(wf.id, step_id(wf, 1), branch_admin)
        assert engine.get_workflow(wf.id).current_step_number == 2
        failures = [r for r in captured_logs() if r["message"] == "event_publish_failed"]
        assert failures
        assert failures[0]["exc_type"] == "RuntimeError"


class TestTrace:
    def test_success_trace(self, engine, workflow, branch_admin, captured_logs):
        engine.approve(workflow.id, step_id(workflow, 1), branch_admin)
        traces = [r for r in captured_logs() if r["message"] == "workflow_transition"]
        assert len(traces) == 1
        trace = traces[0]
        assert trace["operation"] == "approve"
        assert trace["outcome"] == "success"
        assert trace["target_workflow_id"] == str(workflow.id)
        assert trace["workflow_id"] == str(workflow.id)
        assert trace["principal_id"] == "u-branch"
        assert trace["step_number"] == 1
        assert trace["level"] == "INFO"

    def test_failure_trace_carries_error_code(self, engine, workflow, outsider, captured_logs):
        with pytest.raises(UnauthorizedError):
            engine.approve(workflow.id, step_id(workflow, 1), outsider)
        trace = [r for r in captured_logs() if r["message"] == "workflow_transition"][-1]
        assert trace["outcome"] == "unauthorized"
        assert trace["error_code"] == "UNAUTHORIZED"
        assert trace["level"] == "WARNING"
