"""
Typed Exception Hierarchy for the Governance Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Authorization and workflow failures must be handled precisely. Callers
(request handlers, bulk jobs, retry loops) decide what to do by TYPE:

  - ConflictError       -> reload the workflow and re-apply (retryable)
  - InvalidTransitionError, ValidationError, UnauthorizedError,
    NotFoundError       -> terminal for the request, surface as-is

Every exception has:
  1. A TYPED class (catch by type, not by message)
  2. A CODE class attribute (machine-readable, API-safe)
  3. Structured DATA attributes (never parse the message)

Example - WRONG way to handle errors:
    try:
        engine.approve(workflow_id, step_id, principal)
    except Exception as e:
        if "stale" in str(e):  # FRAGILE
            ...

Example - RIGHT way:
    try:
        engine.approve(workflow_id, step_id, principal)
    except StaleStepError as e:
        api_response(code=e.code, workflow_id=e.workflow_id)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    GovernanceKernelError (base)
    |
    +-- UnauthorizedError
    |
    +-- InvalidTransitionError
    |   +-- StaleStepError
    |   +-- WorkflowTerminalError
    |   +-- IllegalStatusTransitionError
    |   +-- DuplicateWorkflowError
    |   +-- FinalStepSkipError
    |
    +-- ValidationError
    |   +-- MissingReasonError
    |   +-- EmptyCommentError
    |   +-- InvalidCommentKindError
    |   +-- InvalidPermissionKeyError
    |
    +-- ConflictError
    |   +-- OptimisticLockError
    |
    +-- NotFoundError
    |   +-- WorkflowNotFoundError
    |   +-- StepNotFoundError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Authorization   | UNAUTHORIZED                | Permission or seniority check failed
----------------|-----------------------------|-----------------------------------------
Transition      | STALE_STEP                  | Targeted step is not the current step
                | WORKFLOW_TERMINAL           | Workflow already approved/rejected
                | ILLEGAL_STATUS_TRANSITION   | Step/workflow status edge not allowed
                | ACTIVE_WORKFLOW_EXISTS      | Subject already has a live workflow
                | FINAL_STEP_NOT_SKIPPABLE    | Skip targeted the last step of the chain
----------------|-----------------------------|-----------------------------------------
Validation      | MISSING_REASON              | Reject/skip without a reason
                | EMPTY_COMMENT               | Comment body is blank
                | INVALID_COMMENT_KIND        | Comment kind reserved for decisions
                | INVALID_PERMISSION_KEY      | Permission string cannot be parsed
----------------|-----------------------------|-----------------------------------------
Conflict        | OPTIMISTIC_LOCK_CONFLICT    | Version mismatch on save (retry)
----------------|-----------------------------|-----------------------------------------
Not found       | WORKFLOW_NOT_FOUND          | Unknown workflow id
                | STEP_NOT_FOUND              | Unknown step id within a workflow
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Modifying an append-only comment row

===============================================================================
DESIGN DECISIONS
===============================================================================

1. UnauthorizedError never says WHY. Revealing "you need level 3" or
   "you are not on project X" leaks the role topology to the caller.
   The structured attributes carry the principal and operation only.

2. Only ConflictError is retryable. Everything else is a definitive
   answer for the request that produced it.

3. Exceptions inherit from Exception, not ValueError/KeyError, so that
   domain errors are catchable as a group and never confused with
   programming errors.
"""

from __future__ import annotations


class GovernanceKernelError(Exception):
    """
    Base exception for all governance kernel errors.

    All subclasses must have a `code` class attribute for
    machine-readable error identification.
    """

    code: str = "GOVERNANCE_KERNEL_ERROR"


# Authorization


class UnauthorizedError(GovernanceKernelError):
    """The principal lacks the authority for the requested operation."""

    code: str = "UNAUTHORIZED"

    def __init__(self, principal_id: str | None, operation: str):
        self.principal_id = principal_id
        self.operation = operation
        super().__init__(f"Insufficient authority to {operation}")


# Transition-related exceptions


class InvalidTransitionError(GovernanceKernelError):
    """Base exception for illegal workflow transitions."""

    code: str = "INVALID_TRANSITION"


class StaleStepError(InvalidTransitionError):
    """The targeted step is not the workflow's current step."""

    code: str = "STALE_STEP"

    def __init__(self, workflow_id: str, step_id: str, current_step_number: int):
        self.workflow_id = workflow_id
        self.step_id = step_id
        self.current_step_number = current_step_number
        super().__init__(
            f"Step {step_id} is not the current step of workflow {workflow_id} "
            f"(current step is {current_step_number})"
        )


class WorkflowTerminalError(InvalidTransitionError):
    """The workflow is approved or rejected and accepts no more changes."""

    code: str = "WORKFLOW_TERMINAL"

    def __init__(self, workflow_id: str, status: str):
        self.workflow_id = workflow_id
        self.status = status
        super().__init__(f"Workflow {workflow_id} is {status} and cannot change")


class IllegalStatusTransitionError(InvalidTransitionError):
    """A status edge that is absent from the transition table."""

    code: str = "ILLEGAL_STATUS_TRANSITION"

    def __init__(self, entity_type: str, from_status: str, to_status: str):
        self.entity_type = entity_type
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"{entity_type} cannot transition from {from_status} to {to_status}"
        )


class FinalStepSkipError(InvalidTransitionError):
    """The last step of a chain must be approved or rejected, never skipped."""

    code: str = "FINAL_STEP_NOT_SKIPPABLE"

    def __init__(self, workflow_id: str, step_id: str):
        self.workflow_id = workflow_id
        self.step_id = step_id
        super().__init__(
            f"Step {step_id} is the final step of workflow {workflow_id} "
            f"and cannot be skipped"
        )


class DuplicateWorkflowError(InvalidTransitionError):
    """The subject already has a non-terminal workflow."""

    code: str = "ACTIVE_WORKFLOW_EXISTS"

    def __init__(self, subject_id: str, workflow_id: str):
        self.subject_id = subject_id
        self.workflow_id = workflow_id
        super().__init__(
            f"Subject {subject_id} already has an active workflow {workflow_id}"
        )


# Validation-related exceptions


class ValidationError(GovernanceKernelError):
    """Base exception for missing or malformed caller input."""

    code: str = "VALIDATION_ERROR"


class MissingReasonError(ValidationError):
    """Reject and skip require a non-empty reason."""

    code: str = "MISSING_REASON"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"A reason is required to {operation}")


class EmptyCommentError(ValidationError):
    """Comment body is empty or whitespace."""

    code: str = "EMPTY_COMMENT"

    def __init__(self, step_id: str):
        self.step_id = step_id
        super().__init__(f"Comment on step {step_id} must not be empty")


class InvalidCommentKindError(ValidationError):
    """Approval/rejection comments are written only by decisions."""

    code: str = "INVALID_COMMENT_KIND"

    def __init__(self, kind: str):
        self.kind = kind
        super().__init__(f"Comment kind {kind!r} cannot be added directly")


class InvalidPermissionKeyError(ValidationError):
    """Permission string is not of the form resource:action[-scope]."""

    code: str = "INVALID_PERMISSION_KEY"

    def __init__(self, value: str):
        self.value = value
        super().__init__(f"Invalid permission key: {value!r}")


# Concurrency-related exceptions


class ConflictError(GovernanceKernelError):
    """Base exception for concurrency conflicts. Callers may retry."""

    code: str = "CONFLICT"


class OptimisticLockError(ConflictError):
    """Version mismatch on save: the aggregate was modified concurrently."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        expected_version: int,
        actual_version: int | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            f"expected version {expected_version}, found {actual_version}"
        )


# Lookup-related exceptions


class NotFoundError(GovernanceKernelError):
    """Base exception for unknown identifiers."""

    code: str = "NOT_FOUND"


class WorkflowNotFoundError(NotFoundError):
    """Workflow id does not exist."""

    code: str = "WORKFLOW_NOT_FOUND"

    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        super().__init__(f"Workflow not found: {workflow_id}")


class StepNotFoundError(NotFoundError):
    """Step id does not belong to the workflow."""

    code: str = "STEP_NOT_FOUND"

    def __init__(self, workflow_id: str, step_id: str):
        self.workflow_id = workflow_id
        self.step_id = step_id
        super().__init__(f"Step {step_id} not found in workflow {workflow_id}")


# Immutability-related exceptions


class ImmutabilityError(GovernanceKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
