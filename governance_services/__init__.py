"""
Governance services -- coordinators over the pure engines.

WorkflowEngine is the public entry point for workflow operations.
"""

from governance_services.event_sinks import LoggingEventSink, RecordingEventSink
from governance_services.memory_repository import InMemoryWorkflowRepository
from governance_services.principal_resolution import (
    StaticPrincipalResolver,
    principal_from_record,
)
from governance_services.retry import retry_on_conflict
from governance_services.workflow_engine import (
    BulkReviewError,
    BulkReviewResult,
    WorkflowEngine,
)

__all__ = [
    "BulkReviewError",
    "BulkReviewResult",
    "InMemoryWorkflowRepository",
    "LoggingEventSink",
    "RecordingEventSink",
    "StaticPrincipalResolver",
    "WorkflowEngine",
    "principal_from_record",
    "retry_on_conflict",
]
