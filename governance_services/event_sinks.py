"""Workflow event sinks: structured-log delivery and in-memory recording."""

from __future__ import annotations

import threading

from governance_kernel.domain.events import WorkflowEvent, WorkflowEventType
from governance_kernel.logging_config import get_logger

logger = get_logger("services.events")


class LoggingEventSink:
    """Writes every event as one structured log record."""

    def publish(self, event: WorkflowEvent) -> None:
        extra = {
            "event_id": str(event.event_id),
            "event_type": event.event_type.value,
            "event_workflow_id": str(event.workflow_id),
            "event_subject_id": event.subject_id,
            "occurred_at": event.occurred_at.isoformat(),
            "actor_id": event.actor_id,
            "step_number": event.step_number,
        }
        if event.recipient_id is not None:
            extra["recipient_id"] = event.recipient_id
        if event.title:
            extra["title"] = event.title
        logger.info("workflow_event", extra=extra)


class RecordingEventSink:
    """Keeps published events in order.  Thread-safe."""

    def __init__(self) -> None:
        self._events: list[WorkflowEvent] = []
        self._lock = threading.Lock()

    def publish(self, event: WorkflowEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> list[WorkflowEvent]:
        with self._lock:
            return list(self._events)

    def of_type(self, event_type: WorkflowEventType) -> list[WorkflowEvent]:
        return [e for e in self.events if e.event_type == event_type]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
