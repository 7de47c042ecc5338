"""
governance_services.retry -- Reload-and-reapply on optimistic-lock conflicts.

Responsibility:
    The calling layer's retry loop.  ``ConflictError`` is the only error
    kind worth retrying: the workflow changed between load and save, so
    re-running the whole operation reloads it and re-validates against
    the new state.  The engine itself never retries.

Failure modes:
    - The last ConflictError is re-raised after ``max_attempts``.
    - Any other exception propagates on the first attempt.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TypeVar

from governance_kernel.exceptions import ConflictError
from governance_kernel.logging_config import get_logger

logger = get_logger("services.retry")

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3


def retry_on_conflict(
    operation: Callable[[], T],
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> T:
    """Run ``operation``; re-run it on ConflictError up to ``max_attempts`` times.

    ``operation`` must load fresh state on each call, e.g.
    ``lambda: engine.approve(workflow_id, step_id, principal)``.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    for attempt in range(1, max_attempts + 1):
        try:
            return operation()
        except ConflictError as exc:
            if attempt == max_attempts:
                logger.warning(
                    "conflict_retry_exhausted",
                    extra={"attempt": attempt, "max_attempts": max_attempts},
                )
                raise
            logger.info(
                "conflict_retry",
                extra={
                    "attempt": attempt,
                    "max_attempts": max_attempts,
                    "error_code": exc.code,
                },
            )
    raise AssertionError("unreachable")
