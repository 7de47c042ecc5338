"""Kernel services -- SQL-backed implementations of the domain ports."""

from governance_kernel.services.workflow_repository import SqlAlchemyWorkflowRepository

__all__ = ["SqlAlchemyWorkflowRepository"]
