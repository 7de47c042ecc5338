"""
Governance Kernel

Hierarchical role/permission model and sequential report-approval
workflow:
- Typed, immutable domain values (roles, assignments, workflows)
- Typed exception hierarchy with machine-readable codes
- Structured JSON logging with request-scoped context
- SQLAlchemy persistence with optimistic concurrency
"""

__version__ = "0.1.0"
