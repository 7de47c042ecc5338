"""
Pytest fixtures for the report governance test suite.

Provides:
- Structured logging capture
- The compiled default configuration (role catalog + approval chain)
- Principal factories and the standard reviewers for project P1
- An in-memory WorkflowEngine wired to a recording event sink
- An in-memory SQLite session for the SQL repository tests
"""

import json
import logging
from io import StringIO
from typing import Generator

import pytest
from sqlalchemy.orm import Session

from governance_config import get_active_config
from governance_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
)
from governance_kernel.domain.clock import DeterministicClock
from governance_kernel.domain.roles import (
    AssignmentScope,
    Principal,
    RoleAssignment,
    RoleScopeKind,
    parse_permissions,
)
from governance_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from governance_services import (
    InMemoryWorkflowRepository,
    RecordingEventSink,
    WorkflowEngine,
)

PROJECT_ID = "P1"
OTHER_PROJECT_ID = "P2"
COUNTRY = "Tanzania"
REPORT_ID = "report-2024-q1"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture governance_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, engine):
            engine.create_workflow(...)
            logs = captured_logs()
            assert any(r["message"] == "workflow_transition" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("governance_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Configuration fixtures
# =============================================================================


@pytest.fixture(scope="session")
def governance_config():
    return get_active_config()


@pytest.fixture(scope="session")
def catalog(governance_config):
    return governance_config.catalog


@pytest.fixture(scope="session")
def chain(governance_config):
    return governance_config.chain


# =============================================================================
# Principal fixtures
# =============================================================================


@pytest.fixture(scope="session")
def assign(catalog):
    """Factory for role assignments; the level comes from the catalog.

    ``assign("project-admin", project="P1")``,
    ``assign("country-admin", country="Tanzania")``,
    ``assign("custom-role", level=2)``.
    """

    def _assign(
        role_name: str,
        *,
        project: str | None = None,
        country: str | None = None,
        level: int | None = None,
        active: bool = True,
    ) -> RoleAssignment:
        if project is not None:
            scope = AssignmentScope.project(project)
        elif country is not None:
            scope = AssignmentScope.regional(country)
        else:
            scope = AssignmentScope(RoleScopeKind.GLOBAL)
        if level is None:
            level = catalog.level_of(role_name)
        return RoleAssignment(role_name, level, scope, is_active=active)

    return _assign


@pytest.fixture(scope="session")
def make_principal():
    """Factory: ``make_principal("u1", assignment, ..., permissions=[...])``."""

    def _make(
        principal_id: str,
        *assignments: RoleAssignment,
        permissions: tuple[str, ...] = (),
        display_name: str = "",
    ) -> Principal:
        return Principal(
            id=principal_id,
            role_assignments=tuple(assignments),
            direct_permissions=parse_permissions(permissions),
            display_name=display_name,
        )

    return _make


@pytest.fixture
def branch_admin(make_principal, assign):
    return make_principal(
        "u-branch", assign("branch-admin", project=PROJECT_ID), display_name="Baraka",
    )


@pytest.fixture
def project_admin(make_principal, assign):
    return make_principal(
        "u-project", assign("project-admin", project=PROJECT_ID), display_name="Neema",
    )


@pytest.fixture
def country_admin(make_principal, assign):
    return make_principal(
        "u-country", assign("country-admin", country=COUNTRY), display_name="Juma",
    )


@pytest.fixture
def global_admin(make_principal, assign):
    return make_principal("u-global", assign("global-admin"), display_name="Amani")


@pytest.fixture
def reviewers(branch_admin, project_admin, country_admin, global_admin):
    """One reviewer per chain step, in chain order."""
    return [branch_admin, project_admin, country_admin, global_admin]


@pytest.fixture
def outsider(make_principal, assign):
    """Branch admin of a different project."""
    return make_principal("u-outsider", assign("branch-admin", project=OTHER_PROJECT_ID))


@pytest.fixture
def creator(make_principal, assign):
    return make_principal("u-officer", assign("project-officer", project=PROJECT_ID))


# =============================================================================
# Engine fixtures
# =============================================================================


@pytest.fixture
def deterministic_clock():
    return DeterministicClock()


@pytest.fixture
def repository():
    return InMemoryWorkflowRepository()


@pytest.fixture
def event_sink():
    return RecordingEventSink()


@pytest.fixture
def engine(repository, catalog, chain, deterministic_clock, event_sink):
    return WorkflowEngine(
        repository, catalog, chain, clock=deterministic_clock, event_sink=event_sink,
    )


@pytest.fixture
def workflow(engine, creator):
    """A fresh workflow for REPORT_ID on PROJECT_ID."""
    return engine.create_workflow(REPORT_ID, PROJECT_ID, creator.id)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def db_tables():
    init_engine_from_url("sqlite://")
    create_tables()
    yield
    drop_tables()
    reset_engine()


@pytest.fixture
def session(db_tables) -> Generator[Session, None, None]:
    """Session on a fresh in-memory database.  Rolled back on teardown."""
    sess = get_session()
    yield sess
    sess.rollback()
    sess.close()
