"""
governance_services.principal_resolution -- Static principal provider.

Default ``PrincipalResolver`` backed by a dict.  Can be replaced with a
provider that calls the identity service.  ``from_records`` accepts the
shape an identity provider returns::

    {
        "id": "u-17",
        "display_name": "Amina",
        "roles": [
            {"role": "project-admin", "scope": "project", "project_id": "P1"},
            {"role": "country-admin", "scope": "regional", "country": "Tanzania",
             "active": false},
        ],
        "permissions": ["reports:approve-project"],
    }
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from governance_kernel.domain.roles import (
    AssignmentScope,
    Principal,
    RoleAssignment,
    RoleCatalog,
    RoleScopeKind,
    parse_permissions,
)
from governance_kernel.logging_config import get_logger

logger = get_logger("services.principal_resolution")


def assignment_from_record(
    record: Mapping[str, Any], catalog: RoleCatalog | None = None,
) -> RoleAssignment:
    """Build one assignment; ``level`` defaults to the catalog level."""
    role_name = record["role"]
    level = record.get("level")
    if level is None:
        level = catalog.level_of(role_name) if catalog is not None else None
    if level is None:
        raise ValueError(f"Custom role {role_name!r} needs an explicit level")
    scope_kind = RoleScopeKind(record.get("scope", RoleScopeKind.GLOBAL.value))
    return RoleAssignment(
        role_name=role_name,
        level=int(level),
        scope=AssignmentScope(
            scope_kind,
            country=record.get("country"),
            project_id=record.get("project_id"),
        ),
        is_active=bool(record.get("active", True)),
    )


def principal_from_record(
    record: Mapping[str, Any], catalog: RoleCatalog | None = None,
) -> Principal:
    return Principal(
        id=str(record["id"]),
        role_assignments=tuple(
            assignment_from_record(r, catalog) for r in record.get("roles", ())
        ),
        direct_permissions=parse_permissions(record.get("permissions", ())),
        display_name=record.get("display_name", ""),
    )


class StaticPrincipalResolver:
    """PrincipalResolver backed by a dict of pre-resolved principals."""

    def __init__(self, principals: Iterable[Principal] = ()) -> None:
        self._principals: dict[str, Principal] = {p.id: p for p in principals}

    @classmethod
    def from_records(
        cls,
        records: Iterable[Mapping[str, Any]],
        catalog: RoleCatalog | None = None,
    ) -> StaticPrincipalResolver:
        return cls(principal_from_record(r, catalog) for r in records)

    def register(self, principal: Principal) -> None:
        self._principals[principal.id] = principal

    def resolve(self, principal_id: str) -> Principal | None:
        principal = self._principals.get(principal_id)
        if principal is None:
            logger.info("principal_unresolved", extra={"lookup_id": principal_id})
        return principal
