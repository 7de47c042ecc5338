"""
Role and permission domain types (``governance_kernel.domain.roles``).

Responsibility
--------------
Pure value objects for the hierarchical role model: permission keys,
role catalog entries, scoped role assignments, and the resolved
principal that every authorization decision is made about.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``models/``, ``services/`` or outer packages.  May import
only ``governance_kernel.exceptions``.

Invariants enforced
-------------------
* A ``PermissionKey`` scope qualifier is one of ``global``, ``regional``,
  ``project``, ``own`` or absent (unscoped).
* ``Role.level`` is an integer >= 1; lower numbers are more senior.
* A regional ``AssignmentScope`` names a country; a project scope names
  a project id.
* ``RoleCatalog`` is immutable after construction and role names are
  unique within it.

Failure modes
-------------
* ``PermissionKey.parse`` raises ``InvalidPermissionKeyError`` for
  strings that are not ``resource:action`` or ``resource:action-scope``.
* Constructors raise ``ValueError`` for structurally invalid values.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Protocol

from governance_kernel.exceptions import InvalidPermissionKeyError

GLOBAL_ADMIN_ROLE = "global-admin"


# =========================================================================
# Permission keys
# =========================================================================


class PermissionScope(str, Enum):
    """Scope qualifier carried by a permission key."""

    GLOBAL = "global"
    REGIONAL = "regional"
    PROJECT = "project"
    OWN = "own"


# Scopes that require a target identifier at check time.
TARGETED_SCOPES: frozenset[PermissionScope] = frozenset({
    PermissionScope.PROJECT,
    PermissionScope.OWN,
})

# Scopes that grant regardless of target.
BROAD_SCOPES: frozenset[PermissionScope] = frozenset({
    PermissionScope.GLOBAL,
    PermissionScope.REGIONAL,
})


@dataclass(frozen=True)
class PermissionKey:
    """Structured ``(resource, action, scope)`` permission triple.

    Stored and exchanged as ``resource:action`` or ``resource:action-scope``
    (e.g. ``reports:approve-project``).  The action part may itself contain
    dashes (``forms:responses-read-project``); only a trailing recognised
    scope word is split off.
    """

    resource: str
    action: str
    scope: PermissionScope | None = None

    def __post_init__(self) -> None:
        for part in (self.resource, self.action):
            if (
                not part
                or ":" in part
                or part != part.strip()
                or part.startswith("-")
                or part.endswith("-")
            ):
                raise InvalidPermissionKeyError(f"{self.resource}:{self.action}")
        if self.scope is not None and not isinstance(self.scope, PermissionScope):
            try:
                object.__setattr__(self, "scope", PermissionScope(self.scope))
            except ValueError:
                raise InvalidPermissionKeyError(
                    f"{self.resource}:{self.action}-{self.scope}"
                ) from None

    @classmethod
    def parse(cls, value: str) -> PermissionKey:
        if not isinstance(value, str) or value.count(":") != 1:
            raise InvalidPermissionKeyError(str(value))
        resource, action = value.split(":")
        head, sep, tail = action.rpartition("-")
        if sep and head:
            try:
                return cls(resource, head, PermissionScope(tail))
            except ValueError:
                pass
        return cls(resource, action)

    def unscoped(self) -> PermissionKey:
        return PermissionKey(self.resource, self.action)

    def with_scope(self, scope: PermissionScope) -> PermissionKey:
        return PermissionKey(self.resource, self.action, scope)

    def render(self) -> str:
        if self.scope is None:
            return f"{self.resource}:{self.action}"
        return f"{self.resource}:{self.action}-{self.scope.value}"

    def __str__(self) -> str:
        return self.render()


def parse_permissions(values: Iterable[str]) -> frozenset[PermissionKey]:
    """Parse a collection of permission strings, failing on the first bad one."""
    return frozenset(PermissionKey.parse(v) for v in values)


# =========================================================================
# Roles and the catalog
# =========================================================================


class RoleScopeKind(str, Enum):
    """Where a role's assignments are bound."""

    GLOBAL = "global"
    REGIONAL = "regional"
    PROJECT = "project"


def is_valid_level(level: object) -> bool:
    return isinstance(level, int) and not isinstance(level, bool) and level >= 1


@dataclass(frozen=True)
class Role:
    """Immutable catalog entry.  Loaded at process start, never mutated."""

    name: str
    level: int
    scope_kind: RoleScopeKind = RoleScopeKind.GLOBAL
    default_permissions: frozenset[PermissionKey] = frozenset()
    display_name: str = ""
    description: str = ""

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Role name must not be empty")
        if not is_valid_level(self.level):
            raise ValueError(f"Role {self.name!r} level must be an integer >= 1")


class RoleCatalog:
    """Read-only index of built-in roles by name.

    Contract:
        Role names are unique.  The catalog never changes after
        construction, so it is safe to share across threads.
    """

    def __init__(self, roles: Iterable[Role]):
        index: dict[str, Role] = {}
        for role in roles:
            if role.name in index:
                raise ValueError(f"Duplicate role name in catalog: {role.name!r}")
            index[role.name] = role
        self._roles = MappingProxyType(index)

    def get(self, name: str) -> Role | None:
        return self._roles.get(name)

    def level_of(self, name: str) -> int | None:
        role = self._roles.get(name)
        return role.level if role is not None else None

    def is_builtin(self, name: str) -> bool:
        return name in self._roles

    def preset_permissions(self, name: str) -> frozenset[PermissionKey]:
        role = self._roles.get(name)
        return role.default_permissions if role is not None else frozenset()

    @property
    def roles(self) -> tuple[Role, ...]:
        return tuple(self._roles.values())

    def __contains__(self, name: object) -> bool:
        return name in self._roles

    def __iter__(self) -> Iterator[Role]:
        return iter(self._roles.values())

    def __len__(self) -> int:
        return len(self._roles)

    def __repr__(self) -> str:
        return f"RoleCatalog({sorted(self._roles)!r})"


# =========================================================================
# Assignments and principals
# =========================================================================


@dataclass(frozen=True)
class AssignmentScope:
    """Binding of a role assignment: global, a country, or one project."""

    kind: RoleScopeKind
    country: str | None = None
    project_id: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.kind, RoleScopeKind):
            object.__setattr__(self, "kind", RoleScopeKind(self.kind))
        if self.kind == RoleScopeKind.REGIONAL and not self.country:
            raise ValueError("Regional assignment scope requires a country")
        if self.kind == RoleScopeKind.PROJECT and not self.project_id:
            raise ValueError("Project assignment scope requires a project id")

    @classmethod
    def global_(cls) -> AssignmentScope:
        return cls(RoleScopeKind.GLOBAL)

    @classmethod
    def regional(cls, country: str) -> AssignmentScope:
        return cls(RoleScopeKind.REGIONAL, country=country)

    @classmethod
    def project(cls, project_id: str) -> AssignmentScope:
        return cls(RoleScopeKind.PROJECT, project_id=project_id)


@dataclass(frozen=True)
class RoleAssignment:
    """A role held by a principal within a scope.

    ``level`` is a denormalized copy of the role's catalog level.  It is
    authoritative only for custom roles the catalog does not know.
    Revocation deactivates, it never deletes.
    """

    role_name: str
    level: int
    scope: AssignmentScope = field(default_factory=AssignmentScope.global_)
    is_active: bool = True

    def __post_init__(self) -> None:
        if not is_valid_level(self.level):
            raise ValueError(
                f"Role assignment {self.role_name!r} level must be an integer >= 1"
            )


@dataclass(frozen=True)
class Principal:
    """The resolved actor for a request.

    ``direct_permissions`` are grants made outside the role presets.  They
    only ever add authority.
    """

    id: str
    role_assignments: tuple[RoleAssignment, ...] = ()
    direct_permissions: frozenset[PermissionKey] = frozenset()
    display_name: str = ""

    @property
    def active_assignments(self) -> tuple[RoleAssignment, ...]:
        return tuple(a for a in self.role_assignments if a.is_active)

    @property
    def label(self) -> str:
        return self.display_name or self.id


class PrincipalResolver(Protocol):
    """Port to the identity/authorization provider."""

    def resolve(self, principal_id: str) -> Principal | None:
        """Return the principal with its active assignments, or None."""
        ...
