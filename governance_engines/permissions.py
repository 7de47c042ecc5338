"""
governance_engines.permissions -- Pure hierarchical permission evaluator.

Responsibility:
    Decide whether a principal may perform ``(resource, action)`` at a
    scope, optionally against a target id; filter candidate targets; and
    answer the role-seniority questions the approval workflow asks.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import governance_kernel.domain and governance_kernel.exceptions.

Invariants enforced:
    - Global-admin bypass: an ACTIVE ``global-admin`` assignment allows
      every check.  It is the only hard-coded bypass.
    - Project-scope binding: a project-scoped grant needs BOTH the
      ``resource:action-project`` key AND an active assignment bound to
      the target project.  The key alone is never enough.
    - Preset isolation: catalog presets are granted only for built-in role
      names.  Custom roles contribute their direct grants and nothing else.
    - Fail closed: a malformed or missing principal, an unknown scope, or a
      key that cannot be formed evaluates to deny.  Never raises.
    - Purity: no clock, no I/O, safe to call concurrently.

Failure modes:
    None raised.  Every undecidable input is a deny.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from enum import Enum
from typing import Any

from governance_kernel.domain.roles import (
    BROAD_SCOPES,
    GLOBAL_ADMIN_ROLE,
    AssignmentScope,
    PermissionKey,
    PermissionScope,
    Principal,
    RoleAssignment,
    RoleCatalog,
    RoleScopeKind,
    is_valid_level,
)
from governance_kernel.exceptions import InvalidPermissionKeyError

# Level reported for a principal with no active assignment.
NO_ACCESS_LEVEL = 999

WILDCARD_REGION = "*"


class AccessLevel(str, Enum):
    """Depth of access to a project granted by a project assignment."""

    READ = "read"
    WRITE = "write"
    ADMIN = "admin"


# Most junior level that still grants each access depth.
ACCESS_LEVEL_THRESHOLDS: dict[AccessLevel, int] = {
    AccessLevel.ADMIN: 3,
    AccessLevel.WRITE: 4,
    AccessLevel.READ: 6,
}


# =========================================================================
# Principal inspection
# =========================================================================


def is_well_formed(principal: Any) -> bool:
    """True when ``principal`` can be evaluated at all."""
    if not isinstance(principal, Principal):
        return False
    if not isinstance(principal.id, str) or not principal.id:
        return False
    if not isinstance(principal.role_assignments, tuple):
        return False
    if not all(isinstance(a, RoleAssignment) for a in principal.role_assignments):
        return False
    if not all(is_valid_level(a.level) for a in principal.role_assignments):
        return False
    if not isinstance(principal.direct_permissions, (frozenset, set)):
        return False
    return all(isinstance(p, PermissionKey) for p in principal.direct_permissions)


def is_global_admin(principal: Principal) -> bool:
    return any(
        a.role_name == GLOBAL_ADMIN_ROLE for a in principal.active_assignments
    )


def granted_permissions(
    principal: Principal,
    catalog: RoleCatalog | None = None,
) -> frozenset[PermissionKey]:
    """Direct grants plus the presets of active built-in role assignments."""
    granted = set(principal.direct_permissions)
    if catalog is not None:
        for assignment in principal.active_assignments:
            if catalog.is_builtin(assignment.role_name):
                granted |= catalog.preset_permissions(assignment.role_name)
    return frozenset(granted)


def assigned_project_ids(principal: Principal) -> frozenset[str]:
    return frozenset(
        a.scope.project_id
        for a in principal.active_assignments
        if a.scope.kind == RoleScopeKind.PROJECT
    )


def _coerce_scope(scope: PermissionScope | str | None) -> PermissionScope | None:
    if scope is None or isinstance(scope, PermissionScope):
        return scope
    return PermissionScope(scope)


# =========================================================================
# Evaluate / AccessibleTargets
# =========================================================================


def evaluate(
    principal: Principal | None,
    resource: str,
    action: str,
    scope: PermissionScope | str | None = None,
    target_id: str | None = None,
    *,
    catalog: RoleCatalog | None = None,
) -> bool:
    """Decide allow/deny for ``(resource, action)`` at ``scope``.

    Rules, first allow wins:
        1. Active global-admin assignment.
        2. Unscoped key ``resource:action``.
        3. ``resource:action-regional`` or ``-global``, regardless of target.
        4. Project scope: ``resource:action-project`` AND an active
           assignment bound to ``target_id``.
        5. Own scope: ``resource:action-own`` AND ``target_id`` is the
           principal's own id.
    A principal with no active assignment is denied everything.
    """
    if not is_well_formed(principal):
        return False

    active = principal.active_assignments
    if any(a.role_name == GLOBAL_ADMIN_ROLE for a in active):
        return True
    if not active:
        return False

    try:
        requested = _coerce_scope(scope)
        base = PermissionKey(resource, action)
    except (ValueError, InvalidPermissionKeyError):
        return False

    granted = granted_permissions(principal, catalog)

    if base in granted:
        return True
    if any(base.with_scope(s) in granted for s in BROAD_SCOPES):
        return True

    if requested == PermissionScope.PROJECT:
        if not target_id or base.with_scope(PermissionScope.PROJECT) not in granted:
            return False
        return any(a.scope.project_id == target_id for a in active)

    if requested == PermissionScope.OWN:
        if not target_id or base.with_scope(PermissionScope.OWN) not in granted:
            return False
        return target_id == principal.id

    return False


def accessible_targets(
    principal: Principal | None,
    resource: str,
    action: str,
    candidate_ids: Iterable[str],
    *,
    scope: PermissionScope | str | None = PermissionScope.PROJECT,
    catalog: RoleCatalog | None = None,
) -> list[str]:
    """Filter ``candidate_ids`` to those ``evaluate`` allows, order preserved."""
    candidates = list(candidate_ids)
    if is_well_formed(principal) and is_global_admin(principal):
        return candidates
    return [
        target_id
        for target_id in candidates
        if evaluate(
            principal, resource, action, scope, target_id, catalog=catalog,
        )
    ]


# =========================================================================
# Seniority
# =========================================================================


def effective_level(
    assignment: RoleAssignment,
    catalog: RoleCatalog | None = None,
) -> int:
    """Catalog level for built-in roles, the denormalized level otherwise."""
    if catalog is not None:
        level = catalog.level_of(assignment.role_name)
        if level is not None:
            return level
    return assignment.level


def highest_level(
    principal: Principal | None,
    catalog: RoleCatalog | None = None,
) -> int:
    """Most senior active level, or ``NO_ACCESS_LEVEL``."""
    if not is_well_formed(principal):
        return NO_ACCESS_LEVEL
    levels = [effective_level(a, catalog) for a in principal.active_assignments]
    return min(levels) if levels else NO_ACCESS_LEVEL


def most_senior_assignment(
    principal: Principal,
    catalog: RoleCatalog | None = None,
) -> RoleAssignment | None:
    active = principal.active_assignments
    if not active:
        return None
    return min(active, key=lambda a: effective_level(a, catalog))


def _covers_project(scope: AssignmentScope, project_id: str | None) -> bool:
    if scope.kind == RoleScopeKind.PROJECT:
        return project_id is not None and scope.project_id == project_id
    return True


def qualifying_assignment(
    principal: Principal | None,
    required_role: str,
    catalog: RoleCatalog,
    project_id: str | None = None,
    *,
    strict: bool = False,
) -> RoleAssignment | None:
    """The active assignment that makes ``principal`` senior enough for ``required_role``.

    ``strict=False`` (approve/reject): level <= required level, and
    global-admin always qualifies.  ``strict=True`` (skip): level strictly
    below the required level, so peers and the role itself never qualify.

    For a project-bound required role, a project-scoped assignment must be
    bound to ``project_id``; regional and global assignments cover every
    project.  An exact role match is preferred, then the most senior.
    """
    if not is_well_formed(principal):
        return None
    role = catalog.get(required_role)
    if role is None:
        return None

    candidates: list[RoleAssignment] = []
    for assignment in principal.active_assignments:
        if assignment.role_name == GLOBAL_ADMIN_ROLE and not strict:
            candidates.append(assignment)
            continue
        level = effective_level(assignment, catalog)
        senior_enough = level < role.level if strict else level <= role.level
        if not senior_enough:
            continue
        if role.scope_kind == RoleScopeKind.PROJECT and not _covers_project(
            assignment.scope, project_id,
        ):
            continue
        candidates.append(assignment)

    if not candidates:
        return None
    for assignment in candidates:
        if assignment.role_name == required_role:
            return assignment
    return min(candidates, key=lambda a: effective_level(a, catalog))


def has_sufficient_authority(
    principal: Principal | None,
    required_role: str,
    catalog: RoleCatalog,
    project_id: str | None = None,
) -> bool:
    return qualifying_assignment(principal, required_role, catalog, project_id) is not None


def can_skip_step(
    principal: Principal | None,
    required_role: str,
    catalog: RoleCatalog,
    project_id: str | None = None,
) -> bool:
    """Skip needs strictly more seniority than the step's role."""
    return (
        qualifying_assignment(
            principal, required_role, catalog, project_id, strict=True,
        )
        is not None
    )


REVIEW_RESOURCE = "reports"
REVIEW_ACTION = "approve"

_REVIEW_SCOPES: dict[RoleScopeKind, PermissionScope] = {
    RoleScopeKind.GLOBAL: PermissionScope.GLOBAL,
    RoleScopeKind.REGIONAL: PermissionScope.REGIONAL,
    RoleScopeKind.PROJECT: PermissionScope.PROJECT,
}


def review_assignment(
    principal: Principal | None,
    required_role: str,
    catalog: RoleCatalog,
    project_id: str | None = None,
    *,
    skip: bool = False,
) -> RoleAssignment | None:
    """Assignment under which ``principal`` may decide a step, or None.

    Both gates must pass: ``reports:approve`` evaluated at the scope of
    the step's role (against ``project_id`` for project-bound roles), and
    the seniority check (strict when skipping).
    """
    role = catalog.get(required_role)
    if role is None:
        return None
    scope = _REVIEW_SCOPES[role.scope_kind]
    target = project_id if scope == PermissionScope.PROJECT else None
    if not evaluate(
        principal, REVIEW_RESOURCE, REVIEW_ACTION, scope, target, catalog=catalog,
    ):
        return None
    return qualifying_assignment(
        principal, required_role, catalog, project_id, strict=skip,
    )


# =========================================================================
# Project and region access
# =========================================================================


def can_access_project(
    principal: Principal | None,
    project_id: str,
    access: AccessLevel = AccessLevel.READ,
    *,
    catalog: RoleCatalog | None = None,
) -> bool:
    """Project-level access check.

    An active assignment on the project decides by level threshold.  With
    no such assignment, a global or regional ``projects:read`` grant
    gives read access only.
    """
    if not is_well_formed(principal):
        return False
    if is_global_admin(principal):
        return True

    threshold = ACCESS_LEVEL_THRESHOLDS[AccessLevel(access)]
    on_project = [
        a for a in principal.active_assignments
        if a.scope.kind == RoleScopeKind.PROJECT and a.scope.project_id == project_id
    ]
    if on_project:
        return any(effective_level(a, catalog) <= threshold for a in on_project)

    if AccessLevel(access) != AccessLevel.READ or not principal.active_assignments:
        return False
    granted = granted_permissions(principal, catalog)
    read_projects = PermissionKey("projects", "read")
    return read_projects in granted or any(
        read_projects.with_scope(s) in granted for s in BROAD_SCOPES
    )


def can_access_project_component(
    principal: Principal | None,
    project_id: str,
    component: str,
    action: str = "read",
    *,
    catalog: RoleCatalog | None = None,
) -> bool:
    """Project read access plus a component permission at any scope."""
    if not can_access_project(principal, project_id, AccessLevel.READ, catalog=catalog):
        return False
    return evaluate(
        principal, component, action, PermissionScope.PROJECT, project_id,
        catalog=catalog,
    )


def accessible_projects(
    principal: Principal | None,
    project_ids: Sequence[str],
    *,
    catalog: RoleCatalog | None = None,
) -> list[str]:
    if is_well_formed(principal) and is_global_admin(principal):
        return list(project_ids)
    return [
        pid for pid in project_ids
        if can_access_project(principal, pid, AccessLevel.READ, catalog=catalog)
    ]


def accessible_regions(principal: Principal | None) -> frozenset[str]:
    """Countries of active assignments; global-admin sees ``WILDCARD_REGION``."""
    if not is_well_formed(principal):
        return frozenset()
    if is_global_admin(principal):
        return frozenset({WILDCARD_REGION})
    return frozenset(
        a.scope.country for a in principal.active_assignments if a.scope.country
    )
