"""
Configuration Validator (``governance_config.validator``).

Responsibility
--------------
Validates a ``GovernanceConfigurationSet`` before it is compiled, collecting
every problem instead of stopping at the first.

Invariants enforced
-------------------
* Role names are unique and non-empty.
* Levels are integers >= 1.
* Role scopes are ``global``, ``regional`` or ``project``.
* Every permission string parses as a permission key.
* ``global-admin`` is declared.
* The approval chain is non-empty, has no repeats, names only declared
  roles, and is strictly increasing in seniority (each level numerically
  lower than the one before it).

Failure modes
-------------
* Errors (``ConfigValidationResult.errors``) -> configuration MUST NOT be
  compiled.
* Warnings -> compiled, but worth a look (e.g. a chain role that cannot
  pass the ``reports:approve`` permission gate).
"""

from __future__ import annotations

from dataclasses import dataclass, field

from governance_config.schema import GovernanceConfigurationSet
from governance_kernel.domain.roles import (
    GLOBAL_ADMIN_ROLE,
    PermissionKey,
    RoleScopeKind,
)
from governance_kernel.exceptions import InvalidPermissionKeyError


@dataclass
class ConfigValidationResult:
    """
    Result of configuration validation.

    Contract
    --------
    * ``is_valid`` returns ``True`` only when ``errors`` is empty.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def validate_configuration(config: GovernanceConfigurationSet) -> ConfigValidationResult:
    result = ConfigValidationResult()
    _validate_roles(config, result)
    _validate_chain(config, result)
    return result


def _validate_roles(config: GovernanceConfigurationSet, result: ConfigValidationResult) -> None:
    seen: set[str] = set()
    scope_values = {s.value for s in RoleScopeKind}
    for role in config.roles:
        if not role.name:
            result.add_error("Role with empty name")
            continue
        if role.name in seen:
            result.add_error(f"Duplicate role name: {role.name}")
        seen.add(role.name)

        if isinstance(role.level, bool) or not isinstance(role.level, int) or role.level < 1:
            result.add_error(f"Role {role.name}: level must be an integer >= 1, got {role.level!r}")
        if role.scope not in scope_values:
            result.add_error(f"Role {role.name}: unknown scope {role.scope!r}")
        for perm in role.permissions:
            try:
                PermissionKey.parse(perm)
            except InvalidPermissionKeyError:
                result.add_error(f"Role {role.name}: invalid permission {perm!r}")

    if GLOBAL_ADMIN_ROLE not in seen:
        result.add_error(f"Required role {GLOBAL_ADMIN_ROLE!r} is not declared")


def _validate_chain(config: GovernanceConfigurationSet, result: ConfigValidationResult) -> None:
    chain = config.approval_chain
    if not chain:
        result.add_error("Approval chain is empty")
        return
    if len(set(chain)) != len(chain):
        result.add_error(f"Approval chain repeats a role: {list(chain)}")

    roles = {r.name: r for r in config.roles}
    levels: list[int] = []
    for name in chain:
        role = roles.get(name)
        if role is None:
            result.add_error(f"Approval chain role {name!r} is not declared")
            continue
        if isinstance(role.level, int):
            levels.append(role.level)
        approves = any(
            p.startswith("reports:approve") for p in role.permissions
        )
        if not approves and name != GLOBAL_ADMIN_ROLE:
            result.add_warning(
                f"Approval chain role {name!r} carries no reports:approve permission"
            )

    if len(levels) == len(chain):
        for earlier, later in zip(levels, levels[1:]):
            if later >= earlier:
                result.add_error(
                    "Approval chain must be strictly increasing in seniority: "
                    f"levels {levels}"
                )
                break
