"""
Configuration Compiler (``governance_config.compiler``).

Turns a validated ``GovernanceConfigurationSet`` into the runtime artifact:
a typed ``RoleCatalog`` and ``ApprovalChain``.  Compilation assumes
validation passed; a structurally bad set still fails loudly here through
the domain constructors.
"""

from __future__ import annotations

from dataclasses import dataclass

from governance_config.schema import GovernanceConfigurationSet
from governance_kernel.domain.roles import (
    Role,
    RoleCatalog,
    RoleScopeKind,
    parse_permissions,
)
from governance_kernel.domain.workflow import ApprovalChain


@dataclass(frozen=True)
class CompiledGovernanceConfig:
    """Machine-validated, frozen runtime artifact.

    Attributes:
        config_id: Source configuration identifier
        config_version: Source configuration version
        checksum: Matches the source configuration set
        catalog: Built-in roles by name
        chain: Ordered approval chain
    """

    config_id: str
    config_version: int
    checksum: str
    catalog: RoleCatalog
    chain: ApprovalChain


def compile_governance_config(config: GovernanceConfigurationSet) -> CompiledGovernanceConfig:
    catalog = RoleCatalog(
        Role(
            name=r.name,
            level=r.level,
            scope_kind=RoleScopeKind(r.scope),
            default_permissions=parse_permissions(r.permissions),
            display_name=r.display_name,
            description=r.description,
        )
        for r in config.roles
    )
    return CompiledGovernanceConfig(
        config_id=config.config_id,
        config_version=config.version,
        checksum=config.checksum,
        catalog=catalog,
        chain=ApprovalChain(config.approval_chain),
    )
