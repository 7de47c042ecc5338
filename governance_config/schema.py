"""
GovernanceConfigurationSet schema.

The human-authored, reviewable source artifact: YAML is parsed into these
types by the loader, checked by the validator, and compiled into a
``CompiledGovernanceConfig`` by the compiler.

Key distinction:
  GovernanceConfigurationSet = source artifact (strings, as authored)
  CompiledGovernanceConfig   = runtime artifact (typed catalog + chain)
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class RoleDef:
    """One role as authored.  Permissions stay raw strings until compiled."""

    name: str
    level: int
    scope: str = "global"
    permissions: tuple[str, ...] = ()
    display_name: str = ""
    description: str = ""


@dataclass(frozen=True)
class GovernanceConfigurationSet:
    config_id: str
    version: int
    roles: tuple[RoleDef, ...]
    approval_chain: tuple[str, ...]
    description: str = ""
    checksum: str = ""
