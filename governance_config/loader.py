"""
Configuration Loader (``governance_config.loader``).

Responsibility
--------------
Loads a YAML configuration set and parses it into the frozen
``governance_config.schema`` dataclasses.  Build/test tooling: runtime
callers use ``governance_config.get_active_config()``.

Invariants enforced
-------------------
* No silent defaults for required fields: ``name``, ``level``,
  ``roles`` and ``approval_chain`` must be present.
* ``compute_checksum`` is a deterministic SHA-256 over the canonical
  JSON form of the parsed YAML.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from governance_config.schema import GovernanceConfigurationSet, RoleDef


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a single YAML file; an empty file yields an empty dict."""
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_role(data: dict[str, Any]) -> RoleDef:
    return RoleDef(
        name=data["name"],
        level=data["level"],
        scope=data.get("scope", "global"),
        permissions=tuple(data.get("permissions") or ()),
        display_name=data.get("display_name", ""),
        description=data.get("description", ""),
    )


def parse_configuration_set(data: dict[str, Any]) -> GovernanceConfigurationSet:
    return GovernanceConfigurationSet(
        config_id=data.get("config_id", "unnamed"),
        version=data.get("version", 1),
        roles=tuple(parse_role(r) for r in data["roles"]),
        approval_chain=tuple(data["approval_chain"]),
        description=data.get("description", ""),
        checksum=compute_checksum(data),
    )


def load_configuration_set(path: Path) -> GovernanceConfigurationSet:
    return parse_configuration_set(load_yaml_file(path))
