"""
governance_config -- single public entrypoint for governance configuration.

Responsibility:
    Provides the ONLY way to obtain the role catalog and approval chain at
    runtime through ``get_active_config()``.  YAML loading is internal
    build/test tooling.

Architecture position:
    Configuration -- YAML-driven, validated before use.  Sits above
    ``governance_kernel`` (imports its domain types); the kernel MUST
    NEVER import from ``governance_config``.

Invariants enforced:
    - Single entrypoint: runtime configuration flows through
      ``get_active_config()``.
    - Build-time validation: the set must pass every check in
      ``validator.py`` before it is compiled.
    - Deterministic compilation: the same YAML always yields the same
      checksum.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``ValueError`` -- validation failed; the message lists every error.
"""

from __future__ import annotations

from pathlib import Path

from governance_config.compiler import CompiledGovernanceConfig, compile_governance_config
from governance_config.loader import load_configuration_set
from governance_config.validator import validate_configuration
from governance_kernel.logging_config import get_logger

_logger = get_logger("config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(path: Path | str | None = None) -> CompiledGovernanceConfig:
    """The ONLY public configuration entrypoint.

    Args:
        path: Override path to a configuration set YAML file.
            Defaults to governance_config/sets/default.yaml.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If configuration validation fails.
    """
    config_set = load_configuration_set(Path(path) if path else DEFAULT_CONFIG_PATH)

    validation = validate_configuration(config_set)
    if not validation.is_valid:
        raise ValueError(
            "Configuration validation failed:\n"
            + "\n".join(f"  - {e}" for e in validation.errors)
        )
    for warning in validation.warnings:
        _logger.warning("config_validation_warning", extra={"warning": warning})

    compiled = compile_governance_config(config_set)

    _logger.info(
        "GOVERNANCE_CONFIG_TRACE",
        extra={
            "trace_type": "GOVERNANCE_CONFIG_TRACE",
            "config_set_id": compiled.config_id,
            "config_set_version": compiled.config_version,
            "checksum": compiled.checksum,
            "role_count": len(compiled.catalog),
            "chain_length": len(compiled.chain),
        },
    )
    return compiled


__all__ = [
    "CompiledGovernanceConfig",
    "DEFAULT_CONFIG_PATH",
    "get_active_config",
]
