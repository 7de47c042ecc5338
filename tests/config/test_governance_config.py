"""
Tests for governance configuration loading, validation and compilation.

Covers:
- The shipped default set loads, validates clean and compiles
- Loader: YAML dict parsing and the deterministic checksum
- Validator: every error and warning class
- End-to-end get_active_config on files under tmp_path
"""

from __future__ import annotations

import copy
import dataclasses

import pytest
import yaml

from governance_config import DEFAULT_CONFIG_PATH, get_active_config
from governance_config.compiler import compile_governance_config
from governance_config.loader import (
    compute_checksum,
    load_configuration_set,
    parse_configuration_set,
)
from governance_config.schema import RoleDef
from governance_config.validator import validate_configuration
from governance_kernel.domain.roles import PermissionKey, RoleScopeKind

MINIMAL = {
    "config_id": "minimal",
    "version": 3,
    "roles": [
        {"name": "global-admin", "level": 1, "scope": "global"},
        {
            "name": "country-admin",
            "level": 3,
            "scope": "regional",
            "permissions": ["reports:approve-regional"],
        },
        {
            "name": "branch-admin",
            "level": 5,
            "scope": "project",
            "permissions": ["reports:approve-project"],
        },
    ],
    "approval_chain": ["branch-admin", "country-admin", "global-admin"],
}


def _data(**overrides):
    data = copy.deepcopy(MINIMAL)
    data.update(overrides)
    return data


def _errors(data):
    return validate_configuration(parse_configuration_set(data)).errors


def _write(tmp_path, data):
    path = tmp_path / "set.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


# =========================================================================
# Default set
# =========================================================================


class TestDefaultSet:
    def test_validates_clean(self):
        result = validate_configuration(load_configuration_set(DEFAULT_CONFIG_PATH))
        assert result.is_valid, result.errors
        assert result.warnings == []

    def test_compiled_catalog(self, governance_config):
        catalog = governance_config.catalog
        assert governance_config.config_id == "default"
        assert len(catalog) == 14
        assert catalog.level_of("global-admin") == 1
        assert catalog.level_of("branch-admin") == 5
        assert catalog.get("country-admin").scope_kind == RoleScopeKind.REGIONAL
        assert PermissionKey.parse("reports:approve-project") in catalog.preset_permissions(
            "project-admin"
        )

    def test_compiled_chain(self, governance_config):
        assert governance_config.chain.roles == (
            "branch-admin", "project-admin", "country-admin", "global-admin",
        )

    def test_frozen(self, governance_config):
        with pytest.raises(dataclasses.FrozenInstanceError):
            governance_config.config_id = "other"


# =========================================================================
# Loader
# =========================================================================


class TestLoader:
    def test_parse(self):
        config = parse_configuration_set(_data())
        assert config.config_id == "minimal"
        assert config.version == 3
        assert config.roles[1] == RoleDef(
            name="country-admin",
            level=3,
            scope="regional",
            permissions=("reports:approve-regional",),
        )
        assert config.approval_chain == ("branch-admin", "country-admin", "global-admin")

    def test_missing_required_key(self):
        data = _data()
        del data["approval_chain"]
        with pytest.raises(KeyError):
            parse_configuration_set(data)

    def test_checksum_is_deterministic(self):
        reordered = dict(reversed(list(_data().items())))
        assert compute_checksum(_data()) == compute_checksum(reordered)
        assert parse_configuration_set(_data()).checksum == compute_checksum(_data())

    def test_checksum_tracks_content(self):
        assert compute_checksum(_data()) != compute_checksum(_data(version=4))


# =========================================================================
# Validator
# =========================================================================


class TestValidator:
    def test_minimal_is_valid(self):
        assert _errors(_data()) == []

    def test_duplicate_role(self):
        data = _data()
        data["roles"].append({"name": "branch-admin", "level": 6})
        assert any("Duplicate role name" in e for e in _errors(data))

    @pytest.mark.parametrize("level", [0, -1, "3", True])
    def test_bad_level(self, level):
        data = _data()
        data["roles"][1]["level"] = level
        assert any("level must be an integer" in e for e in _errors(data))

    def test_unknown_scope(self):
        data = _data()
        data["roles"][1]["scope"] = "continental"
        assert any("unknown scope" in e for e in _errors(data))

    def test_bad_permission(self):
        data = _data()
        data["roles"][2]["permissions"] = ["reports-approve"]
        assert any("invalid permission" in e for e in _errors(data))

    def test_global_admin_required(self):
        data = _data(approval_chain=["branch-admin", "country-admin"])
        data["roles"] = data["roles"][1:]
        assert any("global-admin" in e for e in _errors(data))

    def test_empty_chain(self):
        assert "Approval chain is empty" in _errors(_data(approval_chain=[]))

    def test_repeated_chain_role(self):
        errors = _errors(_data(approval_chain=["branch-admin", "branch-admin", "global-admin"]))
        assert any("repeats a role" in e for e in errors)

    def test_undeclared_chain_role(self):
        errors = _errors(_data(approval_chain=["branch-admin", "auditor", "global-admin"]))
        assert any("'auditor' is not declared" in e for e in errors)

    def test_chain_must_increase_in_seniority(self):
        errors = _errors(_data(approval_chain=["country-admin", "branch-admin", "global-admin"]))
        assert any("strictly increasing in seniority" in e for e in errors)

    def test_chain_role_without_approve_permission_warns(self):
        data = _data()
        data["roles"][1]["permissions"] = ["reports:read-regional"]
        result = validate_configuration(parse_configuration_set(data))
        assert result.is_valid
        assert result.warnings == [
            "Approval chain role 'country-admin' carries no reports:approve permission"
        ]

    def test_errors_are_collected_not_short_circuited(self):
        data = _data()
        data["roles"][1]["level"] = 0
        data["roles"][2]["scope"] = "nowhere"
        assert len(_errors(data)) >= 2


# =========================================================================
# Compiler and get_active_config
# =========================================================================


class TestCompile:
    def test_compile(self):
        compiled = compile_governance_config(parse_configuration_set(_data()))
        assert compiled.config_version == 3
        assert len(compiled.chain) == 3
        assert compiled.catalog.is_builtin("country-admin")
        assert compiled.catalog.preset_permissions("global-admin") == frozenset()


class TestGetActiveConfig:
    def test_loads_override_path(self, tmp_path):
        compiled = get_active_config(_write(tmp_path, _data()))
        assert compiled.config_id == "minimal"
        assert compiled.checksum == compute_checksum(_data())

    def test_invalid_set_lists_every_error(self, tmp_path):
        data = _data(approval_chain=["auditor"])
        data["roles"][1]["level"] = 0
        with pytest.raises(ValueError) as exc_info:
            get_active_config(_write(tmp_path, data))
        message = str(exc_info.value)
        assert message.startswith("Configuration validation failed:")
        assert "'auditor' is not declared" in message
        assert "level must be an integer" in message

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "absent.yaml")

    def test_trace_logged(self, tmp_path, captured_logs):
        get_active_config(_write(tmp_path, _data()))
        trace = [r for r in captured_logs() if r["message"] == "GOVERNANCE_CONFIG_TRACE"][0]
        assert trace["config_set_id"] == "minimal"
        assert trace["config_set_version"] == 3
        assert trace["role_count"] == 3
        assert trace["chain_length"] == 3
        assert trace["logger"] == "governance_kernel.config"

    def test_warnings_logged(self, tmp_path, captured_logs):
        data = _data()
        data["roles"][2]["permissions"] = []
        get_active_config(_write(tmp_path, data))
        warnings = [r for r in captured_logs() if r["message"] == "config_validation_warning"]
        assert len(warnings) == 1
        assert "branch-admin" in warnings[0]["warning"]
