"""
Tests for configuration loading — units.yml parsing, settings precedence
and the config check use case.
"""

from pathlib import Path

import pytest

from provisionctl.adapters.registry import build_default_registry
from provisionctl.core.config.loader import (
    UNITS_ENV_VAR,
    build_graph,
    find_units_file,
    load_unit_file,
    parse_unit_data,
)
from provisionctl.core.config.settings import (
    EngineSettings,
    env_overrides,
    resolve_settings,
    settings_from_mapping,
)
from provisionctl.core.errors import ConfigurationError, CyclicDependencyError
from provisionctl.core.use_cases.config_check import check_config

VALID_UNITS = """\
    settings:
      max_retries: 1
      backoff: fixed
      concurrency: 2

    units:
      - id: base-tools
        tags: [base]
        check: {kind: mock-check}
        apply: {kind: mock-apply}
      - id: podman
        dependsOn: [base-tools]
        tags: [containers]
        check: {kind: mock-check}
        apply: {kind: mock-apply}
"""


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for var in (UNITS_ENV_VAR, "PROVISIONCTL_MAX_RETRIES",
                "PROVISIONCTL_CONCURRENCY", "PROVISIONCTL_STATE_DIR"):
        monkeypatch.delenv(var, raising=False)


# ── Loader ───────────────────────────────────────────────────────────


class TestLoadUnitFile:
    def test_valid_file(self, write_units):
        path = write_units(VALID_UNITS)
        unit_file = load_unit_file(path)

        assert unit_file.path == path
        assert [u.id for u in unit_file.units] == ["base-tools", "podman"]
        assert unit_file.units[1].depends_on == ("base-tools",)
        assert unit_file.settings.max_retries == 1
        assert unit_file.settings.concurrency == 2

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_unit_file(tmp_path / "units.yml")

    def test_invalid_yaml(self, write_units):
        path = write_units("units: [unclosed\n")
        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_unit_file(path)

    def test_empty_file_has_no_units(self, write_units):
        unit_file = load_unit_file(write_units("units: []\n"))
        assert unit_file.units == []
        assert unit_file.settings == EngineSettings()

    def test_not_a_mapping(self, write_units):
        with pytest.raises(ConfigurationError, match="Expected a YAML mapping"):
            load_unit_file(write_units("- just\n- a list\n"))

    def test_sample_units_file_loads(self, project_root: Path):
        unit_file = load_unit_file(project_root / "units.yml")
        graph = build_graph(unit_file.units, build_default_registry())
        assert "docker" in graph
        assert graph.get("docker-repo").critical


class TestParseUnitData:
    def test_unknown_top_level_key(self):
        with pytest.raises(ConfigurationError, match="Unknown top-level keys"):
            parse_unit_data({"units": [], "modules": []})

    def test_units_must_be_list(self):
        with pytest.raises(ConfigurationError, match="must be a list"):
            parse_unit_data({"units": {"a": {}}})

    def test_unit_without_apply(self):
        with pytest.raises(ConfigurationError, match="Invalid unit a"):
            parse_unit_data({"units": [{"id": "a"}]})

    def test_unit_with_unknown_field(self):
        data = {"units": [{"id": "a", "apply": {"kind": "x"}, "retries": 3}]}
        with pytest.raises(ConfigurationError, match="retries"):
            parse_unit_data(data)

    def test_invalid_id(self):
        with pytest.raises(ConfigurationError, match="invalid unit id"):
            parse_unit_data({"units": [{"id": "has space", "apply": {"kind": "x"}}]})

    def test_self_dependency(self):
        data = {"units": [{"id": "a", "dependsOn": ["a"], "apply": {"kind": "x"}}]}
        with pytest.raises(ConfigurationError, match="depends on itself"):
            parse_unit_data(data)

    def test_invalid_settings(self):
        with pytest.raises(ConfigurationError, match="Invalid settings"):
            parse_unit_data({"settings": {"max_retries": -1}, "units": []})

    def test_unknown_setting(self):
        with pytest.raises(ConfigurationError, match="retry_count"):
            parse_unit_data({"settings": {"retry_count": 3}, "units": []})


class TestFindUnitsFile:
    def test_walks_up(self, write_units, tmp_path: Path):
        path = write_units("units: []\n")
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        assert find_units_file(nested) == path.resolve()

    def test_env_var_wins(self, write_units, tmp_path: Path, monkeypatch):
        write_units("units: []\n")
        other = tmp_path / "elsewhere.yml"
        monkeypatch.setenv(UNITS_ENV_VAR, str(other))
        assert find_units_file(tmp_path) == other


class TestBuildGraph:
    def test_unknown_kinds_reported(self, make_unit, mock_registry):
        stray = parse_unit_data(
            {"units": [{"id": "b", "check": {"kind": "nope"}, "apply": {"kind": "teleport"}}]}
        ).units[0]
        units = [make_unit("a"), stray]
        with pytest.raises(ConfigurationError, match="2 adapter errors"):
            build_graph(units, mock_registry)

    def test_cycle(self, make_unit):
        units = [make_unit("a", depends_on=("b",)), make_unit("b", depends_on=("a",))]
        with pytest.raises(CyclicDependencyError):
            build_graph(units)


# ── Settings ─────────────────────────────────────────────────────────


class TestSettings:
    def test_defaults(self):
        settings = EngineSettings()
        assert settings.max_retries == 2
        assert settings.concurrency == 1
        assert settings.state_path.is_absolute()

    def test_retry_policy(self):
        policy = EngineSettings(max_retries=4, backoff="fixed", base_delay=0.5).retry_policy()
        assert policy.max_attempts == 5
        assert policy.backoff == "fixed"

    def test_none_mapping_gives_defaults(self):
        assert settings_from_mapping(None) == EngineSettings()

    def test_mapping_must_be_dict(self):
        with pytest.raises(ConfigurationError):
            settings_from_mapping(["max_retries"])

    def test_env_overrides(self):
        found = env_overrides({"PROVISIONCTL_MAX_RETRIES": "5", "HOME": "/root"})
        assert found == {"max_retries": "5"}

    def test_precedence(self):
        file_settings = EngineSettings(max_retries=1, concurrency=2)
        environ = {"PROVISIONCTL_MAX_RETRIES": "3", "PROVISIONCTL_CONCURRENCY": "4"}

        resolved = resolve_settings(file_settings, environ=environ, concurrency=8)

        assert resolved.max_retries == 3     # env over file
        assert resolved.concurrency == 8     # CLI over env

    def test_none_cli_values_ignored(self):
        resolved = resolve_settings(EngineSettings(max_retries=1), environ={}, max_retries=None)
        assert resolved.max_retries == 1

    def test_invalid_env_value(self):
        with pytest.raises(ConfigurationError, match="Invalid environment"):
            resolve_settings(environ={"PROVISIONCTL_CONCURRENCY": "many"})

    def test_invalid_cli_value(self):
        with pytest.raises(ConfigurationError, match="Invalid overrides"):
            resolve_settings(environ={}, concurrency=0)


# ── Config check ─────────────────────────────────────────────────────


class TestConfigCheck:
    def test_valid(self, write_units, mock_registry):
        result = check_config(write_units(VALID_UNITS), registry=mock_registry)
        assert result.valid
        assert result.errors == []
        assert result.unit_count == 2
        assert result.to_dict()["settings"]["concurrency"] == 2

    def test_collects_every_problem(self, write_units, mock_registry):
        path = write_units("""\
            units:
              - id: a
                dependsOn: [ghost]
                check: {kind: nope}
                apply: {kind: teleport}
        """)
        result = check_config(path, registry=mock_registry)
        assert not result.valid
        assert len(result.errors) == 3
        assert any("ghost" in e for e in result.errors)

    def test_schema_error(self, write_units, mock_registry):
        result = check_config(write_units("units:\n  - id: a\n"), registry=mock_registry)
        assert not result.valid
        assert "Invalid unit a" in result.errors[0]

    def test_warnings(self, write_units, mock_registry):
        path = write_units("""\
            units:
              - id: always
                tags: [misc]
                apply: {kind: mock-apply}
              - id: gpu
                critical: true
                when: [has_nvidia]
                tags: [gpu]
                check: {kind: mock-check}
                apply: {kind: mock-apply}
              - id: orphan
                check: {kind: mock-check}
                apply: {kind: mock-apply}
        """)
        result = check_config(path, registry=mock_registry)
        assert result.valid
        text = "\n".join(result.warnings)
        assert "'always' has no check" in text
        assert "Critical unit 'gpu' is guarded" in text
        assert "'orphan' has no tags" in text

    def test_empty_file_warns(self, write_units, mock_registry):
        result = check_config(write_units("units: []\n"), registry=mock_registry)
        assert result.valid
        assert result.warnings

    def test_missing_file(self, tmp_path: Path, mock_registry):
        result = check_config(tmp_path / "units.yml", registry=mock_registry)
        assert not result.valid
        assert "not found" in result.errors[0]
