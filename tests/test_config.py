"""Tests for DevServerConfig."""

from pathlib import Path

import pytest
import yaml

from frontdev.core.config import (
    DEFAULT_FAILURE_PATTERN,
    DEFAULT_SUCCESS_PATTERN,
    DEFAULT_TIMEOUT_MS,
    WEBPACK_CONFIG,
    WEBPACK_SERVER,
    ConfigError,
    DevServerConfig,
)


class TestDefaults:
    def test_default_values(self, tmp_path):
        config = DevServerConfig(project_dir=tmp_path)
        assert config.bundler_script == WEBPACK_SERVER
        assert config.bundler_config == WEBPACK_CONFIG
        assert config.port == 0
        assert config.options == ""
        assert config.success_pattern == DEFAULT_SUCCESS_PATTERN == ": Compiled."
        assert config.failure_pattern == DEFAULT_FAILURE_PATTERN == ": Failed to compile."
        assert config.timeout_ms == DEFAULT_TIMEOUT_MS == 60000
        assert config.reuse_dev_server is False
        assert config.register_exit_hook is True

    def test_paths_are_relative_to_project(self, tmp_path):
        config = DevServerConfig(project_dir=tmp_path)
        assert config.script_path == tmp_path / WEBPACK_SERVER
        assert config.config_path == tmp_path / WEBPACK_CONFIG

    def test_option_list_splits_on_whitespace(self, tmp_path):
        config = DevServerConfig(project_dir=tmp_path, options="  -d   --inline=false ")
        assert config.option_list() == ["-d", "--inline=false"]

    def test_option_list_empty(self, tmp_path):
        assert DevServerConfig(project_dir=tmp_path).option_list() == []


class TestLoadSave:
    def test_missing_file_gives_defaults(self, tmp_path):
        config = DevServerConfig.load(project_dir=tmp_path)
        assert config.project_dir == tmp_path.resolve()
        assert config.timeout_ms == DEFAULT_TIMEOUT_MS

    def test_load_project_file(self, tmp_path):
        (tmp_path / "frontdev.yaml").write_text(
            "port: 4000\noptions: -d\ntimeout_ms: 500\nreuse_dev_server: true\n"
        )
        config = DevServerConfig.load(project_dir=tmp_path)
        assert config.port == 4000
        assert config.options == "-d"
        assert config.timeout_ms == 500
        assert config.reuse_dev_server is True

    def test_project_file_overrides_global_defaults(self, tmp_path, isolated_environment):
        (isolated_environment / "config.yaml").write_text("timeout_ms: 1000\noptions: --global\n")
        (tmp_path / "frontdev.yaml").write_text("options: --project\n")
        config = DevServerConfig.load(project_dir=tmp_path)
        assert config.timeout_ms == 1000
        assert config.options == "--project"

    def test_global_file_cannot_pick_project_dir(self, tmp_path, isolated_environment):
        (isolated_environment / "config.yaml").write_text("project_dir: /somewhere/else\n")
        config = DevServerConfig.load(project_dir=tmp_path)
        assert config.project_dir == tmp_path.resolve()

    def test_invalid_yaml_raises(self, tmp_path):
        (tmp_path / "frontdev.yaml").write_text("port: [unclosed\n")
        with pytest.raises(ConfigError):
            DevServerConfig.load(project_dir=tmp_path)

    def test_non_mapping_raises(self, tmp_path):
        (tmp_path / "frontdev.yaml").write_text("- just\n- a list\n")
        with pytest.raises(ConfigError):
            DevServerConfig.load(project_dir=tmp_path)

    def test_invalid_value_raises(self, tmp_path):
        with pytest.raises(ConfigError):
            DevServerConfig.from_dict({"project_dir": str(tmp_path), "port": "not-a-port"})

    def test_malformed_success_pattern_raises(self, tmp_path):
        (tmp_path / "frontdev.yaml").write_text("success_pattern: '([unclosed'\n")
        with pytest.raises(ConfigError, match="success_pattern"):
            DevServerConfig.load(project_dir=tmp_path)

    def test_malformed_failure_pattern_raises(self, tmp_path):
        with pytest.raises(ConfigError, match="failure_pattern"):
            DevServerConfig.from_dict({"project_dir": str(tmp_path), "failure_pattern": "a(b"})

    def test_custom_patterns_are_kept(self, tmp_path):
        config = DevServerConfig.from_dict(
            {"project_dir": str(tmp_path), "success_pattern": r"ready in \d+ms"}
        )
        assert config.success_pattern == r"ready in \d+ms"

    def test_save_and_load_round_trip(self, tmp_path):
        config = DevServerConfig(project_dir=tmp_path, port=1234, options="--hot", timeout_ms=10)
        config.save()

        saved = yaml.safe_load((tmp_path / "frontdev.yaml").read_text())
        assert saved["port"] == 1234
        assert saved["project_dir"] == str(tmp_path)

        loaded = DevServerConfig.load(project_dir=tmp_path)
        assert loaded == DevServerConfig.from_dict(config.to_dict())

    def test_to_dict_is_plain(self, tmp_path):
        data = DevServerConfig(project_dir=tmp_path).to_dict()
        assert isinstance(data["project_dir"], str)
        assert yaml.safe_load(yaml.safe_dump(data))["project_dir"] == str(tmp_path)


class TestEnvOverrides:
    def test_env_values_are_applied(self, tmp_path):
        config = DevServerConfig(project_dir=tmp_path).with_env_overrides(
            {
                "FRONTDEV_PORT": "4567",
                "FRONTDEV_TIMEOUT_MS": "250",
                "FRONTDEV_REUSE_DEV_SERVER": "yes",
                "FRONTDEV_REGISTER_EXIT_HOOK": "0",
            }
        )
        assert config.port == 4567
        assert config.timeout_ms == 250
        assert config.reuse_dev_server is True
        assert config.register_exit_hook is False

    def test_unrelated_env_is_ignored(self, tmp_path):
        base = DevServerConfig.from_dict({"project_dir": str(tmp_path)})
        assert base.with_env_overrides({"OTHER": "1"}) == base

    def test_bad_env_value_raises(self, tmp_path):
        with pytest.raises(ConfigError):
            DevServerConfig(project_dir=tmp_path).with_env_overrides({"FRONTDEV_PORT": "abc"})

    def test_bad_env_pattern_raises(self, tmp_path):
        with pytest.raises(ConfigError):
            DevServerConfig(project_dir=tmp_path).with_env_overrides(
                {"FRONTDEV_FAILURE_PATTERN": "[oops"}
            )


class TestResolveRuntime:
    def test_explicit_executable_path(self, tmp_path):
        runtime = tmp_path / "fake-node"
        runtime.write_text("#!/bin/sh\n")
        runtime.chmod(0o755)
        config = DevServerConfig(project_dir=tmp_path, runtime_executable=str(runtime))
        assert config.resolve_runtime() == str(runtime)

    def test_non_executable_path_is_none(self, tmp_path):
        runtime = tmp_path / "fake-node"
        runtime.write_text("")
        runtime.chmod(0o644)
        config = DevServerConfig(project_dir=tmp_path, runtime_executable=str(runtime))
        assert config.resolve_runtime() is None

    def test_name_is_looked_up_on_path(self, tmp_path):
        config = DevServerConfig(project_dir=tmp_path, runtime_executable="sh")
        resolved = config.resolve_runtime()
        assert resolved is not None
        assert Path(resolved).name == "sh"
