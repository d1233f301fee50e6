"""
Tests for configuration loading (wasix.yml + environment).
"""

from pathlib import Path

import pytest

from cargo_wasix import __version__
from cargo_wasix.core.config.loader import (
    DEFAULT_DATASET_URL,
    Settings,
    find_config_file,
    load_settings,
)
from cargo_wasix.core.errors import ConfigError


class TestDefaults:
    def test_no_file_no_env(self, tmp_path):
        settings = load_settings(env={}, start_dir=tmp_path)
        assert settings.source is None
        assert settings.incompatible_crates_url == DEFAULT_DATASET_URL
        assert settings.optimize_enabled
        assert settings.lock_timeout == 300.0

    def test_cache_root_is_versioned(self, monkeypatch, tmp_path):
        monkeypatch.setenv("HOME", str(tmp_path))
        assert Settings().cache_root() == Path.home() / ".cache" / "cargo-wasix" / __version__

    def test_target_dir(self, tmp_path):
        assert Settings().resolve_target_dir(tmp_path) == (tmp_path / "target").resolve()
        custom = Settings(target_dir="out").resolve_target_dir(tmp_path)
        assert custom == (tmp_path / "out").resolve()


class TestYaml:
    def test_found_walking_up(self, tmp_path):
        (tmp_path / "wasix.yml").write_text("offline: true\n")
        nested = tmp_path / "crates" / "app"
        nested.mkdir(parents=True)

        assert find_config_file(nested) == tmp_path / "wasix.yml"
        settings = load_settings(env={}, start_dir=nested)
        assert settings.offline
        assert settings.source == str(tmp_path / "wasix.yml")

    def test_wrapped_under_wasix_key(self, tmp_path):
        (tmp_path / "wasix.yml").write_text(
            "wasix:\n  wasm_opt_flags: [--strip-producers]\n  tool_versions:\n    wasm-opt: '117'\n"
        )
        settings = load_settings(env={}, start_dir=tmp_path)
        assert settings.wasm_opt_flags == ["--strip-producers"]
        assert settings.tool_versions == {"wasm-opt": "117"}

    def test_empty_file(self, tmp_path):
        path = tmp_path / "wasix.yml"
        path.write_text("")
        assert load_settings(path, env={}).source == str(path)

    def test_explicit_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_settings(tmp_path / "nope.yml", env={})

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "wasix.yml"
        path.write_text("offline: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_settings(path, env={})

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "wasix.yml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError):
            load_settings(path, env={})

    def test_schema_violation(self, tmp_path):
        path = tmp_path / "wasix.yml"
        path.write_text("lock_timeout: soon\n")
        with pytest.raises(ConfigError):
            load_settings(path, env={})


class TestEnvironment:
    def test_env_beats_file(self, tmp_path):
        path = tmp_path / "wasix.yml"
        path.write_text("cache_dir: /from/file\noffline: true\n")
        settings = load_settings(path, env={"CARGO_WASIX_CACHE": "/from/env", "CARGO_WASIX_OFFLINE": "0"})
        assert settings.cache_dir == "/from/env"
        assert not settings.offline

    def test_tool_overrides(self, tmp_path):
        env = {
            "WASM_OPT": "/usr/bin/wasm-opt",
            "CARGO_TARGET_WASM32_WASIX_RUNNER": "wasmer-dev",
            "CARGO_WASIX_NO_OPT": "1",
        }
        settings = load_settings(env=env, start_dir=tmp_path)
        assert settings.wasm_opt == "/usr/bin/wasm-opt"
        assert settings.runner == "wasmer-dev"
        assert not settings.optimize_enabled

    def test_blank_string_ignored(self, tmp_path):
        settings = load_settings(env={"WASM_OPT": "  "}, start_dir=tmp_path)
        assert settings.wasm_opt is None

    def test_bad_number(self, tmp_path):
        with pytest.raises(ConfigError, match="CARGO_WASIX_LOCK_TIMEOUT"):
            load_settings(env={"CARGO_WASIX_LOCK_TIMEOUT": "forever"}, start_dir=tmp_path)
