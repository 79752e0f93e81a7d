"""Tests for config/loader.py module.

Covers:
- _load_yaml() function
- _deep_merge() function
- load_config() precedence
- migrations_path() function
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from modelplane.config.loader import _deep_merge, _load_yaml, load_config, migrations_path
from modelplane.core.errors import ConfigError, ErrorCode


@pytest.fixture(autouse=True)
def no_global_config(tmp_path: Path):
    """Keep the developer's ~/.config out of every test."""
    with patch("modelplane.config.loader.GLOBAL_CONFIG_PATH", tmp_path / "no-global.yaml"):
        yield


class TestLoadYaml:
    """Tests for _load_yaml function."""

    def test_returns_empty_dict_for_missing_file(self, tmp_path: Path) -> None:
        assert _load_yaml(tmp_path / "nonexistent.yaml") == {}

    def test_loads_valid_yaml(self, tmp_path: Path) -> None:
        yaml_file = tmp_path / "config.yaml"
        yaml_file.write_text("database:\n  url: sqlite:///x.db\n")

        assert _load_yaml(yaml_file) == {"database": {"url": "sqlite:///x.db"}}

    def test_returns_empty_for_empty_file(self, tmp_path: Path) -> None:
        yaml_file = tmp_path / "empty.yaml"
        yaml_file.write_text("")

        assert _load_yaml(yaml_file) == {}

    def test_raises_config_error_on_bad_yaml(self, tmp_path: Path) -> None:
        yaml_file = tmp_path / "bad.yaml"
        yaml_file.write_text("database: [unclosed\n")

        with pytest.raises(ConfigError) as exc_info:
            _load_yaml(yaml_file)
        assert exc_info.value.code == ErrorCode.CONFIG_PARSE_ERROR

    def test_raises_config_error_on_non_mapping(self, tmp_path: Path) -> None:
        yaml_file = tmp_path / "list.yaml"
        yaml_file.write_text("- a\n- b\n")

        with pytest.raises(ConfigError):
            _load_yaml(yaml_file)


class TestDeepMerge:
    """Tests for _deep_merge function."""

    def test_nested_sections_merge(self) -> None:
        base = {"database": {"url": "a", "echo": False}}
        override = {"database": {"echo": True}}

        assert _deep_merge(base, override) == {"database": {"url": "a", "echo": True}}

    def test_scalar_replaces_mapping(self) -> None:
        assert _deep_merge({"a": {"b": 1}}, {"a": 2}) == {"a": 2}

    def test_base_not_mutated(self) -> None:
        base = {"a": {"b": 1}}
        _deep_merge(base, {"a": {"c": 2}})
        assert base == {"a": {"b": 1}}


class TestLoadConfig:
    """Tests for load_config precedence."""

    def test_defaults_without_files(self, tmp_path: Path) -> None:
        config = load_config(tmp_path)

        assert config.database.url == "sqlite:///modelplane.db"
        assert config.executor.create_many_mode == "transactional"
        assert config.migrations.directory == "migrations"

    def test_project_yaml_overrides_defaults(self, tmp_path: Path) -> None:
        (tmp_path / "modelplane.yaml").write_text(
            "executor:\n  create_many_mode: best_effort\n  batch_size: 50\n"
        )

        config = load_config(tmp_path)

        assert config.executor.create_many_mode == "best_effort"
        assert config.executor.batch_size == 50

    def test_env_overrides_yaml(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        (tmp_path / "modelplane.yaml").write_text("logging:\n  level: INFO\n")
        monkeypatch.setenv("MODELPLANE__LOGGING__LEVEL", "DEBUG")

        config = load_config(tmp_path)

        assert config.logging.level == "DEBUG"

    def test_kwargs_override_env(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MODELPLANE__DATABASE__URL", "sqlite:///env.db")

        config = load_config(tmp_path, database={"url": "sqlite:///kw.db"})

        assert config.database.url == "sqlite:///kw.db"

    def test_invalid_value_raises_config_error(self, tmp_path: Path) -> None:
        (tmp_path / "modelplane.yaml").write_text("executor:\n  batch_size: 0\n")

        with pytest.raises(ConfigError) as exc_info:
            load_config(tmp_path)

        assert exc_info.value.code == ErrorCode.CONFIG_INVALID_VALUE
        assert "batch_size" in exc_info.value.details["field"]


class TestMigrationsPath:
    """Tests for migrations_path."""

    def test_relative_directory_resolves_against_project_root(self, tmp_path: Path) -> None:
        config = load_config(tmp_path)

        assert migrations_path(config, tmp_path) == tmp_path / "migrations"

    def test_absolute_directory_kept(self, tmp_path: Path) -> None:
        target = tmp_path / "elsewhere"
        config = load_config(tmp_path, migrations={"directory": str(target)})

        assert migrations_path(config, tmp_path / "project") == target
