"""Tests for configuration management."""

from __future__ import annotations

from pathlib import Path

import pytest

from ctxpack.config import (
    ContextConfig,
    ProjectConfig,
    find_project_root,
    load_config,
    save_config,
    set_config_value,
)


class TestConfig:
    def test_default_config(self):
        config = ProjectConfig()
        assert config.context.max_related == 20
        assert config.context.max_age_months == 6
        assert config.context.cache_ttl == 300
        assert config.trim.max_units == 40000
        assert "subtask" not in config.context.include_types

    def test_save_and_load(self, tmp_path: Path):
        config = ProjectConfig(name="test-project", workspace_file="data/ws.json")
        config.context.max_related = 5

        save_config(tmp_path, config)
        loaded = load_config(tmp_path)

        assert loaded.name == "test-project"
        assert loaded.workspace_file == "data/ws.json"
        assert loaded.context.max_related == 5

    def test_load_without_file_uses_directory_name(self, tmp_path: Path):
        assert load_config(tmp_path).name == tmp_path.name

    def test_find_project_root(self, tmp_path: Path):
        # No .ctxpack dir - should return None
        assert find_project_root(tmp_path) is None

        (tmp_path / ".ctxpack").mkdir()
        assert find_project_root(tmp_path) == tmp_path

        sub = tmp_path / "src" / "module"
        sub.mkdir(parents=True)
        assert find_project_root(sub) == tmp_path

    def test_set_config_nested(self):
        updated = set_config_value(ProjectConfig(), "trim.max_units", 1000)
        assert updated.trim.max_units == 1000

    def test_set_config_invalid_key(self):
        with pytest.raises(KeyError):
            set_config_value(ProjectConfig(), "nonexistent.key", "value")
        with pytest.raises(KeyError):
            set_config_value(ProjectConfig(), "context.nope", 1)


class TestContextConfigFromEnv:
    def test_defaults(self, monkeypatch):
        for name in ("CONTEXT_MAX_RELATED", "CONTEXT_MAX_AGE_MONTHS", "CONTEXT_CACHE_TTL",
                     "CONTEXT_ENABLE_FALLBACK", "CONTEXT_TIMEOUT"):
            monkeypatch.delenv(name, raising=False)
        assert ContextConfig.from_env() == ContextConfig()

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("CONTEXT_MAX_RELATED", "7")
        monkeypatch.setenv("CONTEXT_MAX_AGE_MONTHS", "12")
        monkeypatch.setenv("CONTEXT_CACHE_TTL", "60")
        monkeypatch.setenv("CONTEXT_ENABLE_FALLBACK", "false")
        monkeypatch.setenv("CONTEXT_TIMEOUT", "2.5")
        config = ContextConfig.from_env()
        assert config.max_related == 7
        assert config.max_age_months == 12
        assert config.cache_ttl == 60
        assert config.enable_fallback is False
        assert config.timeout_seconds == 2.5

    @pytest.mark.parametrize("raw", ["abc", "0", "-3", ""])
    def test_invalid_values_fall_back(self, monkeypatch, raw):
        monkeypatch.setenv("CONTEXT_MAX_RELATED", raw)
        monkeypatch.setenv("CONTEXT_TIMEOUT", raw)
        config = ContextConfig.from_env()
        assert config.max_related == 20
        assert config.timeout_seconds == 30.0
