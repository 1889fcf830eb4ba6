"""Tests for vtm.config module."""

import json

import pytest

from vtm.config import VTMConfig, load_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("VTM_MANIFEST", "VTM_SESSION", "VTM_LOCK_TIMEOUT", "VTM_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)


class TestLoadConfig:
    """Test defaults, .vtmrc and environment overrides."""

    def test_defaults_without_file(self, tmp_path):
        assert load_config(tmp_path / ".vtmrc") == VTMConfig()

    def test_reads_file(self, tmp_path):
        path = tmp_path / ".vtmrc"
        path.write_text(json.dumps({"manifest_path": "plan/vtm.json", "lock_timeout": 3}))
        config = load_config(path)
        assert config.manifest_path == "plan/vtm.json"
        assert config.lock_timeout == 3.0
        assert config.session_path == ".vtm-session"

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / ".vtmrc"
        path.write_text(json.dumps({"manifest_path": "from-file.json"}))
        monkeypatch.setenv("VTM_MANIFEST", "from-env.json")
        monkeypatch.setenv("VTM_LOCK_TIMEOUT", "1.5")
        config = load_config(path)
        assert config.manifest_path == "from-env.json"
        assert config.lock_timeout == 1.5

    def test_malformed_file_falls_back(self, tmp_path, caplog):
        path = tmp_path / ".vtmrc"
        path.write_text("{oops")
        with caplog.at_level("WARNING", logger="vtm.config"):
            config = load_config(path)
        assert config == VTMConfig()
        assert "using defaults" in caplog.text

    def test_non_object_file_is_ignored(self, tmp_path):
        path = tmp_path / ".vtmrc"
        path.write_text("[1, 2]")
        assert load_config(path) == VTMConfig()

    def test_invalid_values_fall_back(self, tmp_path, caplog):
        path = tmp_path / ".vtmrc"
        path.write_text(json.dumps({"lock_timeout": -1}))
        with caplog.at_level("WARNING", logger="vtm.config"):
            config = load_config(path)
        assert config.lock_timeout == 10.0
        assert "Invalid VTM configuration" in caplog.text

    def test_invalid_value_keeps_other_settings(self, tmp_path, monkeypatch):
        path = tmp_path / ".vtmrc"
        path.write_text(json.dumps({"manifest_path": "plan/vtm.json", "lock_timeout": 0}))
        monkeypatch.setenv("VTM_LOG_LEVEL", "DEBUG")
        config = load_config(path)
        assert config.lock_timeout == 10.0
        assert config.manifest_path == "plan/vtm.json"
        assert config.log_level == "DEBUG"
