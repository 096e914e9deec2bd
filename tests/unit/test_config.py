"""Tests for configuration loading."""

import pytest
from pydantic import ValidationError

from phaseflow.config import load_config
from phaseflow.persistence import InMemorySnapshotStore, get_store


def test_defaults_without_config_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("PHASEFLOW_CONFIG", raising=False)
    monkeypatch.delenv("PHASEFLOW_STORAGE_DIR", raising=False)
    monkeypatch.delenv("PHASEFLOW_TEMPLATES_DIR", raising=False)

    config = load_config()
    assert config.storage.backend == "filesystem"
    assert config.storage.directory == ".phaseflow"
    assert config.manager.max_instances == 100
    assert config.manager.monitoring_interval == 30
    assert config.manager.stall_threshold == 7200
    assert config.manager.max_backups == 5
    assert config.templates_dir is None


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
storage:
  backend: inmemory
manager:
  max_instances: 3
  stall_threshold: 60
templates_dir: ./workflows
"""
    )
    monkeypatch.setenv("PHASEFLOW_CONFIG", str(config_path))
    monkeypatch.delenv("PHASEFLOW_TEMPLATES_DIR", raising=False)

    config = load_config()
    assert config.storage.backend == "inmemory"
    assert config.manager.max_instances == 3
    assert config.manager.stall_threshold == 60
    assert config.templates_dir == "./workflows"
    assert isinstance(get_store(config=config), InMemorySnapshotStore)


def test_env_overrides_directories(tmp_path, monkeypatch):
    config_path = tmp_path / "phaseflow.yaml"
    config_path.write_text("storage:\n  directory: /from/file\n")
    monkeypatch.setenv("PHASEFLOW_STORAGE_DIR", str(tmp_path / "state"))
    monkeypatch.setenv("PHASEFLOW_TEMPLATES_DIR", str(tmp_path / "templates"))

    config = load_config(str(config_path))
    assert config.storage.directory == str(tmp_path / "state")
    assert config.templates_dir == str(tmp_path / "templates")


def test_invalid_values_are_rejected(tmp_path):
    config_path = tmp_path / "phaseflow.yaml"
    config_path.write_text("manager:\n  max_instances: 0\n")
    with pytest.raises(ValidationError):
        load_config(str(config_path))
