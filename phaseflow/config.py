from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import (
    DEFAULT_MAX_BACKUPS,
    DEFAULT_MAX_INSTANCES,
    DEFAULT_MONITORING_INTERVAL,
    DEFAULT_STALL_THRESHOLD,
    DEFAULT_STORAGE_DIR,
)


class StorageConfig(BaseModel):
    """Where instance snapshots are kept."""

    backend: Literal["filesystem", "inmemory"] = "filesystem"
    directory: str = DEFAULT_STORAGE_DIR


class ManagerConfig(BaseModel):
    """Instance manager limits and monitoring settings."""

    max_instances: int = Field(default=DEFAULT_MAX_INSTANCES, ge=1)
    monitoring_interval: float = Field(
        default=DEFAULT_MONITORING_INTERVAL,
        ge=0,
        description="Seconds between monitor ticks; 0 disables the monitor task",
    )
    stall_threshold: float = Field(default=DEFAULT_STALL_THRESHOLD, gt=0)
    max_backups: int = Field(default=DEFAULT_MAX_BACKUPS, ge=0)
    recovery: bool = True


class PhaseflowConfig(BaseModel):
    """Top-level configuration model."""

    storage: StorageConfig = StorageConfig()
    manager: ManagerConfig = ManagerConfig()
    templates_dir: Optional[str] = None


def load_config(path: Optional[str] = None) -> PhaseflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to PHASEFLOW_CONFIG env
            variable or 'phaseflow.yaml' in the current directory.
    """

    config_path = path or os.getenv("PHASEFLOW_CONFIG", "phaseflow.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = PhaseflowConfig(**data)
    else:
        config = PhaseflowConfig()

    env_storage_dir = os.getenv("PHASEFLOW_STORAGE_DIR")
    if env_storage_dir:
        config.storage.directory = env_storage_dir
    env_templates_dir = os.getenv("PHASEFLOW_TEMPLATES_DIR")
    if env_templates_dir:
        config.templates_dir = env_templates_dir
    return config
