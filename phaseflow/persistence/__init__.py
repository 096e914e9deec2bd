"""Snapshot persistence for phaseflow instances."""

from __future__ import annotations

from typing import Optional

from ..config import PhaseflowConfig, load_config
from .filesystem import FileSnapshotStore
from .inmemory import InMemorySnapshotStore
from .models import InstanceSnapshot, StorageArea
from .repository import SnapshotStore


def get_store(
    directory: Optional[str] = None, config: Optional[PhaseflowConfig] = None
) -> SnapshotStore:
    """Factory function to obtain a snapshot store.

    The backend is selected from ``config.storage.backend``. ``directory``
    overrides the configured storage root for the filesystem backend.
    """

    config = config or load_config()
    backend = config.storage.backend
    max_backups = config.manager.max_backups

    if backend == "inmemory":
        return InMemorySnapshotStore(max_backups=max_backups)
    if backend == "filesystem":
        return FileSnapshotStore(
            directory or config.storage.directory, max_backups=max_backups
        )
    raise ValueError(f"Unsupported storage backend: {backend}")


__all__ = [
    "FileSnapshotStore",
    "InMemorySnapshotStore",
    "InstanceSnapshot",
    "SnapshotStore",
    "StorageArea",
    "get_store",
]
