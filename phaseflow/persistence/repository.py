"""Storage abstraction for instance snapshots."""

from __future__ import annotations

from typing import List, Protocol

from .models import InstanceSnapshot, StorageArea


class SnapshotStore(Protocol):
    """Protocol for snapshot persistence backends."""

    max_backups: int

    async def setup(self) -> None:
        """Prepare the storage areas."""

    async def save(
        self, snapshot: InstanceSnapshot, area: StorageArea = StorageArea.ACTIVE
    ) -> None:
        """Write the current state plus a timestamped backup copy."""

    async def load(
        self, instance_id: str, area: StorageArea = StorageArea.ACTIVE
    ) -> InstanceSnapshot:
        """Read the current state of ``instance_id``."""

    async def exists(
        self, instance_id: str, area: StorageArea = StorageArea.ACTIVE
    ) -> bool:
        """Return ``True`` when ``area`` holds state for ``instance_id``."""

    async def list_instance_ids(
        self, area: StorageArea = StorageArea.ACTIVE
    ) -> List[str]:
        """Return the ids stored in ``area``."""

    async def move(
        self, instance_id: str, source: StorageArea, destination: StorageArea
    ) -> bool:
        """Relocate all state of ``instance_id``; ``False`` if nothing to move."""

    async def list_backups(
        self, instance_id: str, area: StorageArea = StorageArea.ACTIVE
    ) -> List[int]:
        """Return backup timestamps (epoch millis), newest first."""

    async def prune_backups(
        self, instance_id: str, area: StorageArea = StorageArea.ACTIVE
    ) -> int:
        """Delete all but the newest ``max_backups`` backups."""
