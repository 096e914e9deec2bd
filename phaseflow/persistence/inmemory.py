"""In-memory implementation of the snapshot store."""

from __future__ import annotations

import time
from typing import Dict, List

from ..constants import DEFAULT_MAX_BACKUPS
from .models import InstanceSnapshot, StorageArea
from .repository import SnapshotStore


class _Entry:
    def __init__(self) -> None:
        self.state: str | None = None
        self.backups: Dict[int, str] = {}


class InMemorySnapshotStore(SnapshotStore):
    """Keep snapshots in local memory.

    Useful for tests or when durability is not wanted. Data does not
    survive process restarts.
    """

    def __init__(self, max_backups: int = DEFAULT_MAX_BACKUPS) -> None:
        self.max_backups = max_backups
        self._areas: Dict[StorageArea, Dict[str, _Entry]] = {
            area: {} for area in StorageArea
        }
        self._last_backup: Dict[str, int] = {}

    # ------------------------------------------------------------------
    async def setup(self) -> None:
        return None

    async def save(
        self, snapshot: InstanceSnapshot, area: StorageArea = StorageArea.ACTIVE
    ) -> None:
        entry = self._areas[StorageArea(area)].setdefault(snapshot.instance_id, _Entry())
        payload = snapshot.to_json()
        last = self._last_backup.get(snapshot.instance_id)
        if last is None:
            last = max(entry.backups, default=0)
        stamp = max(int(time.time() * 1000), last + 1)
        self._last_backup[snapshot.instance_id] = stamp
        entry.state = payload
        entry.backups[stamp] = payload
        await self.prune_backups(snapshot.instance_id, area)

    async def load(
        self, instance_id: str, area: StorageArea = StorageArea.ACTIVE
    ) -> InstanceSnapshot:
        entry = self._areas[StorageArea(area)].get(instance_id)
        if entry is None or entry.state is None:
            raise FileNotFoundError(f"No snapshot for {instance_id} in {StorageArea(area).value}")
        return InstanceSnapshot.from_json(entry.state)

    async def exists(
        self, instance_id: str, area: StorageArea = StorageArea.ACTIVE
    ) -> bool:
        entry = self._areas[StorageArea(area)].get(instance_id)
        return entry is not None and entry.state is not None

    async def list_instance_ids(
        self, area: StorageArea = StorageArea.ACTIVE
    ) -> List[str]:
        return sorted(self._areas[StorageArea(area)])

    async def move(
        self, instance_id: str, source: StorageArea, destination: StorageArea
    ) -> bool:
        self._last_backup.pop(instance_id, None)
        entry = self._areas[StorageArea(source)].pop(instance_id, None)
        if entry is None:
            return False
        target = self._areas[StorageArea(destination)].setdefault(instance_id, _Entry())
        target.state = entry.state
        target.backups.update(entry.backups)
        return True

    async def list_backups(
        self, instance_id: str, area: StorageArea = StorageArea.ACTIVE
    ) -> List[int]:
        entry = self._areas[StorageArea(area)].get(instance_id)
        if entry is None:
            return []
        return sorted(entry.backups, reverse=True)

    async def prune_backups(
        self, instance_id: str, area: StorageArea = StorageArea.ACTIVE
    ) -> int:
        entry = self._areas[StorageArea(area)].get(instance_id)
        if entry is None:
            return 0
        stale = sorted(entry.backups, reverse=True)[self.max_backups :]
        for stamp in stale:
            del entry.backups[stamp]
        return len(stale)
