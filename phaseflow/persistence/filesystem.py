"""Filesystem implementation of the snapshot store."""

from __future__ import annotations

import asyncio
import logging
import os
import re
import shutil
import time
from pathlib import Path
from typing import Dict, List

from ..constants import BACKUP_PREFIX, DEFAULT_MAX_BACKUPS, STATE_FILENAME
from ..errors import PersistenceError
from .models import InstanceSnapshot, StorageArea
from .repository import SnapshotStore

logger = logging.getLogger(__name__)

_BACKUP_RE = re.compile(rf"^{re.escape(BACKUP_PREFIX)}(\d+)\.json$")


class FileSnapshotStore(SnapshotStore):
    """Persist snapshots as JSON files below ``root``.

    Layout::

        <root>/<area>/<instance_id>/state.json
        <root>/<area>/<instance_id>/state-backup-<epochMillis>.json
    """

    def __init__(self, root: str | Path, max_backups: int = DEFAULT_MAX_BACKUPS):
        self.root = Path(root)
        self.max_backups = max_backups
        self._last_backup: Dict[str, int] = {}

    def instance_dir(self, instance_id: str, area: StorageArea = StorageArea.ACTIVE) -> Path:
        return self.root / StorageArea(area).value / instance_id

    # ------------------------------------------------------------------
    # Blocking helpers
    def _setup(self) -> None:
        try:
            for area in StorageArea:
                (self.root / area.value).mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PersistenceError(f"Failed to setup persistence: {exc}") from exc

    def _backup_stamp(self, instance_id: str, directory: Path) -> int:
        # Strictly increasing per instance so rapid saves never collide.
        last = self._last_backup.get(instance_id)
        if last is None:
            existing = self._backups(directory)
            last = existing[0][0] if existing else 0
        stamp = max(int(time.time() * 1000), last + 1)
        self._last_backup[instance_id] = stamp
        return stamp

    def _write(self, instance_id: str, directory: Path, payload: str) -> None:
        directory.mkdir(parents=True, exist_ok=True)
        stamp = self._backup_stamp(instance_id, directory)
        tmp_path = directory / f".{STATE_FILENAME}.tmp"
        tmp_path.write_text(payload, encoding="utf-8")
        os.replace(tmp_path, directory / STATE_FILENAME)
        (directory / f"{BACKUP_PREFIX}{stamp}.json").write_text(payload, encoding="utf-8")

    def _backups(self, directory: Path) -> List[tuple[int, Path]]:
        if not directory.is_dir():
            return []
        found = []
        for entry in directory.iterdir():
            match = _BACKUP_RE.match(entry.name)
            if match:
                found.append((int(match.group(1)), entry))
        return sorted(found, key=lambda item: item[0], reverse=True)

    def _prune(self, directory: Path) -> int:
        removed = 0
        for _, path in self._backups(directory)[self.max_backups :]:
            path.unlink(missing_ok=True)
            removed += 1
        return removed

    def _rename(self, source: Path, destination: Path) -> None:
        os.rename(source, destination)

    def _move(self, source: Path, destination: Path) -> bool:
        if not source.exists():
            return False
        destination.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._rename(source, destination)
        except OSError as exc:
            logger.warning(
                f"Rename of {source} to {destination} failed ({exc}); copying instead"
            )
            shutil.copytree(source, destination, dirs_exist_ok=True)
            shutil.rmtree(source)
        return True

    # ------------------------------------------------------------------
    # Store API
    async def setup(self) -> None:
        await asyncio.to_thread(self._setup)

    async def save(
        self, snapshot: InstanceSnapshot, area: StorageArea = StorageArea.ACTIVE
    ) -> None:
        directory = self.instance_dir(snapshot.instance_id, area)
        await asyncio.to_thread(
            self._write, snapshot.instance_id, directory, snapshot.to_json()
        )
        await asyncio.to_thread(self._prune, directory)

    async def load(
        self, instance_id: str, area: StorageArea = StorageArea.ACTIVE
    ) -> InstanceSnapshot:
        path = self.instance_dir(instance_id, area) / STATE_FILENAME
        data = await asyncio.to_thread(path.read_text, encoding="utf-8")
        return InstanceSnapshot.from_json(data)

    async def exists(
        self, instance_id: str, area: StorageArea = StorageArea.ACTIVE
    ) -> bool:
        path = self.instance_dir(instance_id, area) / STATE_FILENAME
        return await asyncio.to_thread(path.is_file)

    async def list_instance_ids(
        self, area: StorageArea = StorageArea.ACTIVE
    ) -> List[str]:
        area_dir = self.root / StorageArea(area).value

        def _list() -> List[str]:
            if not area_dir.is_dir():
                return []
            return sorted(entry.name for entry in area_dir.iterdir() if entry.is_dir())

        return await asyncio.to_thread(_list)

    async def move(
        self, instance_id: str, source: StorageArea, destination: StorageArea
    ) -> bool:
        moved = await asyncio.to_thread(
            self._move,
            self.instance_dir(instance_id, source),
            self.instance_dir(instance_id, destination),
        )
        self._last_backup.pop(instance_id, None)
        if moved:
            logger.info(
                f"Moved instance {instance_id} from {StorageArea(source).value} "
                f"to {StorageArea(destination).value}"
            )
        return moved

    async def list_backups(
        self, instance_id: str, area: StorageArea = StorageArea.ACTIVE
    ) -> List[int]:
        backups = await asyncio.to_thread(self._backups, self.instance_dir(instance_id, area))
        return [stamp for stamp, _ in backups]

    async def prune_backups(
        self, instance_id: str, area: StorageArea = StorageArea.ACTIVE
    ) -> int:
        return await asyncio.to_thread(self._prune, self.instance_dir(instance_id, area))
