"""Persistence, recovery and monitoring for live workflow instances."""

from __future__ import annotations

import asyncio
import functools
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .config import ManagerConfig, PhaseflowConfig, load_config
from .contracts import InstanceStatus, PhaseStatus, utcnow
from .errors import InstanceNotFoundError, InvalidStateError, MaxInstancesError
from .events import EventEmitter, EventHandler, Subscription
from .instance import WorkflowInstance
from .persistence import SnapshotStore, StorageArea, get_store

if TYPE_CHECKING:
    from .engine import WorkflowEngine

logger = logging.getLogger(__name__)

# Instance notification -> manager notification.
FORWARDED_EVENTS = {
    "workflow:started": "instance:started",
    "phase:started": "instance:phase:started",
    "phase:activated": "instance:phase:activated",
    "phase:completed": "instance:phase:completed",
    "phase:failed": "instance:phase:failed",
    "workflow:completed": "instance:completed",
    "workflow:failed": "instance:failed",
    "workflow:paused": "instance:paused",
    "workflow:resumed": "instance:resumed",
    "workflow:archived": "instance:archived",
}

RELOCATIONS = {
    "workflow:completed": StorageArea.COMPLETED,
    "workflow:failed": StorageArea.FAILED,
    "workflow:archived": StorageArea.ARCHIVED,
}

_STALLABLE = (PhaseStatus.ACTIVE, PhaseStatus.EXECUTING)


class InstanceStatistics(BaseModel):
    total: int = 0
    by_status: Dict[str, int] = Field(default_factory=dict)
    by_template: Dict[str, int] = Field(default_factory=dict)
    avg_progress: int = 0
    oldest_instance: Optional[str] = None
    newest_instance: Optional[str] = None


class WorkflowInstanceManager:
    """Registry of live instances that mirrors every change to storage.

    Instances are persisted on each lifecycle notification, relocated to the
    ``completed``/``failed``/``archived`` areas when they finish, rebuilt from
    the ``active`` area on :meth:`initialize`, and scanned periodically for
    stalled phases. Storage problems are logged and reported as
    ``manager:error`` notifications; they never fail the instance itself.
    """

    def __init__(
        self,
        store: Optional[SnapshotStore] = None,
        engine: Optional["WorkflowEngine"] = None,
        config: Optional[ManagerConfig] = None,
    ) -> None:
        self.store = store
        self.engine = engine
        self.config = config or ManagerConfig()
        self._instances: Dict[str, WorkflowInstance] = {}
        self._subscriptions: Dict[str, List[Subscription]] = {}
        self._areas: Dict[str, StorageArea] = {}
        self._io_locks: Dict[str, asyncio.Lock] = {}
        self._lock = asyncio.Lock()
        self._events = EventEmitter(isolate_errors=True)
        self._monitor_task: Optional[asyncio.Task] = None

    @classmethod
    def from_config(
        cls,
        config: Optional[PhaseflowConfig] = None,
        engine: Optional["WorkflowEngine"] = None,
    ) -> "WorkflowInstanceManager":
        config = config or load_config()
        return cls(store=get_store(config=config), engine=engine, config=config.manager)

    @property
    def persistence_enabled(self) -> bool:
        return self.store is not None

    def subscribe(self, event: str, handler: EventHandler) -> Subscription:
        return self._events.subscribe(event, handler)

    async def _report_error(self, operation: str, exc: BaseException, **context: Any) -> None:
        await self._events.emit(
            "manager:error", {"operation": operation, "error": str(exc), **context}
        )

    # ------------------------------------------------------------------
    # Startup
    async def initialize(self) -> int:
        """Prepare storage, recover persisted instances and start monitoring.

        Returns the number of live instances afterwards.
        """
        try:
            if self.store is not None:
                await self.store.setup()
                if self.config.recovery:
                    await self.recover_instances()
            if self.config.monitoring_interval > 0:
                self.start_monitoring()
        except Exception as exc:
            logger.error(f"Failed to initialize instance manager: {exc}")
            await self._report_error("initialize", exc)
            raise
        await self._events.emit(
            "manager:initialized",
            {
                "persistence_enabled": self.persistence_enabled,
                "recovered_instances": len(self._instances),
            },
        )
        return len(self._instances)

    async def recover_instances(self) -> int:
        """Rebuild every instance persisted in the active area."""
        if self.store is None:
            return 0
        try:
            instance_ids = await self.store.list_instance_ids(StorageArea.ACTIVE)
        except OSError as exc:
            logger.warning(f"Could not access recovery directory: {exc}")
            return 0

        recovered = 0
        actions = self.engine.actions if self.engine is not None else None
        for instance_id in instance_ids:
            if instance_id in self._instances:
                continue
            try:
                snapshot = await self.store.load(instance_id, StorageArea.ACTIVE)
                instance = WorkflowInstance.from_snapshot(snapshot, actions=actions)
            except Exception as exc:
                logger.warning(f"Failed to recover instance {instance_id}: {exc}")
                continue
            async with self._lock:
                self._add(instance, StorageArea.ACTIVE)
            if self.engine is not None:
                self.engine.adopt_instance(instance)
            recovered += 1
            await self._events.emit(
                "instance:recovered",
                {
                    "instance_id": instance.instance_id,
                    "template_id": instance.template.id,
                    "status": instance.status.value,
                },
            )
        if recovered:
            logger.info(f"Recovered {recovered} workflow instances")
        return recovered

    # ------------------------------------------------------------------
    # Registration
    def _add(self, instance: WorkflowInstance, area: StorageArea) -> None:
        self._instances[instance.instance_id] = instance
        self._areas[instance.instance_id] = area
        self._subscriptions[instance.instance_id] = [
            instance.subscribe(
                source,
                functools.partial(self._on_instance_event, instance, source, target),
            )
            for source, target in FORWARDED_EVENTS.items()
        ]

    def _drop(self, instance_id: str) -> Optional[WorkflowInstance]:
        for subscription in self._subscriptions.pop(instance_id, []):
            subscription.unsubscribe()
        self._areas.pop(instance_id, None)
        return self._instances.pop(instance_id, None)

    async def register_instance(self, instance: WorkflowInstance) -> WorkflowInstance:
        async with self._lock:
            if instance.instance_id in self._instances:
                raise InvalidStateError(f"Instance already registered: {instance.instance_id}")
            if len(self._instances) >= self.config.max_instances:
                raise MaxInstancesError(self.config.max_instances)
            self._add(instance, StorageArea.ACTIVE)
        engine = self.engine
        if engine is not None and engine.get_workflow_instance(instance.instance_id) is None:
            engine.adopt_instance(instance)

        await self.persist_instance(instance)
        await self._events.emit(
            "instance:registered",
            {
                "instance_id": instance.instance_id,
                "template_id": instance.template.id,
                "total_instances": len(self._instances),
            },
        )
        return instance

    async def create_instance(
        self, template_id: str, options: Optional[Dict[str, Any]] = None
    ) -> WorkflowInstance:
        """Create an instance through the attached engine and register it."""
        if self.engine is None:
            raise InvalidStateError("No workflow engine attached to the instance manager")
        created = await self.engine.create_workflow_instance(template_id, options)
        try:
            return await self.register_instance(created.instance)
        except MaxInstancesError:
            self.engine.release_instance(created.instance_id)
            raise

    async def _on_instance_event(
        self,
        instance: WorkflowInstance,
        source: str,
        target: str,
        data: Dict[str, Any],
    ) -> None:
        async with self._io_lock(instance.instance_id):
            await self._save(instance)
            destination = RELOCATIONS.get(source)
            if destination is not None:
                await self._relocate(instance.instance_id, destination)
        await self._events.emit(target, data)

    # ------------------------------------------------------------------
    # Persistence
    def storage_area(self, instance_id: str) -> Optional[StorageArea]:
        return self._areas.get(instance_id)

    def _io_lock(self, instance_id: str) -> asyncio.Lock:
        return self._io_locks.setdefault(instance_id, asyncio.Lock())

    async def persist_instance(self, instance: WorkflowInstance) -> bool:
        """Write a snapshot of ``instance`` to its current storage area.

        Instances that are no longer registered are skipped.
        """
        async with self._io_lock(instance.instance_id):
            return await self._save(instance)

    async def _save(self, instance: WorkflowInstance) -> bool:
        # Callers hold the instance's I/O lock; the area is read under it.
        if self.store is None or instance.instance_id not in self._instances:
            return False
        area = self._areas.get(instance.instance_id, StorageArea.ACTIVE)
        try:
            await self.store.save(instance.to_snapshot(), area)
        except Exception as exc:
            logger.error(f"Failed to persist instance {instance.instance_id}: {exc}")
            await self._report_error("persist", exc, instance_id=instance.instance_id)
            return False
        return True

    async def _relocate(self, instance_id: str, destination: StorageArea) -> bool:
        # Callers hold the instance's I/O lock.
        source = self._areas.get(instance_id, StorageArea.ACTIVE)
        if self.store is None or source == destination:
            return False
        try:
            await self.store.move(instance_id, source, destination)
        except Exception as exc:
            logger.error(
                f"Failed to move instance {instance_id} to {destination.value}: {exc}"
            )
            await self._report_error(
                "relocate", exc, instance_id=instance_id, destination=destination.value
            )
            return False
        if instance_id in self._areas:
            self._areas[instance_id] = destination
        return True

    async def cleanup_old_backups(self) -> int:
        if self.store is None:
            return 0
        removed = 0
        for instance_id in list(self._areas):
            async with self._io_lock(instance_id):
                area = self._areas.get(instance_id)
                if area is None:
                    continue
                try:
                    removed += await self.store.prune_backups(instance_id, area)
                except OSError as exc:
                    logger.warning(f"Could not prune backups for {instance_id}: {exc}")
        return removed

    # ------------------------------------------------------------------
    # Monitoring
    def start_monitoring(self) -> None:
        if self._monitor_task is not None and not self._monitor_task.done():
            self._monitor_task.cancel()
        self._monitor_task = asyncio.create_task(
            self._monitor_loop(), name="phaseflow-monitor"
        )

    async def stop_monitoring(self) -> None:
        task, self._monitor_task = self._monitor_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _monitor_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.monitoring_interval)
            try:
                await self.monitor_instances()
            except Exception as exc:
                logger.error(f"Instance monitoring failed: {exc}")
                await self._report_error("monitor", exc)

    def _stalled_for(self, instance: WorkflowInstance, now: datetime) -> Optional[float]:
        if instance.status != InstanceStatus.RUNNING:
            return None
        phase = instance.get_current_phase()
        if phase is None or phase.status not in _STALLABLE or phase.started_at is None:
            return None
        elapsed = (now - phase.started_at).total_seconds()
        return elapsed if elapsed > self.config.stall_threshold else None

    async def monitor_instances(self, now: Optional[datetime] = None) -> List[str]:
        """Run one monitoring pass and return the ids flagged as stalled.

        Reads instance state without going through the dispatcher, so a pass
        may observe an instance mid-update.
        """
        now = now or utcnow()
        stalled: List[str] = []
        for instance in list(self._instances.values()):
            try:
                elapsed = self._stalled_for(instance, now)
                if elapsed is not None:
                    stalled.append(instance.instance_id)
                    phase = instance.get_current_phase()
                    logger.warning(
                        f"Instance {instance.instance_id} phase {phase.name} "
                        f"running for {elapsed:.0f}s"
                    )
                    await self._events.emit(
                        "instance:stalled",
                        {
                            "instance_id": instance.instance_id,
                            "template_id": instance.template.id,
                            "phase_index": instance.current_phase_index,
                            "phase_name": phase.name,
                            "duration": int(elapsed * 1000),
                        },
                    )
                await self.persist_instance(instance)
            except Exception as exc:
                logger.warning(f"Monitoring failed for instance {instance.instance_id}: {exc}")
                await self._events.emit(
                    "instance:monitoring:error",
                    {"instance_id": instance.instance_id, "error": str(exc)},
                )
        await self.cleanup_old_backups()
        return stalled

    # ------------------------------------------------------------------
    # Queries
    def _require(self, instance_id: str) -> WorkflowInstance:
        instance = self._instances.get(instance_id)
        if instance is None:
            raise InstanceNotFoundError(instance_id)
        return instance

    def get_instance(self, instance_id: str) -> Optional[WorkflowInstance]:
        return self._instances.get(instance_id)

    def get_all_instances(self) -> List[WorkflowInstance]:
        return list(self._instances.values())

    def get_instances_by_status(self, status: InstanceStatus | str) -> List[WorkflowInstance]:
        status = InstanceStatus(status)
        return [i for i in self._instances.values() if i.status == status]

    def get_instances_by_template(self, template_id: str) -> List[WorkflowInstance]:
        return [i for i in self._instances.values() if i.template.id == template_id]

    def get_statistics(self) -> InstanceStatistics:
        stats = InstanceStatistics(total=len(self._instances))
        oldest: Optional[datetime] = None
        newest: Optional[datetime] = None
        total_progress = 0
        for instance in self._instances.values():
            status = instance.status.value
            stats.by_status[status] = stats.by_status.get(status, 0) + 1
            template_id = instance.template.id
            stats.by_template[template_id] = stats.by_template.get(template_id, 0) + 1
            total_progress += instance.progress.overall

            moment = instance.started_at or instance.created_at
            if oldest is None or moment < oldest:
                oldest = moment
                stats.oldest_instance = instance.instance_id
            if newest is None or moment > newest:
                newest = moment
                stats.newest_instance = instance.instance_id
        if self._instances:
            stats.avg_progress = int(total_progress / len(self._instances) + 0.5)
        return stats

    # ------------------------------------------------------------------
    # Operator actions
    async def pause_instance(self, instance_id: str) -> WorkflowInstance:
        instance = self._require(instance_id)
        await instance.pause()
        return instance

    async def resume_instance(self, instance_id: str) -> WorkflowInstance:
        instance = self._require(instance_id)
        await instance.resume()
        return instance

    async def cancel_instance(self, instance_id: str, reason: str = "") -> WorkflowInstance:
        """Mark the instance cancelled; an in-flight phase is not interrupted."""
        instance = self._require(instance_id)
        instance.mark_cancelled(reason)
        await self.persist_instance(instance)
        logger.info(f"Cancelled instance {instance_id}: {reason or 'no reason given'}")
        await self._events.emit(
            "instance:cancelled",
            {"instance_id": instance_id, "reason": reason, "template_id": instance.template.id},
        )
        return instance

    async def remove_instance(self, instance_id: str, archive: bool = True) -> WorkflowInstance:
        self._require(instance_id)
        archived = False
        async with self._io_lock(instance_id):
            async with self._lock:
                instance = self._require(instance_id)
                area = self._areas.get(instance_id, StorageArea.ACTIVE)
                self._drop(instance_id)

            if archive and self.store is not None and area != StorageArea.ARCHIVED:
                try:
                    archived = await self.store.move(instance_id, area, StorageArea.ARCHIVED)
                except Exception as exc:
                    logger.error(f"Failed to archive instance {instance_id}: {exc}")
                    await self._report_error("archive", exc, instance_id=instance_id)
        self._io_locks.pop(instance_id, None)
        if self.engine is not None:
            self.engine.release_instance(instance_id)

        await self._events.emit(
            "instance:removed",
            {
                "instance_id": instance_id,
                "archived": archived,
                "template_id": instance.template.id,
            },
        )
        return instance

    # ------------------------------------------------------------------
    async def shutdown(self) -> None:
        await self.stop_monitoring()
        for instance in list(self._instances.values()):
            await self.persist_instance(instance)
        async with self._lock:
            for instance_id in list(self._instances):
                self._drop(instance_id)
        self._io_locks.clear()
        await self._events.emit("manager:shutdown", {})
        logger.info("Instance manager shut down")
