"""State machine for a single execution of a workflow template."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from .actions import ActionRegistry
from .contracts import (
    Artifact,
    GateResult,
    InstanceStatus,
    Metrics,
    Phase,
    PhaseExecutionResult,
    PhaseStatus,
    Progress,
    ValidationRecord,
    WorkflowTemplate,
    utcnow,
)
from .errors import InvalidStateError, WorkflowCancelledError
from .events import EventEmitter, EventHandler, Subscription

if TYPE_CHECKING:
    from .persistence.models import InstanceSnapshot

logger = logging.getLogger(__name__)


def _elapsed_ms(start: Optional[datetime], end: Optional[datetime]) -> Optional[int]:
    if start is None or end is None:
        return None
    return int((end - start).total_seconds() * 1000)


class WorkflowInstance:
    """One run of a :class:`WorkflowTemplate`.

    The instance owns its phases, progress counters, artifacts, metrics and
    validation history. It knows nothing about storage; every transition is
    announced through :meth:`subscribe` so that observers such as the
    instance manager can persist it.
    """

    def __init__(
        self,
        instance_id: str,
        template: WorkflowTemplate,
        options: Optional[Dict[str, Any]] = None,
        actions: Optional[ActionRegistry] = None,
    ) -> None:
        self.instance_id = instance_id
        self.template = template
        self.options: Dict[str, Any] = dict(options or {})
        self.status = InstanceStatus.INITIALIZING
        self.current_phase_index = 0
        self.phases: List[Phase] = []
        self.artifacts: List[Artifact] = []
        self.progress = Progress()
        self.metrics = Metrics()
        self.validation_results: List[ValidationRecord] = []
        self.created_at: datetime = utcnow()
        self.started_at: Optional[datetime] = None
        self.completed_at: Optional[datetime] = None
        self.cancel_reason: Optional[str] = None
        self._executing = False
        self._actions = actions or ActionRegistry()
        self._events = EventEmitter()

    def __repr__(self) -> str:
        return (
            f"WorkflowInstance(id={self.instance_id!r}, template={self.template.id!r}, "
            f"status={self.status.value!r})"
        )

    # ------------------------------------------------------------------
    # Notifications
    def subscribe(self, event: str, handler: EventHandler) -> Subscription:
        return self._events.subscribe(event, handler)

    def _payload(self, **extra: Any) -> Dict[str, Any]:
        return {"instance_id": self.instance_id, "template_id": self.template.id, **extra}

    async def _emit(self, event: str, **extra: Any) -> None:
        await self._events.emit(event, self._payload(**extra))

    # ------------------------------------------------------------------
    # Lifecycle
    async def initialize(self) -> None:
        """Materialize phases from the template's steps."""
        if self.status != InstanceStatus.INITIALIZING:
            raise InvalidStateError(f"Instance {self.instance_id} is already initialized")
        self.phases = [
            Phase.from_step(step, index) for index, step in enumerate(self.template.steps)
        ]
        self.current_phase_index = 0
        self.artifacts = []
        self.metrics = Metrics()
        self.validation_results = []
        self.progress = Progress(total_phases=len(self.phases))
        self.status = InstanceStatus.INITIALIZED
        await self._emit("workflow:initialized", total_phases=len(self.phases))

    async def start(self, options: Optional[Dict[str, Any]] = None) -> None:
        if self.status != InstanceStatus.INITIALIZED:
            raise InvalidStateError(
                f"Instance {self.instance_id} already started (status: {self.status.value})"
            )
        if options:
            self.options.update(options)
        self.status = InstanceStatus.RUNNING
        self.started_at = utcnow()
        if self.phases:
            first = self.phases[0]
            first.status = PhaseStatus.ACTIVE
            first.started_at = self.started_at
        logger.info(f"Started workflow instance {self.instance_id} ({self.template.id})")
        await self._emit("workflow:started")

    async def execute_current_phase(
        self,
        options: Optional[Dict[str, Any]] = None,
        phase_index: Optional[int] = None,
    ) -> PhaseExecutionResult:
        """Run the current phase through its action handler.

        Gate checks are the caller's responsibility; callers that checked
        gates pass the ``phase_index`` they checked so a phase that moved on
        in the meantime is rejected. A handler exception fails the phase and
        the instance and is re-raised unchanged.
        """
        if self.status != InstanceStatus.RUNNING:
            raise InvalidStateError(
                f"Instance {self.instance_id} is {self.status.value}; cannot execute phases"
            )
        phase = self.get_current_phase()
        if phase is None:
            raise InvalidStateError("No current phase to execute")
        if self._executing:
            raise InvalidStateError(f"Phase {phase.name} is already executing")
        if phase_index is not None and phase_index != self.current_phase_index:
            raise InvalidStateError(
                f"Current phase of instance {self.instance_id} moved from "
                f"{phase_index} to {self.current_phase_index}"
            )
        if phase.status in (PhaseStatus.COMPLETED, PhaseStatus.FAILED):
            raise InvalidStateError(f"Phase {phase.name} is already {phase.status.value}")

        index = self.current_phase_index
        self._executing = True
        try:
            phase.status = PhaseStatus.EXECUTING
            if phase.started_at is None:
                phase.started_at = utcnow()
            await self._emit("phase:started", phase=phase, phase_index=index)

            try:
                result = await self._actions.execute(phase, dict(options or {}))
            except Exception as exc:
                await self._fail_phase(phase, index, exc)
                raise
        finally:
            self._executing = False

        if self.status == InstanceStatus.CANCELLED:
            logger.warning(
                f"Discarding result of phase {phase.name} for cancelled instance {self.instance_id}"
            )
            raise WorkflowCancelledError(
                f"Instance {self.instance_id} was cancelled while phase {phase.name} was executing"
            )

        phase.status = PhaseStatus.COMPLETED
        phase.completed_at = utcnow()
        phase.duration = _elapsed_ms(phase.started_at, phase.completed_at)
        for produced in result.get("artifacts") or ([phase.creates] if phase.creates else []):
            spec = {"name": produced} if isinstance(produced, str) else dict(produced)
            artifact = self.add_artifact(spec, phase_index=index)
            phase.artifacts.append(artifact.name)
        self.metrics.phase_timings.append(
            {"phase_index": index, "phase": phase.name, "duration": phase.duration}
        )
        self.progress.completed_phases += 1
        self.progress.recompute()

        await self._emit("phase:completed", phase=phase, phase_index=index, result=result)

        next_phase = self.phases[index + 1] if index < len(self.phases) - 1 else None
        return PhaseExecutionResult(
            success=True, phase=phase, result=result, next_phase=next_phase
        )

    async def _fail_phase(self, phase: Phase, index: int, exc: Exception) -> None:
        phase.status = PhaseStatus.FAILED
        phase.error = str(exc)
        phase.completed_at = utcnow()
        phase.duration = _elapsed_ms(phase.started_at, phase.completed_at)
        self.metrics.blockers.append(
            {"phase_index": index, "phase": phase.name, "error": str(exc)}
        )
        logger.error(f"Phase {phase.name} of instance {self.instance_id} failed: {exc}")
        await self._emit("phase:failed", phase=phase, phase_index=index, error=str(exc))
        if self.status.is_terminal:
            return
        self.status = InstanceStatus.FAILED
        self.completed_at = utcnow()
        await self._emit("workflow:failed", phase=phase, phase_index=index, error=str(exc))

    async def move_to_next_phase(self) -> Optional[Phase]:
        if self.current_phase_index >= len(self.phases) - 1:
            return None
        self.current_phase_index += 1
        phase = self.phases[self.current_phase_index]
        phase.status = PhaseStatus.ACTIVE
        phase.started_at = utcnow()
        self.progress.current_phase = self.current_phase_index
        await self._emit("phase:activated", phase=phase, phase_index=self.current_phase_index)
        return phase

    async def complete(self) -> None:
        if self.status.is_terminal:
            raise InvalidStateError(
                f"Instance {self.instance_id} already finished ({self.status.value})"
            )
        self.status = InstanceStatus.COMPLETED
        self.completed_at = utcnow()
        logger.info(f"Workflow instance {self.instance_id} completed")
        await self._emit(
            "workflow:completed",
            duration=_elapsed_ms(self.started_at, self.completed_at),
            total_phases=len(self.phases),
        )

    async def pause(self) -> None:
        if self.status != InstanceStatus.RUNNING:
            raise InvalidStateError(
                f"Cannot pause instance {self.instance_id} in status {self.status.value}"
            )
        self.status = InstanceStatus.PAUSED
        await self._emit("workflow:paused")

    async def resume(self) -> None:
        if self.status != InstanceStatus.PAUSED:
            raise InvalidStateError(
                f"Cannot resume instance {self.instance_id} in status {self.status.value}"
            )
        self.status = InstanceStatus.RUNNING
        await self._emit("workflow:resumed")

    def mark_cancelled(self, reason: str = "") -> None:
        """Force the instance into ``cancelled`` without touching its phases."""
        if self.status.is_terminal:
            raise InvalidStateError(
                f"Instance {self.instance_id} already finished ({self.status.value})"
            )
        self.status = InstanceStatus.CANCELLED
        self.completed_at = utcnow()
        self.cancel_reason = reason

    async def archive(self) -> None:
        """Ask observers to move this instance's storage to the archive."""
        await self._emit("workflow:archived", status=self.status.value)

    # ------------------------------------------------------------------
    # Accessors
    @property
    def is_executing(self) -> bool:
        """True while an action handler call is in flight in this process."""
        return self._executing

    def get_current_phase(self) -> Optional[Phase]:
        if 0 <= self.current_phase_index < len(self.phases):
            return self.phases[self.current_phase_index]
        return None

    def get_artifacts(self) -> List[Artifact]:
        return self.artifacts

    def add_artifact(
        self, artifact: Dict[str, Any] | Artifact, phase_index: Optional[int] = None
    ) -> Artifact:
        data = artifact.model_dump() if isinstance(artifact, Artifact) else dict(artifact)
        data["created_at"] = utcnow()
        data["phase_index"] = (
            self.current_phase_index if phase_index is None else phase_index
        )
        record = Artifact.model_validate(data)
        self.artifacts.append(record)
        return record

    def set_validation_result(self, result: GateResult) -> ValidationRecord:
        record = ValidationRecord(
            passed=result.passed,
            errors=list(result.errors),
            warnings=list(result.warnings),
            phase_index=self.current_phase_index,
        )
        self.validation_results.append(record)
        return record

    def get_status(self) -> Dict[str, Any]:
        return {
            "instance_id": self.instance_id,
            "template_id": self.template.id,
            "status": self.status.value,
            "current_phase_index": self.current_phase_index,
            "total_phases": len(self.phases),
            "progress": self.progress.model_dump(),
            "phases": [phase.model_dump(mode="json") for phase in self.phases],
            "artifacts": [artifact.model_dump(mode="json") for artifact in self.artifacts],
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "metrics": self.metrics.model_dump(),
        }

    # ------------------------------------------------------------------
    # Snapshots
    def to_snapshot(self) -> "InstanceSnapshot":
        from .persistence.models import InstanceSnapshot

        return InstanceSnapshot(
            instance_id=self.instance_id,
            template=self.template,
            options=self.options,
            status=self.status,
            current_phase_index=self.current_phase_index,
            phases=[phase.model_copy(deep=True) for phase in self.phases],
            artifacts=[artifact.model_copy(deep=True) for artifact in self.artifacts],
            progress=self.progress.model_copy(),
            metrics=self.metrics.model_copy(deep=True),
            validation_results=[r.model_copy(deep=True) for r in self.validation_results],
            created_at=self.created_at,
            started_at=self.started_at,
            completed_at=self.completed_at,
            cancel_reason=self.cancel_reason,
        )

    @classmethod
    def from_snapshot(
        cls, snapshot: "InstanceSnapshot", actions: Optional[ActionRegistry] = None
    ) -> "WorkflowInstance":
        """Rebuild an instance verbatim from a persisted snapshot."""
        instance = cls(snapshot.instance_id, snapshot.template, snapshot.options, actions)
        instance.status = snapshot.status
        instance.current_phase_index = snapshot.current_phase_index
        instance.phases = list(snapshot.phases)
        for phase in instance.phases:
            # The action call was lost with the process that made it.
            if phase.status == PhaseStatus.EXECUTING:
                logger.warning(
                    f"Phase {phase.name} of instance {snapshot.instance_id} was "
                    f"executing when persisted; marking it active again"
                )
                phase.status = PhaseStatus.ACTIVE
        instance.artifacts = list(snapshot.artifacts)
        instance.progress = snapshot.progress
        instance.metrics = snapshot.metrics
        instance.validation_results = list(snapshot.validation_results)
        instance.created_at = snapshot.created_at or snapshot.started_at or instance.created_at
        instance.started_at = snapshot.started_at
        instance.completed_at = snapshot.completed_at
        instance.cancel_reason = snapshot.cancel_reason
        return instance
