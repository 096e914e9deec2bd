"""Workflow engine: template registry, gate checks and phase dispatch."""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Set

from .actions import ActionRegistry
from .contracts import (
    GateResult,
    InstanceStatus,
    Phase,
    PhaseExecutionResult,
    PhaseStatus,
    QueueOperation,
    QueueTask,
    WorkflowTemplate,
)
from .dispatch import ExecutionDispatcher
from .errors import (
    InstanceNotFoundError,
    InvalidStateError,
    TemplateNotFoundError,
    ValidationGateError,
)
from .events import EventEmitter, EventHandler, Subscription
from .gates import ValidationGateRegistry
from .instance import WorkflowInstance
from .templates import load_templates

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CreatedInstance:
    instance_id: str
    instance: WorkflowInstance


class WorkflowEngine:
    """Creates instances from templates and drives their phases.

    Mutations that follow a phase execution (advancing, completing,
    recording validations) go through a single :class:`ExecutionDispatcher`
    so they never interleave across instances.
    """

    def __init__(
        self,
        templates: Optional[Iterable[WorkflowTemplate]] = None,
        gates: Optional[ValidationGateRegistry] = None,
        actions: Optional[ActionRegistry] = None,
    ) -> None:
        self._templates: Dict[str, WorkflowTemplate] = {}
        self._instances: Dict[str, WorkflowInstance] = {}
        self._in_flight: Set[str] = set()
        self.gates = gates if gates is not None else ValidationGateRegistry.with_defaults()
        self.actions = actions if actions is not None else ActionRegistry()
        self._dispatcher = ExecutionDispatcher(self._process_task)
        self._events = EventEmitter(isolate_errors=True)
        for template in templates or []:
            self.register_template(template)

    @property
    def dispatcher(self) -> ExecutionDispatcher:
        return self._dispatcher

    def subscribe(self, event: str, handler: EventHandler) -> Subscription:
        return self._events.subscribe(event, handler)

    @asynccontextmanager
    async def _reporting(self, operation: str, **context: Any) -> AsyncIterator[None]:
        try:
            yield
        except Exception as exc:
            await self._events.emit(
                "engine:error", {"operation": operation, "error": exc, **context}
            )
            raise

    # ------------------------------------------------------------------
    # Templates
    def register_template(self, template: WorkflowTemplate) -> None:
        if template.id in self._templates:
            logger.warning(f"Replacing workflow template {template.id}")
        self._templates[template.id] = template

    def load_templates(self, directory: str | Path) -> int:
        """Register every template found in ``directory``; return the count."""
        templates = load_templates(directory)
        for template in templates:
            self.register_template(template)
        return len(templates)

    def get_workflow_template(self, template_id: str) -> Optional[WorkflowTemplate]:
        return self._templates.get(template_id)

    def get_available_workflows(self) -> List[WorkflowTemplate]:
        return list(self._templates.values())

    # ------------------------------------------------------------------
    # Instances
    def get_workflow_instance(self, instance_id: str) -> Optional[WorkflowInstance]:
        return self._instances.get(instance_id)

    def get_active_instances(self) -> List[WorkflowInstance]:
        return list(self._instances.values())

    def adopt_instance(self, instance: WorkflowInstance) -> None:
        """Make an externally rebuilt instance (e.g. a recovered one) live."""
        self._instances[instance.instance_id] = instance

    def release_instance(self, instance_id: str) -> Optional[WorkflowInstance]:
        return self._instances.pop(instance_id, None)

    def _require_instance(self, instance_id: str) -> WorkflowInstance:
        instance = self._instances.get(instance_id)
        if instance is None:
            raise InstanceNotFoundError(instance_id)
        return instance

    async def create_workflow_instance(
        self, template_id: str, options: Optional[Dict[str, Any]] = None
    ) -> CreatedInstance:
        async with self._reporting("create", template_id=template_id):
            template = self._templates.get(template_id)
            if template is None:
                raise TemplateNotFoundError(template_id)
            instance_id = str(uuid.uuid4())
            instance = WorkflowInstance(instance_id, template, options, self.actions)
            await instance.initialize()
            self._instances[instance_id] = instance
        logger.info(f"Created workflow instance {instance_id} from template {template_id}")
        await self._events.emit(
            "instance:created",
            {"instance_id": instance_id, "template_id": template_id, "options": options or {}},
        )
        return CreatedInstance(instance_id=instance_id, instance=instance)

    async def start_workflow(
        self, instance_id: str, start_options: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        async with self._reporting("start", instance_id=instance_id):
            instance = self._require_instance(instance_id)
            await instance.start(start_options)
            await self._dispatcher.submit(
                QueueTask(
                    instance_id=instance_id,
                    operation=QueueOperation.START,
                    options=dict(start_options or {}),
                )
            )
        return instance.get_status()

    async def execute_next_phase(
        self, instance_id: str, phase_options: Optional[Dict[str, Any]] = None
    ) -> PhaseExecutionResult:
        """Gate-check and execute the current phase, then advance.

        Raises :class:`ValidationGateError` without touching the phase when a
        gate rejects it. Action handler errors propagate unchanged. Only one
        call per instance may be in flight; the phase is reserved before its
        gates run. A current phase that is already completed (progression
        lost before a restart) is advanced first.
        """
        async with self._reporting("execute", instance_id=instance_id):
            instance = self._require_instance(instance_id)
            self._require_running(instance)
            if instance_id in self._in_flight:
                raise InvalidStateError(
                    f"Instance {instance_id} is already executing a phase"
                )
            self._in_flight.add(instance_id)
            try:
                return await self._execute_reserved(instance, phase_options)
            finally:
                self._in_flight.discard(instance_id)

    def _require_running(self, instance: WorkflowInstance) -> None:
        if instance.status != InstanceStatus.RUNNING:
            raise InvalidStateError(
                f"Instance {instance.instance_id} is {instance.status.value}; "
                f"cannot execute phases"
            )

    async def _execute_reserved(
        self, instance: WorkflowInstance, phase_options: Optional[Dict[str, Any]]
    ) -> PhaseExecutionResult:
        phase = instance.get_current_phase()
        if phase is not None and phase.status == PhaseStatus.COMPLETED:
            logger.info(
                f"Phase {phase.name} of instance {instance.instance_id} already "
                f"completed; advancing before execution"
            )
            await self._dispatcher.submit(
                QueueTask(instance_id=instance.instance_id, operation=QueueOperation.NEXT_PHASE)
            )
            if instance.status == InstanceStatus.COMPLETED:
                return PhaseExecutionResult(success=True, phase=phase)
            self._require_running(instance)
            phase = instance.get_current_phase()
        if phase is None:
            raise InvalidStateError("No current phase to execute")

        index = instance.current_phase_index
        gate_result = await self.run_validation_gates(instance, phase)
        if phase.validation_gates:
            instance.set_validation_result(gate_result)
        if not gate_result.passed:
            raise ValidationGateError(gate_result.errors, gate_result.warnings)

        result = await instance.execute_current_phase(phase_options, phase_index=index)
        await self._dispatcher.submit(
            QueueTask(instance_id=instance.instance_id, operation=QueueOperation.NEXT_PHASE)
        )
        return result

    async def run_validation_gates(
        self, instance: WorkflowInstance, phase: Phase
    ) -> GateResult:
        result = await self.gates.run(instance, phase)
        if phase.validation_gates:
            instance.metrics.quality_gates.append(
                {
                    "phase_index": instance.current_phase_index,
                    "gates": list(phase.validation_gates),
                    "passed": result.passed,
                    "errors": len(result.errors),
                    "warnings": len(result.warnings),
                }
            )
        return result

    async def request_validation(
        self, instance_id: str, options: Optional[Dict[str, Any]] = None
    ) -> Optional[GateResult]:
        """Queue a gate check of the current phase and record its outcome."""
        self._require_instance(instance_id)
        return await self._dispatcher.submit(
            QueueTask(
                instance_id=instance_id,
                operation=QueueOperation.VALIDATE,
                options=dict(options or {}),
            )
        )

    # ------------------------------------------------------------------
    # Queue handlers
    async def _process_task(self, task: QueueTask) -> Any:
        instance = self._instances.get(task.instance_id)
        if instance is None:
            raise InstanceNotFoundError(task.instance_id)

        if task.operation == QueueOperation.START:
            if not instance.phases and instance.status == InstanceStatus.RUNNING:
                await instance.complete()
            return None
        if task.operation == QueueOperation.NEXT_PHASE:
            return await self.handle_phase_progression(instance)
        if task.operation == QueueOperation.VALIDATE:
            return await self.handle_validation(instance, task.options)
        logger.warning(f"Unknown queue operation: {task.operation}")
        return None

    async def handle_phase_progression(self, instance: WorkflowInstance) -> Optional[Phase]:
        """Advance to the next phase, or complete after the last one."""
        if instance.status not in (InstanceStatus.RUNNING, InstanceStatus.PAUSED):
            logger.info(
                f"Skipping phase progression for instance {instance.instance_id} "
                f"({instance.status.value})"
            )
            return None
        current = instance.get_current_phase()
        if current is not None and current.status != PhaseStatus.COMPLETED:
            return None
        if instance.current_phase_index < len(instance.phases) - 1:
            return await instance.move_to_next_phase()
        await instance.complete()
        return None

    async def handle_validation(
        self, instance: WorkflowInstance, options: Dict[str, Any]
    ) -> Optional[GateResult]:
        phase = instance.get_current_phase()
        if phase is None:
            return None
        result = await self.run_validation_gates(instance, phase)
        instance.set_validation_result(result)
        return result

    # ------------------------------------------------------------------
    async def cleanup(self) -> Dict[str, int]:
        """Archive and drop instances that reached a terminal status."""
        finished = [
            instance
            for instance in self._instances.values()
            if instance.status.is_terminal
        ]
        for instance in finished:
            await instance.archive()
            self._instances.pop(instance.instance_id, None)
        return {"cleaned": len(finished), "remaining": len(self._instances)}

    async def shutdown(self) -> None:
        await self._dispatcher.close()
        self._instances.clear()
        await self._events.emit("engine:shutdown", {})
        logger.info("Workflow engine shut down")
