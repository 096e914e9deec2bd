"""Core data contracts for phaseflow workflows."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> Dict[str, Any]:
        """Return a JSON-compatible dict using the persisted key names."""
        return self.model_dump(mode="json", by_alias=True)


class InstanceStatus(str, Enum):
    INITIALIZING = "initializing"
    INITIALIZED = "initialized"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {InstanceStatus.COMPLETED, InstanceStatus.FAILED, InstanceStatus.CANCELLED}
)


class PhaseStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return list(value)


class StepDefinition(CamelModel):
    """One step of a workflow template."""

    name: Optional[str] = None
    agent: Optional[str] = None
    action: Optional[str] = None
    uses: List[str] = Field(default_factory=list)
    creates: Optional[str] = None
    requires: List[str] = Field(default_factory=list)
    condition: Optional[str] = None
    validation_gates: List[str] = Field(default_factory=list)
    notes: Optional[str] = None

    @field_validator("uses", "requires", "validation_gates", mode="before")
    @classmethod
    def _coerce_list(cls, value: Any) -> List[str]:
        return _as_list(value)


class WorkflowTemplate(CamelModel):
    """Immutable, already-parsed workflow definition."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: Optional[str] = None
    description: Optional[str] = None
    steps: List[StepDefinition] = Field(default_factory=list)
    source: Optional[str] = None


class Phase(CamelModel):
    """Mutable, per-instance copy of a step definition."""

    id: str
    name: str
    description: str = ""
    status: PhaseStatus = PhaseStatus.PENDING
    agent: Optional[str] = None
    action: Optional[str] = None
    uses: List[str] = Field(default_factory=list)
    creates: Optional[str] = None
    requires: List[str] = Field(default_factory=list)
    condition: Optional[str] = None
    validation_gates: List[str] = Field(default_factory=list)
    notes: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration: Optional[int] = Field(
        default=None, description="Execution time in milliseconds"
    )
    error: Optional[str] = None
    artifacts: List[str] = Field(default_factory=list)

    @classmethod
    def from_step(cls, step: StepDefinition, index: int) -> "Phase":
        """Materialize ``step`` as the phase at ``index``."""
        return cls(
            id=f"phase_{index}",
            name=step.name or step.agent or f"Phase {index + 1}",
            description=step.notes or step.action or "",
            agent=step.agent,
            action=step.action,
            uses=list(step.uses),
            creates=step.creates,
            requires=list(step.requires),
            condition=step.condition,
            validation_gates=list(step.validation_gates),
            notes=step.notes,
        )


class Artifact(CamelModel):
    """A named output produced by a phase."""

    name: str
    type: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    phase_index: int = 0
    metadata: Dict[str, Any] = Field(default_factory=dict)


class Progress(CamelModel):
    overall: int = 0
    current_phase: int = 0
    completed_phases: int = 0
    total_phases: int = 0

    def recompute(self) -> None:
        """Refresh ``overall`` from the phase counters (half-up rounding)."""
        if self.total_phases <= 0:
            self.overall = 0
            return
        self.overall = int(self.completed_phases * 100 / self.total_phases + 0.5)


class Metrics(CamelModel):
    phase_timings: List[Dict[str, Any]] = Field(default_factory=list)
    blockers: List[Dict[str, Any]] = Field(default_factory=list)
    quality_gates: List[Dict[str, Any]] = Field(
        default_factory=list, alias="quality_gates"
    )


class GateResult(CamelModel):
    """Aggregated outcome of one or more validation gates."""

    passed: bool = True
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class ValidationRecord(GateResult):
    """A gate result stored in an instance's validation history."""

    phase_index: int = 0
    timestamp: datetime = Field(default_factory=utcnow)


class PhaseExecutionResult(CamelModel):
    """Returned by a successful phase execution."""

    success: bool
    phase: Phase
    result: Dict[str, Any] = Field(default_factory=dict)
    next_phase: Optional[Phase] = None


class QueueOperation(str, Enum):
    START = "start"
    NEXT_PHASE = "next_phase"
    VALIDATE = "validate"


class QueueTask(CamelModel):
    """A pending mutating operation for the execution dispatcher."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    instance_id: str
    operation: QueueOperation
    options: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)
