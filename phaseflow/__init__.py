"""phaseflow: durable, phase-based workflow execution."""

from .actions import ActionHandler, ActionRegistry, DefaultActionHandler
from .config import PhaseflowConfig, load_config
from .contracts import (
    Artifact,
    GateResult,
    InstanceStatus,
    Phase,
    PhaseExecutionResult,
    PhaseStatus,
    StepDefinition,
    WorkflowTemplate,
)
from .engine import CreatedInstance, WorkflowEngine
from .errors import (
    InstanceNotFoundError,
    InvalidStateError,
    MaxInstancesError,
    PhaseflowError,
    TemplateNotFoundError,
    ValidationGateError,
    WorkflowCancelledError,
)
from .gates import ValidationGateRegistry
from .instance import WorkflowInstance
from .manager import InstanceStatistics, WorkflowInstanceManager
from .persistence import FileSnapshotStore, InMemorySnapshotStore, get_store

__version__ = "0.1.0"
__all__ = [
    "ActionHandler",
    "ActionRegistry",
    "Artifact",
    "CreatedInstance",
    "DefaultActionHandler",
    "FileSnapshotStore",
    "GateResult",
    "InMemorySnapshotStore",
    "InstanceNotFoundError",
    "InstanceStatistics",
    "InstanceStatus",
    "InvalidStateError",
    "MaxInstancesError",
    "Phase",
    "PhaseExecutionResult",
    "PhaseStatus",
    "PhaseflowConfig",
    "PhaseflowError",
    "StepDefinition",
    "TemplateNotFoundError",
    "ValidationGateError",
    "ValidationGateRegistry",
    "WorkflowCancelledError",
    "WorkflowEngine",
    "WorkflowInstance",
    "WorkflowInstanceManager",
    "WorkflowTemplate",
    "get_store",
    "load_config",
]
