"""Exception types raised by the workflow engine and instance manager."""

from __future__ import annotations

from typing import List, Optional


class PhaseflowError(Exception):
    """Base class for all phaseflow errors."""


class TemplateNotFoundError(PhaseflowError, LookupError):
    """Raised when a workflow template id is not registered."""

    def __init__(self, template_id: str) -> None:
        super().__init__(f"Workflow template not found: {template_id}")
        self.template_id = template_id


class InstanceNotFoundError(PhaseflowError, LookupError):
    """Raised when a workflow instance id is not live."""

    def __init__(self, instance_id: str) -> None:
        super().__init__(f"Workflow instance not found: {instance_id}")
        self.instance_id = instance_id


class InvalidStateError(PhaseflowError, RuntimeError):
    """Raised when an operation is not allowed in the instance's status."""


class WorkflowCancelledError(InvalidStateError):
    """Raised when a phase result arrives after its instance was cancelled."""


class ValidationGateError(PhaseflowError):
    """Raised when one or more validation gates reject a phase."""

    def __init__(
        self, errors: List[str], warnings: Optional[List[str]] = None
    ) -> None:
        super().__init__(f"Validation gate failed: {', '.join(errors)}")
        self.errors = list(errors)
        self.warnings = list(warnings or [])


class MaxInstancesError(PhaseflowError, RuntimeError):
    """Raised when the instance manager is full."""

    def __init__(self, limit: int) -> None:
        super().__init__(f"Maximum instances limit reached: {limit}")
        self.limit = limit


class PersistenceError(PhaseflowError, OSError):
    """Raised when the snapshot store cannot be prepared."""
