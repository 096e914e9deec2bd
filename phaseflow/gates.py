"""Validation gates checked before a phase is allowed to execute."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Mapping, Union

from .contracts import GateResult, Phase, PhaseStatus

if TYPE_CHECKING:
    from .instance import WorkflowInstance

logger = logging.getLogger(__name__)

GateValidator = Callable[
    ["WorkflowInstance", Phase],
    Union[GateResult, Mapping[str, Any], Awaitable[Union[GateResult, Mapping[str, Any]]]],
]


@dataclass(frozen=True)
class ValidationGate:
    name: str
    validator: GateValidator
    description: str = ""


class ValidationGateRegistry:
    """Named set of predicates run against an instance's current phase."""

    def __init__(self) -> None:
        self._gates: Dict[str, ValidationGate] = {}

    def register(
        self, name: str, validator: GateValidator, description: str = ""
    ) -> ValidationGate:
        gate = ValidationGate(name=name, validator=validator, description=description)
        self._gates[name] = gate
        return gate

    def get(self, name: str) -> ValidationGate | None:
        return self._gates.get(name)

    def names(self) -> List[str]:
        return list(self._gates)

    def describe(self) -> Dict[str, str]:
        return {name: gate.description for name, gate in self._gates.items()}

    def __contains__(self, name: object) -> bool:
        return name in self._gates

    def __len__(self) -> int:
        return len(self._gates)

    async def run(self, instance: "WorkflowInstance", phase: Phase) -> GateResult:
        """Run every gate named on ``phase`` and aggregate the outcome.

        Unknown gate names become warnings. A gate that raises is recorded as
        an error and the remaining gates still run.
        """
        result = GateResult()
        for gate_name in phase.validation_gates:
            gate = self._gates.get(gate_name)
            if gate is None:
                result.warnings.append(f"Unknown validation gate: {gate_name}")
                continue
            try:
                outcome = gate.validator(instance, phase)
                if inspect.isawaitable(outcome):
                    outcome = await outcome
                gate_result = GateResult.model_validate(outcome)
            except Exception as exc:
                logger.warning(f"Validation gate {gate_name} raised: {exc}")
                result.passed = False
                result.errors.append(f"Validation gate error ({gate_name}): {exc}")
                continue
            if not gate_result.passed:
                result.passed = False
                result.errors.extend(gate_result.errors)
            result.warnings.extend(gate_result.warnings)
        return result

    @classmethod
    def with_defaults(cls) -> "ValidationGateRegistry":
        registry = cls()
        install_default_gates(registry)
        return registry


# ----------------------------------------------------------------------
# Default gates


def requirements_complete(instance: "WorkflowInstance", phase: Phase) -> GateResult:
    result = GateResult()
    names = [artifact.name for artifact in instance.get_artifacts()]
    for required in ("requirements.md", "project-brief.md"):
        if not any(required in name for name in names):
            result.passed = False
            result.errors.append(f"Missing required artifact: {required}")
    return result


def architecture_approved(instance: "WorkflowInstance", phase: Phase) -> GateResult:
    has_doc = any(
        "architecture" in artifact.name or artifact.type == "architecture"
        for artifact in instance.get_artifacts()
    )
    if has_doc:
        return GateResult()
    return GateResult(passed=False, errors=["Missing architecture documentation"])


def implementation_ready(instance: "WorkflowInstance", phase: Phase) -> GateResult:
    result = GateResult()
    for previous in instance.phases[: instance.current_phase_index]:
        if previous.status != PhaseStatus.COMPLETED:
            result.passed = False
            result.errors.append(f"Previous phase not completed: {previous.name}")
    return result


def testing_complete(instance: "WorkflowInstance", phase: Phase) -> GateResult:
    has_tests = any(
        "test" in artifact.name or artifact.type == "test"
        for artifact in instance.get_artifacts()
    )
    if has_tests:
        return GateResult()
    return GateResult(warnings=["No test artifacts found"])


def deployment_ready(instance: "WorkflowInstance", phase: Phase) -> GateResult:
    if instance.progress.overall < 95:
        return GateResult(
            passed=False,
            errors=["Workflow not sufficiently complete for deployment"],
        )
    return GateResult()


DEFAULT_GATES = {
    "requirements_complete": (
        requirements_complete,
        "Validates that all requirements are properly documented and approved",
    ),
    "architecture_approved": (
        architecture_approved,
        "Validates architecture documentation and design decisions",
    ),
    "implementation_ready": (
        implementation_ready,
        "Validates that implementation can begin",
    ),
    "testing_complete": (
        testing_complete,
        "Validates that testing requirements are met",
    ),
    "deployment_ready": (
        deployment_ready,
        "Validates deployment readiness",
    ),
}


def install_default_gates(registry: ValidationGateRegistry) -> None:
    for name, (validator, description) in DEFAULT_GATES.items():
        registry.register(name, validator, description)
