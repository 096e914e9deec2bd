"""Validation gate registry tests."""

import pytest

from phaseflow import GateResult, StepDefinition, WorkflowInstance, WorkflowTemplate
from phaseflow.contracts import PhaseStatus
from phaseflow.gates import ValidationGateRegistry


async def _instance(gates):
    template = WorkflowTemplate(
        id="gated", steps=[StepDefinition(name="first", validation_gates=gates)]
    )
    instance = WorkflowInstance("inst-1", template)
    await instance.initialize()
    return instance


@pytest.mark.asyncio
async def test_run_with_no_gates_passes():
    registry = ValidationGateRegistry()
    instance = await _instance([])
    result = await registry.run(instance, instance.phases[0])
    assert result == GateResult(passed=True, errors=[], warnings=[])


@pytest.mark.asyncio
async def test_unknown_gate_is_a_warning():
    registry = ValidationGateRegistry()
    instance = await _instance(["not_implemented_yet"])
    result = await registry.run(instance, instance.phases[0])
    assert result.passed
    assert result.warnings == ["Unknown validation gate: not_implemented_yet"]


@pytest.mark.asyncio
async def test_errors_and_warnings_are_aggregated_across_gates():
    registry = ValidationGateRegistry()
    registry.register("a", lambda i, p: GateResult(passed=False, errors=["a failed"]))
    registry.register(
        "b", lambda i, p: {"passed": False, "errors": ["b failed"], "warnings": ["b warn"]}
    )
    instance = await _instance(["a", "b"])

    result = await registry.run(instance, instance.phases[0])

    assert not result.passed
    assert result.errors == ["a failed", "b failed"]
    assert result.warnings == ["b warn"]


@pytest.mark.asyncio
async def test_raising_gate_becomes_error_entry_and_other_gates_still_run():
    def broken(instance, phase):
        raise RuntimeError("boom")

    async def ok(instance, phase):
        return GateResult(warnings=["checked"])

    registry = ValidationGateRegistry()
    registry.register("broken", broken)
    registry.register("ok", ok)
    instance = await _instance(["broken", "ok"])

    result = await registry.run(instance, instance.phases[0])

    assert not result.passed
    assert result.errors == ["Validation gate error (broken): boom"]
    assert result.warnings == ["checked"]


@pytest.mark.asyncio
async def test_run_does_not_mutate_phase():
    registry = ValidationGateRegistry()
    registry.register("deny", lambda i, p: GateResult(passed=False, errors=["no"]))
    instance = await _instance(["deny"])
    phase = instance.phases[0]

    await registry.run(instance, phase)

    assert phase.status == PhaseStatus.PENDING
    assert instance.validation_results == []


def test_default_gates_are_registered_with_descriptions():
    registry = ValidationGateRegistry.with_defaults()
    assert set(registry.names()) == {
        "requirements_complete",
        "architecture_approved",
        "implementation_ready",
        "testing_complete",
        "deployment_ready",
    }
    assert all(registry.describe().values())


@pytest.mark.asyncio
async def test_requirements_gate_checks_artifacts():
    registry = ValidationGateRegistry.with_defaults()
    instance = await _instance(["requirements_complete"])
    phase = instance.phases[0]

    result = await registry.run(instance, phase)
    assert not result.passed
    assert "Missing required artifact: requirements.md" in result.errors

    instance.add_artifact({"name": "docs/requirements.md"})
    instance.add_artifact({"name": "project-brief.md"})
    assert (await registry.run(instance, phase)).passed


@pytest.mark.asyncio
async def test_testing_gate_only_warns():
    registry = ValidationGateRegistry.with_defaults()
    instance = await _instance(["testing_complete"])
    result = await registry.run(instance, instance.phases[0])
    assert result.passed
    assert result.warnings == ["No test artifacts found"]


@pytest.mark.asyncio
async def test_deployment_gate_requires_progress():
    registry = ValidationGateRegistry.with_defaults()
    instance = await _instance(["deployment_ready"])
    result = await registry.run(instance, instance.phases[0])
    assert not result.passed

    instance.progress.overall = 95
    assert (await registry.run(instance, instance.phases[0])).passed
