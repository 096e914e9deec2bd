"""Example plugging a custom action handler and gate into the engine."""

import asyncio

from phaseflow import (
    ActionRegistry,
    GateResult,
    StepDefinition,
    ValidationGateError,
    ValidationGateRegistry,
    WorkflowEngine,
    WorkflowTemplate,
)


class ReviewHandler:
    """Pretends to review a document and produces a review note."""

    async def execute(self, phase, options):
        await asyncio.sleep(0.1)
        return {"artifacts": [f"{phase.name}-review.md"], "reviewer": options.get("reviewer")}


def has_review(instance, phase):
    if any(a.name.endswith("-review.md") for a in instance.get_artifacts()):
        return GateResult()
    return GateResult(passed=False, errors=["No review found"])


async def main():
    actions = ActionRegistry()
    actions.register("review", ReviewHandler())

    gates = ValidationGateRegistry.with_defaults()
    gates.register("has_review", has_review, "A review note must exist")

    template = WorkflowTemplate(
        id="reviewed-release",
        steps=[
            StepDefinition(name="draft", agent="writer", creates="release-notes.md"),
            StepDefinition(name="proofread", agent="editor", action="review"),
            StepDefinition(name="publish", agent="ops", validation_gates=["has_review"]),
        ],
    )
    engine = WorkflowEngine(templates=[template], gates=gates, actions=actions)

    created = await engine.create_workflow_instance("reviewed-release")
    await engine.start_workflow(created.instance_id)
    try:
        while created.instance.status.value == "running":
            result = await engine.execute_next_phase(
                created.instance_id, {"reviewer": "sam"}
            )
            print(f"✅ {result.phase.name}: {result.result}")
    except ValidationGateError as exc:
        print(f"⛔ {exc}")

    print(created.instance.get_status()["progress"])
    await engine.shutdown()


if __name__ == "__main__":
    asyncio.run(main())
