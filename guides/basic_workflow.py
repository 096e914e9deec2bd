"""Run a YAML workflow template end to end with filesystem persistence."""

import asyncio
from pathlib import Path

from phaseflow import WorkflowEngine, WorkflowInstanceManager
from phaseflow.config import ManagerConfig
from phaseflow.persistence import FileSnapshotStore

WORKFLOWS = Path(__file__).parent / "workflows"


async def main():
    engine = WorkflowEngine()
    engine.load_templates(WORKFLOWS)

    manager = WorkflowInstanceManager(
        store=FileSnapshotStore(".phaseflow"),
        engine=engine,
        config=ManagerConfig(monitoring_interval=0),
    )
    await manager.initialize()
    manager.subscribe("*", lambda event: print(f"  {event['event']}"))

    instance = await manager.create_instance("greenfield-service", {"project": "shop"})
    await engine.start_workflow(instance.instance_id)

    while instance.status.value == "running":
        result = await engine.execute_next_phase(instance.instance_id)
        print(f"✅ {result.phase.name} done ({instance.progress.overall}%)")

    print(f"📋 Instance {instance.instance_id}: {instance.status.value}")
    print(f"🔗 Artifacts: {[a.name for a in instance.get_artifacts()]}")

    await manager.shutdown()
    await engine.shutdown()


if __name__ == "__main__":
    asyncio.run(main())
