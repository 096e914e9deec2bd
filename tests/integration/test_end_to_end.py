"""Drive a template from creation to completion with persistence attached."""

import pytest

from phaseflow import WorkflowEngine
from phaseflow.config import ManagerConfig
from phaseflow.contracts import InstanceStatus, PhaseStatus
from phaseflow.manager import WorkflowInstanceManager
from phaseflow.persistence import FileSnapshotStore, StorageArea

from conftest import EventLog, make_template


@pytest.mark.asyncio
async def test_two_phase_workflow_end_to_end(tmp_path):
    engine = WorkflowEngine(templates=[make_template("t1", names=("A", "B"))])
    store = FileSnapshotStore(tmp_path / "storage")
    manager = WorkflowInstanceManager(
        store=store, engine=engine, config=ManagerConfig(monitoring_interval=0)
    )
    await manager.initialize()
    log = EventLog()
    manager.subscribe("*", log)

    instance = await manager.create_instance("t1")
    await engine.start_workflow(instance.instance_id)

    await engine.execute_next_phase(instance.instance_id)
    assert instance.phases[0].status == PhaseStatus.COMPLETED
    assert instance.current_phase_index == 1
    assert instance.progress.overall == 50

    await engine.execute_next_phase(instance.instance_id)
    assert instance.status == InstanceStatus.COMPLETED
    assert instance.progress.overall == 100

    stats = manager.get_statistics()
    assert stats.by_status["completed"] == 1

    assert await store.exists(instance.instance_id, StorageArea.COMPLETED)
    assert not await store.exists(instance.instance_id, StorageArea.ACTIVE)
    assert log.names() == [
        "instance:registered",
        "instance:started",
        "instance:phase:started",
        "instance:phase:completed",
        "instance:phase:activated",
        "instance:phase:started",
        "instance:phase:completed",
        "instance:completed",
    ]

    await manager.shutdown()
    await engine.shutdown()


@pytest.mark.asyncio
async def test_many_instances_progress_independently(tmp_path):
    engine = WorkflowEngine(templates=[make_template("t1", names=("A", "B", "C"))])
    manager = WorkflowInstanceManager(
        store=FileSnapshotStore(tmp_path / "storage"),
        engine=engine,
        config=ManagerConfig(monitoring_interval=0),
    )
    await manager.initialize()
    instances = [await manager.create_instance("t1") for _ in range(3)]
    for instance in instances:
        await engine.start_workflow(instance.instance_id)

    for steps, instance in enumerate(instances, start=1):
        for _ in range(steps):
            await engine.execute_next_phase(instance.instance_id)

    assert [i.progress.overall for i in instances] == [33, 67, 100]
    assert manager.get_statistics().by_status == {"running": 2, "completed": 1}

    await manager.shutdown()
    await engine.shutdown()
