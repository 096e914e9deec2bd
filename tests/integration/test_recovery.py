"""Restart recovery from the filesystem store."""

import asyncio

import pytest

from phaseflow import ActionRegistry, WorkflowEngine
from phaseflow.config import ManagerConfig
from phaseflow.contracts import InstanceStatus, PhaseStatus
from phaseflow.manager import WorkflowInstanceManager
from phaseflow.persistence import FileSnapshotStore, StorageArea

from conftest import EventLog, make_template


async def _manager(root, engine):
    manager = WorkflowInstanceManager(
        store=FileSnapshotStore(root),
        engine=engine,
        config=ManagerConfig(monitoring_interval=0),
    )
    await manager.initialize()
    return manager


@pytest.mark.asyncio
async def test_recovered_instance_matches_persisted_state(tmp_path):
    root = tmp_path / "storage"
    template = make_template("t1", names=("A", "B", "C"), creates={"A": "brief.md"})

    engine = WorkflowEngine(templates=[template])
    manager = await _manager(root, engine)
    original = await manager.create_instance("t1", {"project": "shop"})
    await engine.start_workflow(original.instance_id)
    await engine.execute_next_phase(original.instance_id)
    await manager.shutdown()
    await engine.shutdown()

    engine = WorkflowEngine(templates=[template])
    manager = WorkflowInstanceManager(
        store=FileSnapshotStore(root),
        engine=engine,
        config=ManagerConfig(monitoring_interval=0),
    )
    log = EventLog()
    manager.subscribe("instance:recovered", log)
    assert await manager.initialize() == 1

    recovered = manager.get_instance(original.instance_id)
    assert recovered is not None
    assert engine.get_workflow_instance(original.instance_id) is recovered
    assert recovered.status == InstanceStatus.RUNNING
    assert recovered.options == {"project": "shop"}
    assert recovered.current_phase_index == 1
    assert [p.status for p in recovered.phases] == [
        PhaseStatus.COMPLETED,
        PhaseStatus.ACTIVE,
        PhaseStatus.PENDING,
    ]
    assert [a.name for a in recovered.artifacts] == ["brief.md"]
    assert recovered.progress == original.progress
    assert recovered.started_at == original.started_at
    assert log.events[0]["instance_id"] == original.instance_id

    # The recovered instance keeps running where it left off.
    await engine.execute_next_phase(original.instance_id)
    await engine.execute_next_phase(original.instance_id)
    assert recovered.status == InstanceStatus.COMPLETED
    assert manager.storage_area(original.instance_id) == StorageArea.COMPLETED

    await manager.shutdown()
    await engine.shutdown()


@pytest.mark.asyncio
async def test_recovery_skips_unreadable_snapshots(tmp_path):
    root = tmp_path / "storage"
    engine = WorkflowEngine(templates=[make_template()])
    manager = await _manager(root, engine)
    good = await manager.create_instance("t1")
    await manager.shutdown()
    await engine.shutdown()

    corrupt = root / "active" / "corrupt-instance"
    corrupt.mkdir(parents=True)
    (corrupt / "state.json").write_text("{not json")

    engine = WorkflowEngine(templates=[make_template()])
    manager = await _manager(root, engine)

    assert [i.instance_id for i in manager.get_all_instances()] == [good.instance_id]
    await manager.shutdown()
    await engine.shutdown()


@pytest.mark.asyncio
async def test_finished_instances_are_not_recovered(tmp_path):
    root = tmp_path / "storage"
    engine = WorkflowEngine(templates=[make_template(names=("A",))])
    manager = await _manager(root, engine)
    done = await manager.create_instance("t1")
    await engine.start_workflow(done.instance_id)
    await engine.execute_next_phase(done.instance_id)
    assert done.status == InstanceStatus.COMPLETED
    await manager.shutdown()
    await engine.shutdown()

    engine = WorkflowEngine(templates=[make_template(names=("A",))])
    manager = await _manager(root, engine)
    assert manager.get_all_instances() == []
    assert (root / "completed" / done.instance_id / "state.json").is_file()
    await manager.shutdown()
    await engine.shutdown()


@pytest.mark.asyncio
async def test_phase_interrupted_mid_action_runs_again_after_restart(tmp_path):
    root = tmp_path / "storage"
    entered = asyncio.Event()
    release = asyncio.Event()

    class BlockingHandler:
        async def execute(self, phase, options):
            entered.set()
            await release.wait()
            return {}

    engine = WorkflowEngine(
        templates=[make_template()], actions=ActionRegistry(default=BlockingHandler())
    )
    manager = await _manager(root, engine)
    instance = await manager.create_instance("t1")
    await engine.start_workflow(instance.instance_id)

    running = asyncio.create_task(engine.execute_next_phase(instance.instance_id))
    await entered.wait()
    running.cancel()
    with pytest.raises(asyncio.CancelledError):
        await running
    await engine.shutdown()

    snapshot = await FileSnapshotStore(root).load(instance.instance_id)
    assert snapshot.phases[0].status == PhaseStatus.EXECUTING

    engine = WorkflowEngine(templates=[make_template()])
    manager = await _manager(root, engine)
    recovered = manager.get_instance(instance.instance_id)
    assert recovered.status == InstanceStatus.RUNNING
    assert recovered.phases[0].status == PhaseStatus.ACTIVE

    result = await engine.execute_next_phase(instance.instance_id)
    assert result.phase.name == "A"
    assert recovered.current_phase_index == 1
    await manager.shutdown()
    await engine.shutdown()


@pytest.mark.asyncio
async def test_lost_progression_is_applied_after_restart(tmp_path):
    root = tmp_path / "storage"
    engine = WorkflowEngine(templates=[make_template()])
    manager = await _manager(root, engine)
    instance = await manager.create_instance("t1")
    await engine.start_workflow(instance.instance_id)
    # Phase completes but the queued progression never runs.
    await instance.execute_current_phase()
    await manager.shutdown()
    await engine.shutdown()

    engine = WorkflowEngine(templates=[make_template()])
    manager = await _manager(root, engine)
    recovered = manager.get_instance(instance.instance_id)
    assert recovered.current_phase_index == 0
    assert recovered.phases[0].status == PhaseStatus.COMPLETED

    result = await engine.execute_next_phase(instance.instance_id)

    assert result.phase.name == "B"
    assert recovered.status == InstanceStatus.COMPLETED
    assert recovered.progress.overall == 100
    assert manager.storage_area(instance.instance_id) == StorageArea.COMPLETED
    await manager.shutdown()
    await engine.shutdown()
