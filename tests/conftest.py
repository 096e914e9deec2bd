"""Shared fixtures for phaseflow tests."""

from typing import Iterable, Optional

import pytest
import pytest_asyncio

from phaseflow import StepDefinition, WorkflowEngine, WorkflowTemplate
from phaseflow.config import ManagerConfig
from phaseflow.manager import WorkflowInstanceManager
from phaseflow.persistence import FileSnapshotStore


def make_template(
    template_id: str = "t1",
    names: Iterable[str] = ("A", "B"),
    gates: Optional[dict] = None,
    creates: Optional[dict] = None,
) -> WorkflowTemplate:
    gates = gates or {}
    creates = creates or {}
    return WorkflowTemplate(
        id=template_id,
        steps=[
            StepDefinition(
                name=name,
                agent=f"{name.lower()}-agent",
                action=f"do-{name.lower()}",
                creates=creates.get(name),
                validation_gates=gates.get(name, []),
            )
            for name in names
        ],
    )


class RecordingHandler:
    """Action handler that records the phases it was asked to run."""

    def __init__(self, result=None, error: Optional[Exception] = None):
        self.calls = []
        self.result = result or {}
        self.error = error

    async def execute(self, phase, options):
        self.calls.append((phase.name, dict(options)))
        if self.error is not None:
            raise self.error
        return dict(self.result)


@pytest.fixture
def template() -> WorkflowTemplate:
    return make_template()


@pytest_asyncio.fixture
async def engine(template):
    engine = WorkflowEngine(templates=[template])
    yield engine
    await engine.shutdown()


@pytest.fixture
def store(tmp_path) -> FileSnapshotStore:
    return FileSnapshotStore(tmp_path / "storage")


@pytest_asyncio.fixture
async def manager(store, engine):
    manager = WorkflowInstanceManager(
        store=store,
        engine=engine,
        config=ManagerConfig(monitoring_interval=0),
    )
    await manager.initialize()
    yield manager
    await manager.shutdown()


class EventLog:
    """Collects notifications delivered to a ``"*"`` subscription."""

    def __init__(self):
        self.events = []

    def __call__(self, data):
        self.events.append(data)

    def names(self):
        return [event["event"] for event in self.events]

    def of(self, name):
        return [event for event in self.events if event["event"] == name]
