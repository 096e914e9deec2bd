"""Lifecycle notification plumbing."""

import pytest

from phaseflow.events import EventEmitter


def _broken(data):
    raise RuntimeError("handler failed")


@pytest.mark.asyncio
async def test_sync_async_and_wildcard_handlers_receive_payload():
    emitter = EventEmitter()
    seen = []

    async def on_async(data):
        seen.append(("async", data))

    emitter.subscribe("phase:started", lambda data: seen.append(("sync", data)))
    emitter.subscribe("phase:started", on_async)
    emitter.subscribe("*", lambda data: seen.append(("any", data)))

    await emitter.emit("phase:started", {"instance_id": "i1"})

    assert seen == [
        ("sync", {"instance_id": "i1"}),
        ("async", {"instance_id": "i1"}),
        ("any", {"event": "phase:started", "instance_id": "i1"}),
    ]


@pytest.mark.asyncio
async def test_unsubscribe_stops_delivery():
    emitter = EventEmitter()
    seen = []
    subscription = emitter.subscribe("tick", seen.append)

    subscription.unsubscribe()
    subscription.unsubscribe()
    await emitter.emit("tick", {})

    assert seen == []
    assert not subscription.active
    assert emitter.listener_count() == 0


@pytest.mark.asyncio
async def test_handler_errors_propagate_by_default():
    emitter = EventEmitter()
    emitter.subscribe("tick", _broken)
    with pytest.raises(RuntimeError):
        await emitter.emit("tick", {})


@pytest.mark.asyncio
async def test_isolated_emitter_logs_and_keeps_delivering(caplog):
    emitter = EventEmitter(isolate_errors=True)
    seen = []
    emitter.subscribe("tick", _broken)
    emitter.subscribe("tick", seen.append)

    await emitter.emit("tick", {"n": 1})

    assert seen == [{"n": 1}]
    assert "Handler for tick failed: handler failed" in caplog.text
