"""
Unit tests for the bounded event queue (memory and NDJSON file backed).
"""

import pytest
from prometheus_client import REGISTRY

from identro_client.errors import ConfigurationError
from identro_client.queue import (
    FileQueueStorage,
    MemoryQueueStorage,
    QueueStorage,
    create_queue_storage,
)


@pytest.mark.asyncio
async def test_push_beyond_capacity_keeps_latest(make_event):
    """Pushing capacity + k events leaves exactly the last `capacity` events."""
    q = MemoryQueueStorage(capacity=5)
    for i in range(8):
        await q.push(make_event(i))
        assert await q.size() <= 5

    assert await q.size() == 5
    assert [e.task_id for e in await q.peek(10)] == [f"task-{i}" for i in range(3, 8)]
    assert q.evicted_count == 3


@pytest.mark.asyncio
async def test_drop_callback_receives_evicted(make_event):
    dropped = []

    async def on_drop(event):
        dropped.append(event.task_id)

    q = MemoryQueueStorage(capacity=2, drop_callback=on_drop)
    for i in range(4):
        await q.push(make_event(i))

    assert dropped == ["task-0", "task-1"]


@pytest.mark.asyncio
async def test_peek_is_repeatable_and_side_effect_free(make_event):
    q = MemoryQueueStorage(capacity=10)
    for i in range(4):
        await q.push(make_event(i))

    first = await q.peek(3)
    second = await q.peek(3)
    assert [e.event_id for e in first] == [e.event_id for e in second]
    assert len(first) == 3
    assert await q.size() == 4
    assert await q.peek(0) == []


@pytest.mark.asyncio
async def test_remove_named_ids_anywhere(make_event):
    q = MemoryQueueStorage(capacity=10)
    events = [make_event(i) for i in range(5)]
    for e in events:
        await q.push(e)

    await q.remove([events[1].event_id, events[3].event_id, "unknown-id"])

    assert [e.task_id for e in await q.peek(10)] == ["task-0", "task-2", "task-4"]


@pytest.mark.asyncio
async def test_shift_and_clear(make_event):
    q = MemoryQueueStorage(capacity=10)
    assert await q.shift() is None

    await q.push(make_event(0))
    await q.push(make_event(1))
    head = await q.shift()
    assert head.task_id == "task-0"
    assert await q.size() == 1

    await q.clear()
    assert await q.size() == 0


def test_capacity_must_be_positive():
    with pytest.raises(ConfigurationError):
        MemoryQueueStorage(capacity=0)


@pytest.mark.asyncio
async def test_file_queue_survives_restart(tmp_path, make_event):
    p = tmp_path / "queue" / "pending.ndjson"
    q = FileQueueStorage(p, capacity=10)
    events = [make_event(i, metadata={"n": i}) for i in range(3)]
    for e in events:
        await q.push(e)
    await q.remove([events[0].event_id])

    reopened = FileQueueStorage(p, capacity=10)
    pending = await reopened.peek(10)
    assert [e.event_id for e in pending] == [events[1].event_id, events[2].event_id]
    assert pending[1].metadata == {"n": 2}


@pytest.mark.asyncio
async def test_file_queue_skips_unreadable_lines(tmp_path, make_event):
    p = tmp_path / "pending.ndjson"
    good = make_event(7)
    p.write_text("not json\n" + good.model_dump_json() + "\n\n", encoding="utf-8")

    q = FileQueueStorage(p, capacity=10)
    assert await q.size() == 1
    assert (await q.peek(1))[0].event_id == good.event_id


@pytest.mark.asyncio
async def test_file_queue_load_respects_capacity(tmp_path, make_event):
    p = tmp_path / "pending.ndjson"
    events = [make_event(i) for i in range(5)]
    p.write_text("".join(e.model_dump_json() + "\n" for e in events), encoding="utf-8")

    q = FileQueueStorage(p, capacity=2)
    assert [e.task_id for e in await q.peek(10)] == ["task-3", "task-4"]


def test_factory_picks_backend(tmp_path):
    mem = create_queue_storage(capacity=3)
    disk = create_queue_storage(capacity=3, path=tmp_path / "q.ndjson")

    assert type(mem) is MemoryQueueStorage
    assert isinstance(disk, FileQueueStorage)
    assert isinstance(mem, QueueStorage)
    assert mem.capacity == 3


def _depth() -> float:
    return REGISTRY.get_sample_value("identro_queue_depth") or 0.0


@pytest.mark.asyncio
async def test_queue_depth_gauge_sums_all_queues(make_event):
    base = _depth()
    a = MemoryQueueStorage(capacity=10)
    b = MemoryQueueStorage(capacity=2)

    for i in range(5):
        await a.push(make_event(i))
    for i in range(3):
        await b.push(make_event(i))  # third push evicts, depth unchanged
    assert _depth() - base == 7

    await a.shift()
    await a.remove([e.event_id for e in await a.peek(2)] + ["unknown-id"])
    assert _depth() - base == 4

    # clearing one queue leaves the other's events counted
    await b.clear()
    assert _depth() - base == 2
    await a.clear()
    assert _depth() - base == 0
