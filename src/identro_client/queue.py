from __future__ import annotations

import asyncio
import os
from collections import OrderedDict
from pathlib import Path
from typing import Awaitable, Callable, Iterable, Optional, Protocol, runtime_checkable

from loguru import logger

from .errors import ConfigurationError
from .metrics import EVENTS_DROPPED_TOTAL, QUEUE_DEPTH
from .models import AgentEvent

DropCallback = Callable[[AgentEvent], Awaitable[None]]

DEFAULT_CAPACITY = 10_000


@runtime_checkable
class QueueStorage(Protocol):
    """Ordered, bounded buffer of pending events.

    Async so that disk or database backed implementations can sit behind the
    same interface as the in-memory one.
    """

    async def push(self, event: AgentEvent) -> None: ...

    async def shift(self) -> Optional[AgentEvent]: ...

    async def peek(self, count: int) -> list[AgentEvent]: ...

    async def remove(self, event_ids: Iterable[str]) -> None: ...

    async def size(self) -> int: ...

    async def clear(self) -> None: ...


class MemoryQueueStorage:
    """FIFO queue keyed by event_id; evicts the oldest event when full."""

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        *,
        drop_callback: Optional[DropCallback] = None,
    ):
        if capacity <= 0:
            raise ConfigurationError("capacity must be > 0")
        self._capacity = capacity
        self._events: OrderedDict[str, AgentEvent] = OrderedDict()
        self._drop_cb = drop_callback
        self._evicted = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def evicted_count(self) -> int:
        """Number of events dropped to make room for newer ones."""
        return self._evicted

    async def push(self, event: AgentEvent) -> None:
        evicted = None
        if event.event_id in self._events:
            # re-push of a known id keeps its original position
            self._events[event.event_id] = event
            return
        if len(self._events) >= self._capacity:
            _, evicted = self._events.popitem(last=False)
        else:
            QUEUE_DEPTH.inc()
        self._events[event.event_id] = event

        if evicted is not None:
            await self._on_evicted(evicted)

    async def shift(self) -> Optional[AgentEvent]:
        if not self._events:
            return None
        _, event = self._events.popitem(last=False)
        QUEUE_DEPTH.dec()
        return event

    async def peek(self, count: int) -> list[AgentEvent]:
        if count <= 0:
            return []
        out: list[AgentEvent] = []
        for event in self._events.values():
            if len(out) >= count:
                break
            out.append(event)
        return out

    async def remove(self, event_ids: Iterable[str]) -> None:
        removed = 0
        for event_id in event_ids:
            if self._events.pop(event_id, None) is not None:
                removed += 1
        if removed:
            QUEUE_DEPTH.dec(removed)

    async def size(self) -> int:
        return len(self._events)

    async def clear(self) -> None:
        # the gauge is shared by every queue in the process
        QUEUE_DEPTH.dec(len(self._events))
        self._events.clear()

    async def _on_evicted(self, event: AgentEvent) -> None:
        self._evicted += 1
        EVENTS_DROPPED_TOTAL.labels(reason="evicted").inc()
        if self._evicted == 1 or self._evicted % 100 == 0:
            logger.warning(
                f"Event queue full (capacity={self._capacity}): "
                f"{self._evicted} oldest events evicted so far"
            )
        if self._drop_cb:
            await self._drop_cb(event)

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(size={len(self._events)}, "
            f"capacity={self._capacity}, evicted={self._evicted})"
        )


class FileQueueStorage(MemoryQueueStorage):
    """Memory queue mirrored to an NDJSON file so pending events survive restarts.

    The whole file is rewritten (temp file + atomic replace) after every
    mutation; suited to the modest queue sizes of a single agent process.
    """

    def __init__(
        self,
        path: str | os.PathLike,
        capacity: int = DEFAULT_CAPACITY,
        *,
        drop_callback: Optional[DropCallback] = None,
        mkdirs: bool = True,
    ):
        super().__init__(capacity, drop_callback=drop_callback)
        self._path = Path(path)
        if mkdirs:
            self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()
        self._load()

    @property
    def path(self) -> Path:
        return self._path

    async def push(self, event: AgentEvent) -> None:
        async with self._lock:
            await super().push(event)
            await self._persist()

    async def shift(self) -> Optional[AgentEvent]:
        async with self._lock:
            event = await super().shift()
            if event is not None:
                await self._persist()
            return event

    async def remove(self, event_ids: Iterable[str]) -> None:
        async with self._lock:
            await super().remove(list(event_ids))
            await self._persist()

    async def clear(self) -> None:
        async with self._lock:
            await super().clear()
            await self._persist()

    # --------------------------- internals

    def _load(self) -> None:
        if not self._path.exists():
            return
        bad = 0
        with self._path.open("r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    event = AgentEvent.model_validate_json(line)
                except ValueError:
                    bad += 1
                    continue
                self._events[event.event_id] = event
        while len(self._events) > self._capacity:
            self._events.popitem(last=False)
        if bad:
            logger.warning(f"Skipped {bad} unreadable lines in {self._path}")
        logger.debug(f"Loaded {len(self._events)} pending events from {self._path}")
        QUEUE_DEPTH.inc(len(self._events))

    async def _persist(self) -> None:
        lines = [e.model_dump_json(exclude_none=True) for e in self._events.values()]
        await asyncio.to_thread(self._write_lines, lines)

    def _write_lines(self, lines: list[str]) -> None:
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as f:
            for line in lines:
                f.write(line)
                f.write("\n")
        os.replace(tmp, self._path)


def create_queue_storage(
    capacity: int = DEFAULT_CAPACITY,
    path: str | os.PathLike | None = None,
    *,
    drop_callback: Optional[DropCallback] = None,
) -> QueueStorage:
    """File-backed queue when a path is given, in-memory otherwise."""
    if path:
        return FileQueueStorage(path, capacity, drop_callback=drop_callback)
    return MemoryQueueStorage(capacity, drop_callback=drop_callback)
