"""
Fixtures and helpers for delivery pipeline unit tests.
"""

import asyncio
from typing import Sequence

import pytest

from identro_client.models import AgentEvent, BatchResult, EventRejection, ScoreResponse


class ScriptedTransport:
    """Transport whose outcomes are scripted per call.

    Each script entry is an exception (raised), a callable taking the events
    and returning a BatchResult, or a BatchResult. Once the script runs out
    every call accepts the whole batch.
    """

    def __init__(self, script=None, gate: asyncio.Event | None = None):
        self._script = list(script or [])
        self._gate = gate
        self.calls: list[tuple[list[AgentEvent], str]] = []
        self.delivered: list[str] = []
        self.closed = False

    async def send(self, events: Sequence[AgentEvent], batch_id: str) -> BatchResult:
        self.calls.append((list(events), batch_id))
        if self._gate is not None:
            await self._gate.wait()
        if self._script:
            step = self._script.pop(0)
            if isinstance(step, BaseException):
                raise step
            result = step(events) if callable(step) else step
        else:
            result = BatchResult(accepted=len(events), rejected=0)
        rejected = result.rejected_ids()
        self.delivered.extend(e.event_id for e in events if e.event_id not in rejected)
        return result

    async def get_score(self, agent_id: str) -> ScoreResponse:
        return ScoreResponse(
            agent_id=agent_id,
            score=87.5,
            tier="very_good",
            total_events=42,
            updated_at="2026-01-01T00:00:00Z",
        )

    async def aclose(self) -> None:
        self.closed = True


def reject(*positions: int, error: str = "invalid"):
    """Script step rejecting the events at the given batch positions."""

    def _step(events):
        errors = [EventRejection(event_id=events[i].event_id, error=error) for i in positions]
        return BatchResult(
            accepted=len(events) - len(errors), rejected=len(errors), errors=errors
        )

    return _step


@pytest.fixture
def make_event():
    """Factory for events with predictable task ids."""

    def _make(i: int = 0, **fields) -> AgentEvent:
        fields.setdefault("agent_id", "agent-test")
        fields.setdefault("status", "success")
        fields.setdefault("latency_ms", 10 + i)
        return AgentEvent(task_id=f"task-{i}", **fields)

    return _make


@pytest.fixture
def transport_factory():
    return ScriptedTransport


@pytest.fixture
def sleeps():
    """Recording replacement for asyncio.sleep used by the retry executor."""
    recorded: list[float] = []

    async def _sleep(delay: float) -> None:
        recorded.append(delay)

    _sleep.recorded = recorded
    return _sleep


async def wait_until(predicate, timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)
