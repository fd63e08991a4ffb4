"""
Unit tests for the IdentroClient facade and settings.
"""

import pytest
from pydantic import ValidationError

from identro_client import IdentroClient, create_client
from identro_client.config import IdentroSettings, load_settings
from identro_client.errors import ConfigurationError, StoppedError, TransientTransportError
from identro_client.models import FailReason, TaskCategory, TaskComplexity


def make_client(transport, **overrides) -> IdentroClient:
    cfg = dict(
        api_key="test-key",
        agent_id="agent-001",
        flush_interval_ms=60_000,
        retry_delay_ms=1,
    )
    cfg.update(overrides)
    return IdentroClient(cfg, transport=transport)


@pytest.mark.asyncio
async def test_record_success_and_flush(transport_factory):
    transport = transport_factory()
    identro = make_client(transport)

    event = await identro.record_success("task-001", 142, metadata={"model": "gpt-4"})
    await identro.flush()

    sent, _ = transport.calls[0]
    assert sent == [event]
    assert event.agent_id == "agent-001"
    assert event.framework == "custom"
    assert event.status == "success"
    assert event.metadata == {"model": "gpt-4"}
    await identro.shutdown()
    assert transport.closed is False  # caller-owned transport is left open


@pytest.mark.asyncio
async def test_record_success_default_latency(transport_factory):
    identro = make_client(transport_factory())

    plain = await identro.record_success("t1")
    timed = await identro.record_success("t2", response_time_ms=250, quality_rating=4.5)

    assert plain.latency_ms == 100
    assert timed.latency_ms == 250
    assert timed.quality_rating == 4.5
    await identro.shutdown()


@pytest.mark.asyncio
async def test_record_failure_fields(transport_factory):
    identro = make_client(transport_factory(), framework="mcp")

    event = await identro.record_failure(
        "task-002",
        3500,
        fail_reason=FailReason.NETWORK_ERROR,
        detail_code="HTTP_504",
        metadata={"retry_count": 3},
        agent_id="other-agent",
    )

    assert event.status == "fail"
    assert event.fail_reason == "NETWORK_ERROR"
    assert event.detail_code == "HTTP_504"
    assert event.framework == "mcp"
    assert event.agent_id == "other-agent"
    await identro.shutdown()


@pytest.mark.asyncio
async def test_task_classification_constants(transport_factory):
    identro = make_client(transport_factory())

    event = await identro.record_success(
        "task-003",
        task_category=TaskCategory.FINANCIAL_TRANSACTIONS,
        task_complexity=TaskComplexity.COMPLEX,
    )

    assert event.task_category == "financial_transactions"
    assert event.task_complexity == "complex"
    await identro.shutdown()


@pytest.mark.asyncio
async def test_invalid_event_is_swallowed_in_lenient_mode(transport_factory):
    identro = make_client(transport_factory())

    assert await identro.record_event("t", "maybe", 10) is None
    assert await identro.batcher.storage.size() == 0
    await identro.shutdown()


@pytest.mark.asyncio
async def test_invalid_event_raises_in_strict_mode(transport_factory):
    identro = make_client(transport_factory(), throw_on_error=True)

    with pytest.raises(ValidationError):
        await identro.record_event("t", "success", -1)
    await identro.shutdown()


@pytest.mark.asyncio
async def test_stopped_error_always_surfaces(transport_factory):
    identro = make_client(transport_factory())
    await identro.shutdown()

    with pytest.raises(StoppedError):
        await identro.record_success("late", 5)


@pytest.mark.asyncio
async def test_track_records_outcomes(transport_factory):
    transport = transport_factory()
    async with make_client(transport) as identro:
        async with identro.track("ok-task", task_category="api_integration"):
            pass
        with pytest.raises(KeyError):
            async with identro.track("bad-task"):
                raise KeyError("boom")

    events = [e for batch, _ in transport.calls for e in batch]
    by_task = {e.task_id: e for e in events}
    assert by_task["ok-task"].status == "success"
    assert by_task["ok-task"].task_category == "api_integration"
    assert by_task["bad-task"].status == "fail"
    assert by_task["bad-task"].fail_reason == "FRAMEWORK_EXCEPTION"
    assert by_task["bad-task"].detail_code == "KeyError"


@pytest.mark.asyncio
async def test_lenient_delivery_failure_does_not_raise(transport_factory):
    transport = transport_factory([TransientTransportError("down")] * 10)
    identro = make_client(transport, max_retries=1)

    await identro.record_success("t", 5)
    await identro.flush()  # failure goes to the error observer

    assert await identro.batcher.storage.size() == 1
    await identro.shutdown()


@pytest.mark.asyncio
async def test_get_score_defaults_to_own_agent(transport_factory):
    identro = make_client(transport_factory())

    score = await identro.get_score()
    other = await identro.get_score("agent-xyz")

    assert score.agent_id == "agent-001"
    assert other.agent_id == "agent-xyz"
    await identro.shutdown()


def test_configuration_errors_fail_fast():
    with pytest.raises(ConfigurationError):
        IdentroClient(api_key="k", batch_size=0)
    with pytest.raises(ConfigurationError):
        IdentroClient(api_key="k", retry_delay_ms=-1)
    with pytest.raises(ConfigurationError):
        IdentroClient(api_key="   ")
    with pytest.raises(ConfigurationError):
        IdentroClient()


def test_settings_defaults_and_env(monkeypatch):
    monkeypatch.setenv("IDENTRO_BATCH_SIZE", "5")
    s = load_settings(api_key="k", base_url="https://collector.test/")

    assert s.batch_size == 5
    assert s.endpoint == "https://collector.test"
    assert (s.flush_interval_ms, s.max_retries, s.retry_delay_ms) == (1000, 3, 1000)
    assert s.agent_id.startswith("agent-")
    # each settings instance owns its own generated identity
    assert load_settings(api_key="k").agent_id != s.agent_id


def test_client_accepts_settings_object(transport_factory):
    settings = IdentroSettings(api_key="k", agent_id="agent-9")
    identro = create_client(settings, transport=transport_factory())

    assert identro.agent_id == "agent-9"
    assert identro.settings.batcher_config().batch_size == 100
