from __future__ import annotations

from contextlib import asynccontextmanager
from time import monotonic
from typing import Any, AsyncIterator, Dict, Optional, Union

from loguru import logger

from .batcher import EventBatcher
from .config import IdentroSettings, load_settings
from .errors import StoppedError, is_retryable
from .models import AgentEvent, FailReason, ScoreResponse, Status
from .queue import QueueStorage, create_queue_storage
from .retry import RetryPolicy, with_retry
from .transport import HttpTransport, Transport

DEFAULT_LATENCY_MS = 100


class IdentroClient:
    """
    Records agent task outcomes and ships them to the Identro collector.

    Usage:
        async with IdentroClient(api_key="...", agent_id="agent-001") as identro:
            await identro.record_success("task-001", 142, metadata={"model": "gpt-4"})
            await identro.record_failure("task-002", 3500, fail_reason="NETWORK_ERROR")
            score = await identro.get_score()
        # pending events flushed on exit

    With ``throw_on_error=False`` (default) delivery and recording problems are
    logged and never interrupt the caller. ``StoppedError`` is always raised.
    """

    def __init__(
        self,
        settings: Union[IdentroSettings, Dict[str, Any], None] = None,
        *,
        transport: Optional[Transport] = None,
        storage: Optional[QueueStorage] = None,
        **overrides: Any,
    ):
        if isinstance(settings, IdentroSettings):
            cfg = load_settings(**{**settings.model_dump(), **overrides}) if overrides else settings
        else:
            cfg = load_settings(**{**(settings or {}), **overrides})
        self._cfg = cfg
        self._log = logger.bind(component="client", agent_id=cfg.agent_id)

        self._owns_transport = transport is None
        self._transport: Transport = transport or HttpTransport(
            cfg.endpoint, cfg.api_key, timeout=cfg.request_timeout
        )
        self._batcher = EventBatcher(
            self._transport,
            storage if storage is not None else create_queue_storage(
                cfg.queue_capacity, cfg.queue_path
            ),
            cfg.batcher_config(),
            on_error=None if cfg.throw_on_error else self._on_background_error,
            log=logger.bind(component="batcher", agent_id=cfg.agent_id),
        )
        self._score_policy = RetryPolicy(
            max_retries=cfg.max_retries,
            initial_delay_ms=cfg.retry_delay_ms,
            max_delay_ms=cfg.max_retry_delay_ms,
            jitter=cfg.retry_jitter,
            retry_on=is_retryable,
        )

        self._log.info(f"Identro client initialized (endpoint={cfg.endpoint})")

    # --------------- context management

    async def __aenter__(self) -> "IdentroClient":
        self._batcher.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.shutdown()

    # --------------- properties

    @property
    def agent_id(self) -> str:
        return self._cfg.agent_id

    @property
    def settings(self) -> IdentroSettings:
        return self._cfg

    @property
    def batcher(self) -> EventBatcher:
        return self._batcher

    # --------------- recording

    async def record_event(
        self, task_id: str, status: str, latency_ms: float, **fields: Any
    ) -> Optional[AgentEvent]:
        """Build an event with client defaults and queue it. Returns the queued event."""
        try:
            event = AgentEvent(
                agent_id=fields.pop("agent_id", None) or self._cfg.agent_id,
                framework=fields.pop("framework", None) or self._cfg.framework,
                task_id=task_id,
                status=status,
                latency_ms=latency_ms,
                **fields,
            )
            await self._batcher.add(event)
        except StoppedError:
            raise
        except Exception as e:
            self._log.error(f"Failed to record event for task {task_id}: {e}")
            if self._cfg.throw_on_error:
                raise
            return None

        self._log.debug(f"Event recorded: {event.event_id} ({event.status})")
        return event

    async def record_success(
        self,
        task_id: str,
        latency_ms: Optional[float] = None,
        metadata: Optional[Dict[str, Any]] = None,
        **fields: Any,
    ) -> Optional[AgentEvent]:
        if latency_ms is None:
            latency_ms = fields.get("response_time_ms") or DEFAULT_LATENCY_MS
        return await self.record_event(
            task_id, Status.SUCCESS, latency_ms, metadata=metadata, **fields
        )

    async def record_failure(
        self,
        task_id: str,
        latency_ms: float,
        fail_reason: Optional[str] = None,
        detail_code: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        **fields: Any,
    ) -> Optional[AgentEvent]:
        return await self.record_event(
            task_id,
            Status.FAIL,
            latency_ms,
            fail_reason=fail_reason,
            detail_code=detail_code,
            metadata=metadata,
            **fields,
        )

    @asynccontextmanager
    async def track(self, task_id: str, **fields: Any) -> AsyncIterator[None]:
        """Time a block and record its outcome; exceptions are recorded then re-raised."""
        t0 = monotonic()
        try:
            yield
        except Exception as e:
            await self.record_failure(
                task_id,
                (monotonic() - t0) * 1000.0,
                fail_reason=FailReason.FRAMEWORK_EXCEPTION,
                detail_code=type(e).__name__,
                **fields,
            )
            raise
        await self.record_success(task_id, (monotonic() - t0) * 1000.0, **fields)

    # --------------- scores / lifecycle

    async def get_score(self, agent_id: Optional[str] = None) -> ScoreResponse:
        target = agent_id or self._cfg.agent_id
        return await with_retry(
            lambda: self._transport.get_score(target),
            self._score_policy,
            on_retry=lambda e, n: self._log.warning(f"Score retry {n} after error: {e}"),
        )

    async def flush(self) -> None:
        """Force delivery of the next pending batch."""
        await self._batcher.flush()

    async def shutdown(self) -> None:
        """Final flush, then release the transport. Safe to call more than once."""
        if self._batcher.stopped:
            return
        self._log.info("Shutting down Identro client")
        try:
            await self._batcher.stop()
        finally:
            if self._owns_transport:
                await self._transport.aclose()

    def _on_background_error(self, error: Exception, events: list[AgentEvent]) -> None:
        self._log.error(f"Background delivery error for {len(events)} events: {error}")


def create_client(settings: Union[IdentroSettings, Dict[str, Any], None] = None, **kwargs):
    return IdentroClient(settings, **kwargs)
