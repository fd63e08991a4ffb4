from __future__ import annotations

import asyncio
import inspect
from contextlib import suppress
from dataclasses import dataclass
from time import monotonic
from typing import Any, Awaitable, Callable, Optional, Sequence

from loguru import logger

from .errors import ConfigurationError, StoppedError, is_retryable
from .metrics import (
    BATCH_SEND_LATENCY_MS,
    BATCHES_TOTAL,
    EVENTS_DROPPED_TOTAL,
    EVENTS_ENQUEUED_TOTAL,
)
from .models import AgentEvent, BatchResult, new_event_id
from .queue import MemoryQueueStorage, QueueStorage
from .retry import RetryPolicy, with_retry
from .transport import Transport

ErrorCallback = Callable[[Exception, list[AgentEvent]], Any]


@dataclass(frozen=True)
class BatcherConfig:
    """Flush thresholds and retry budget for the batcher."""

    batch_size: int = 100  # max events per delivery attempt; size-driven flush trigger
    flush_interval_ms: int = 1000  # auto-flush period
    max_retries: int = 3
    retry_delay_ms: int = 1000
    max_retry_delay_ms: int = 30_000
    retry_jitter: bool = False
    clear_on_stop: bool = True

    def __post_init__(self) -> None:
        for name in (
            "batch_size",
            "flush_interval_ms",
            "max_retries",
            "retry_delay_ms",
            "max_retry_delay_ms",
        ):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                raise ConfigurationError(f"{name} must be a positive number, got {value!r}")

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            initial_delay_ms=self.retry_delay_ms,
            max_delay_ms=self.max_retry_delay_ms,
            jitter=self.retry_jitter,
            retry_on=is_retryable,
        )


class EventBatcher:
    """
    Moves events from the local queue to the collector in bounded batches.

    Flushes are triggered by a timer, by the queue reaching ``batch_size`` and
    by explicit ``flush()`` calls. All three funnel into one single-flight
    lock: while a flush is in progress, further flush requests return
    immediately without side effects.

    Events are only removed from the queue once the transport confirms them
    (peek, send, then remove), so a failure between send and remove leads to
    redelivery, never loss.

    Error handling:
        - ``on_error`` given (lenient): terminal delivery failures are reported
          to ``on_error(error, events)`` and never raised.
        - ``on_error`` is None (strict): the failure re-raises from ``flush()``.
          Failures of background flushes are held and raised from the next
          explicit ``flush()`` call.

    Usage:
        async with EventBatcher(transport, MemoryQueueStorage(), BatcherConfig()) as b:
            await b.add(event)
        # remaining events drained on context exit
    """

    def __init__(
        self,
        transport: Transport,
        storage: Optional[QueueStorage] = None,
        config: Optional[BatcherConfig] = None,
        *,
        on_error: Optional[ErrorCallback] = None,
        log=None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._transport = transport
        self._storage: QueueStorage = storage if storage is not None else MemoryQueueStorage()
        self._cfg = config or BatcherConfig()
        self._policy = self._cfg.retry_policy()
        self._on_error = on_error
        self._log = log if log is not None else logger.bind(component="batcher")
        self._sleep = sleep

        # Single-flight guard shared by timer, size trigger and explicit flushes
        self._lock = asyncio.Lock()
        self._stopped = False
        self._timer: Optional[asyncio.Task] = None
        self._background: set[asyncio.Task] = set()
        self._pending_error: Optional[Exception] = None

    # --------------- context management

    async def __aenter__(self) -> "EventBatcher":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()

    # --------------- introspection

    @property
    def config(self) -> BatcherConfig:
        return self._cfg

    @property
    def storage(self) -> QueueStorage:
        return self._storage

    @property
    def processing(self) -> bool:
        return self._lock.locked()

    @property
    def stopped(self) -> bool:
        return self._stopped

    # --------------- public API

    def start(self) -> None:
        """Start the auto-flush timer. Must be called from a running event loop."""
        if self._stopped:
            raise StoppedError("batcher has been stopped")
        if self._timer is None or self._timer.done():
            self._timer = asyncio.create_task(self._auto_flush_loop())

    async def add(self, event: AgentEvent) -> None:
        """Queue an event; never waits on network I/O."""
        if self._stopped:
            raise StoppedError("batcher has been stopped")
        self.start()

        await self._storage.push(event)
        EVENTS_ENQUEUED_TOTAL.inc()
        self._log.debug(f"Event queued: {event.event_id}")

        if await self._storage.size() >= self._cfg.batch_size and not self._flush_pending():
            self._spawn_flush()

    async def flush(self) -> None:
        """Deliver one batch. No-op if a flush is already running or after stop()."""
        if self._pending_error is not None:
            err, self._pending_error = self._pending_error, None
            raise err
        await self._flush(background=False)

    async def stop(self) -> None:
        """Stop the timer, drain what is left and reject further adds. Idempotent.

        The final drain sends batches until the queue is empty or a cycle makes
        no progress (e.g. the collector is unreachable). In strict mode an error
        held from a background flush is raised once the drain is done.
        """
        if self._stopped:
            return
        self._stopped = True

        if self._timer is not None:
            self._timer.cancel()
            with suppress(asyncio.CancelledError):
                await self._timer
            self._timer = None

        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        held = self._pending_error
        if held is not None:
            self._log.error(f"Background delivery error pending at shutdown: {held}")

        try:
            # waits for any in-flight flush instead of skipping
            async with self._lock:
                await self._drain()
        finally:
            if self._cfg.clear_on_stop:
                remaining = await self._storage.size()
                if remaining:
                    self._log.warning(f"Discarding {remaining} undelivered events on shutdown")
                await self._storage.clear()
            self._log.info("Batcher stopped")

        if held is not None:
            self._pending_error = None
            raise held

    # --------------- internals

    async def _auto_flush_loop(self) -> None:
        interval = self._cfg.flush_interval_ms / 1000.0
        while not self._stopped:
            await asyncio.sleep(interval)
            if self._stopped:
                break
            if not self._flush_pending():
                # run detached so cancelling the timer never interrupts a send
                self._spawn_flush()

    def _flush_pending(self) -> bool:
        return self._lock.locked() or bool(self._background)

    def _spawn_flush(self) -> None:
        task = asyncio.create_task(self._flush(background=True))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _flush(self, *, background: bool) -> None:
        if self._stopped or self._lock.locked():
            return
        async with self._lock:
            try:
                await self._process_batch()
            except Exception as e:
                if not background:
                    raise
                self._pending_error = e

    async def _drain(self) -> None:
        """Flush batches until the queue is empty or a cycle makes no progress."""
        size = await self._storage.size()
        while size:
            await self._process_batch()
            remaining = await self._storage.size()
            if remaining >= size:
                break
            size = remaining

    async def _process_batch(self) -> None:
        events = await self._storage.peek(self._cfg.batch_size)
        if not events:
            return

        batch_id = new_event_id()
        t0 = monotonic()
        try:
            result = await with_retry(
                lambda: self._transport.send(events, batch_id),
                self._policy,
                on_retry=self._on_retry,
                sleep=self._sleep,
            )
        except Exception as e:
            BATCH_SEND_LATENCY_MS.observe((monotonic() - t0) * 1000.0)
            await self._handle_failure(e, events)
            if self._on_error is None:
                raise
            return

        BATCH_SEND_LATENCY_MS.observe((monotonic() - t0) * 1000.0)
        await self._reconcile(batch_id, events, result)

    async def _reconcile(
        self, batch_id: str, events: Sequence[AgentEvent], result: BatchResult
    ) -> None:
        accepted = result.accepted_ids(events)
        await self._storage.remove(accepted)

        partial = len(accepted) < len(events)
        BATCHES_TOTAL.labels(outcome="partial" if partial else "success").inc()
        self._log.info(
            f"Batch {batch_id} sent: {result.accepted} accepted, {result.rejected} rejected"
        )
        if partial:
            self._log.warning(
                f"{len(events) - len(accepted)} events rejected and kept for the next cycle: "
                + ", ".join(f"{r.event_id}={r.error}" for r in result.errors)
            )

    async def _handle_failure(self, e: Exception, events: Sequence[AgentEvent]) -> None:
        retryable = is_retryable(e)
        self._log.error(
            f"Failed to send batch of {len(events)} events "
            f"({'transient' if retryable else 'permanent'}): {type(e).__name__}: {e}"
        )

        if self._on_error is not None:
            try:
                res = self._on_error(e, list(events))
                if inspect.isawaitable(res):
                    await res
            except Exception as cb_exc:
                self._log.warning(f"on_error callback raised (ignored): {cb_exc!r}")

        if retryable:
            BATCHES_TOTAL.labels(outcome="transient_error").inc()
            return

        # Retrying bad data forever would wedge the queue
        await self._storage.remove([ev.event_id for ev in events])
        EVENTS_DROPPED_TOTAL.labels(reason="permanent_error").inc(len(events))
        BATCHES_TOTAL.labels(outcome="permanent_error").inc()

    def _on_retry(self, e: BaseException, attempt: int) -> None:
        self._log.warning(f"Retry attempt {attempt} after error: {e}")
