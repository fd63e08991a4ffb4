"""
Identro Client Library

Records agent task outcomes locally and delivers them to the Identro collector
in batches, with retry/backoff and at-least-once delivery.

Usage:
    from identro_client import IdentroClient, FailReason

    async with IdentroClient(api_key="...", agent_id="agent-001") as identro:
        await identro.record_success("task-001", 142)
        await identro.record_failure("task-002", 3500, fail_reason=FailReason.NETWORK_ERROR)
"""

__version__ = "0.1.0"

from .errors import (  # noqa: E402
    IdentroError,
    StoppedError,
    ConfigurationError,
    TransportError,
    TransientTransportError,
    PermanentTransportError,
    is_retryable,
)
from .models import (  # noqa: E402
    AgentEvent,
    BatchResult,
    ConstraintVerification,
    EventBatch,
    EventRejection,
    FailReason,
    Framework,
    InteractionContext,
    ScoreResponse,
    Status,
    TaskCategory,
    TaskComplexity,
)
from .queue import QueueStorage, MemoryQueueStorage, FileQueueStorage, create_queue_storage  # noqa: E402
from .retry import RetryPolicy, with_retry, calculate_retry_delay  # noqa: E402
from .transport import Transport, HttpTransport  # noqa: E402
from .batcher import BatcherConfig, EventBatcher  # noqa: E402
from .config import IdentroSettings, load_settings  # noqa: E402
from .client import IdentroClient, create_client  # noqa: E402

__all__ = [
    "IdentroClient",
    "create_client",
    "IdentroSettings",
    "load_settings",
    # pipeline
    "EventBatcher",
    "BatcherConfig",
    "QueueStorage",
    "MemoryQueueStorage",
    "FileQueueStorage",
    "create_queue_storage",
    "RetryPolicy",
    "with_retry",
    "calculate_retry_delay",
    "Transport",
    "HttpTransport",
    # models
    "AgentEvent",
    "BatchResult",
    "ConstraintVerification",
    "EventBatch",
    "EventRejection",
    "FailReason",
    "Framework",
    "InteractionContext",
    "ScoreResponse",
    "Status",
    "TaskCategory",
    "TaskComplexity",
    # errors
    "IdentroError",
    "StoppedError",
    "ConfigurationError",
    "TransportError",
    "TransientTransportError",
    "PermanentTransportError",
    "is_retryable",
]
