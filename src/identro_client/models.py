"""
Pydantic data models for the Identro client.

Events are immutable once built; the event_id is the idempotency key used for
deduplication and partial-result reconciliation.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, field_validator

FrameworkName = Literal["langchain", "superagi", "crewai", "mcp", "http", "custom"]
StatusName = Literal["success", "fail"]
FailReasonName = Literal[
    "NETWORK_ERROR",
    "CLIENT_ERROR",
    "FRAMEWORK_EXCEPTION",
    "POLICY_DENY",
    "TASK_UNFULFILLED",
    "COUNTERPARTY_SPAM",
]
TaskCategoryName = Literal[
    "data_processing",
    "creative_generation",
    "real_time_interaction",
    "financial_transactions",
    "api_integration",
    "general",
]
TaskComplexityName = Literal["simple", "moderate", "complex"]
TierName = Literal["exceptional", "very_good", "good", "fair", "poor"]


class Framework:
    LANGCHAIN = "langchain"
    SUPERAGI = "superagi"
    CREWAI = "crewai"
    MCP = "mcp"
    HTTP = "http"
    CUSTOM = "custom"


class Status:
    SUCCESS = "success"
    FAIL = "fail"


class FailReason:
    NETWORK_ERROR = "NETWORK_ERROR"
    CLIENT_ERROR = "CLIENT_ERROR"
    FRAMEWORK_EXCEPTION = "FRAMEWORK_EXCEPTION"
    POLICY_DENY = "POLICY_DENY"
    TASK_UNFULFILLED = "TASK_UNFULFILLED"
    COUNTERPARTY_SPAM = "COUNTERPARTY_SPAM"


class TaskCategory:
    DATA_PROCESSING = "data_processing"
    CREATIVE_GENERATION = "creative_generation"
    REAL_TIME_INTERACTION = "real_time_interaction"
    FINANCIAL_TRANSACTIONS = "financial_transactions"
    API_INTEGRATION = "api_integration"
    GENERAL = "general"


class TaskComplexity:
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


def new_event_id() -> str:
    return str(uuid.uuid4())


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class InteractionContext(BaseModel):
    """Who consumed the agent's output and through which tool."""

    model_config = ConfigDict(frozen=True)

    consumer_agent_id: Optional[str] = None
    tool_used: Optional[str] = None
    interaction_type: Optional[str] = None
    repeat_interaction: Optional[bool] = None


class ConstraintVerification(BaseModel):
    model_config = ConfigDict(frozen=True)

    constraints_defined: Optional[bool] = None
    constraints_met: Optional[List[str]] = None
    constraints_failed: Optional[List[str]] = None
    compliance_score: Optional[float] = None


class AgentEvent(BaseModel):
    """One recorded task outcome, queued for delivery."""

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(default_factory=new_event_id)
    agent_id: str
    task_id: str
    framework: FrameworkName = "custom"
    status: StatusName
    latency_ms: float
    timestamp: str = Field(default_factory=utc_now_iso)

    fail_reason: Optional[FailReasonName] = None
    detail_code: Optional[str] = None
    policy_violation: Optional[bool] = None
    metadata: Optional[Dict[str, Any]] = None

    # performance metrics
    response_time_ms: Optional[float] = None
    queue_time_ms: Optional[float] = None
    execution_time_ms: Optional[float] = None
    p50_latency_ms: Optional[float] = None
    p95_latency_ms: Optional[float] = None

    # quality indicators
    output_size: Optional[int] = None
    validation_passed: Optional[bool] = None
    requirements_met: Optional[List[str]] = None
    task_completion_score: Optional[float] = None

    # interaction context
    requester_agent_id: Optional[str] = None
    task_category: Optional[TaskCategoryName] = None
    task_complexity: Optional[TaskComplexityName] = None

    # feedback
    quality_rating: Optional[float] = None
    would_use_again: Optional[bool] = None
    dispute_filed: Optional[bool] = None
    peer_endorsement: Optional[bool] = None

    # consumer behaviour
    task_clarity_score: Optional[float] = None
    payment_confirmed: Optional[bool] = None
    response_time_to_provider: Optional[float] = None

    # hybrid quality inference
    interaction_context: Optional[InteractionContext] = None
    behavioral_tags: Optional[List[str]] = None
    repeat_interaction_count: Optional[int] = None
    constraint_verification: Optional[ConstraintVerification] = None
    commitment_compliance_score: Optional[float] = None

    @field_validator("event_id", "agent_id", "task_id")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must be a non-empty string")
        return v

    @field_validator("latency_ms")
    @classmethod
    def _non_negative_latency(cls, v: float) -> float:
        if v < 0:
            raise ValueError("latency_ms must be >= 0")
        return v

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class EventBatch(BaseModel):
    """Request body for one delivery attempt."""

    events: List[AgentEvent]
    batch_id: str = Field(default_factory=new_event_id)

    def to_wire(self) -> Dict[str, Any]:
        return {"events": [e.to_wire() for e in self.events], "batch_id": self.batch_id}


class EventRejection(BaseModel):
    event_id: str
    error: str


class BatchResult(BaseModel):
    """Delivery outcome: accepted/rejected counts plus optional per-event rejects."""

    accepted: int = 0
    rejected: int = 0
    errors: List[EventRejection] = Field(default_factory=list)

    @field_validator("errors", mode="before")
    @classmethod
    def _none_is_empty(cls, v):
        return [] if v is None else v

    def rejected_ids(self) -> set[str]:
        return {e.event_id for e in self.errors}

    def accepted_ids(self, events: Sequence[AgentEvent]) -> List[str]:
        """Ids of events in the batch not named as rejected."""
        rejected = self.rejected_ids()
        return [e.event_id for e in events if e.event_id not in rejected]


class ScoreResponse(BaseModel):
    agent_id: str
    score: float
    tier: TierName
    total_events: int
    updated_at: datetime
