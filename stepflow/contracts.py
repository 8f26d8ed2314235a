"""Core contracts for stepflow workflow definitions and execution jobs."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

ExecutionStatus = Literal["pending", "running", "completed", "failed"]
LogStatus = Literal["pending", "running", "success", "failed", "retrying"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed"})
ACTIVE_STATUSES: frozenset[str] = frozenset({"pending", "running"})


def utcnow() -> datetime:
    """Timezone-aware current time used for every persisted timestamp."""
    return datetime.now(timezone.utc)


class ModelConfig(BaseModel):
    """Model selection and sampling settings for one step."""

    model: str = Field(min_length=1)
    provider: Optional[str] = None
    temperature: Optional[float] = Field(default=None, ge=0, le=1)
    max_tokens: Optional[int] = Field(default=None, gt=0)


class RetryPolicy(BaseModel):
    """How many times, and how patiently, a failing step is retried."""

    max_retries: int = Field(default=0, ge=0)
    initial_delay_ms: Optional[int] = Field(default=None, ge=0)
    backoff_multiplier: Optional[float] = Field(default=None, gt=0)

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1


class CompletionCriteria(BaseModel):
    """Fields a step's JSON output must contain to count as complete."""

    required_fields: Optional[List[str]] = None


class StepDefinition(BaseModel):
    """Defines one step of a workflow as submitted by a user."""

    order: int = Field(ge=1)
    prompt_template: str
    model_settings: ModelConfig
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)
    completion_criteria: Optional[CompletionCriteria] = None

    model_config = ConfigDict(protected_namespaces=())


class CreateWorkflowRequest(BaseModel):
    """Payload for creating a workflow together with its steps."""

    name: str = Field(min_length=1)
    description: Optional[str] = None
    steps: List[StepDefinition] = Field(min_length=1)


class UpdateWorkflowRequest(BaseModel):
    """Partial update of a workflow; ``steps`` replaces the active steps."""

    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    steps: Optional[List[StepDefinition]] = Field(default=None, min_length=1)


class ExecutionJob(BaseModel):
    """Envelope handed to workers to run one pending execution."""

    message_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    execution_id: int
    workflow_id: int
    initial_context: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)

    def to_json(self) -> str:
        """Serialize job to JSON."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "ExecutionJob":
        """Deserialize job from JSON."""
        return cls.model_validate_json(data)
