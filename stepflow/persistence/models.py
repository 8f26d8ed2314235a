"""Data models for persisted workflows, executions and logs."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..contracts import (
    CompletionCriteria,
    ExecutionStatus,
    LogStatus,
    ModelConfig,
    RetryPolicy,
)


class Workflow(BaseModel):
    """Workflow metadata without its steps."""

    id: int
    name: str
    description: Optional[str] = None
    created_at: Optional[datetime] = None


class Step(BaseModel):
    """A stored step. Retired steps are kept only for log history."""

    id: int
    workflow_id: int
    order: int
    prompt_template: str
    model_settings: ModelConfig
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)
    completion_criteria: Optional[CompletionCriteria] = None
    retired: bool = False

    model_config = ConfigDict(protected_namespaces=())


class WorkflowDetail(Workflow):
    """Workflow together with its active steps in execution order."""

    steps: list[Step] = Field(default_factory=list)


class Execution(BaseModel):
    """One run of a workflow."""

    id: int
    workflow_id: int
    status: ExecutionStatus = "pending"
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class ExecutionSummary(Execution):
    workflow_name: Optional[str] = None


class ExecutionLog(BaseModel):
    """Audit record of one attempt of one step."""

    id: int
    execution_id: int
    step_id: int
    status: LogStatus
    input_context: Optional[dict[str, Any]] = None
    output_content: Optional[str] = None
    error: Optional[str] = None
    duration_ms: Optional[int] = None
    attempt_number: int = 1
    timestamp: Optional[datetime] = None
    step_order: Optional[int] = None


class ExecutionDetail(Execution):
    """Execution plus its ordered logs and the workflow it ran."""

    logs: list[ExecutionLog] = Field(default_factory=list)
    workflow: Optional[Workflow] = None
