"""Repository abstraction for workflow definitions and execution state."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Protocol

from ..contracts import CreateWorkflowRequest, UpdateWorkflowRequest
from .models import (
    Execution,
    ExecutionDetail,
    ExecutionLog,
    ExecutionSummary,
    Workflow,
    WorkflowDetail,
)

LOG_MUTABLE_FIELDS = frozenset({"status", "output_content", "error", "duration_ms"})


class ExecutionRepository(Protocol):
    """Protocol for persistence backends used by the engine and the CLI."""

    async def create_workflow(self, request: CreateWorkflowRequest) -> WorkflowDetail:
        """Persist a workflow and its steps."""

    async def get_workflow(self, workflow_id: int) -> WorkflowDetail | None:
        """Workflow with active steps ordered by ``order`` then id, or ``None``."""

    async def list_workflows(self) -> list[Workflow]:
        """Return all workflows, newest first."""

    async def update_workflow(
        self, workflow_id: int, request: UpdateWorkflowRequest
    ) -> WorkflowDetail | None:
        """Update metadata and optionally replace the active steps.

        Steps referenced by logs are retired rather than deleted.
        """

    async def delete_workflow(self, workflow_id: int) -> bool:
        """Delete a workflow and its steps.

        Raises:
            ReferentialIntegrityError: If any of its steps has log history.
        """

    async def create_execution(
        self, workflow_id: int, status: str = "pending"
    ) -> Execution:
        """Persist a new execution record."""

    async def update_execution_status(
        self,
        execution_id: int,
        status: str,
        completed_at: Optional[datetime] = None,
    ) -> None:
        """Set an execution's status and optionally its completion time."""

    async def get_execution(self, execution_id: int) -> Execution | None:
        """Retrieve the bare execution row."""

    async def get_execution_detail(self, execution_id: int) -> ExecutionDetail | None:
        """Execution with its logs (ordered by id) and workflow summary."""

    async def list_executions(
        self, status: Optional[str] = None
    ) -> list[ExecutionSummary]:
        """Return executions newest first, optionally filtered by status."""

    async def create_execution_log(
        self,
        execution_id: int,
        step_id: int,
        status: str,
        input_context: dict[str, Any] | None = None,
        attempt_number: int = 1,
    ) -> ExecutionLog:
        """Append a log row for one step attempt."""

    async def update_execution_log(self, log_id: int, **fields: Any) -> None:
        """Update a log row's mutable fields (status, output, error, duration)."""

    async def list_execution_logs(self, execution_id: int) -> list[ExecutionLog]:
        """Return an execution's logs in the order they were written."""
