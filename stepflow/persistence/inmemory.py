"""In-memory implementation of the execution repository."""

from __future__ import annotations

import copy
from datetime import datetime
from typing import Any, Dict, Optional

from ..contracts import CreateWorkflowRequest, StepDefinition, UpdateWorkflowRequest, utcnow
from ..exceptions import ReferentialIntegrityError
from .models import (
    Execution,
    ExecutionDetail,
    ExecutionLog,
    ExecutionSummary,
    Step,
    Workflow,
    WorkflowDetail,
)
from .repository import LOG_MUTABLE_FIELDS, ExecutionRepository


class InMemoryExecutionRepository(ExecutionRepository):
    """Store workflows and executions in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._workflows: Dict[int, Workflow] = {}
        self._steps: Dict[int, Step] = {}
        self._executions: Dict[int, Execution] = {}
        self._logs: Dict[int, ExecutionLog] = {}
        self._ids: Dict[str, int] = {"workflow": 0, "step": 0, "execution": 0, "log": 0}

    def _next_id(self, kind: str) -> int:
        self._ids[kind] += 1
        return self._ids[kind]

    def _add_step(self, workflow_id: int, definition: StepDefinition) -> Step:
        step = Step(
            id=self._next_id("step"),
            workflow_id=workflow_id,
            order=definition.order,
            prompt_template=definition.prompt_template,
            model_settings=definition.model_settings.model_copy(deep=True),
            retry_policy=definition.retry_policy.model_copy(deep=True),
            completion_criteria=(
                definition.completion_criteria.model_copy(deep=True)
                if definition.completion_criteria
                else None
            ),
        )
        self._steps[step.id] = step
        return step

    def _step_has_logs(self, step_id: int) -> bool:
        return any(log.step_id == step_id for log in self._logs.values())

    # ------------------------------------------------------------------
    # Workflows
    async def create_workflow(self, request: CreateWorkflowRequest) -> WorkflowDetail:
        workflow = Workflow(
            id=self._next_id("workflow"),
            name=request.name,
            description=request.description,
            created_at=utcnow(),
        )
        self._workflows[workflow.id] = workflow
        for definition in request.steps:
            self._add_step(workflow.id, definition)
        return await self.get_workflow(workflow.id)

    async def get_workflow(self, workflow_id: int) -> WorkflowDetail | None:
        workflow = self._workflows.get(workflow_id)
        if workflow is None:
            return None
        steps = sorted(
            (
                s
                for s in self._steps.values()
                if s.workflow_id == workflow_id and not s.retired
            ),
            key=lambda s: (s.order, s.id),
        )
        return WorkflowDetail(
            **workflow.model_dump(), steps=[s.model_copy(deep=True) for s in steps]
        )

    async def list_workflows(self) -> list[Workflow]:
        return sorted(
            (w.model_copy() for w in self._workflows.values()),
            key=lambda w: (w.created_at, w.id),
            reverse=True,
        )

    async def update_workflow(
        self, workflow_id: int, request: UpdateWorkflowRequest
    ) -> WorkflowDetail | None:
        workflow = self._workflows.get(workflow_id)
        if workflow is None:
            return None
        if request.name is not None:
            workflow.name = request.name
        if "description" in request.model_fields_set:
            workflow.description = request.description
        if request.steps is not None:
            for step in list(self._steps.values()):
                if step.workflow_id != workflow_id or step.retired:
                    continue
                if self._step_has_logs(step.id):
                    step.retired = True
                else:
                    del self._steps[step.id]
            for definition in request.steps:
                self._add_step(workflow_id, definition)
        return await self.get_workflow(workflow_id)

    async def delete_workflow(self, workflow_id: int) -> bool:
        if workflow_id not in self._workflows:
            return False
        step_ids = [s.id for s in self._steps.values() if s.workflow_id == workflow_id]
        if any(self._step_has_logs(step_id) for step_id in step_ids):
            raise ReferentialIntegrityError(
                f"Workflow {workflow_id} has steps referenced by execution logs"
            )
        for step_id in step_ids:
            del self._steps[step_id]
        del self._workflows[workflow_id]
        return True

    # ------------------------------------------------------------------
    # Executions
    async def create_execution(
        self, workflow_id: int, status: str = "pending"
    ) -> Execution:
        execution = Execution(
            id=self._next_id("execution"),
            workflow_id=workflow_id,
            status=status,
            started_at=utcnow(),
        )
        self._executions[execution.id] = execution
        return execution.model_copy()

    async def update_execution_status(
        self,
        execution_id: int,
        status: str,
        completed_at: Optional[datetime] = None,
    ) -> None:
        execution = self._executions.get(execution_id)
        if execution:
            execution.status = status
            execution.completed_at = completed_at

    async def get_execution(self, execution_id: int) -> Execution | None:
        execution = self._executions.get(execution_id)
        return execution.model_copy() if execution else None

    async def get_execution_detail(self, execution_id: int) -> ExecutionDetail | None:
        execution = self._executions.get(execution_id)
        if execution is None:
            return None
        workflow = self._workflows.get(execution.workflow_id)
        return ExecutionDetail(
            **execution.model_dump(),
            logs=await self.list_execution_logs(execution_id),
            workflow=workflow.model_copy() if workflow else None,
        )

    async def list_executions(
        self, status: Optional[str] = None
    ) -> list[ExecutionSummary]:
        summaries = []
        for execution in self._executions.values():
            if status is not None and execution.status != status:
                continue
            workflow = self._workflows.get(execution.workflow_id)
            summaries.append(
                ExecutionSummary(
                    **execution.model_dump(),
                    workflow_name=workflow.name if workflow else None,
                )
            )
        return sorted(summaries, key=lambda e: (e.started_at, e.id), reverse=True)

    # ------------------------------------------------------------------
    # Logs
    async def create_execution_log(
        self,
        execution_id: int,
        step_id: int,
        status: str,
        input_context: dict[str, Any] | None = None,
        attempt_number: int = 1,
    ) -> ExecutionLog:
        log = ExecutionLog(
            id=self._next_id("log"),
            execution_id=execution_id,
            step_id=step_id,
            status=status,
            input_context=copy.deepcopy(input_context),
            attempt_number=attempt_number,
            timestamp=utcnow(),
        )
        self._logs[log.id] = log
        return log.model_copy()

    async def update_execution_log(self, log_id: int, **fields: Any) -> None:
        unknown = set(fields) - LOG_MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update log fields: {sorted(unknown)}")
        log = self._logs.get(log_id)
        if log:
            for key, value in fields.items():
                setattr(log, key, value)

    async def list_execution_logs(self, execution_id: int) -> list[ExecutionLog]:
        logs = []
        for log in sorted(self._logs.values(), key=lambda entry: entry.id):
            if log.execution_id != execution_id:
                continue
            step = self._steps.get(log.step_id)
            logs.append(
                log.model_copy(
                    update={"step_order": step.order if step else None}, deep=True
                )
            )
        return logs
