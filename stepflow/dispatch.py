"""Execution dispatcher: the request-facing entry point of the engine."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from .contracts import ExecutionJob, utcnow
from .engine import ExecutionEngine
from .exceptions import NotFoundError
from .persistence import ExecutionRepository, get_repository
from .persistence.models import ExecutionDetail
from .transports import BaseTransport

logger = logging.getLogger(__name__)


class ExecutionDispatcher:
    """Service responsible for starting executions and reporting on them.

    Without a transport, executions run as background tasks in this process.
    With one, an :class:`ExecutionJob` is published for an
    :class:`~stepflow.worker.ExecutionWorker` to pick up.
    """

    def __init__(
        self,
        repository: ExecutionRepository | None = None,
        engine: ExecutionEngine | None = None,
        transport: BaseTransport | None = None,
        topic: str = "executions",
    ) -> None:
        self._repository = repository or get_repository()
        self._engine = engine or ExecutionEngine(self._repository)
        self._transport = transport
        self._topic = topic
        self._tasks: Dict[int, asyncio.Task] = {}

    async def start_execution(
        self, workflow_id: int, initial_context: Optional[Dict[str, Any]] = None
    ) -> int:
        """Create a pending execution and schedule it without waiting.

        Args:
            workflow_id: Workflow to run.
            initial_context: Variables used to render the first prompts.

        Returns:
            Identifier of the new execution, for polling.
        """
        context = dict(initial_context or {})
        execution = await self._repository.create_execution(workflow_id, "pending")

        if self._transport is not None:
            job = ExecutionJob(
                execution_id=execution.id,
                workflow_id=workflow_id,
                initial_context=context,
            )
            try:
                await self._transport.publish(self._topic, job)
            except Exception:
                logger.error(
                    f"Failed to enqueue execution {execution.id}; marking it failed"
                )
                await self._repository.update_execution_status(
                    execution.id, "failed", completed_at=utcnow()
                )
                raise
            logger.info(f"Enqueued execution {execution.id} on topic {self._topic}")
            return execution.id

        task = asyncio.create_task(
            self._engine.run(execution.id, workflow_id, context),
            name=f"stepflow-execution-{execution.id}",
        )
        self._tasks[execution.id] = task
        task.add_done_callback(lambda _: self._tasks.pop(execution.id, None))
        return execution.id

    async def get_execution_detail(self, execution_id: int) -> ExecutionDetail | None:
        """Execution, its logs and workflow summary; ``None`` if unknown."""
        return await self._repository.get_execution_detail(execution_id)

    async def require_execution_detail(self, execution_id: int) -> ExecutionDetail:
        """Like :meth:`get_execution_detail` but raises :class:`NotFoundError`."""
        detail = await self._repository.get_execution_detail(execution_id)
        if detail is None:
            raise NotFoundError("execution", execution_id)
        return detail

    @property
    def running(self) -> list[int]:
        return list(self._tasks)

    async def wait(self, execution_id: Optional[int] = None) -> None:
        """Wait for locally scheduled executions to finish."""
        if execution_id is not None:
            task = self._tasks.get(execution_id)
            tasks = [task] if task else []
        else:
            tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks)
