"""Execution engine: runs a stored workflow as an auditable execution."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from .config import EngineConfig
from .contracts import utcnow
from .exceptions import StepError
from .invoker import StepInvoker
from .persistence import ExecutionRepository, get_repository
from .persistence.models import Step
from .utils.retry import Attempt, RetryController, RetryOutcome

logger = logging.getLogger(__name__)


def _elapsed_ms(started: float) -> int:
    return int(round((time.monotonic() - started) * 1000))


class ExecutionEngine:
    """Drives one execution through ``pending -> running -> completed|failed``.

    Steps run strictly in ascending order. Every attempt of every step gets
    its own log row, and the first step that exhausts its retries fails the
    whole execution. The engine always leaves the execution in a terminal
    state, even when storage itself misbehaves.
    """

    def __init__(
        self,
        repository: ExecutionRepository | None = None,
        invoker: StepInvoker | None = None,
        config: EngineConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._repository = repository or get_repository()
        self.config = config or EngineConfig()
        self.invoker = invoker or StepInvoker(step_timeout=self.config.step_timeout)
        self._sleep = sleep
        # execution id -> log row of the attempt in flight
        self._open_logs: dict[int, int] = {}

    async def run(
        self,
        execution_id: int,
        workflow_id: int,
        initial_context: Optional[dict[str, Any]] = None,
    ) -> Optional[str]:
        """Process ``execution_id`` to completion and return its final status.

        Only a ``pending`` execution is run. Any other execution is left
        untouched and its current status is returned, or ``None`` when the id
        does not resolve.
        """
        logger.info(f"Starting execution {execution_id} for workflow {workflow_id}")
        try:
            return await self._run(execution_id, workflow_id, initial_context)
        except asyncio.CancelledError:
            logger.warning(f"Execution {execution_id} cancelled")
            await self._fail_safely(execution_id)
            raise
        except Exception:
            logger.exception(f"Execution {execution_id} crashed")
            await self._fail_safely(execution_id)
            return "failed"

    async def _run(
        self,
        execution_id: int,
        workflow_id: int,
        initial_context: Optional[dict[str, Any]],
    ) -> Optional[str]:
        execution = await self._repository.get_execution(execution_id)
        if execution is None:
            logger.warning(f"Execution {execution_id} not found; skipping")
            return None
        if execution.status != "pending":
            logger.warning(
                f"Execution {execution_id} is already {execution.status}; skipping"
            )
            return execution.status

        workflow = await self._repository.get_workflow(workflow_id)
        if workflow is None:
            logger.warning(
                f"Workflow {workflow_id} not found; failing execution {execution_id}"
            )
            return await self._finish(execution_id, "failed")
        if not workflow.steps:
            logger.warning(
                f"Workflow {workflow_id} has no steps; failing execution {execution_id}"
            )
            return await self._finish(execution_id, "failed")

        await self._repository.update_execution_status(execution_id, "running")

        context: dict[str, Any] = dict(initial_context or {})
        for step in workflow.steps:
            outcome = await self._run_step(execution_id, step, context)
            if not outcome.succeeded:
                logger.error(
                    f"Step {step.id} (order {step.order}) failed after "
                    f"{outcome.attempts} attempt(s): {outcome.error.message}"
                )
                return await self._finish(execution_id, "failed")
            if self.config.propagate_output_as_context:
                context["previous_output"] = outcome.output
                context[f"step_{step.order}_output"] = outcome.output

        status = await self._finish(execution_id, "completed")
        logger.info(f"Execution {execution_id} completed successfully")
        return status

    async def _run_step(
        self, execution_id: int, step: Step, context: dict[str, Any]
    ) -> RetryOutcome:
        controller = RetryController(
            step.retry_policy,
            default_initial_delay_ms=self.config.default_initial_delay_ms,
            sleep=self._sleep,
        )

        async def attempt_step(attempt: Attempt) -> str:
            started = time.monotonic()
            logger.info(
                f"Executing step {step.id} (order {step.order}) "
                f"attempt {attempt.number}/{attempt.max_attempts}"
            )
            log = await self._repository.create_execution_log(
                execution_id=execution_id,
                step_id=step.id,
                status="running",
                input_context=dict(context),
                attempt_number=attempt.number,
            )
            self._open_logs[execution_id] = log.id
            try:
                output = await self.invoker.invoke(step, context)
            except StepError as exc:
                await self._repository.update_execution_log(
                    log.id,
                    status="retrying" if controller.will_retry(attempt, exc) else "failed",
                    error=exc.message or "Unknown error",
                    duration_ms=_elapsed_ms(started),
                )
                self._open_logs.pop(execution_id, None)
                raise
            await self._repository.update_execution_log(
                log.id,
                status="success",
                output_content=output,
                duration_ms=_elapsed_ms(started),
            )
            self._open_logs.pop(execution_id, None)
            return output

        return await controller.run(attempt_step)

    async def _finish(self, execution_id: int, status: str) -> str:
        await self._repository.update_execution_status(
            execution_id, status, completed_at=utcnow()
        )
        return status

    async def _fail_safely(self, execution_id: int) -> None:
        log_id = self._open_logs.pop(execution_id, None)
        if log_id is not None:
            try:
                await self._repository.update_execution_log(
                    log_id, status="failed", error="Execution aborted"
                )
            except Exception:
                logger.exception(
                    f"Could not close log {log_id} of execution {execution_id}"
                )
        try:
            await self._finish(execution_id, "failed")
        except Exception:
            logger.exception(f"Could not mark execution {execution_id} as failed")
