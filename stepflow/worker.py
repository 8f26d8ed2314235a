"""Worker that runs executions handed over a transport."""

from __future__ import annotations

import logging
from typing import Optional

from .contracts import ExecutionJob
from .engine import ExecutionEngine
from .transports import BaseTransport

logger = logging.getLogger(__name__)


class ExecutionWorker:
    """Consumes :class:`ExecutionJob` messages and runs them one at a time."""

    def __init__(
        self,
        transport: BaseTransport,
        engine: ExecutionEngine,
        topic: str = "executions",
    ) -> None:
        self._transport = transport
        self._engine = engine
        self._topic = topic
        self.processed: list[int] = []

    async def start(self, lifespan: Optional[float] = None) -> None:
        """Listen for jobs until ``lifespan`` seconds pass (forever if None)."""
        logger.info(f"Worker listening on topic {self._topic}")
        async for receipt, job in self._transport.subscribe(
            self._topic, lifespan=lifespan
        ):
            await self.handle(job)
            await self._transport.ack(receipt)

    async def handle(self, job: ExecutionJob) -> Optional[str]:
        logger.info(
            f"Received job {job.message_id} for execution {job.execution_id}"
        )
        status = await self._engine.run(
            job.execution_id, job.workflow_id, job.initial_context
        )
        self.processed.append(job.execution_id)
        return status
