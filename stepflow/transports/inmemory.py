"""In-process job queue for tests and single-process runs."""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from typing import AsyncIterator, Deque, Dict, Optional, Tuple

from ..contracts import ExecutionJob
from .base import BaseTransport


class InMemoryTransport(BaseTransport[str]):
    """Per-topic FIFO of jobs; the receipt is the job's ``message_id``."""

    def __init__(self, poll_interval: float = 0.05) -> None:
        self._queues: Dict[str, Deque[ExecutionJob]] = defaultdict(deque)
        self._lock = asyncio.Lock()
        self._poll_interval = poll_interval

    def pending(self, topic: str) -> int:
        return len(self._queues[topic])

    async def publish(self, topic: str, job: ExecutionJob) -> None:
        async with self._lock:
            self._queues[topic].append(job)

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[str, ExecutionJob]]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + lifespan if lifespan else None

        while deadline is None or loop.time() < deadline:
            job = None
            async with self._lock:
                if self._queues[topic]:
                    job = self._queues[topic].popleft()
            if job is None:
                await asyncio.sleep(self._poll_interval)
                continue
            yield job.message_id, job
