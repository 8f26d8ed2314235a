"""Startup sweep for executions abandoned by a previous process."""

from __future__ import annotations

import logging
from datetime import timedelta

from .contracts import ACTIVE_STATUSES, utcnow
from .persistence import ExecutionRepository

logger = logging.getLogger(__name__)


async def recover_stale_executions(
    repository: ExecutionRepository, stale_after: float = 3600.0
) -> list[int]:
    """Fail ``pending``/``running`` executions older than ``stale_after`` seconds.

    Returns the ids of the executions that were marked failed.
    """
    now = utcnow()
    cutoff = now - timedelta(seconds=stale_after)
    recovered: list[int] = []
    for status in sorted(ACTIVE_STATUSES):
        for execution in await repository.list_executions(status=status):
            if execution.started_at is None or execution.started_at > cutoff:
                continue
            await repository.update_execution_status(
                execution.id, "failed", completed_at=now
            )
            recovered.append(execution.id)
            logger.warning(
                f"Marked stale execution {execution.id} ({status} since "
                f"{execution.started_at.isoformat()}) as failed"
            )
    return recovered
