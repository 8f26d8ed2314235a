"""Job queues that hand executions from ``workflow run`` to workers."""

from __future__ import annotations

from typing import Optional

from ..config import StepflowConfig, load_config
from .base import BaseTransport
from .inmemory import InMemoryTransport

TRANSPORT_BACKENDS = ("inmemory", "redis")


def get_transport(
    backend: Optional[str] = None,
    config: Optional[StepflowConfig] = None,
    for_worker: bool = False,
) -> BaseTransport:
    """Build the job queue named by ``backend`` or ``config.transport.backend``.

    A worker consumes jobs published by another process, so ``for_worker``
    rejects queues that live in one process's memory.
    """
    config = config or load_config()
    name = (backend or config.transport.backend).lower()
    if name not in TRANSPORT_BACKENDS:
        raise ValueError(f"Unsupported transport backend: {name}")

    if name == "redis":
        from .redis import RedisTransport

        return RedisTransport.from_config(config.transport.redis)
    if for_worker:
        raise ValueError(
            "The inmemory transport is private to one process; "
            "set transport.backend to 'redis' to run a worker"
        )
    return InMemoryTransport()


__all__ = ["BaseTransport", "InMemoryTransport", "TRANSPORT_BACKENDS", "get_transport"]
