"""Job queue interface between the dispatcher and execution workers."""

from __future__ import annotations

import abc
from typing import AsyncIterator, ClassVar, Generic, Optional, Tuple, TypeVar

from ..contracts import ExecutionJob

ReceiptT = TypeVar("ReceiptT")


class BaseTransport(Generic[ReceiptT], metaclass=abc.ABCMeta):
    """Carries :class:`ExecutionJob` hand-offs from a dispatcher to a worker.

    Each published job is delivered to exactly one subscriber together with a
    backend-specific receipt, which the worker hands back to :meth:`ack` once
    the engine has finished the execution.
    """

    #: Whether jobs published here are visible to other processes.
    shared: ClassVar[bool] = False

    async def connect(self) -> None:
        pass

    async def disconnect(self) -> None:
        pass

    @abc.abstractmethod
    async def publish(self, topic: str, job: ExecutionJob) -> None:
        """Enqueue ``job`` on ``topic``."""
        raise NotImplementedError

    @abc.abstractmethod
    def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[ReceiptT, ExecutionJob]]:
        """Yield ``(receipt, job)`` pairs until ``lifespan`` seconds pass.

        Runs until cancelled when ``lifespan`` is None.
        """
        raise NotImplementedError

    async def ack(self, receipt: ReceiptT) -> None:
        """Confirm the job behind ``receipt`` was run. Dequeue already removed it."""
