"""Redis transport for cross-process job hand-off."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Optional, Tuple

import redis.asyncio as redis
from pydantic import ValidationError

from ..config import RedisConfig
from ..contracts import ExecutionJob
from .base import BaseTransport

logger = logging.getLogger(__name__)


class RedisTransport(BaseTransport[str]):
    """Job queue on a Redis list, shared by every process using the same server.

    Jobs are pushed with LPUSH and taken with BRPOP, so they are consumed in
    publish order and each is handed to one worker. The receipt is the raw
    JSON payload.
    """

    shared = True

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
    ) -> None:
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self._redis: Optional[Any] = None

    @classmethod
    def from_config(cls, config: RedisConfig) -> "RedisTransport":
        return cls(
            host=config.host, port=config.port, db=config.db, password=config.password
        )

    async def connect(self) -> None:
        """Connect to Redis."""
        self._redis = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        await self._redis.ping()

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    @staticmethod
    def queue_name(topic: str) -> str:
        return f"stepflow:{topic}"

    async def publish(self, topic: str, job: ExecutionJob) -> None:
        """Publish job to Redis list (acting as queue)."""
        if not self._redis:
            await self.connect()
        await self._redis.lpush(self.queue_name(topic), job.to_json())

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[str, ExecutionJob]]:
        """Subscribe to jobs from Redis queue."""
        if not self._redis:
            await self.connect()

        queue_name = self.queue_name(topic)
        loop = asyncio.get_running_loop()
        start_time = loop.time() if lifespan else None

        while True:
            if lifespan and start_time is not None:
                if loop.time() - start_time >= lifespan:
                    break

            result = await self._redis.brpop(queue_name, timeout=1)
            if result:
                _, job_json = result
                try:
                    job = ExecutionJob.from_json(job_json)
                except ValidationError as e:
                    logger.error(f"Failed to parse job: {e}")
                    continue
                yield job_json, job
