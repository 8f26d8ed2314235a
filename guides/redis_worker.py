"""Run an execution worker against the Redis transport.

Start it with ``python guides/redis_worker.py`` and enqueue executions with
``STEPFLOW_TRANSPORT=redis stepflow workflow run <id>``.
"""

import asyncio

from stepflow import ExecutionEngine, ExecutionWorker, StepInvoker, get_repository, get_transport
from stepflow.config import load_config


async def main():
    config = load_config()
    transport = get_transport("redis", config=config, for_worker=True)
    await transport.connect()

    repository = get_repository(config=config)
    engine = ExecutionEngine(
        repository,
        invoker=StepInvoker(config.provider, step_timeout=config.engine.step_timeout),
        config=config.engine,
    )
    worker = ExecutionWorker(transport, engine, topic=config.transport.topic)
    try:
        await worker.start()
    finally:
        await transport.disconnect()


if __name__ == "__main__":
    asyncio.run(main())
