import os

import pytest

from stepflow import ExecutionDispatcher, ExecutionEngine, ExecutionWorker
from stepflow.contracts import CreateWorkflowRequest, ModelConfig, StepDefinition
from stepflow.persistence import SQLiteExecutionRepository
from stepflow.transports.redis import RedisTransport

TOPIC = "stepflow-integration"


async def _transport_or_skip() -> RedisTransport:
    transport = RedisTransport(
        host=os.getenv("REDIS_HOST", "localhost"),
        port=int(os.getenv("REDIS_PORT", "6379")),
    )
    try:
        await transport.connect()
    except Exception:
        pytest.skip("Redis server not available")
    await transport._redis.delete(RedisTransport.queue_name(TOPIC))
    return transport


@pytest.mark.asyncio
async def test_job_enqueued_and_run_by_worker(tmp_path):
    transport = await _transport_or_skip()
    repo = SQLiteExecutionRepository(tmp_path / "shared.db")
    workflow = await repo.create_workflow(
        CreateWorkflowRequest(
            name="redis",
            steps=[
                StepDefinition(
                    order=1,
                    prompt_template="Analyze {{input}}",
                    model_settings=ModelConfig(model="m", provider="mock"),
                )
            ],
        )
    )

    try:
        dispatcher = ExecutionDispatcher(repo, transport=transport, topic=TOPIC)
        execution_id = await dispatcher.start_execution(workflow.id, {"input": "queued"})

        queue = RedisTransport.queue_name(TOPIC)
        assert await transport._redis.llen(queue) == 1
        assert (await repo.get_execution(execution_id)).status == "pending"

        worker = ExecutionWorker(transport, ExecutionEngine(repo), topic=TOPIC)
        await worker.start(lifespan=2)

        assert worker.processed == [execution_id]
        assert await transport._redis.llen(queue) == 0
        detail = await repo.get_execution_detail(execution_id)
        assert detail.status == "completed"
        assert detail.logs[0].output_content == (
            "[Mock AI Response] Processed: Analyze queued"
        )
    finally:
        await transport.disconnect()
