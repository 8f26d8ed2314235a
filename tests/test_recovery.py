"""Recovery sweep tests."""

from datetime import timedelta

import pytest

from stepflow import (
    CreateWorkflowRequest,
    ExecutionDispatcher,
    ExecutionEngine,
    ExecutionWorker,
    ModelConfig,
    StepDefinition,
)
from stepflow.contracts import utcnow
from stepflow.persistence import InMemoryExecutionRepository
from stepflow.recovery import recover_stale_executions
from stepflow.transports.inmemory import InMemoryTransport


@pytest.mark.asyncio
async def test_recover_marks_only_old_active_executions_failed():
    repo = InMemoryExecutionRepository()
    workflow = await repo.create_workflow(
        CreateWorkflowRequest(
            name="sweep",
            steps=[
                StepDefinition(
                    order=1, prompt_template="x", model_settings=ModelConfig(model="m")
                )
            ],
        )
    )
    stale_pending = await repo.create_execution(workflow.id)
    stale_running = await repo.create_execution(workflow.id)
    await repo.update_execution_status(stale_running.id, "running")
    finished = await repo.create_execution(workflow.id)
    await repo.update_execution_status(finished.id, "completed", completed_at=utcnow())
    fresh = await repo.create_execution(workflow.id)

    old = utcnow() - timedelta(hours=2)
    for execution_id in (stale_pending.id, stale_running.id, finished.id):
        repo._executions[execution_id].started_at = old

    recovered = await recover_stale_executions(repo, stale_after=3600)

    assert sorted(recovered) == sorted([stale_pending.id, stale_running.id])
    for execution_id in recovered:
        execution = await repo.get_execution(execution_id)
        assert execution.status == "failed"
        assert execution.completed_at is not None
    assert (await repo.get_execution(finished.id)).status == "completed"
    assert (await repo.get_execution(fresh.id)).status == "pending"


@pytest.mark.asyncio
async def test_recover_with_nothing_stale():
    repo = InMemoryExecutionRepository()
    assert await recover_stale_executions(repo) == []


@pytest.mark.asyncio
async def test_recovered_execution_is_not_reopened_by_queued_job():
    repo = InMemoryExecutionRepository()
    workflow = await repo.create_workflow(
        CreateWorkflowRequest(
            name="queued",
            steps=[
                StepDefinition(
                    order=1, prompt_template="x", model_settings=ModelConfig(model="m")
                )
            ],
        )
    )
    transport = InMemoryTransport(poll_interval=0.01)
    dispatcher = ExecutionDispatcher(repo, transport=transport)
    execution_id = await dispatcher.start_execution(workflow.id)

    assert await recover_stale_executions(repo, stale_after=0) == [execution_id]
    failed_at = (await repo.get_execution(execution_id)).completed_at

    worker = ExecutionWorker(transport, ExecutionEngine(repo))
    await worker.start(lifespan=0.2)

    assert worker.processed == [execution_id]
    detail = await repo.get_execution_detail(execution_id)
    assert detail.status == "failed"
    assert detail.completed_at == failed_at
    assert detail.logs == []
