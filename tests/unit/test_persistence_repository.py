"""Repository contract tests shared by the in-memory and SQLite backends."""

import pytest
from pydantic import ValidationError

from stepflow.contracts import (
    CompletionCriteria,
    CreateWorkflowRequest,
    ModelConfig,
    RetryPolicy,
    StepDefinition,
    UpdateWorkflowRequest,
    utcnow,
)
from stepflow.exceptions import ReferentialIntegrityError
from stepflow.persistence import InMemoryExecutionRepository, SQLiteExecutionRepository


@pytest.fixture(params=["inmemory", "sqlite"])
def repo(request, tmp_path):
    if request.param == "sqlite":
        return SQLiteExecutionRepository(tmp_path / "wf.db")
    return InMemoryExecutionRepository()


def _step(order, prompt="p", **retry):
    return StepDefinition(
        order=order,
        prompt_template=prompt,
        model_settings=ModelConfig(model="kimi-k2p5", provider="unbound", temperature=0.5),
        retry_policy=RetryPolicy(**retry),
    )


def _request(*steps, name="Demo"):
    return CreateWorkflowRequest(name=name, description="desc", steps=list(steps))


@pytest.mark.asyncio
async def test_workflow_crud(repo):
    created = await repo.create_workflow(
        _request(_step(2, "second"), _step(1, "first", max_retries=3, initial_delay_ms=10))
    )
    assert created.name == "Demo"
    assert created.created_at is not None
    assert [s.prompt_template for s in created.steps] == ["first", "second"]
    assert created.steps[0].retry_policy.max_retries == 3
    assert created.steps[0].model_settings.provider == "unbound"
    assert created.steps[0].model_settings.temperature == 0.5

    fetched = await repo.get_workflow(created.id)
    assert fetched == created
    assert await repo.get_workflow(created.id + 100) is None

    other = await repo.create_workflow(_request(_step(1), name="Other"))
    listed = await repo.list_workflows()
    assert [w.id for w in listed] == [other.id, created.id]

    updated = await repo.update_workflow(created.id, UpdateWorkflowRequest(name="Renamed"))
    assert updated.name == "Renamed"
    assert updated.description == "desc"
    assert len(updated.steps) == 2
    assert await repo.update_workflow(999, UpdateWorkflowRequest(name="x")) is None

    assert await repo.delete_workflow(other.id) is True
    assert await repo.get_workflow(other.id) is None
    assert await repo.delete_workflow(other.id) is False


@pytest.mark.asyncio
async def test_step_ties_ordered_by_identity(repo):
    created = await repo.create_workflow(_request(_step(1, "a"), _step(1, "b"), _step(1, "c")))
    assert [s.prompt_template for s in created.steps] == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_completion_criteria_persisted(repo):
    definition = _step(1)
    definition.completion_criteria = CompletionCriteria(required_fields=["summary"])
    created = await repo.create_workflow(_request(definition))
    assert created.steps[0].completion_criteria.required_fields == ["summary"]


@pytest.mark.asyncio
async def test_execution_and_log_lifecycle(repo):
    workflow = await repo.create_workflow(_request(_step(1), _step(2)))
    execution = await repo.create_execution(workflow.id)
    assert execution.status == "pending"
    assert execution.started_at is not None
    assert execution.completed_at is None

    await repo.update_execution_status(execution.id, "running")
    context = {"input": "hello", "nested": {"k": [1, 2]}}
    log = await repo.create_execution_log(
        execution.id, workflow.steps[0].id, "running", context, attempt_number=1
    )
    context["input"] = "mutated later"
    await repo.update_execution_log(
        log.id, status="success", output_content="out", duration_ms=12
    )
    second = await repo.create_execution_log(
        execution.id, workflow.steps[1].id, "running", {}, attempt_number=1
    )
    await repo.update_execution_log(second.id, status="failed", error="boom", duration_ms=3)
    completed_at = utcnow()
    await repo.update_execution_status(execution.id, "failed", completed_at=completed_at)

    detail = await repo.get_execution_detail(execution.id)
    assert detail.status == "failed"
    assert detail.completed_at == completed_at
    assert detail.workflow.name == "Demo"
    assert [entry.status for entry in detail.logs] == ["success", "failed"]
    assert [entry.step_order for entry in detail.logs] == [1, 2]
    assert detail.logs[0].input_context == {"input": "hello", "nested": {"k": [1, 2]}}
    assert detail.logs[0].output_content == "out"
    assert detail.logs[0].duration_ms == 12
    assert detail.logs[1].error == "boom"
    assert await repo.get_execution_detail(execution.id + 100) is None


@pytest.mark.asyncio
async def test_update_log_rejects_immutable_fields(repo):
    workflow = await repo.create_workflow(_request(_step(1)))
    execution = await repo.create_execution(workflow.id)
    log = await repo.create_execution_log(execution.id, workflow.steps[0].id, "running", {})
    with pytest.raises(ValueError):
        await repo.update_execution_log(log.id, attempt_number=5)


@pytest.mark.asyncio
async def test_list_executions_with_filter(repo):
    workflow = await repo.create_workflow(_request(_step(1), name="Listed"))
    first = await repo.create_execution(workflow.id)
    second = await repo.create_execution(workflow.id)
    await repo.update_execution_status(second.id, "completed", completed_at=utcnow())

    listed = await repo.list_executions()
    assert [e.id for e in listed] == [second.id, first.id]
    assert all(e.workflow_name == "Listed" for e in listed)

    pending = await repo.list_executions(status="pending")
    assert [e.id for e in pending] == [first.id]


@pytest.mark.asyncio
async def test_replacing_steps_retires_referenced_rows(repo):
    workflow = await repo.create_workflow(_request(_step(1, "old-used"), _step(2, "old-unused")))
    used, unused = workflow.steps
    execution = await repo.create_execution(workflow.id)
    log = await repo.create_execution_log(execution.id, used.id, "running", {})
    await repo.update_execution_log(log.id, status="success", output_content="x")

    updated = await repo.update_workflow(
        workflow.id, UpdateWorkflowRequest(steps=[_step(1, "new")])
    )

    assert [s.prompt_template for s in updated.steps] == ["new"]
    assert updated.steps[0].id not in (used.id, unused.id)
    detail = await repo.get_execution_detail(execution.id)
    assert detail.logs[0].step_id == used.id
    assert detail.logs[0].step_order == 1


@pytest.mark.asyncio
async def test_delete_workflow_with_logs_is_refused(repo):
    workflow = await repo.create_workflow(_request(_step(1)))
    execution = await repo.create_execution(workflow.id)
    await repo.create_execution_log(execution.id, workflow.steps[0].id, "running", {})

    with pytest.raises(ReferentialIntegrityError):
        await repo.delete_workflow(workflow.id)
    assert await repo.get_workflow(workflow.id) is not None


@pytest.mark.asyncio
async def test_delete_workflow_with_pending_execution_leaves_execution(repo):
    workflow = await repo.create_workflow(_request(_step(1)))
    execution = await repo.create_execution(workflow.id)

    assert await repo.delete_workflow(workflow.id) is True
    detail = await repo.get_execution_detail(execution.id)
    assert detail.workflow is None
    listed = await repo.list_executions()
    assert listed[0].workflow_name is None


def test_request_validation():
    with pytest.raises(ValidationError):
        CreateWorkflowRequest(name="empty", steps=[])
    with pytest.raises(ValidationError):
        ModelConfig(model="m", temperature=1.5)
    with pytest.raises(ValidationError):
        RetryPolicy(max_retries=-1)
    with pytest.raises(ValidationError):
        StepDefinition(order=0, prompt_template="p", model_settings=ModelConfig(model="m"))
    assert RetryPolicy(max_retries=2).max_attempts == 3
