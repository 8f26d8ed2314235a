import asyncio

import pytest
from typer.testing import CliRunner

import stepflow.persistence as persistence
from stepflow.cli import app
from stepflow.contracts import CreateWorkflowRequest, ModelConfig, StepDefinition
from stepflow.persistence import InMemoryExecutionRepository

WORKFLOW_YAML = """\
name: CLI Demo
description: Two mock steps
steps:
  - order: 2
    prompt_template: "Summarize {{input}}"
    model_settings:
      model: test-model
      provider: mock
  - order: 1
    prompt_template: "Analyze {{input}}"
    model_settings:
      model: test-model
      provider: mock
    retry_policy:
      max_retries: 2
"""


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for name in ("STEPFLOW_CONFIG", "STEPFLOW_DATABASE_URL", "DATABASE_URL", "STEPFLOW_TRANSPORT"):
        monkeypatch.delenv(name, raising=False)


def _setup_repo() -> InMemoryExecutionRepository:
    repo = InMemoryExecutionRepository()
    persistence._repository_instance = repo
    return repo


def _create_demo(repo: InMemoryExecutionRepository) -> int:
    request = CreateWorkflowRequest(
        name="Seeded",
        steps=[
            StepDefinition(
                order=1,
                prompt_template="Analyze {{input}}",
                model_settings=ModelConfig(model="test-model", provider="mock"),
            )
        ],
    )
    return asyncio.run(repo.create_workflow(request)).id


def test_workflow_create_and_list(tmp_path):
    repo = _setup_repo()
    definition = tmp_path / "workflow.yaml"
    definition.write_text(WORKFLOW_YAML)

    runner = CliRunner()
    result = runner.invoke(app, ["workflow", "create", str(definition)])
    assert result.exit_code == 0, result.stdout
    assert "Created workflow 1: CLI Demo (2 steps)" in result.stdout

    workflow = asyncio.run(repo.get_workflow(1))
    assert [s.order for s in workflow.steps] == [1, 2]

    listed = runner.invoke(app, ["workflow", "list"])
    assert listed.exit_code == 0
    assert "1\tCLI Demo" in listed.stdout


def test_workflow_create_rejects_invalid_definition(tmp_path):
    _setup_repo()
    definition = tmp_path / "workflow.yaml"
    definition.write_text("name: Empty\nsteps: []\n")

    result = CliRunner().invoke(app, ["workflow", "create", str(definition)])
    assert result.exit_code == 1
    assert "Invalid workflow definition" in result.stdout


def test_workflow_show_details_and_missing():
    repo = _setup_repo()
    workflow_id = _create_demo(repo)

    runner = CliRunner()
    result = runner.invoke(app, ["workflow", "show", str(workflow_id)])
    assert result.exit_code == 0
    assert "Workflow 1: Seeded" in result.stdout
    assert "Analyze {{input}}" in result.stdout

    missing = runner.invoke(app, ["workflow", "show", "42"])
    assert missing.exit_code == 1
    assert "Workflow not found" in missing.stdout


def test_workflow_run_and_inspect_execution():
    repo = _setup_repo()
    workflow_id = _create_demo(repo)

    runner = CliRunner()
    result = runner.invoke(
        app, ["workflow", "run", str(workflow_id), "--context", '{"input": "hello"}']
    )
    assert result.exit_code == 0, result.stdout
    assert "Execution 1: completed" in result.stdout

    shown = runner.invoke(app, ["execution", "show", "1"])
    assert shown.exit_code == 0
    assert "Execution 1 (workflow Seeded): completed" in shown.stdout
    assert "- step 1 attempt 1: success" in shown.stdout
    assert "[Mock AI Response] Processed: Analyze hello" in shown.stdout

    listed = runner.invoke(app, ["execution", "list", "--status", "completed"])
    assert "1\tSeeded\tcompleted" in listed.stdout

    missing = runner.invoke(app, ["execution", "show", "9"])
    assert missing.exit_code == 1
    assert "Execution 9 not found" in missing.stdout


def test_workflow_run_rejects_bad_context():
    repo = _setup_repo()
    workflow_id = _create_demo(repo)

    result = CliRunner().invoke(app, ["workflow", "run", str(workflow_id), "--context", "[1, 2]"])
    assert result.exit_code != 0
    assert asyncio.run(repo.list_executions()) == []


def test_workflow_delete_refused_after_execution():
    repo = _setup_repo()
    workflow_id = _create_demo(repo)

    runner = CliRunner()
    runner.invoke(app, ["workflow", "run", str(workflow_id)])
    refused = runner.invoke(app, ["workflow", "delete", str(workflow_id)])
    assert refused.exit_code == 1
    assert "Cannot delete workflow" in refused.stdout

    other_id = _create_demo(repo)
    deleted = runner.invoke(app, ["workflow", "delete", str(other_id)])
    assert deleted.exit_code == 0
    assert f"Deleted workflow {other_id}" in deleted.stdout


def test_recover_marks_stale_executions():
    repo = _setup_repo()
    workflow_id = _create_demo(repo)
    execution = asyncio.run(repo.create_execution(workflow_id))

    result = CliRunner().invoke(app, ["recover", "--stale-after", "0"])
    assert result.exit_code == 0
    assert f"Marked execution {execution.id} as failed" in result.stdout
    assert asyncio.run(repo.get_execution(execution.id)).status == "failed"


def test_worker_refuses_process_local_transport():
    _setup_repo()

    result = CliRunner().invoke(app, ["worker", "--lifespan", "0.1"])
    assert result.exit_code == 1
    assert "Cannot start worker" in result.stdout
    assert "Starting worker" not in result.stdout
