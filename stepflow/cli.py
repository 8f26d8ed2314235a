"""Command line interface for managing and running stepflow workflows."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Optional

import typer
import yaml
from pydantic import ValidationError

from stepflow import ExecutionDispatcher, ExecutionEngine, ExecutionWorker, StepInvoker
from stepflow.config import StepflowConfig, load_config
from stepflow.contracts import CreateWorkflowRequest
from stepflow.exceptions import NotFoundError, ReferentialIntegrityError
from stepflow.persistence import ExecutionRepository, get_repository
from stepflow.recovery import recover_stale_executions
from stepflow.transports import get_transport

app = typer.Typer(help="CLI for stepflow workflows")

# Command groups
workflow_app = typer.Typer(help="Commands for managing workflows")
execution_app = typer.Typer(help="Commands for inspecting executions")

app.add_typer(workflow_app, name="workflow")
app.add_typer(execution_app, name="execution")


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(
        None, help="Logging level (defaults to the configured log_level)"
    ),
) -> None:
    """stepflow CLI entry point."""
    level = (log_level or load_config().log_level).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _build_engine(
    config: StepflowConfig, repository: ExecutionRepository
) -> ExecutionEngine:
    invoker = StepInvoker(config.provider, step_timeout=config.engine.step_timeout)
    return ExecutionEngine(repository, invoker=invoker, config=config.engine)


def _parse_context(raw: Optional[str]) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        context = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"Context is not valid JSON: {exc}")
    if not isinstance(context, dict):
        raise typer.BadParameter("Context must be a JSON object")
    return context


@workflow_app.command("create")
def workflow_create(definition: Path) -> None:
    """
    Create a workflow from a YAML or JSON definition file.

    The file holds ``name``, an optional ``description`` and a list of
    ``steps``, each with ``order``, ``prompt_template``, ``model_settings``
    and an optional ``retry_policy``.

    Example:
        stepflow workflow create ./demo.yaml
        # Output: Created workflow 1: Demo (3 steps)
    """
    if not definition.exists():
        typer.secho("Definition file does not exist", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    try:
        data = yaml.safe_load(definition.read_text()) or {}
        request = CreateWorkflowRequest.model_validate(data)
    except yaml.YAMLError as exc:
        typer.secho(f"Could not parse {definition}: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    except ValidationError as exc:
        typer.secho(f"Invalid workflow definition:\n{exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    repo = get_repository()
    workflow = asyncio.run(repo.create_workflow(request))
    typer.echo(
        f"Created workflow {workflow.id}: {workflow.name} ({len(workflow.steps)} steps)"
    )


@workflow_app.command("list")
def workflow_list() -> None:
    """List all workflows, newest first."""
    repo = get_repository()
    workflows = asyncio.run(repo.list_workflows())
    if not workflows:
        typer.echo("No workflows found")
        return
    for wf in workflows:
        typer.echo(f"{wf.id}\t{wf.name}")


@workflow_app.command("show")
def workflow_show(workflow_id: int) -> None:
    """Show a workflow and its active steps in execution order."""
    repo = get_repository()
    wf = asyncio.run(repo.get_workflow(workflow_id))
    if wf is None:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)
    typer.echo(f"Workflow {wf.id}: {wf.name}")
    if wf.description:
        typer.echo(f"Description: {wf.description}")
    for step in wf.steps:
        provider = step.model_settings.provider or "mock"
        typer.echo(
            f"- [{step.order}] {step.model_settings.model} via {provider} "
            f"(max retries {step.retry_policy.max_retries}): {step.prompt_template}"
        )


@workflow_app.command("delete")
def workflow_delete(workflow_id: int) -> None:
    """Delete a workflow that has no execution history."""
    repo = get_repository()
    try:
        deleted = asyncio.run(repo.delete_workflow(workflow_id))
    except ReferentialIntegrityError as exc:
        typer.secho(f"Cannot delete workflow: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    if not deleted:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)
    typer.echo(f"Deleted workflow {workflow_id}")


@workflow_app.command("run")
def workflow_run(
    workflow_id: int,
    context: Optional[str] = typer.Option(
        None, help="Initial context as a JSON object"
    ),
) -> None:
    """
    Start an execution of a workflow.

    With the in-memory transport the execution runs in this process and the
    command waits for it. With Redis the job is enqueued for a worker
    (``stepflow worker``) and the command returns immediately.

    Example:
        stepflow workflow run 1 --context '{"input": "hello"}'
        # Output: Execution 1: completed
    """
    initial_context = _parse_context(context)
    config = load_config()
    repo = get_repository()

    async def _run() -> tuple[int, Optional[str]]:
        transport = get_transport(config=config)
        if transport.shared:
            dispatcher = ExecutionDispatcher(
                repo, transport=transport, topic=config.transport.topic
            )
            try:
                execution_id = await dispatcher.start_execution(
                    workflow_id, initial_context
                )
            finally:
                await transport.disconnect()
            return execution_id, None
        dispatcher = ExecutionDispatcher(repo, engine=_build_engine(config, repo))
        execution_id = await dispatcher.start_execution(workflow_id, initial_context)
        await dispatcher.wait(execution_id)
        execution = await repo.get_execution(execution_id)
        return execution_id, execution.status if execution else None

    execution_id, status = asyncio.run(_run())
    if status is None:
        typer.echo(f"Execution {execution_id} enqueued")
    else:
        typer.echo(f"Execution {execution_id}: {status}")


@execution_app.command("list")
def execution_list(
    status: Optional[str] = typer.Option(None, help="Only show executions in this status"),
) -> None:
    """List executions, newest first."""
    repo = get_repository()
    executions = asyncio.run(repo.list_executions(status=status))
    if not executions:
        typer.echo("No executions found")
        return
    for ex in executions:
        typer.echo(f"{ex.id}\t{ex.workflow_name or '(deleted)'}\t{ex.status}")


@execution_app.command("show")
def execution_show(execution_id: int) -> None:
    """
    Show an execution with its per-attempt log history.

    Example:
        stepflow execution show 1
        # Output: Execution 1 (workflow Demo): completed
        #         Started: ... Completed: ...
        #         - step 1 attempt 1: success (3ms)
    """
    dispatcher = ExecutionDispatcher(get_repository())
    try:
        detail = asyncio.run(dispatcher.require_execution_detail(execution_id))
    except NotFoundError as exc:
        typer.echo(str(exc))
        raise typer.Exit(code=1)
    name = detail.workflow.name if detail.workflow else "(deleted)"
    typer.echo(f"Execution {detail.id} (workflow {name}): {detail.status}")
    typer.echo(f"Started: {detail.started_at} Completed: {detail.completed_at}")
    for log in detail.logs:
        order = log.step_order if log.step_order is not None else log.step_id
        duration = f" ({log.duration_ms}ms)" if log.duration_ms is not None else ""
        typer.echo(f"- step {order} attempt {log.attempt_number}: {log.status}{duration}")
        if log.output_content:
            typer.echo(f"    output: {log.output_content}")
        if log.error:
            typer.echo(f"    error: {log.error}")


@app.command("worker")
def worker(
    lifespan: Optional[float] = typer.Option(
        None, help="Worker timeout in seconds (default: run indefinitely)"
    ),
) -> None:
    """Run a worker that executes jobs from the configured transport."""
    config = load_config()
    try:
        transport = get_transport(config=config, for_worker=True)
    except ValueError as exc:
        typer.secho(f"Cannot start worker: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    repo = get_repository()
    execution_worker = ExecutionWorker(
        transport, _build_engine(config, repo), topic=config.transport.topic
    )
    typer.echo(f"Starting worker on topic: {config.transport.topic}")
    asyncio.run(execution_worker.start(lifespan=lifespan))


@app.command("recover")
def recover(
    stale_after: Optional[float] = typer.Option(
        None, help="Age in seconds after which active executions count as abandoned"
    ),
) -> None:
    """Mark executions abandoned by a crashed process as failed."""
    config = load_config()
    repo = get_repository()
    threshold = config.engine.stale_after if stale_after is None else stale_after
    recovered = asyncio.run(recover_stale_executions(repo, threshold))
    if not recovered:
        typer.echo("No stale executions found")
        return
    for execution_id in recovered:
        typer.echo(f"Marked execution {execution_id} as failed")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
