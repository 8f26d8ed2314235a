"""PostgreSQL implementation of the execution repository."""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Optional

import asyncpg

from ..contracts import CreateWorkflowRequest, StepDefinition, UpdateWorkflowRequest, utcnow
from ..exceptions import ReferentialIntegrityError
from .models import (
    Execution,
    ExecutionDetail,
    ExecutionLog,
    ExecutionSummary,
    Step,
    Workflow,
    WorkflowDetail,
)
from .repository import LOG_MUTABLE_FIELDS, ExecutionRepository


class PostgresExecutionRepository(ExecutionRepository):
    """Persist workflows, executions and logs using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        await conn.set_type_codec(
            "jsonb",
            encoder=lambda value: json.dumps(value, default=str),
            decoder=json.loads,
            schema="pg_catalog",
        )
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[asyncpg.Connection]:
        conn = await self._connect()
        try:
            yield conn
        except asyncpg.ForeignKeyViolationError as exc:
            raise ReferentialIntegrityError(str(exc)) from exc
        finally:
            await conn.close()

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                id SERIAL PRIMARY KEY,
                name TEXT NOT NULL,
                description TEXT,
                created_at TIMESTAMPTZ NOT NULL DEFAULT now()
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_steps (
                id SERIAL PRIMARY KEY,
                workflow_id INTEGER NOT NULL,
                "order" INTEGER NOT NULL,
                prompt_template TEXT NOT NULL,
                model_settings JSONB NOT NULL,
                retry_policy JSONB NOT NULL,
                completion_criteria JSONB,
                retired BOOLEAN NOT NULL DEFAULT FALSE
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS executions (
                id SERIAL PRIMARY KEY,
                workflow_id INTEGER NOT NULL,
                status TEXT NOT NULL,
                started_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                completed_at TIMESTAMPTZ
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS execution_logs (
                id SERIAL PRIMARY KEY,
                execution_id INTEGER NOT NULL REFERENCES executions(id),
                step_id INTEGER NOT NULL REFERENCES workflow_steps(id),
                status TEXT NOT NULL,
                input_context JSONB,
                output_content TEXT,
                error TEXT,
                duration_ms INTEGER,
                attempt_number INTEGER NOT NULL DEFAULT 1,
                timestamp TIMESTAMPTZ NOT NULL DEFAULT now()
            )
            """
        )

    # ------------------------------------------------------------------
    @staticmethod
    async def _insert_step(
        conn: asyncpg.Connection, workflow_id: int, definition: StepDefinition
    ) -> None:
        await conn.execute(
            """
            INSERT INTO workflow_steps
                (workflow_id, "order", prompt_template, model_settings, retry_policy, completion_criteria)
            VALUES ($1, $2, $3, $4, $5, $6)
            """,
            workflow_id,
            definition.order,
            definition.prompt_template,
            definition.model_settings.model_dump(),
            definition.retry_policy.model_dump(),
            definition.completion_criteria.model_dump()
            if definition.completion_criteria
            else None,
        )

    @staticmethod
    def _row_to_workflow(row: asyncpg.Record) -> Workflow:
        return Workflow(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_execution(row: asyncpg.Record) -> Execution:
        return Execution(
            id=row["id"],
            workflow_id=row["workflow_id"],
            status=row["status"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
        )

    # ------------------------------------------------------------------
    # Workflows
    async def create_workflow(self, request: CreateWorkflowRequest) -> WorkflowDetail:
        async with self._connection() as conn:
            async with conn.transaction():
                workflow_id = await conn.fetchval(
                    "INSERT INTO workflows (name, description, created_at) VALUES ($1, $2, $3) RETURNING id",
                    request.name,
                    request.description,
                    utcnow(),
                )
                for definition in request.steps:
                    await self._insert_step(conn, workflow_id, definition)
        return await self.get_workflow(workflow_id)

    async def get_workflow(self, workflow_id: int) -> WorkflowDetail | None:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                "SELECT id, name, description, created_at FROM workflows WHERE id = $1",
                workflow_id,
            )
            if not row:
                return None
            step_rows = await conn.fetch(
                'SELECT * FROM workflow_steps WHERE workflow_id = $1 AND NOT retired ORDER BY "order", id',
                workflow_id,
            )
        return WorkflowDetail(
            **self._row_to_workflow(row).model_dump(),
            steps=[Step(**dict(r)) for r in step_rows],
        )

    async def list_workflows(self) -> list[Workflow]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                "SELECT id, name, description, created_at FROM workflows ORDER BY created_at DESC, id DESC"
            )
        return [self._row_to_workflow(r) for r in rows]

    async def update_workflow(
        self, workflow_id: int, request: UpdateWorkflowRequest
    ) -> WorkflowDetail | None:
        async with self._connection() as conn:
            async with conn.transaction():
                exists = await conn.fetchval(
                    "SELECT id FROM workflows WHERE id = $1", workflow_id
                )
                if not exists:
                    return None
                if request.name is not None:
                    await conn.execute(
                        "UPDATE workflows SET name = $1 WHERE id = $2",
                        request.name,
                        workflow_id,
                    )
                if "description" in request.model_fields_set:
                    await conn.execute(
                        "UPDATE workflows SET description = $1 WHERE id = $2",
                        request.description,
                        workflow_id,
                    )
                if request.steps is not None:
                    # Steps with log history are retired, the rest are removed.
                    await conn.execute(
                        """
                        UPDATE workflow_steps SET retired = TRUE
                        WHERE workflow_id = $1 AND NOT retired
                          AND id IN (SELECT step_id FROM execution_logs)
                        """,
                        workflow_id,
                    )
                    await conn.execute(
                        "DELETE FROM workflow_steps WHERE workflow_id = $1 AND NOT retired",
                        workflow_id,
                    )
                    for definition in request.steps:
                        await self._insert_step(conn, workflow_id, definition)
        return await self.get_workflow(workflow_id)

    async def delete_workflow(self, workflow_id: int) -> bool:
        async with self._connection() as conn:
            async with conn.transaction():
                exists = await conn.fetchval(
                    "SELECT id FROM workflows WHERE id = $1", workflow_id
                )
                if not exists:
                    return False
                referenced = await conn.fetchval(
                    """
                    SELECT COUNT(*) FROM execution_logs l
                    JOIN workflow_steps s ON s.id = l.step_id
                    WHERE s.workflow_id = $1
                    """,
                    workflow_id,
                )
                if referenced:
                    raise ReferentialIntegrityError(
                        f"Workflow {workflow_id} has steps referenced by execution logs"
                    )
                await conn.execute(
                    "DELETE FROM workflow_steps WHERE workflow_id = $1", workflow_id
                )
                await conn.execute("DELETE FROM workflows WHERE id = $1", workflow_id)
        return True

    # ------------------------------------------------------------------
    # Executions
    async def create_execution(
        self, workflow_id: int, status: str = "pending"
    ) -> Execution:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                "INSERT INTO executions (workflow_id, status, started_at) VALUES ($1, $2, $3) RETURNING *",
                workflow_id,
                status,
                utcnow(),
            )
        return self._row_to_execution(row)

    async def update_execution_status(
        self,
        execution_id: int,
        status: str,
        completed_at: Optional[datetime] = None,
    ) -> None:
        async with self._connection() as conn:
            await conn.execute(
                "UPDATE executions SET status = $1, completed_at = $2 WHERE id = $3",
                status,
                completed_at,
                execution_id,
            )

    async def get_execution(self, execution_id: int) -> Execution | None:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM executions WHERE id = $1", execution_id
            )
        return self._row_to_execution(row) if row else None

    async def get_execution_detail(self, execution_id: int) -> ExecutionDetail | None:
        execution = await self.get_execution(execution_id)
        if execution is None:
            return None
        logs = await self.list_execution_logs(execution_id)
        async with self._connection() as conn:
            row = await conn.fetchrow(
                "SELECT id, name, description, created_at FROM workflows WHERE id = $1",
                execution.workflow_id,
            )
        return ExecutionDetail(
            **execution.model_dump(),
            logs=logs,
            workflow=self._row_to_workflow(row) if row else None,
        )

    async def list_executions(
        self, status: Optional[str] = None
    ) -> list[ExecutionSummary]:
        query = (
            "SELECT e.*, w.name AS workflow_name FROM executions e "
            "LEFT JOIN workflows w ON w.id = e.workflow_id"
        )
        params: list[Any] = []
        if status is not None:
            query += " WHERE e.status = $1"
            params.append(status)
        query += " ORDER BY e.started_at DESC, e.id DESC"
        async with self._connection() as conn:
            rows = await conn.fetch(query, *params)
        return [
            ExecutionSummary(
                **self._row_to_execution(r).model_dump(),
                workflow_name=r["workflow_name"],
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Logs
    async def create_execution_log(
        self,
        execution_id: int,
        step_id: int,
        status: str,
        input_context: dict[str, Any] | None = None,
        attempt_number: int = 1,
    ) -> ExecutionLog:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO execution_logs
                    (execution_id, step_id, status, input_context, attempt_number, timestamp)
                VALUES ($1, $2, $3, $4, $5, $6)
                RETURNING *
                """,
                execution_id,
                step_id,
                status,
                input_context,
                attempt_number,
                utcnow(),
            )
        return ExecutionLog(**dict(row))

    async def update_execution_log(self, log_id: int, **fields: Any) -> None:
        unknown = set(fields) - LOG_MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update log fields: {sorted(unknown)}")
        if not fields:
            return
        assignments = ", ".join(
            f"{key} = ${index}" for index, key in enumerate(fields, start=1)
        )
        async with self._connection() as conn:
            await conn.execute(
                f"UPDATE execution_logs SET {assignments} WHERE id = ${len(fields) + 1}",
                *fields.values(),
                log_id,
            )

    async def list_execution_logs(self, execution_id: int) -> list[ExecutionLog]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                """
                SELECT l.*, s."order" AS step_order FROM execution_logs l
                LEFT JOIN workflow_steps s ON s.id = l.step_id
                WHERE l.execution_id = $1 ORDER BY l.id
                """,
                execution_id,
            )
        return [ExecutionLog(**dict(r)) for r in rows]
