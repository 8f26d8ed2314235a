"""SQLite implementation of the execution repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar

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

T = TypeVar("T")

_LOG_COLUMNS = (
    "l.id, l.execution_id, l.step_id, l.status, l.input_context, l.output_content, "
    "l.error, l.duration_ms, l.attempt_number, l.timestamp, s.\"order\" AS step_order"
)


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _json(value: Optional[str]) -> Any:
    return json.loads(value) if value else None


class SQLiteExecutionRepository(ExecutionRepository):
    """Persist workflows, executions and logs using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                description TEXT,
                created_at TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_steps (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                workflow_id INTEGER NOT NULL,
                "order" INTEGER NOT NULL,
                prompt_template TEXT NOT NULL,
                model_settings TEXT NOT NULL,
                retry_policy TEXT NOT NULL,
                completion_criteria TEXT,
                retired INTEGER NOT NULL DEFAULT 0
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS executions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                workflow_id INTEGER NOT NULL,
                status TEXT NOT NULL,
                started_at TEXT NOT NULL,
                completed_at TEXT
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS execution_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                execution_id INTEGER NOT NULL REFERENCES executions(id),
                step_id INTEGER NOT NULL REFERENCES workflow_steps(id),
                status TEXT NOT NULL,
                input_context TEXT,
                output_content TEXT,
                error TEXT,
                duration_ms INTEGER,
                attempt_number INTEGER NOT NULL DEFAULT 1,
                timestamp TEXT NOT NULL
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _run(self, fn: Callable[[sqlite3.Cursor], T]) -> T:
        with self._lock:
            cur = self._conn.cursor()
            try:
                result = fn(cur)
            except sqlite3.IntegrityError as exc:
                self._conn.rollback()
                raise ReferentialIntegrityError(str(exc)) from exc
            except Exception:
                self._conn.rollback()
                raise
            self._conn.commit()
            return result

    def _execute(self, query: str, *params: Any) -> int:
        return self._run(lambda cur: cur.execute(query, params).lastrowid)

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        return self._run(lambda cur: cur.execute(query, params).fetchone())

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        return self._run(lambda cur: cur.execute(query, params).fetchall())

    @staticmethod
    def _insert_step(
        cur: sqlite3.Cursor, workflow_id: int, definition: StepDefinition
    ) -> None:
        cur.execute(
            """
            INSERT INTO workflow_steps
                (workflow_id, "order", prompt_template, model_settings, retry_policy, completion_criteria)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                workflow_id,
                definition.order,
                definition.prompt_template,
                definition.model_settings.model_dump_json(),
                definition.retry_policy.model_dump_json(),
                definition.completion_criteria.model_dump_json()
                if definition.completion_criteria
                else None,
            ),
        )

    @staticmethod
    def _row_to_step(row: sqlite3.Row) -> Step:
        return Step(
            id=row["id"],
            workflow_id=row["workflow_id"],
            order=row["order"],
            prompt_template=row["prompt_template"],
            model_settings=_json(row["model_settings"]),
            retry_policy=_json(row["retry_policy"]),
            completion_criteria=_json(row["completion_criteria"]),
            retired=bool(row["retired"]),
        )

    @staticmethod
    def _row_to_workflow(row: sqlite3.Row) -> Workflow:
        return Workflow(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            created_at=_dt(row["created_at"]),
        )

    @staticmethod
    def _row_to_execution(row: sqlite3.Row) -> Execution:
        return Execution(
            id=row["id"],
            workflow_id=row["workflow_id"],
            status=row["status"],
            started_at=_dt(row["started_at"]),
            completed_at=_dt(row["completed_at"]),
        )

    @staticmethod
    def _row_to_log(row: sqlite3.Row) -> ExecutionLog:
        return ExecutionLog(
            id=row["id"],
            execution_id=row["execution_id"],
            step_id=row["step_id"],
            status=row["status"],
            input_context=_json(row["input_context"]),
            output_content=row["output_content"],
            error=row["error"],
            duration_ms=row["duration_ms"],
            attempt_number=row["attempt_number"],
            timestamp=_dt(row["timestamp"]),
            step_order=row["step_order"],
        )

    # ------------------------------------------------------------------
    # Workflows
    async def create_workflow(self, request: CreateWorkflowRequest) -> WorkflowDetail:
        def _create(cur: sqlite3.Cursor) -> int:
            cur.execute(
                "INSERT INTO workflows (name, description, created_at) VALUES (?, ?, ?)",
                (request.name, request.description, utcnow().isoformat()),
            )
            workflow_id = cur.lastrowid
            for definition in request.steps:
                self._insert_step(cur, workflow_id, definition)
            return workflow_id

        workflow_id = await asyncio.to_thread(self._run, _create)
        return await self.get_workflow(workflow_id)

    async def get_workflow(self, workflow_id: int) -> WorkflowDetail | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT id, name, description, created_at FROM workflows WHERE id = ?",
            workflow_id,
        )
        if not row:
            return None
        step_rows = await asyncio.to_thread(
            self._fetchall,
            'SELECT * FROM workflow_steps WHERE workflow_id = ? AND retired = 0 ORDER BY "order", id',
            workflow_id,
        )
        return WorkflowDetail(
            **self._row_to_workflow(row).model_dump(),
            steps=[self._row_to_step(r) for r in step_rows],
        )

    async def list_workflows(self) -> list[Workflow]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT id, name, description, created_at FROM workflows ORDER BY created_at DESC, id DESC",
        )
        return [self._row_to_workflow(r) for r in rows]

    async def update_workflow(
        self, workflow_id: int, request: UpdateWorkflowRequest
    ) -> WorkflowDetail | None:
        def _update(cur: sqlite3.Cursor) -> bool:
            row = cur.execute(
                "SELECT id FROM workflows WHERE id = ?", (workflow_id,)
            ).fetchone()
            if not row:
                return False
            if request.name is not None:
                cur.execute(
                    "UPDATE workflows SET name = ? WHERE id = ?",
                    (request.name, workflow_id),
                )
            if "description" in request.model_fields_set:
                cur.execute(
                    "UPDATE workflows SET description = ? WHERE id = ?",
                    (request.description, workflow_id),
                )
            if request.steps is not None:
                # Steps with log history are retired, the rest are removed.
                cur.execute(
                    """
                    UPDATE workflow_steps SET retired = 1
                    WHERE workflow_id = ? AND retired = 0
                      AND id IN (SELECT step_id FROM execution_logs)
                    """,
                    (workflow_id,),
                )
                cur.execute(
                    "DELETE FROM workflow_steps WHERE workflow_id = ? AND retired = 0",
                    (workflow_id,),
                )
                for definition in request.steps:
                    self._insert_step(cur, workflow_id, definition)
            return True

        found = await asyncio.to_thread(self._run, _update)
        if not found:
            return None
        return await self.get_workflow(workflow_id)

    async def delete_workflow(self, workflow_id: int) -> bool:
        def _delete(cur: sqlite3.Cursor) -> bool:
            row = cur.execute(
                "SELECT id FROM workflows WHERE id = ?", (workflow_id,)
            ).fetchone()
            if not row:
                return False
            referenced = cur.execute(
                """
                SELECT COUNT(*) FROM execution_logs l
                JOIN workflow_steps s ON s.id = l.step_id
                WHERE s.workflow_id = ?
                """,
                (workflow_id,),
            ).fetchone()[0]
            if referenced:
                raise ReferentialIntegrityError(
                    f"Workflow {workflow_id} has steps referenced by execution logs"
                )
            cur.execute("DELETE FROM workflow_steps WHERE workflow_id = ?", (workflow_id,))
            cur.execute("DELETE FROM workflows WHERE id = ?", (workflow_id,))
            return True

        return await asyncio.to_thread(self._run, _delete)

    # ------------------------------------------------------------------
    # Executions
    async def create_execution(
        self, workflow_id: int, status: str = "pending"
    ) -> Execution:
        started_at = utcnow()
        execution_id = await asyncio.to_thread(
            self._execute,
            "INSERT INTO executions (workflow_id, status, started_at) VALUES (?, ?, ?)",
            workflow_id,
            status,
            started_at.isoformat(),
        )
        return Execution(
            id=execution_id,
            workflow_id=workflow_id,
            status=status,
            started_at=started_at,
        )

    async def update_execution_status(
        self,
        execution_id: int,
        status: str,
        completed_at: Optional[datetime] = None,
    ) -> None:
        await asyncio.to_thread(
            self._execute,
            "UPDATE executions SET status = ?, completed_at = ? WHERE id = ?",
            status,
            completed_at.isoformat() if completed_at else None,
            execution_id,
        )

    async def get_execution(self, execution_id: int) -> Execution | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT * FROM executions WHERE id = ?", execution_id
        )
        return self._row_to_execution(row) if row else None

    async def get_execution_detail(self, execution_id: int) -> ExecutionDetail | None:
        execution = await self.get_execution(execution_id)
        if execution is None:
            return None
        logs = await self.list_execution_logs(execution_id)
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT id, name, description, created_at FROM workflows WHERE id = ?",
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
        params: tuple[Any, ...] = ()
        if status is not None:
            query += " WHERE e.status = ?"
            params = (status,)
        query += " ORDER BY e.started_at DESC, e.id DESC"
        rows = await asyncio.to_thread(self._fetchall, query, *params)
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
        timestamp = utcnow()
        serialized = json.dumps(input_context, default=str) if input_context is not None else None
        log_id = await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO execution_logs
                (execution_id, step_id, status, input_context, attempt_number, timestamp)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            execution_id,
            step_id,
            status,
            serialized,
            attempt_number,
            timestamp.isoformat(),
        )
        return ExecutionLog(
            id=log_id,
            execution_id=execution_id,
            step_id=step_id,
            status=status,
            input_context=_json(serialized),
            attempt_number=attempt_number,
            timestamp=timestamp,
        )

    async def update_execution_log(self, log_id: int, **fields: Any) -> None:
        unknown = set(fields) - LOG_MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update log fields: {sorted(unknown)}")
        if not fields:
            return
        assignments = ", ".join(f"{key} = ?" for key in fields)
        await asyncio.to_thread(
            self._execute,
            f"UPDATE execution_logs SET {assignments} WHERE id = ?",
            *fields.values(),
            log_id,
        )

    async def list_execution_logs(self, execution_id: int) -> list[ExecutionLog]:
        rows = await asyncio.to_thread(
            self._fetchall,
            f"""
            SELECT {_LOG_COLUMNS} FROM execution_logs l
            LEFT JOIN workflow_steps s ON s.id = l.step_id
            WHERE l.execution_id = ? ORDER BY l.id
            """,
            execution_id,
        )
        return [self._row_to_log(r) for r in rows]
