"""SQLite implementation of workflow state storage."""

from __future__ import annotations

import asyncio
import sqlite3
import time
from datetime import datetime
from pathlib import Path
from typing import Any

from ..constants import DEFAULT_MAX_STATES
from .models import WorkflowState
from .repository import WorkflowStateStorage


class SQLiteWorkflowStateStorage(WorkflowStateStorage):
    """Persist workflow states using SQLite."""

    def __init__(self, db_path: str | Path, max_states: int = DEFAULT_MAX_STATES):
        self.db_path = str(db_path)
        self.max_states = max_states
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_states (
                execution_id TEXT PRIMARY KEY,
                started_at REAL NOT NULL,
                status TEXT NOT NULL,
                data TEXT NOT NULL
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        self._conn.commit()

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    def _save(self, state: WorkflowState) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            INSERT INTO workflow_states (execution_id, started_at, status, data)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(execution_id) DO UPDATE SET
                started_at = excluded.started_at,
                status = excluded.status,
                data = excluded.data
            """,
            (
                state.execution_id,
                datetime.fromisoformat(state.start_time).timestamp(),
                state.status,
                state.model_dump_json(by_alias=True),
            ),
        )
        # keep only the newest ``max_states`` records
        cur.execute(
            """
            DELETE FROM workflow_states WHERE execution_id IN (
                SELECT execution_id FROM workflow_states
                ORDER BY started_at DESC
                LIMIT -1 OFFSET ?
            )
            """,
            (self.max_states,),
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Storage API
    async def save_workflow_state(self, state: WorkflowState) -> None:
        await asyncio.to_thread(self._save, state)

    async def load_workflow_state(self, execution_id: str) -> WorkflowState | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT data FROM workflow_states WHERE execution_id = ?",
            execution_id,
        )
        if not row:
            return None
        return WorkflowState.model_validate_json(row["data"])

    async def list_workflow_states(self) -> list[WorkflowState]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT data FROM workflow_states ORDER BY started_at",
        )
        return [WorkflowState.model_validate_json(r["data"]) for r in rows]

    async def delete_workflow_state(self, execution_id: str) -> None:
        await asyncio.to_thread(
            self._execute,
            "DELETE FROM workflow_states WHERE execution_id = ?",
            execution_id,
        )

    async def cleanup_old_states(self, max_age_seconds: float) -> None:
        await asyncio.to_thread(
            self._execute,
            "DELETE FROM workflow_states WHERE started_at <= ?",
            time.time() - max_age_seconds,
        )

    def close(self) -> None:
        self._conn.close()
