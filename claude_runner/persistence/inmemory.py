"""In-memory implementation of workflow state storage."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Dict

from ..constants import DEFAULT_MAX_STATES
from .models import WorkflowState
from .repository import WorkflowStateStorage


class InMemoryWorkflowStateStorage(WorkflowStateStorage):
    """Store workflow states in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self, max_states: int = DEFAULT_MAX_STATES) -> None:
        self.max_states = max_states
        self._states: Dict[str, WorkflowState] = {}

    # ------------------------------------------------------------------
    async def save_workflow_state(self, state: WorkflowState) -> None:
        self._states[state.execution_id] = state.model_copy(deep=True)
        if len(self._states) > self.max_states:
            newest_first = sorted(
                self._states.values(),
                key=lambda s: datetime.fromisoformat(s.start_time),
                reverse=True,
            )
            self._states = {
                s.execution_id: s for s in newest_first[: self.max_states]
            }

    async def load_workflow_state(self, execution_id: str) -> WorkflowState | None:
        state = self._states.get(execution_id)
        return state.model_copy(deep=True) if state else None

    async def list_workflow_states(self) -> list[WorkflowState]:
        return [s.model_copy(deep=True) for s in self._states.values()]

    async def delete_workflow_state(self, execution_id: str) -> None:
        self._states.pop(execution_id, None)

    async def cleanup_old_states(self, max_age_seconds: float) -> None:
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=max_age_seconds)
        self._states = {
            key: state
            for key, state in self._states.items()
            if datetime.fromisoformat(state.start_time) > cutoff
        }
