"""Storage abstraction for workflow state persistence."""

from __future__ import annotations

from typing import Protocol

from .models import WorkflowState


class WorkflowStateStorage(Protocol):
    """Protocol for workflow state persistence backends."""

    async def save_workflow_state(self, state: WorkflowState) -> None:
        """Insert or replace a state, evicting the oldest beyond the limit."""

    async def load_workflow_state(self, execution_id: str) -> WorkflowState | None:
        """Retrieve a state by execution id."""

    async def list_workflow_states(self) -> list[WorkflowState]:
        """Return all retained states."""

    async def delete_workflow_state(self, execution_id: str) -> None:
        """Remove a state."""

    async def cleanup_old_states(self, max_age_seconds: float) -> None:
        """Drop states started more than ``max_age_seconds`` ago."""
