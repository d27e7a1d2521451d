"""Persistence layer for claude-runner workflow states."""

from __future__ import annotations

from typing import Optional

from ..config import RunnerConfig, load_config
from .inmemory import InMemoryWorkflowStateStorage
from .models import WorkflowState, WorkflowStepResult, derive_workflow_status
from .repository import WorkflowStateStorage
from .service import WorkflowStateService
from .sqlite import SQLiteWorkflowStateStorage

_storage_instance: WorkflowStateStorage | None = None


def get_state_storage(
    database_url: Optional[str] = None, config: Optional[RunnerConfig] = None
) -> WorkflowStateStorage:
    """Factory function to obtain workflow state storage.

    The backend is selected based on ``database_url`` which can be provided
    explicitly, via environment variable ``CLAUDE_RUNNER_DATABASE_URL`` or from
    loaded configuration. When no database is configured, in-memory storage is
    returned.
    """

    global _storage_instance
    if _storage_instance is not None and database_url is None and config is None:
        return _storage_instance

    config = config or load_config()
    database_url = database_url or config.state.database_url
    max_states = config.state.max_states

    if not database_url:
        _storage_instance = InMemoryWorkflowStateStorage(max_states=max_states)
        return _storage_instance

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        _storage_instance = SQLiteWorkflowStateStorage(path, max_states=max_states)
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    return _storage_instance


def get_state_service(
    database_url: Optional[str] = None, config: Optional[RunnerConfig] = None
) -> WorkflowStateService:
    return WorkflowStateService(get_state_storage(database_url, config))


__all__ = [
    "WorkflowState",
    "WorkflowStepResult",
    "WorkflowStateStorage",
    "WorkflowStateService",
    "InMemoryWorkflowStateStorage",
    "SQLiteWorkflowStateStorage",
    "derive_workflow_status",
    "get_state_storage",
    "get_state_service",
]
