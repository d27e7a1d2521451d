"""Workflow state service: the single reader and writer of workflow states."""

from __future__ import annotations

import logging
import time
import uuid
from typing import Optional

from ..constants import DEFAULT_STATE_MAX_AGE_SECONDS
from ..contracts import StepStatus, WorkflowExecution
from ..sessions import executable_steps
from .models import PauseReason, WorkflowState, WorkflowStepResult, utc_now_iso
from .repository import WorkflowStateStorage

logger = logging.getLogger(__name__)


class WorkflowStateService:
    """Create, advance, pause and resume persisted workflow states."""

    def __init__(self, storage: WorkflowStateStorage) -> None:
        self._storage = storage

    @property
    def storage(self) -> WorkflowStateStorage:
        return self._storage

    def new_workflow_state(
        self, execution: WorkflowExecution, workflow_path: str = ""
    ) -> WorkflowState:
        """Build a fresh ``pending`` state for ``execution`` without saving it."""
        return WorkflowState(
            execution_id=self._generate_execution_id(),
            workflow_path=workflow_path,
            workflow_name=execution.workflow.name,
            current_step=execution.current_step,
            total_steps=len(executable_steps(execution.workflow)),
            session_mappings=dict(execution.session_mappings),
            execution=execution,
        )

    async def create_workflow_state(
        self, execution: WorkflowExecution, workflow_path: str = ""
    ) -> WorkflowState:
        """Persist a fresh ``pending`` state for ``execution``."""
        state = self.new_workflow_state(execution, workflow_path)
        await self._storage.save_workflow_state(state)
        return state

    async def save_workflow_state(self, state: WorkflowState) -> WorkflowState:
        await self._storage.save_workflow_state(state)
        return state

    async def get_workflow_state(self, execution_id: str) -> WorkflowState | None:
        return await self._storage.load_workflow_state(execution_id)

    async def update_workflow_progress(
        self, state: WorkflowState, step_result: WorkflowStepResult
    ) -> WorkflowState:
        """Record ``step_result`` on ``state`` and persist it."""
        for i, existing in enumerate(state.completed_steps):
            if existing.step_index == step_result.step_index:
                state.completed_steps[i] = step_result
                break
        else:
            state.completed_steps.append(step_result)

        if step_result.status == "completed":
            if step_result.output_session and step_result.session_id:
                state.session_mappings[step_result.step_id] = step_result.session_id
            state.current_step = max(state.current_step, step_result.step_index + 1)
            if state.current_step >= state.total_steps:
                state.status = "completed"
                state.can_resume = False
            else:
                state.status = "running"
        elif step_result.status == "failed":
            state.status = "failed"
            state.can_resume = False
        elif step_result.status in ("timeout", "paused"):
            state.status = "paused"
            state.paused_at = utc_now_iso()
            state.pause_reason = (
                "timeout" if step_result.status == "timeout" else "manual"
            )
            state.can_resume = True
        elif step_result.status == "running":
            state.status = "running"

        await self._storage.save_workflow_state(state)
        return state

    async def mark_running(self, state: WorkflowState) -> WorkflowState:
        state.status = "running"
        await self._storage.save_workflow_state(state)
        return state

    async def advance_past_step(
        self, state: WorkflowState, step_index: int
    ) -> WorkflowState:
        """Move ``current_step`` beyond a step that was skipped."""
        state.current_step = max(state.current_step, step_index + 1)
        await self._storage.save_workflow_state(state)
        return state

    async def complete_workflow(self, state: WorkflowState) -> WorkflowState:
        state.status = "completed"
        state.can_resume = False
        await self._storage.save_workflow_state(state)
        return state

    async def fail_workflow(self, state: WorkflowState) -> WorkflowState:
        state.status = "failed"
        state.can_resume = False
        await self._storage.save_workflow_state(state)
        return state

    async def pause_workflow(
        self, state: WorkflowState, reason: PauseReason = "manual"
    ) -> WorkflowState | None:
        """Pause a pending or running workflow.

        Returns ``None`` when the state is not in a pausable status.
        """
        if state.status not in ("pending", "running"):
            return None
        state.status = "paused"
        state.paused_at = utc_now_iso()
        state.pause_reason = reason
        state.can_resume = reason != "error"
        await self._storage.save_workflow_state(state)
        return state

    async def resume_workflow(self, state: WorkflowState) -> WorkflowState | None:
        """Mark a paused state as running again.

        Returns ``None`` when the state cannot be resumed.
        """
        if not state.can_resume or state.status != "paused":
            return None
        state.status = "running"
        state.resumed_at = utc_now_iso()
        state.pause_reason = None
        await self._storage.save_workflow_state(state)
        return state

    async def get_resumable_workflows(self) -> list[WorkflowState]:
        states = await self._storage.list_workflow_states()
        return [s for s in states if s.can_resume and s.status == "paused"]

    async def delete_workflow_state(self, execution_id: str) -> None:
        await self._storage.delete_workflow_state(execution_id)

    async def cleanup_old_workflows(
        self, max_age_seconds: float = DEFAULT_STATE_MAX_AGE_SECONDS
    ) -> None:
        await self._storage.cleanup_old_states(max_age_seconds)

    # ------------------------------------------------------------------
    @staticmethod
    def create_step_result(
        step_index: int,
        step_id: str,
        session_id: Optional[str] = None,
        output_session: bool = False,
        resume_session: Optional[str] = None,
        status: StepStatus = "pending",
    ) -> WorkflowStepResult:
        return WorkflowStepResult(
            step_index=step_index,
            step_id=step_id,
            session_id=session_id,
            output_session=output_session,
            resume_session=resume_session,
            status=status,
        )

    @staticmethod
    def complete_step_result(
        step_result: WorkflowStepResult,
        success: bool,
        output: Optional[str] = None,
        error: Optional[str] = None,
        timed_out: bool = False,
        session_id: Optional[str] = None,
    ) -> WorkflowStepResult:
        """Return a finished copy of ``step_result``.

        A timed out attempt is recorded as ``timeout`` rather than ``failed``.
        """
        if success:
            status: StepStatus = "completed"
        elif timed_out:
            status = "timeout"
        else:
            status = "failed"
        return step_result.model_copy(
            update={
                "status": status,
                "end_time": utc_now_iso(),
                "output": output,
                "error": error,
                "session_id": session_id or step_result.session_id,
            }
        )

    @staticmethod
    def _generate_execution_id() -> str:
        return f"exec_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"
