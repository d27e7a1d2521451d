"""Data models for persisted workflow state."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Literal, Optional

from pydantic import BaseModel, Field

from ..contracts import StepStatus, WorkflowExecution

WorkflowStatus = Literal["pending", "running", "paused", "completed", "failed"]
PauseReason = Literal["manual", "rate_limit", "error", "timeout"]

TERMINAL_STEP_STATUSES = ("completed", "failed", "timeout", "paused")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class WorkflowStepResult(BaseModel):
    """Outcome of one step attempt."""

    step_index: int
    step_id: str
    session_id: Optional[str] = None
    output_session: bool = False
    resume_session: Optional[str] = None
    status: StepStatus = "pending"
    start_time: str = Field(default_factory=utc_now_iso)
    end_time: Optional[str] = None
    output: Optional[str] = None
    error: Optional[str] = None


class WorkflowState(BaseModel):
    """Resumable snapshot of a workflow execution."""

    execution_id: str
    workflow_path: str = ""
    workflow_name: str
    start_time: str = Field(default_factory=utc_now_iso)
    paused_at: Optional[str] = None
    resumed_at: Optional[str] = None
    current_step: int = 0
    total_steps: int = 0
    status: WorkflowStatus = "pending"
    session_mappings: dict[str, str] = Field(default_factory=dict)
    completed_steps: list[WorkflowStepResult] = Field(default_factory=list)
    execution: Optional[WorkflowExecution] = None
    pause_reason: Optional[PauseReason] = None
    can_resume: bool = True


def derive_workflow_status(statuses: Iterable[str], total_steps: int) -> WorkflowStatus:
    """Derive the overall workflow status from step outcomes.

    Any failed step fails the workflow. Otherwise a timed out or paused step
    leaves it paused, since both can be resumed. The workflow is completed once
    every step has completed, and running in every other case.
    """
    statuses = list(statuses)
    if "failed" in statuses:
        return "failed"
    if "timeout" in statuses or "paused" in statuses:
        return "paused"
    if statuses.count("completed") == total_steps:
        return "completed"
    return "running"
