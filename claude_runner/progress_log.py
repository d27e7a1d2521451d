"""JSON progress log written next to the workflow file.

The log is an audit trail of terminal step outcomes. It is separate from the
resumable ``WorkflowState`` and survives resumes: a resumed run appends to the
existing ``steps`` array instead of starting a new one.
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, ValidationError

from .contracts import ExecutableStep
from .persistence.models import (
    TERMINAL_STEP_STATUSES,
    WorkflowState,
    WorkflowStepResult,
    derive_workflow_status,
    utc_now_iso,
)
from .sessions import (
    executable_steps,
    is_session_template,
    substitute_session_templates,
)

logger = logging.getLogger(__name__)

LogStatus = Literal["running", "paused", "completed", "failed"]

_path_locks: Dict[str, threading.Lock] = {}
_path_locks_guard = threading.Lock()


def _lock_for(path: Path) -> threading.Lock:
    with _path_locks_guard:
        return _path_locks.setdefault(str(path.resolve()), threading.Lock())


def log_path_for(workflow_path: str | Path) -> Path:
    """Return the progress log path for a workflow file."""
    workflow_path = Path(workflow_path)
    return workflow_path.parent / f"{workflow_path.stem}.json"


class ProgressLogStep(BaseModel):
    """One terminal step outcome."""

    step_index: int
    step_id: str
    step_name: str
    status: Literal["completed", "failed", "timeout", "paused"]
    start_time: str
    end_time: str
    duration_ms: int
    output: str = ""
    session_id: str = ""
    output_session: bool = False
    resume_session: Optional[str] = None


class ProgressLog(BaseModel):
    """Document stored in ``<workflow>.json``."""

    workflow_name: str
    workflow_file: str
    execution_id: str
    start_time: str
    last_update_time: str
    status: LogStatus = "running"
    last_completed_step: int = -1
    total_steps: int = 0
    steps: List[ProgressLogStep] = Field(default_factory=list)

    def to_json(self) -> str:
        return json.dumps(self.model_dump(exclude_none=True), indent=2, ensure_ascii=False)


def load_progress_log(workflow_path: str | Path) -> ProgressLog | None:
    """Read the progress log for ``workflow_path`` if one exists."""
    path = log_path_for(workflow_path)
    if not path.exists():
        return None
    return ProgressLog.model_validate_json(path.read_text(encoding="utf-8"))


def _duration_ms(start: str, end: str) -> int:
    delta = datetime.fromisoformat(end) - datetime.fromisoformat(start)
    return round(delta.total_seconds() * 1000)


class ProgressLogger:
    """Maintain the JSON progress log of one workflow run.

    Every mutating call rewrites the whole document. Write failures are logged
    and swallowed; the in-memory log stays authoritative for the rest of the
    run.
    """

    def __init__(self) -> None:
        self._log_path: Optional[Path] = None
        self._log: Optional[ProgressLog] = None

    @property
    def log_file_path(self) -> Optional[Path]:
        return self._log_path

    @property
    def current_log(self) -> Optional[ProgressLog]:
        return self._log

    def initialize_log(
        self, state: WorkflowState, workflow_path: str | Path, is_resume: bool = False
    ) -> None:
        """Open the log for a new run, or reopen it when resuming."""
        self._log_path = log_path_for(workflow_path)
        now = utc_now_iso()

        if is_resume:
            existing = self._load_existing()
            if existing is not None:
                existing.last_update_time = now
                existing.status = "running"
                self._log = existing
                self._write()
                return
            logger.warning(
                f"Could not load existing progress log {self._log_path}, creating new one"
            )

        self._log = ProgressLog(
            workflow_name=state.workflow_name or Path(workflow_path).stem,
            workflow_file=Path(workflow_path).name,
            execution_id=datetime.now().strftime("%Y%m%d-%H%M%S"),
            start_time=now,
            last_update_time=now,
            status="running",
            last_completed_step=-1,
            total_steps=state.total_steps,
            steps=[],
        )
        self._write()

    def update_step_progress(
        self, step_result: WorkflowStepResult, state: WorkflowState
    ) -> None:
        """Append a terminal step outcome and refresh the workflow status."""
        if self._log is None:
            return

        if step_result.status in TERMINAL_STEP_STATUSES:
            now = utc_now_iso()
            start_time = step_result.start_time or now
            end_time = step_result.end_time or now

            step = self._find_step(state, step_result.step_index)
            step_name = (step.name if step else None) or (
                f"Step {step_result.step_index + 1}"
            )
            output_session = step.output_session if step else step_result.output_session
            resume_session = step.resume_session if step else step_result.resume_session
            if resume_session and is_session_template(resume_session):
                resume_session = substitute_session_templates(
                    resume_session, state.session_mappings
                )

            self._log.steps.append(
                ProgressLogStep(
                    step_index=step_result.step_index,
                    step_id=step_result.step_id,
                    step_name=step_name,
                    status=step_result.status,
                    start_time=start_time,
                    end_time=end_time,
                    duration_ms=_duration_ms(start_time, end_time),
                    output=step_result.output or "",
                    session_id=step_result.session_id or "",
                    output_session=output_session,
                    resume_session=resume_session or None,
                )
            )
            if step_result.status == "completed":
                self._log.last_completed_step = max(
                    self._log.last_completed_step, step_result.step_index
                )

        self._log.last_update_time = utc_now_iso()
        self._refresh_status(state)
        self._write()

    def update_workflow_status(self, status: LogStatus) -> None:
        if self._log is None:
            return
        self._log.status = status
        self._log.last_update_time = utc_now_iso()
        self._write()

    def finalize(self) -> None:
        """Promote a lingering ``running`` status to ``completed``."""
        if self._log is None:
            return
        if self._log.status == "running":
            self._log.status = "completed"
        self._write()

    def cleanup(self) -> None:
        """Drop the in-memory log; the file is left as is."""
        self._log_path = None
        self._log = None

    # ------------------------------------------------------------------
    def _load_existing(self) -> Optional[ProgressLog]:
        try:
            return ProgressLog.model_validate_json(
                self._log_path.read_text(encoding="utf-8")
            )
        except (OSError, ValueError, ValidationError):
            return None

    def _write(self) -> None:
        if self._log_path is None or self._log is None:
            return
        content = self._log.to_json()
        try:
            with _lock_for(self._log_path):
                self._log_path.parent.mkdir(parents=True, exist_ok=True)
                self._log_path.write_text(content, encoding="utf-8")
        except OSError as exc:
            logger.error(f"Failed to write progress log {self._log_path}: {exc}")

    def _refresh_status(self, state: WorkflowState) -> None:
        if state.status in ("completed", "failed"):
            self._log.status = state.status
            return
        self._log.status = derive_workflow_status(
            [step.status for step in self._log.steps], self._log.total_steps
        )

    @staticmethod
    def _find_step(state: WorkflowState, step_index: int) -> Optional[ExecutableStep]:
        if state.execution is None:
            return None
        steps = executable_steps(state.execution.workflow)
        if 0 <= step_index < len(steps):
            return steps[step_index]
        return None

