"""Exception types raised by claude-runner."""

from __future__ import annotations

from typing import Optional


class ClaudeRunnerError(Exception):
    """Base class for claude-runner errors."""


class WorkflowValidationError(ClaudeRunnerError, ValueError):
    """Raised when a workflow definition cannot be executed as written."""


class SessionReferenceError(WorkflowValidationError):
    """A ``resume_session`` value that does not point at an earlier step."""

    def __init__(self, step_id: str, reference: str, message: Optional[str] = None):
        self.step_id = step_id
        self.reference = reference
        super().__init__(
            message or f"Step '{step_id}' references unknown step '{reference}'"
        )


class WorkflowStateError(ClaudeRunnerError):
    """Raised when a persisted workflow state cannot be used as requested."""
