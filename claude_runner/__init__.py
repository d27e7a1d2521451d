"""claude-runner: resumable multi-step pipelines for the claude CLI."""

from .contracts import (
    ExecutableStep,
    ExecutionResult,
    OpaqueStep,
    StepExecutionResult,
    StepOutput,
    WorkflowDefinition,
    WorkflowExecution,
)
from .engine import WorkflowEngine
from .errors import SessionReferenceError, WorkflowStateError, WorkflowValidationError
from .executors import ClaudeCliExecutor, StepExecutor, get_executor
from .parser import load_workflow, parse_yaml
from .persistence import WorkflowStateService, get_state_service, get_state_storage
from .progress_log import ProgressLogger
from .sessions import parse_session_reference, resolve_session_references

__version__ = "0.1.0"
__all__ = [
    "ClaudeCliExecutor",
    "ExecutableStep",
    "ExecutionResult",
    "OpaqueStep",
    "ProgressLogger",
    "SessionReferenceError",
    "StepExecutionResult",
    "StepExecutor",
    "StepOutput",
    "WorkflowDefinition",
    "WorkflowEngine",
    "WorkflowExecution",
    "WorkflowStateError",
    "WorkflowStateService",
    "WorkflowValidationError",
    "get_executor",
    "get_state_service",
    "get_state_storage",
    "load_workflow",
    "parse_session_reference",
    "parse_yaml",
    "resolve_session_references",
]
