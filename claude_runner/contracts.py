"""Core workflow contracts for claude-runner.

Workflow files follow the GitHub Actions layout: named jobs holding ordered
steps. Steps that use the ``claude-pipeline-action`` are executable and invoke
the ``claude`` CLI; every other step is carried along untouched.
"""

from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    model_validator,
)

from .constants import CLAUDE_ACTION

ConditionType = Literal["always", "on_success", "on_failure"]
ExecutionStatus = Literal["pending", "running", "paused", "completed", "failed"]
StepStatus = Literal["pending", "running", "completed", "failed", "timeout", "paused"]


class WorkflowInput(BaseModel):
    """Declared workflow input."""

    model_config = ConfigDict(frozen=True)

    description: Optional[str] = None
    required: bool = False
    default: Optional[str] = None
    type: Literal["string", "boolean", "choice"] = "string"
    options: Optional[List[str]] = None


class ClaudeStepInputs(BaseModel):
    """The ``with`` block of an executable step."""

    model_config = ConfigDict(frozen=True, extra="allow")

    prompt: str
    model: Optional[str] = None
    output_session: bool = False
    resume_session: Optional[str] = None
    check: Optional[str] = None
    condition: Optional[ConditionType] = None
    allow_all_tools: Optional[bool] = None
    working_directory: Optional[str] = None


class ExecutableStep(BaseModel):
    """A step that invokes the ``claude`` CLI."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: Optional[str] = None
    name: Optional[str] = None
    uses: str
    with_: ClaudeStepInputs = Field(alias="with")
    env: Dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _require_prompt(self) -> "ExecutableStep":
        if not self.with_.prompt.strip():
            raise ValueError(f"Claude step '{self.label}' must have a prompt")
        return self

    @property
    def label(self) -> str:
        return self.name or self.id or "unnamed"

    @property
    def prompt(self) -> str:
        return self.with_.prompt

    @property
    def model(self) -> Optional[str]:
        return self.with_.model

    @property
    def output_session(self) -> bool:
        return self.with_.output_session

    @property
    def resume_session(self) -> Optional[str]:
        return self.with_.resume_session

    @property
    def check(self) -> Optional[str]:
        return self.with_.check

    @property
    def condition(self) -> Optional[ConditionType]:
        return self.with_.condition

    def step_id(self, index: int) -> str:
        """Return the id used to address this step at ``index``."""
        return self.id or f"step-{index}"


class OpaqueStep(BaseModel):
    """Any step the engine does not execute (shell ``run`` steps, other actions)."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="allow")

    id: Optional[str] = None
    name: Optional[str] = None
    uses: Optional[str] = None
    run: Optional[str] = None
    with_: Optional[Dict[str, Any]] = Field(default=None, alias="with")


def _step_kind(value: Any) -> str:
    if isinstance(value, dict):
        uses = value.get("uses")
    else:
        uses = getattr(value, "uses", None)
    if isinstance(uses, str) and CLAUDE_ACTION in uses:
        return "executable"
    return "opaque"


Step = Annotated[
    Union[
        Annotated[ExecutableStep, Tag("executable")],
        Annotated[OpaqueStep, Tag("opaque")],
    ],
    Discriminator(_step_kind),
]


class Job(BaseModel):
    """Named, ordered list of steps."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: Optional[str] = None
    runs_on: Optional[str] = Field(default=None, alias="runs-on")
    env: Dict[str, str] = Field(default_factory=dict)
    steps: List[Step] = Field(default_factory=list)


class WorkflowDefinition(BaseModel):
    """Declarative workflow, immutable once loaded."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    env: Dict[str, str] = Field(default_factory=dict)
    inputs: Dict[str, WorkflowInput] = Field(default_factory=dict)
    jobs: Dict[str, Job] = Field(default_factory=dict)


class StepOutput(BaseModel):
    """Output recorded for a step in the running execution."""

    model_config = ConfigDict(extra="allow")

    result: Optional[str] = None
    session_id: Optional[str] = None


class WorkflowExecution(BaseModel):
    """Runtime state of one run of a workflow, owned by the engine."""

    workflow: WorkflowDefinition
    inputs: Dict[str, str] = Field(default_factory=dict)
    outputs: Dict[str, StepOutput] = Field(default_factory=dict)
    current_step: int = 0
    status: ExecutionStatus = "pending"
    error: Optional[str] = None
    execution_id: Optional[str] = None
    session_mappings: Dict[str, str] = Field(default_factory=dict)


class StepExecutionResult(BaseModel):
    """Result of a single step executor invocation."""

    success: bool
    output: str = ""
    session_id: Optional[str] = None
    error: Optional[str] = None
    timed_out: bool = False


class ExecutionResult(BaseModel):
    """Outcome of ``WorkflowEngine.execute_workflow``."""

    workflow_id: str
    success: bool
    error: Optional[str] = None
    steps_executed: int = 0
    outputs: Dict[str, StepOutput] = Field(default_factory=dict)
    execution_time_ms: int = 0
    execution_id: Optional[str] = None
    paused: bool = False
    timed_out: bool = False
