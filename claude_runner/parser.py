"""Loading, validating and templating workflow files."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from pydantic import ValidationError

from .contracts import ExecutableStep, StepOutput, WorkflowDefinition
from .errors import WorkflowValidationError
from .sessions import resolve_session_references

_INPUT_VAR = re.compile(r"\$\{\{\s*inputs\.(\w+)\s*\}\}")
_ENV_VAR = re.compile(r"\$\{\{\s*env\.(\w+)\s*\}\}")
_STEP_OUTPUT_VAR = re.compile(r"\$\{\{\s*steps\.([\w-]+)\.outputs\.(\w+)\s*\}\}")


def parse_workflow(data: Mapping[str, Any]) -> WorkflowDefinition:
    """Build and validate a workflow definition from parsed YAML data."""
    if not isinstance(data, Mapping):
        raise WorkflowValidationError("Workflow document must be a mapping")

    # YAML 1.1 reads the ``on`` trigger key as boolean True
    data = {k: v for k, v in data.items() if k not in (True, "on")}
    if not data.get("name"):
        raise WorkflowValidationError("Workflow must have a name")
    jobs = data.get("jobs")
    if not jobs:
        raise WorkflowValidationError("Workflow must have at least one job")
    for job_name, job in jobs.items():
        if not isinstance(job, Mapping) or not job.get("steps"):
            raise WorkflowValidationError(f"Job '{job_name}' must have at least one step")

    try:
        workflow = WorkflowDefinition.model_validate(data)
    except ValidationError as exc:
        raise WorkflowValidationError(f"Invalid workflow: {exc}") from exc

    resolve_session_references(workflow)
    return workflow


def parse_yaml(content: str) -> WorkflowDefinition:
    """Parse workflow YAML text."""
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as exc:
        raise WorkflowValidationError(f"Failed to parse workflow YAML: {exc}") from exc
    return parse_workflow(data or {})


def load_workflow(path: str | Path) -> WorkflowDefinition:
    """Load a workflow from a YAML file."""
    return parse_yaml(Path(path).read_text(encoding="utf-8"))


def to_yaml(workflow: WorkflowDefinition) -> str:
    """Serialize a workflow back to YAML."""
    data = workflow.model_dump(by_alias=True, exclude_none=True, exclude_defaults=True)
    return yaml.safe_dump(data, sort_keys=False, indent=2, width=float("inf"))


def resolve_variables(
    template: str,
    inputs: Optional[Mapping[str, str]] = None,
    env: Optional[Mapping[str, str]] = None,
    outputs: Optional[Mapping[str, StepOutput]] = None,
) -> str:
    """Substitute ``${{ inputs.* }}``, ``${{ env.* }}`` and step output references.

    Unknown names resolve to the empty string.
    """
    resolved = template
    if inputs is not None:
        resolved = _INPUT_VAR.sub(lambda m: str(inputs.get(m.group(1), "")), resolved)
    if env is not None:
        resolved = _ENV_VAR.sub(lambda m: str(env.get(m.group(1), "")), resolved)
    if outputs is not None:

        def step_output(match: re.Match) -> str:
            output = outputs.get(match.group(1))
            if output is None:
                return ""
            value = output.model_dump().get(match.group(2))
            return "" if value is None else str(value)

        resolved = _STEP_OUTPUT_VAR.sub(step_output, resolved)
    return resolved


def step_environment(workflow: WorkflowDefinition, step: ExecutableStep) -> Dict[str, str]:
    """Merge workflow, job and step level ``env`` for ``step``."""
    env: Dict[str, str] = dict(workflow.env)
    for job in workflow.jobs.values():
        if any(s is step for s in job.steps):
            env.update(job.env)
            break
    env.update(step.env)
    return env
