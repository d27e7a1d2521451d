"""Session reference parsing and validation."""

from __future__ import annotations

import re
from typing import Iterator, List, Optional, Set, Tuple, Union

from .contracts import ExecutableStep, OpaqueStep, WorkflowDefinition
from .errors import SessionReferenceError, WorkflowValidationError

_BARE_REFERENCE = re.compile(r"^([a-zA-Z0-9_-]+)$")
_TEMPLATE_REFERENCE = re.compile(
    r"\$\{\{\s*steps\.([a-zA-Z0-9_-]+)\.outputs\.session_id\s*\}\}"
)


def parse_session_reference(value: str) -> Optional[str]:
    """Return the step id a ``resume_session`` value points at.

    Accepts a bare step id or the legacy
    ``${{ steps.<id>.outputs.session_id }}`` template. Returns ``None`` when
    the value is neither.
    """
    value = value.strip()
    bare = _BARE_REFERENCE.match(value)
    if bare:
        return bare.group(1)
    template = _TEMPLATE_REFERENCE.search(value)
    return template.group(1) if template else None


def is_session_template(value: str) -> bool:
    return "${{" in value


def iter_steps(
    definition: WorkflowDefinition,
) -> Iterator[Tuple[str, Union[ExecutableStep, OpaqueStep]]]:
    """Yield ``(job_name, step)`` for every step in declaration order."""
    for job_name, job in definition.jobs.items():
        for step in job.steps:
            yield job_name, step


def executable_steps(definition: WorkflowDefinition) -> List[ExecutableStep]:
    """Return the flattened list of executable steps without validating it."""
    return [
        step for _, step in iter_steps(definition) if isinstance(step, ExecutableStep)
    ]


def resolve_session_references(definition: WorkflowDefinition) -> List[ExecutableStep]:
    """Validate session references and return the executable step list.

    Raises:
        SessionReferenceError: If a ``resume_session`` value does not parse or
            does not name a step declared earlier in the workflow.
        WorkflowValidationError: For duplicate step ids, or a step that outputs
            its session without an id.
    """
    seen: Set[str] = set()
    executable: List[ExecutableStep] = []

    for _, step in iter_steps(definition):
        if isinstance(step, ExecutableStep):
            label = step.id or step.name or f"step-{len(executable)}"
            if step.output_session and not step.id:
                raise WorkflowValidationError(
                    f"Step '{label}' sets output_session but has no id"
                )
            if step.resume_session:
                target = parse_session_reference(step.resume_session)
                if target is None:
                    raise SessionReferenceError(
                        label,
                        step.resume_session,
                        f"Invalid session reference in step '{label}': "
                        f"{step.resume_session}",
                    )
                if target not in seen:
                    raise SessionReferenceError(label, target)
            executable.append(step)

        if step.id:
            if step.id in seen:
                raise WorkflowValidationError(f"Duplicate step id '{step.id}'")
            seen.add(step.id)

    return executable


def substitute_session_templates(template: str, session_mappings: dict) -> str:
    """Replace legacy session templates with mapped session ids.

    Templates without a mapping are left verbatim.
    """

    def replace(match: re.Match) -> str:
        return session_mappings.get(match.group(1)) or match.group(0)

    return _TEMPLATE_REFERENCE.sub(replace, template)
