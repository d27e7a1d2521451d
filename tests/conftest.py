"""Shared test helpers: a scripted step executor and workflow builders."""

from typing import Callable, List, Optional, Union

import pytest

from claude_runner.contracts import StepExecutionResult
from claude_runner.executors.base import StepExecutor
from claude_runner.parser import parse_workflow

ScriptEntry = Union[StepExecutionResult, Exception, Callable[[], StepExecutionResult]]


class ScriptedExecutor(StepExecutor):
    """Return canned results in order and remember every call."""

    def __init__(self, script: List[ScriptEntry]):
        self.script = list(script)
        self.calls: List[dict] = []

    async def execute(
        self, prompt: str, model: str, resume_session_id: Optional[str] = None
    ) -> StepExecutionResult:
        self.calls.append(
            {"prompt": prompt, "model": model, "resume_session_id": resume_session_id}
        )
        entry = self.script.pop(0)
        if isinstance(entry, Exception):
            raise entry
        if callable(entry):
            return entry()
        return entry


def ok(session_id: Optional[str] = None, output: str = "done") -> StepExecutionResult:
    return StepExecutionResult(success=True, output=output, session_id=session_id)


def claude_step(step_id=None, prompt="do work", **with_):
    step = {"uses": "org/claude-pipeline-action@v1", "with": {"prompt": prompt, **with_}}
    if step_id is not None:
        step["id"] = step_id
    return step


def make_workflow(*steps, name="test-workflow", **extra):
    job = {"runs-on": "ubuntu-latest", "steps": list(steps)}
    return parse_workflow({"name": name, "jobs": {"main": job}, **extra})


@pytest.fixture(autouse=True)
def _reset_storage_instance():
    import claude_runner.persistence as persistence

    persistence._storage_instance = None
    yield
    persistence._storage_instance = None
