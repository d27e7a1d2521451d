"""Command line interface for running claude-runner workflows."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, Optional

import typer

from claude_runner import WorkflowEngine, get_executor, load_workflow
from claude_runner.config import load_config
from claude_runner.contracts import ExecutionResult, StepOutput
from claude_runner.errors import WorkflowStateError, WorkflowValidationError
from claude_runner.persistence import (
    InMemoryWorkflowStateStorage,
    WorkflowStateService,
    get_state_storage,
)
from claude_runner.progress_log import load_progress_log, log_path_for

app = typer.Typer(help="CLI for claude-runner workflows")

# Command groups
state_app = typer.Typer(help="Commands for inspecting saved workflow states")
log_app = typer.Typer(help="Commands for reading progress logs")

app.add_typer(state_app, name="state")
app.add_typer(log_app, name="log")


@app.callback()
def main() -> None:
    """claude-runner CLI entry point."""
    config = load_config()
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _build_engine(model: Optional[str] = None) -> WorkflowEngine:
    config = load_config()
    return WorkflowEngine(
        get_executor(config),
        WorkflowStateService(get_state_storage()),
        default_model=model or config.default_model,
    )


def _parse_inputs(values: List[str]) -> dict[str, str]:
    inputs: dict[str, str] = {}
    for value in values:
        key, sep, val = value.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"Expected key=value, got '{value}'")
        inputs[key] = val
    return inputs


def _echo_progress(step_id: str, status: str, output: Optional[StepOutput]) -> None:
    color = {
        "completed": typer.colors.GREEN,
        "failed": typer.colors.RED,
        "timeout": typer.colors.YELLOW,
        "skipped": typer.colors.BLUE,
    }.get(status)
    line = f"[{status}] {step_id}"
    if output is not None and output.session_id:
        line += f" (session {output.session_id})"
    typer.secho(line, fg=color)


def _report(result: ExecutionResult, engine: WorkflowEngine) -> None:
    if result.execution_id:
        typer.echo(f"Execution ID: {result.execution_id}")
    if result.success:
        typer.secho(
            f"Workflow completed ({result.steps_executed} steps executed)",
            fg=typer.colors.GREEN,
        )
        return
    if result.paused:
        typer.secho("Workflow paused; resume with: claude-runner resume <id>")
        _warn_if_not_persistent(engine)
        return
    if result.timed_out:
        typer.secho(
            f"Step timed out: {result.error}. Resume with: claude-runner resume "
            f"{result.execution_id}",
            fg=typer.colors.YELLOW,
        )
        _warn_if_not_persistent(engine)
    else:
        typer.secho(f"Workflow failed: {result.error}", fg=typer.colors.RED)
    raise typer.Exit(code=1)


def _warn_if_not_persistent(engine: WorkflowEngine) -> None:
    if isinstance(engine.state_service.storage, InMemoryWorkflowStateStorage):
        typer.secho(
            "Workflow state is kept in memory only and is lost when this command "
            "exits; set CLAUDE_RUNNER_DATABASE_URL=sqlite://<path> to resume it later",
            fg=typer.colors.YELLOW,
        )


@app.command("run")
def run(
    workflow_file: Path,
    input_values: List[str] = typer.Option(
        [], "--input", "-i", help="Workflow input as key=value (repeatable)"
    ),
    model: Optional[str] = typer.Option(None, help="Default model for steps"),
) -> None:
    """
    Execute a workflow file step by step.

    A progress log is written next to the workflow file as <name>.json.

    Example:
        claude-runner run ./workflows/claude-review.yml --input branch=main
    """
    try:
        workflow = load_workflow(workflow_file)
        engine = _build_engine(model)
        execution = engine.create_execution(workflow, _parse_inputs(input_values))
    except (OSError, WorkflowValidationError) as exc:
        typer.secho(f"Cannot run workflow: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    typer.echo(f"Running workflow: {workflow.name}")
    result = asyncio.run(
        engine.execute_workflow(
            execution,
            on_step_progress=_echo_progress,
            workflow_path=str(workflow_file),
        )
    )
    _report(result, engine)


@app.command("resume")
def resume(execution_id: str, model: Optional[str] = None) -> None:
    """Resume a paused or timed out execution from its saved state."""
    engine = _build_engine(model)
    try:
        result = asyncio.run(
            engine.resume_workflow(execution_id, on_step_progress=_echo_progress)
        )
    except WorkflowStateError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    _report(result, engine)


@app.command("validate")
def validate(workflow_file: Path) -> None:
    """Check a workflow file, including its session references."""
    try:
        workflow = load_workflow(workflow_file)
    except (OSError, WorkflowValidationError) as exc:
        typer.secho(f"Invalid: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.secho(f"Valid workflow: {workflow.name}", fg=typer.colors.GREEN)


@state_app.command("list")
def state_list() -> None:
    """List saved workflow states with their status."""
    service = WorkflowStateService(get_state_storage())
    states = asyncio.run(service.storage.list_workflow_states())
    if not states:
        typer.echo("No workflow states found")
        return
    for state in states:
        typer.echo(
            f"{state.execution_id}\t{state.workflow_name}\t{state.status}\t"
            f"{state.current_step}/{state.total_steps}"
        )


@state_app.command("resumable")
def state_resumable() -> None:
    """List workflow states that can be resumed."""
    service = WorkflowStateService(get_state_storage())
    states = asyncio.run(service.get_resumable_workflows())
    if not states:
        typer.echo("No resumable workflows")
        return
    for state in states:
        typer.echo(f"{state.execution_id}\t{state.workflow_name}\t{state.pause_reason}")


@state_app.command("show")
def state_show(execution_id: str) -> None:
    """Show a saved workflow state and its step history."""
    service = WorkflowStateService(get_state_storage())
    state = asyncio.run(service.get_workflow_state(execution_id))
    if state is None:
        typer.echo("Workflow state not found")
        raise typer.Exit(code=1)
    typer.echo(f"Workflow {state.workflow_name} ({state.execution_id}): {state.status}")
    typer.echo(
        f"Step {state.current_step}/{state.total_steps}, resumable: {state.can_resume}"
    )
    for step_id, session_id in state.session_mappings.items():
        typer.echo(f"  session {step_id} -> {session_id}")
    for step in state.completed_steps:
        typer.echo(
            f"- [{step.step_index}] {step.step_id}: {step.status}"
            + (f" ({step.error})" if step.error else "")
        )


@state_app.command("delete")
def state_delete(execution_id: str) -> None:
    """Delete a saved workflow state."""
    service = WorkflowStateService(get_state_storage())
    asyncio.run(service.delete_workflow_state(execution_id))
    typer.echo(f"Deleted {execution_id}")


@log_app.command("show")
def log_show(workflow_file: Path) -> None:
    """Print the progress log kept next to a workflow file."""
    try:
        log = load_progress_log(workflow_file)
    except ValueError as exc:
        typer.secho(f"Unreadable progress log: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    if log is None:
        typer.echo(f"No progress log at {log_path_for(workflow_file)}")
        raise typer.Exit(code=1)
    typer.echo(f"{log.workflow_name} [{log.execution_id}]: {log.status}")
    typer.echo(f"Last completed step: {log.last_completed_step} of {log.total_steps}")
    for step in log.steps:
        typer.echo(
            f"- [{step.step_index}] {step.step_name}: {step.status} "
            f"{step.duration_ms}ms session={step.session_id or '-'}"
        )


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
