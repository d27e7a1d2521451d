import asyncio
import textwrap

import pytest
from typer.testing import CliRunner

import claude_runner.cli as cli
import claude_runner.persistence as persistence
from claude_runner.cli import app
from claude_runner.contracts import StepExecutionResult
from claude_runner.persistence import InMemoryWorkflowStateStorage
from conftest import ScriptedExecutor, ok

WORKFLOW = textwrap.dedent(
    """
    name: Fix Issue
    inputs:
      issue:
        required: true
    jobs:
      fix:
        steps:
          - id: plan
            uses: anthropics/claude-pipeline-action@v1
            with:
              prompt: Plan a fix for issue ${{ inputs.issue }}
              output_session: true
          - id: implement
            uses: anthropics/claude-pipeline-action@v1
            with:
              prompt: Implement the plan
              resume_session: plan
    """
)


@pytest.fixture
def repo():
    storage = InMemoryWorkflowStateStorage()
    persistence._storage_instance = storage
    return storage


@pytest.fixture
def workflow_file(tmp_path, monkeypatch):
    monkeypatch.setenv("CLAUDE_RUNNER_CONFIG", str(tmp_path / "missing.yaml"))
    path = tmp_path / "fix-issue.yml"
    path.write_text(WORKFLOW)
    return path


def _use_executor(monkeypatch, executor):
    monkeypatch.setattr(cli, "get_executor", lambda config=None: executor)
    return executor


def test_run_executes_workflow_and_writes_log(repo, workflow_file, monkeypatch):
    executor = _use_executor(monkeypatch, ScriptedExecutor([ok("s-1"), ok("s-1")]))

    runner = CliRunner()
    result = runner.invoke(app, ["run", str(workflow_file), "--input", "issue=42"])

    assert result.exit_code == 0, result.stdout
    assert "Running workflow: Fix Issue" in result.stdout
    assert "[completed] implement (session s-1)" in result.stdout
    assert "Workflow completed (2 steps executed)" in result.stdout
    assert "kept in memory only" not in result.stdout
    assert executor.calls[0]["prompt"] == "Plan a fix for issue 42"
    assert executor.calls[1]["resume_session_id"] == "s-1"
    assert workflow_file.with_suffix(".json").exists()

    states = asyncio.run(repo.list_workflow_states())
    assert [s.status for s in states] == ["completed"]

    listed = runner.invoke(app, ["state", "list"])
    assert listed.exit_code == 0
    assert states[0].execution_id in listed.stdout

    shown = runner.invoke(app, ["log", "show", str(workflow_file)])
    assert shown.exit_code == 0
    assert "Fix Issue" in shown.stdout
    assert "Last completed step: 1 of 2" in shown.stdout


def test_run_requires_declared_inputs(repo, workflow_file, monkeypatch):
    executor = _use_executor(monkeypatch, ScriptedExecutor([]))

    result = CliRunner().invoke(app, ["run", str(workflow_file)])

    assert result.exit_code == 1
    assert "Missing required input(s): issue" in result.stdout
    assert executor.calls == []


def test_timed_out_run_can_be_resumed(repo, workflow_file, monkeypatch):
    timed_out = StepExecutionResult(
        success=False, timed_out=True, session_id="s-2", error="Step timed out"
    )
    executor = _use_executor(monkeypatch, ScriptedExecutor([ok("s-1"), timed_out]))
    runner = CliRunner()

    result = runner.invoke(app, ["run", str(workflow_file), "-i", "issue=7"])
    assert result.exit_code == 1
    assert "Step timed out" in result.stdout
    assert "kept in memory only" in result.stdout

    execution_id = asyncio.run(repo.list_workflow_states())[0].execution_id
    resumable = runner.invoke(app, ["state", "resumable"])
    assert execution_id in resumable.stdout
    assert "timeout" in resumable.stdout

    shown = runner.invoke(app, ["state", "show", execution_id])
    assert shown.exit_code == 0
    assert "session plan -> s-1" in shown.stdout
    assert "implement: timeout" in shown.stdout

    executor.script.append(ok("s-2"))
    resumed = runner.invoke(app, ["resume", execution_id])
    assert resumed.exit_code == 0, resumed.stdout
    assert executor.calls[-1]["resume_session_id"] == "s-2"

    again = runner.invoke(app, ["resume", execution_id])
    assert again.exit_code == 1
    assert "Cannot resume workflow" in again.stdout


def test_validate(repo, workflow_file, tmp_path):
    runner = CliRunner()

    valid = runner.invoke(app, ["validate", str(workflow_file)])
    assert valid.exit_code == 0
    assert "Valid workflow: Fix Issue" in valid.stdout

    broken = tmp_path / "broken.yml"
    broken.write_text(WORKFLOW.replace("resume_session: plan", "resume_session: ghost"))
    invalid = runner.invoke(app, ["validate", str(broken)])
    assert invalid.exit_code == 1
    assert "ghost" in invalid.stdout


def test_state_show_and_delete(repo, workflow_file, monkeypatch):
    _use_executor(monkeypatch, ScriptedExecutor([ok("s-1"), ok("s-1")]))
    runner = CliRunner()
    runner.invoke(app, ["run", str(workflow_file), "-i", "issue=1"])
    execution_id = asyncio.run(repo.list_workflow_states())[0].execution_id

    deleted = runner.invoke(app, ["state", "delete", execution_id])
    assert deleted.exit_code == 0

    missing = runner.invoke(app, ["state", "show", execution_id])
    assert missing.exit_code == 1
    assert "Workflow state not found" in missing.stdout


def test_log_show_without_log(workflow_file):
    result = CliRunner().invoke(app, ["log", "show", str(workflow_file)])
    assert result.exit_code == 1
    assert "No progress log" in result.stdout
