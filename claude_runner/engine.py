"""Workflow execution engine for claude-runner."""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
import uuid
from dataclasses import dataclass
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Tuple,
    TypeVar,
)

from .constants import DEFAULT_MODEL
from .contracts import (
    ExecutableStep,
    ExecutionResult,
    StepExecutionResult,
    StepOutput,
    WorkflowDefinition,
    WorkflowExecution,
)
from .errors import WorkflowStateError, WorkflowValidationError
from .executors.base import StepExecutor, parse_cli_output
from .parser import resolve_variables, step_environment
from .persistence import (
    InMemoryWorkflowStateStorage,
    WorkflowState,
    WorkflowStateService,
    WorkflowStepResult,
)
from .progress_log import ProgressLogger
from .sessions import parse_session_reference, resolve_session_references

logger = logging.getLogger(__name__)

T = TypeVar("T")

StepProgressCallback = Callable[[str, str, Optional[StepOutput]], Any]
CompleteCallback = Callable[[], Any]
ErrorCallback = Callable[[str], Any]
CheckRunner = Callable[[str], Awaitable[bool]]


async def run_check_command(command: str) -> bool:
    """Run a step's ``check`` shell command; a zero exit status passes."""
    proc = await asyncio.create_subprocess_shell(
        command,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.DEVNULL,
    )
    return await proc.wait() == 0


@dataclass
class _Run:
    """Bookkeeping for one in-flight execution."""

    run_id: str
    execution: WorkflowExecution
    state: Optional[WorkflowState] = None
    progress_log: Optional[ProgressLogger] = None
    started: float = 0.0
    steps_executed: int = 0
    timed_out: bool = False
    pause_requested: bool = False
    cancel_requested: bool = False


class WorkflowEngine:
    """Drive workflow executions step by step through a step executor.

    Steps run strictly in order. After every step the resumable state is
    persisted and the progress log is appended before progress is reported and
    before the next step starts. Pause and cancel requests are honoured between
    steps.
    """

    def __init__(
        self,
        executor: Optional[StepExecutor],
        state_service: Optional[WorkflowStateService] = None,
        *,
        default_model: str = DEFAULT_MODEL,
        check_runner: Optional[CheckRunner] = None,
    ) -> None:
        self._executor = executor
        self._state_service = state_service or WorkflowStateService(
            InMemoryWorkflowStateStorage()
        )
        self._default_model = default_model
        self._check_runner = check_runner or run_check_command
        self._runs: Dict[str, _Run] = {}

    @property
    def state_service(self) -> WorkflowStateService:
        return self._state_service

    @property
    def current_execution_ids(self) -> List[str]:
        return list(self._runs)

    # ------------------------------------------------------------------
    def create_execution(
        self, workflow: WorkflowDefinition, inputs: Optional[Mapping[str, str]] = None
    ) -> WorkflowExecution:
        """Create a pending execution for ``workflow``.

        Raises:
            WorkflowValidationError: On unresolved session references or a
                missing required input.
        """
        resolve_session_references(workflow)

        resolved: Dict[str, str] = {}
        for name, declared in workflow.inputs.items():
            if declared.default is not None:
                resolved[name] = declared.default
        resolved.update(inputs or {})
        missing = [
            name
            for name, declared in workflow.inputs.items()
            if declared.required and name not in resolved
        ]
        if missing:
            raise WorkflowValidationError(
                f"Missing required input(s): {', '.join(missing)}"
            )
        return WorkflowExecution(workflow=workflow, inputs=resolved)

    async def execute_workflow(
        self,
        execution: WorkflowExecution,
        inputs: Optional[Mapping[str, str]] = None,
        on_step_progress: Optional[StepProgressCallback] = None,
        on_complete: Optional[CompleteCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        workflow_path: Optional[str] = None,
    ) -> ExecutionResult:
        """Run ``execution`` from its current step until it ends.

        When ``workflow_path`` is given a progress log is written next to it.
        Re-entering an execution that already made progress appends to the
        existing log.
        """
        steps = resolve_session_references(execution.workflow)
        if inputs:
            execution.inputs.update(inputs)

        run = _Run(
            run_id=execution.execution_id or str(uuid.uuid4()),
            execution=execution,
            started=time.monotonic(),
        )
        if self._executor is None:
            return await self._fail(run, "No step executor configured", on_error)

        run.state = await self._reentered_state(execution, workflow_path)
        reentered = run.state is not None
        if run.state is None:
            # kept in memory even when the save fails so the log still runs
            run.state = self._state_service.new_workflow_state(
                execution, workflow_path or ""
            )
            await self._persist(
                self._state_service.save_workflow_state(run.state),
                "create workflow state",
            )
        run.run_id = run.state.execution_id
        execution.execution_id = run.state.execution_id

        log_path = workflow_path or run.state.workflow_path
        if log_path:
            run.progress_log = ProgressLogger()
            run.progress_log.initialize_log(
                run.state,
                log_path,
                is_resume=reentered
                or execution.current_step > 0
                or bool(execution.outputs),
            )
        return await self._run(run, steps, on_step_progress, on_complete, on_error)

    async def resume_workflow(
        self,
        execution_id: str,
        on_step_progress: Optional[StepProgressCallback] = None,
        on_complete: Optional[CompleteCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> ExecutionResult:
        """Continue a paused or timed out execution from its saved state.

        Raises:
            WorkflowStateError: If the state is unknown or cannot be resumed.
        """
        state = await self._state_service.get_workflow_state(execution_id)
        if state is None or not state.can_resume or state.execution is None:
            raise WorkflowStateError(f"Cannot resume workflow: {execution_id}")
        if self._executor is None:
            run = _Run(
                run_id=execution_id,
                execution=state.execution,
                started=time.monotonic(),
            )
            return await self._fail(run, "No step executor configured", on_error)
        resumed = await self._state_service.resume_workflow(state)
        if resumed is None:
            raise WorkflowStateError(f"Failed to resume workflow: {execution_id}")

        execution = resumed.execution
        execution.execution_id = resumed.execution_id
        execution.current_step = max(execution.current_step, resumed.current_step)
        execution.session_mappings.update(resumed.session_mappings)
        execution.error = None
        steps = resolve_session_references(execution.workflow)

        run = _Run(
            run_id=resumed.execution_id,
            execution=execution,
            state=resumed,
            started=time.monotonic(),
        )
        if resumed.workflow_path:
            run.progress_log = ProgressLogger()
            run.progress_log.initialize_log(resumed, resumed.workflow_path, is_resume=True)
        return await self._run(run, steps, on_step_progress, on_complete, on_error)

    def request_pause(self, execution_id: Optional[str] = None) -> bool:
        """Ask running executions to pause before their next step."""
        runs = self._select_runs(execution_id)
        for run in runs:
            run.pause_requested = True
        return bool(runs)

    def request_cancel(self, execution_id: Optional[str] = None) -> bool:
        """Ask running executions to stop before their next step."""
        runs = self._select_runs(execution_id)
        for run in runs:
            run.cancel_requested = True
        return bool(runs)

    def pause_current_workflow(self) -> Optional[str]:
        """Request a pause of the active execution and return its id."""
        if not self._runs:
            return None
        run_id = next(iter(self._runs))
        self.request_pause(run_id)
        return run_id

    # ------------------------------------------------------------------
    async def _reentered_state(
        self, execution: WorkflowExecution, workflow_path: Optional[str]
    ) -> Optional[WorkflowState]:
        """Return the stored state of an execution that is being run again.

        A paused snapshot is marked resumed so it no longer shows up as
        resumable once the retry is under way.
        """
        if not execution.execution_id:
            return None
        state = await self._persist(
            self._state_service.get_workflow_state(execution.execution_id),
            "load workflow state",
        )
        if state is None:
            return None
        if state.can_resume and state.status == "paused":
            await self._persist(
                self._state_service.resume_workflow(state), "resume workflow state"
            )
        state.execution = execution
        if workflow_path:
            state.workflow_path = workflow_path
        state.current_step = max(state.current_step, execution.current_step)
        execution.current_step = state.current_step
        execution.session_mappings.update(state.session_mappings)
        execution.error = None
        return state

    async def _run(
        self,
        run: _Run,
        steps: List[ExecutableStep],
        on_step_progress: Optional[StepProgressCallback],
        on_complete: Optional[CompleteCallback],
        on_error: Optional[ErrorCallback],
    ) -> ExecutionResult:
        execution = run.execution
        self._runs[run.run_id] = run
        try:
            execution.status = "running"
            execution.error = None
            if run.state is not None:
                await self._persist(
                    self._state_service.mark_running(run.state), "mark running"
                )

            previous_success = True
            for index in range(execution.current_step, len(steps)):
                if run.cancel_requested:
                    return await self._fail(run, "Workflow execution cancelled", on_error)
                if run.pause_requested:
                    return await self._pause(run)

                step = steps[index]
                step_id = step.step_id(index)

                should_run, reason = await self._evaluate_condition(step, previous_success)
                if not should_run:
                    logger.info(f"Skipping step {step_id}: {reason}")
                    execution.current_step = index + 1
                    if run.state is not None:
                        await self._persist(
                            self._state_service.advance_past_step(run.state, index),
                            f"skip step {step_id}",
                        )
                    await _invoke(
                        on_step_progress, step_id, "skipped", StepOutput(result=reason)
                    )
                    previous_success = False
                    continue

                if not await self._run_step(run, step, index, on_step_progress):
                    await _invoke(on_error, execution.error)
                    return self._result(run, success=False)
                previous_success = True

            execution.status = "completed"
            if run.state is not None:
                await self._persist(
                    self._state_service.complete_workflow(run.state), "complete workflow"
                )
            if run.progress_log is not None:
                run.progress_log.finalize()
            logger.info(f"Workflow {execution.workflow.name} completed")
            await _invoke(on_complete)
            return self._result(run, success=True)
        finally:
            self._runs.pop(run.run_id, None)
            if run.progress_log is not None:
                run.progress_log.cleanup()

    async def _run_step(
        self,
        run: _Run,
        step: ExecutableStep,
        index: int,
        on_step_progress: Optional[StepProgressCallback],
    ) -> bool:
        """Execute one step; return ``False`` when the run must stop."""
        execution = run.execution
        step_id = step.step_id(index)
        resume_session_id = self._resume_target(execution, step, step_id)

        step_result = self._state_service.create_step_result(
            index,
            step_id,
            output_session=step.output_session,
            resume_session=step.resume_session,
            status="running",
        )
        if run.state is not None:
            await self._persist(
                self._state_service.update_workflow_progress(run.state, step_result),
                f"start step {step_id}",
            )
        await _invoke(on_step_progress, step_id, "running", None)

        prompt = resolve_variables(
            step.prompt,
            execution.inputs,
            step_environment(execution.workflow, step),
            execution.outputs,
        )
        model = step.model or self._default_model
        try:
            result = await self._executor.execute(prompt, model, resume_session_id)
        except Exception as exc:
            logger.error(f"Step {step_id} raised: {exc}")
            result = StepExecutionResult(
                success=False, error=str(exc) or type(exc).__name__
            )

        if not result.success:
            error = result.error or "Task execution failed"
            session_id = result.session_id
            if result.timed_out:
                session_id = session_id or resume_session_id
                if session_id:
                    execution.outputs[step_id] = StepOutput(
                        result=result.output or None, session_id=session_id
                    )
            execution.status = "failed"
            execution.error = error
            run.timed_out = result.timed_out
            finished = self._state_service.complete_step_result(
                step_result,
                False,
                output=error,
                error=error,
                timed_out=result.timed_out,
                session_id=session_id,
            )
            await self._record(run, finished)
            if run.progress_log is not None:
                run.progress_log.finalize()
            logger.error(f"Step {step_id} {finished.status}: {error}")
            await _invoke(
                on_step_progress,
                step_id,
                finished.status,
                StepOutput(result=error, session_id=session_id),
            )
            return False

        parsed_session_id, text = parse_cli_output(result.output)
        session_id = result.session_id or parsed_session_id
        output = StepOutput(result=text, session_id=session_id)
        execution.outputs[step_id] = output
        if step.output_session and session_id:
            execution.session_mappings[step_id] = session_id
        execution.current_step = index + 1

        finished = self._state_service.complete_step_result(
            step_result, True, output=text, session_id=session_id
        )
        await self._record(run, finished)
        run.steps_executed += 1
        logger.info(f"Step {step_id} completed")
        await _invoke(on_step_progress, step_id, "completed", output)
        return True

    async def _evaluate_condition(
        self, step: ExecutableStep, previous_success: bool
    ) -> Tuple[bool, Optional[str]]:
        if step.condition == "on_success" and not previous_success:
            return False, "Condition 'on_success' not met (previous step failed)"
        if step.condition == "on_failure" and previous_success:
            return False, "Condition 'on_failure' not met (previous step succeeded)"
        if step.check:
            try:
                passed = await self._check_runner(step.check)
            except OSError as exc:
                return False, f"Check command execution failed: {exc}"
            if not passed:
                return False, f"Check command failed: {step.check}"
        return True, None

    @staticmethod
    def _resume_target(
        execution: WorkflowExecution, step: ExecutableStep, step_id: str
    ) -> Optional[str]:
        # a session kept by an earlier timed out attempt of this very step
        preserved = execution.outputs.get(step_id)
        if preserved is not None and preserved.session_id:
            return preserved.session_id
        if not step.resume_session:
            return None
        target = parse_session_reference(step.resume_session)
        session_id = execution.session_mappings.get(target) if target else None
        if session_id is None:
            logger.warning(
                f"No session recorded for '{step.resume_session}', "
                f"step {step_id} starts a new session"
            )
        return session_id

    async def _record(self, run: _Run, step_result: WorkflowStepResult) -> None:
        if run.state is None:
            return
        await self._persist(
            self._state_service.update_workflow_progress(run.state, step_result),
            f"record step {step_result.step_id}",
        )
        if run.progress_log is not None:
            run.progress_log.update_step_progress(step_result, run.state)

    async def _pause(self, run: _Run) -> ExecutionResult:
        run.execution.status = "paused"
        if run.state is not None:
            await self._persist(
                self._state_service.pause_workflow(run.state, "manual"), "pause workflow"
            )
        if run.progress_log is not None:
            run.progress_log.update_workflow_status("paused")
        logger.info(
            f"Workflow {run.execution.workflow.name} paused "
            f"at step {run.execution.current_step}"
        )
        return self._result(run, success=False, paused=True)

    async def _fail(
        self, run: _Run, error: str, on_error: Optional[ErrorCallback]
    ) -> ExecutionResult:
        run.execution.status = "failed"
        run.execution.error = error
        if run.state is not None:
            await self._persist(
                self._state_service.fail_workflow(run.state), "fail workflow"
            )
        if run.progress_log is not None:
            run.progress_log.update_workflow_status("failed")
        logger.error(f"Workflow {run.execution.workflow.name} failed: {error}")
        await _invoke(on_error, error)
        return self._result(run, success=False)

    def _result(self, run: _Run, success: bool, paused: bool = False) -> ExecutionResult:
        execution = run.execution
        return ExecutionResult(
            workflow_id=execution.workflow.name,
            success=success,
            error=execution.error,
            steps_executed=run.steps_executed,
            outputs=dict(execution.outputs),
            execution_time_ms=int((time.monotonic() - run.started) * 1000),
            execution_id=execution.execution_id,
            paused=paused,
            timed_out=run.timed_out,
        )

    def _select_runs(self, execution_id: Optional[str]) -> List[_Run]:
        if execution_id is None:
            return list(self._runs.values())
        run = self._runs.get(execution_id)
        return [run] if run else []

    @staticmethod
    async def _persist(operation: Awaitable[T], what: str) -> Optional[T]:
        try:
            return await operation
        except Exception as exc:
            logger.error(f"Failed to persist workflow state ({what}): {exc}")
            return None


async def _invoke(callback: Optional[Callable[..., Any]], *args: Any) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result
