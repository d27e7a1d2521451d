"""Step executor backed by the ``claude`` command line tool."""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import List, Optional

from ..constants import DEFAULT_MODEL, RATE_LIMIT_TIMEOUT_SECONDS
from ..contracts import StepExecutionResult
from .base import StepExecutor, parse_cli_output

logger = logging.getLogger(__name__)

RATE_LIMIT_PATTERN = re.compile(r"Claude AI usage limit reached\|(\d+)")


@dataclass
class RateLimitInfo:
    reset_at: float
    wait_seconds: float

    @property
    def exceeds_timeout(self) -> bool:
        return self.wait_seconds > RATE_LIMIT_TIMEOUT_SECONDS


def detect_rate_limit(text: str, now: Optional[float] = None) -> Optional[RateLimitInfo]:
    """Return rate limit details when ``text`` carries the usage limit marker."""
    match = RATE_LIMIT_PATTERN.search(text)
    if not match:
        return None
    reset_at = float(match.group(1))
    now = time.time() if now is None else now
    return RateLimitInfo(reset_at=reset_at, wait_seconds=max(0.0, reset_at - now))


class ClaudeCliExecutor(StepExecutor):
    """Run workflow steps through ``claude -p``."""

    def __init__(
        self,
        command: str = "claude",
        working_directory: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        allow_all_tools: bool = False,
        max_rate_limit_retries: int = 3,
        max_rate_limit_wait_seconds: float = 30 * 60,
    ) -> None:
        self.command = command
        self.working_directory = working_directory
        self.timeout_seconds = timeout_seconds
        self.allow_all_tools = allow_all_tools
        self.max_rate_limit_retries = max_rate_limit_retries
        self.max_rate_limit_wait_seconds = max_rate_limit_wait_seconds

    def build_command(
        self, prompt: str, model: str, resume_session_id: Optional[str] = None
    ) -> List[str]:
        args = [self.command]
        if resume_session_id:
            args += ["-r", resume_session_id]
        args += ["-p", prompt]
        if model and model != DEFAULT_MODEL:
            args += ["--model", model]
        args += ["--output-format", "json"]
        if self.allow_all_tools:
            args.append("--dangerously-skip-permissions")
        return args

    async def execute(
        self, prompt: str, model: str, resume_session_id: Optional[str] = None
    ) -> StepExecutionResult:
        session_id = resume_session_id
        attempts = max(1, self.max_rate_limit_retries)
        for attempt in range(attempts):
            result = await self._run_once(prompt, model, session_id)
            if result.success or result.timed_out:
                return result
            session_id = result.session_id or session_id

            limit = detect_rate_limit(f"{result.output} {result.error or ''}")
            if limit is None:
                return result
            if limit.exceeds_timeout:
                logger.warning(
                    f"Usage limit resets in {limit.wait_seconds / 3600:.1f} hours, "
                    "stopping step as timed out"
                )
                return result.model_copy(
                    update={"timed_out": True, "session_id": session_id}
                )
            if attempt == attempts - 1:
                return result
            wait = min(limit.wait_seconds, self.max_rate_limit_wait_seconds)
            logger.info(
                f"Rate limit detected, attempt {attempt + 1}/{attempts}. "
                f"Waiting {wait:.0f}s"
            )
            await asyncio.sleep(wait)
        return result

    async def _run_once(
        self, prompt: str, model: str, resume_session_id: Optional[str]
    ) -> StepExecutionResult:
        args = self.build_command(prompt, model, resume_session_id)
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                cwd=self.working_directory,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            return StepExecutionResult(
                success=False,
                error="Claude CLI not found in PATH. Please install Claude Code CLI.",
            )
        except OSError as exc:
            return StepExecutionResult(success=False, error=f"Spawn error: {exc}")

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            return StepExecutionResult(
                success=False,
                session_id=resume_session_id,
                error=f"Step timed out after {self.timeout_seconds}s",
                timed_out=True,
            )

        out = stdout.decode(errors="replace")
        err = stderr.decode(errors="replace")
        session_id, result_text = parse_cli_output(out)

        if proc.returncode == 0:
            return StepExecutionResult(
                success=True, output=result_text, session_id=session_id
            )

        if proc.returncode == 127:
            message = "Claude CLI not found in PATH. Please install Claude Code CLI."
        else:
            message = (
                err.strip()
                or out.strip()
                or f"Command failed with exit code {proc.returncode}"
            )
        return StepExecutionResult(
            success=False, output=out, session_id=session_id, error=message
        )
