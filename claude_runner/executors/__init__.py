"""Step executor factory and initialization."""

from __future__ import annotations

from typing import Optional

from ..config import RunnerConfig, load_config
from .base import StepExecutor, parse_cli_output
from .claude_cli import ClaudeCliExecutor


def get_executor(config: Optional[RunnerConfig] = None) -> StepExecutor:
    """Factory function to build the configured ``claude`` executor."""

    config = config or load_config()
    conf = config.executor
    return ClaudeCliExecutor(
        command=conf.command,
        working_directory=conf.working_directory,
        timeout_seconds=conf.timeout_seconds,
        allow_all_tools=conf.allow_all_tools,
        max_rate_limit_retries=conf.max_rate_limit_retries,
        max_rate_limit_wait_seconds=conf.max_rate_limit_wait_seconds,
    )


__all__ = ["StepExecutor", "ClaudeCliExecutor", "get_executor", "parse_cli_output"]
