from __future__ import annotations

import os
from typing import Optional

import yaml
from pydantic import BaseModel, Field

from .constants import DEFAULT_MAX_STATES, DEFAULT_MODEL


class ExecutorConfig(BaseModel):
    """Configuration for the ``claude`` CLI executor."""

    command: str = "claude"
    timeout_seconds: Optional[float] = 2 * 60 * 60
    working_directory: Optional[str] = None
    allow_all_tools: bool = False
    max_rate_limit_retries: int = 3
    max_rate_limit_wait_seconds: float = 30 * 60


class StateConfig(BaseModel):
    """Workflow state persistence settings."""

    database_url: Optional[str] = None
    max_states: int = DEFAULT_MAX_STATES


class RunnerConfig(BaseModel):
    """Top-level configuration model."""

    default_model: str = DEFAULT_MODEL
    log_level: str = "INFO"
    executor: ExecutorConfig = Field(default_factory=ExecutorConfig)
    state: StateConfig = Field(default_factory=StateConfig)


def load_config(path: Optional[str] = None) -> RunnerConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to CLAUDE_RUNNER_CONFIG
            env variable or 'claude-runner.yaml' in the current directory.
    """

    config_path = path or os.getenv("CLAUDE_RUNNER_CONFIG", "claude-runner.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = RunnerConfig(**data)
    else:
        config = RunnerConfig()

    env_db_url = os.getenv("CLAUDE_RUNNER_DATABASE_URL")
    if env_db_url:
        config.state.database_url = env_db_url
    env_model = os.getenv("CLAUDE_RUNNER_MODEL")
    if env_model:
        config.default_model = env_model
    return config
