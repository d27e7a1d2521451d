"""Shared constants."""

CLAUDE_ACTION = "claude-pipeline-action"
DEFAULT_MODEL = "auto"
DEFAULT_MAX_STATES = 50
DEFAULT_STATE_MAX_AGE_SECONDS = 7 * 24 * 60 * 60
RATE_LIMIT_TIMEOUT_SECONDS = 6 * 60 * 60
