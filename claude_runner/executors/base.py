"""Base step executor interface."""

from __future__ import annotations

import abc
import json
import logging
from typing import Optional, Tuple

from ..contracts import StepExecutionResult

logger = logging.getLogger(__name__)


class StepExecutor(metaclass=abc.ABCMeta):
    """Runs one model CLI invocation for a workflow step."""

    @abc.abstractmethod
    async def execute(
        self, prompt: str, model: str, resume_session_id: Optional[str] = None
    ) -> StepExecutionResult:
        """Run ``prompt`` with ``model``, continuing ``resume_session_id`` if given.

        Implementations report failures through the returned result. A result
        with ``timed_out`` set marks a resumable interruption and should carry
        the session id that can be continued.
        """
        raise NotImplementedError


def parse_cli_output(output: str) -> Tuple[Optional[str], str]:
    """Extract ``(session_id, result_text)`` from CLI JSON output.

    Plain text output is returned unchanged with no session id.
    """
    text = output.strip()
    if not text.startswith("{"):
        return None, output
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        logger.warning(f"Failed to parse JSON output: {exc}")
        return None, output
    if not isinstance(data, dict):
        return None, output

    session_id = data.get("session_id")
    result = data.get("result")
    if not isinstance(result, str):
        result = json.dumps(data, indent=2)
    return session_id, result
