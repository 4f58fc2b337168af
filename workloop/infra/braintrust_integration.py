"""Braintrust integration for issue executions.

Model calls are traced by ``braintrust.wrap_anthropic`` (applied in
``create_anthropic_client``). This module adds the parent span per issue:

- TracedIssueExecution: context manager recording input, output and outcome
- flush_braintrust: ensure traces are sent before the process exits

Usage:
    with TracedIssueExecution(issue_id, metadata={"mode": "reasoning"}) as tracer:
        tracer.log_input(prompt)
        ...
        tracer.log_message(summary)
        tracer.set_success(True)
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any, Self

import braintrust

if TYPE_CHECKING:
    from types import TracebackType

logger = logging.getLogger(__name__)

BRAINTRUST_PROJECT = "workloop"


def is_braintrust_enabled() -> bool:
    """Check if Braintrust is configured."""
    return bool(os.environ.get("BRAINTRUST_API_KEY"))


def init_braintrust_logger() -> None:
    """Initialize the Braintrust logger for the workloop project."""
    if is_braintrust_enabled():
        braintrust.init_logger(project=BRAINTRUST_PROJECT)


def flush_braintrust() -> None:
    """Flush pending logs to Braintrust."""
    if not is_braintrust_enabled():
        return
    try:
        braintrust.flush()
    except Exception as e:
        logger.warning("Failed to flush Braintrust logs: %s", e)


class TracedIssueExecution:
    """Context manager for tracing a single issue execution.

    Captures the initial prompt (input), the final message (output) and the
    success/failure status. Tracing is best-effort: span failures are
    logged and never propagate into the execution.
    """

    def __init__(self, issue_id: str, metadata: dict[str, Any] | None = None):
        self.issue_id = issue_id
        self.metadata = metadata or {}
        self.span: Any = None
        self.input_prompt: str | None = None
        self.output_text: str = ""
        self.success: bool = False
        self.error: str | None = None

    def __enter__(self) -> Self:
        if not is_braintrust_enabled():
            return self
        try:
            self.span = braintrust.start_span(
                name=f"issue:{self.issue_id}",
                type="task",
                metadata={"issue_id": self.issue_id, **self.metadata},
            )
            self.span.__enter__()
        except Exception as e:
            logger.warning("[braintrust] Failed to start span: %s", e)
            self.span = None
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self.span is None:
            return
        if exc_type is not None:
            self.error = str(exc_val)
            self.success = False
        try:
            self.span.log(
                input=self.input_prompt,
                output=self.output_text,
                metadata={"success": self.success, "error": self.error},
                scores={"success": 1.0 if self.success else 0.0},
            )
            self.span.__exit__(exc_type, exc_val, exc_tb)
            flush_braintrust()
        except Exception as e:
            logger.warning("[braintrust] Failed to close span: %s", e)

    def log_input(self, prompt: str) -> None:
        self.input_prompt = prompt

    def log_message(self, message: object) -> None:
        """Record the execution's output text."""
        self.output_text = str(message)

    def set_success(self, success: bool) -> None:
        self.success = success

    def set_error(self, error: str) -> None:
        self.error = error
        self.success = False
