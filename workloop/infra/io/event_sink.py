"""Event sink implementations for the Coordinator.

Provides concrete implementations of the CoordinatorEventSink protocol:
- BaseEventSink: Base class with no-op implementations
- NullEventSink: Silent sink for testing
- ConsoleEventSink: Console output using log_output/console.py
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from workloop.infra.io.log_output.console import (
    Colors,
    log,
    log_agent_text,
    log_tool,
    log_verbose,
    truncate_text,
)

if TYPE_CHECKING:
    from workloop.core.models import (
        Artifact,
        ClarificationRequest,
        ExecutionPlan,
        ExecutionResult,
        Issue,
        VerificationResult,
    )

__all__ = [
    "BaseEventSink",
    "ConsoleEventSink",
    "NullEventSink",
]


class BaseEventSink:
    """Event sink with no-op implementations of every callback.

    Subclass and override only the callbacks you care about.
    """

    def on_issue_started(self, issue: Issue) -> None:
        pass

    def on_issue_completed(self, result: ExecutionResult) -> None:
        pass

    def on_issue_failed(self, issue: Issue, error: BaseException) -> None:
        pass

    def on_plan_created(self, plan: ExecutionPlan) -> None:
        pass

    def on_issue_decomposed(self, parent: Issue, children: list[Issue]) -> None:
        pass

    def on_iteration_started(self, issue_id: str, iteration: int) -> None:
        pass

    def on_stream_delta(self, issue_id: str, text: str) -> None:
        pass

    def on_tool_called(
        self, issue_id: str, tool_name: str, arguments: str, result: str
    ) -> None:
        pass

    def on_status_update(self, issue_id: str, status: str) -> None:
        pass

    def on_clarification_needed(
        self, issue_id: str, request: ClarificationRequest
    ) -> None:
        pass

    def on_artifact_generated(self, artifact: Artifact) -> None:
        pass

    def on_verification_completed(
        self, issue_id: str, result: VerificationResult
    ) -> None:
        pass

    def on_tokens_consumed(
        self, issue_id: str, input_tokens: int, output_tokens: int
    ) -> None:
        pass

    def on_retry_scheduled(
        self, issue_id: str, attempt: int, delay: float, error: BaseException
    ) -> None:
        pass


class NullEventSink(BaseEventSink):
    """Silent sink; every callback is a no-op."""


def _parse_arguments(arguments: str) -> dict[str, Any] | None:
    try:
        data = json.loads(arguments) if arguments else None
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


class ConsoleEventSink(BaseEventSink):
    """Event sink that prints coordinator progress to the terminal.

    Streamed text is buffered per issue and printed as one line when the
    model acts, a new iteration begins, or the issue finishes.

    Example:
        deps = CoordinatorDependencies(event_sink=ConsoleEventSink())
        coordinator = create_coordinator(config, deps)
    """

    def __init__(self) -> None:
        self._text_buffers: dict[str, list[str]] = {}
        self._tokens: dict[str, tuple[int, int]] = {}

    def _flush_text(self, issue_id: str) -> None:
        text = "".join(self._text_buffers.pop(issue_id, [])).strip()
        if text:
            log_agent_text(text, issue_id)

    # -------------------------------------------------------------------------
    # Issue lifecycle
    # -------------------------------------------------------------------------

    def on_issue_started(self, issue: Issue) -> None:
        log("→", f"[START] {truncate_text(issue.title, 80)}", issue_id=issue.id)

    def on_issue_completed(self, result: ExecutionResult) -> None:
        issue_id = result.issue.id
        self._flush_text(issue_id)
        if result.is_awaiting_input:
            log("?", "Awaiting clarification", Colors.YELLOW, issue_id=issue_id)
        elif result.success:
            log(
                "✓",
                truncate_text(result.message, 120),
                Colors.GREEN,
                issue_id=issue_id,
            )
        else:
            log("✗", truncate_text(result.message, 120), Colors.RED, issue_id=issue_id)
        if issue_id in self._tokens:
            input_tokens, output_tokens = self._tokens.pop(issue_id)
            log_verbose(
                "◦",
                f"Estimated tokens: {input_tokens} in / {output_tokens} out",
                issue_id=issue_id,
            )

    def on_issue_failed(self, issue: Issue, error: BaseException) -> None:
        self._flush_text(issue.id)
        log("✗", f"[FAILED] {error}", Colors.RED, issue_id=issue.id)

    def on_plan_created(self, plan: ExecutionPlan) -> None:
        log(
            "◦",
            f"Plan: {len(plan.steps)} step(s), tool budget {plan.max_tool_calls}",
            Colors.CYAN,
            issue_id=plan.issue_id,
        )
        for step in plan.steps:
            tool = f" (tool: {step.tool_name})" if step.tool_name else ""
            log_verbose(
                " ",
                f"{step.step_number}. {step.description}{tool}",
                issue_id=plan.issue_id,
            )
        if plan.selected_tools:
            log_verbose(
                "◦", f"Tools: {', '.join(plan.selected_tools)}", issue_id=plan.issue_id
            )

    def on_issue_decomposed(self, parent: Issue, children: list[Issue]) -> None:
        log(
            "◐",
            f"Decomposed into {len(children)} child issues",
            Colors.MAGENTA,
            issue_id=parent.id,
        )
        for child in children:
            log_verbose("◦", child.title, issue_id=child.id)

    # -------------------------------------------------------------------------
    # Reasoning loop
    # -------------------------------------------------------------------------

    def on_iteration_started(self, issue_id: str, iteration: int) -> None:
        self._flush_text(issue_id)

    def on_stream_delta(self, issue_id: str, text: str) -> None:
        self._text_buffers.setdefault(issue_id, []).append(text)

    def on_tool_called(
        self, issue_id: str, tool_name: str, arguments: str, result: str
    ) -> None:
        self._flush_text(issue_id)
        log_tool(
            tool_name,
            truncate_text(result, 200),
            issue_id=issue_id,
            arguments=_parse_arguments(arguments),
        )

    def on_status_update(self, issue_id: str, status: str) -> None:
        log_verbose("◦", status, issue_id=issue_id)

    def on_clarification_needed(
        self, issue_id: str, request: ClarificationRequest
    ) -> None:
        self._flush_text(issue_id)
        log(
            "?",
            f"Clarification needed: {request.question}",
            Colors.YELLOW,
            issue_id=issue_id,
        )
        for option in request.options or ():
            log(" ", f"- {option}", Colors.MUTED, issue_id=issue_id)

    def on_artifact_generated(self, artifact: Artifact) -> None:
        label = "result" if artifact.is_final_result else "artifact"
        log("◆", f"Saved {label}: {artifact.filename}", Colors.BLUE)

    def on_verification_completed(
        self, issue_id: str, result: VerificationResult
    ) -> None:
        color = {
            "achieved": Colors.GREEN,
            "partial": Colors.YELLOW,
            "not_achieved": Colors.RED,
        }.get(result.status.value, Colors.RESET)
        log(
            "◎",
            f"Verification: {result.status.value} - {truncate_text(result.summary, 100)}",
            color,
            issue_id=issue_id,
        )

    def on_tokens_consumed(
        self, issue_id: str, input_tokens: int, output_tokens: int
    ) -> None:
        total_in, total_out = self._tokens.get(issue_id, (0, 0))
        self._tokens[issue_id] = (total_in + input_tokens, total_out + output_tokens)

    def on_retry_scheduled(
        self, issue_id: str, attempt: int, delay: float, error: BaseException
    ) -> None:
        log(
            "↻",
            f"Retry {attempt} in {delay:.1f}s after: {truncate_text(str(error), 80)}",
            Colors.YELLOW,
            issue_id=issue_id,
        )
