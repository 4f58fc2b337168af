"""Event sinks that capture coordinator notifications."""

from __future__ import annotations

from typing import TYPE_CHECKING

from workloop.infra.io.event_sink import BaseEventSink

if TYPE_CHECKING:
    from workloop.core.models import (
        Artifact,
        ClarificationRequest,
        ExecutionPlan,
        ExecutionResult,
        Issue,
        VerificationResult,
    )


class RecordingEventSink(BaseEventSink):
    """Records every callback as ``(callback_name, args)`` in call order."""

    def __init__(self) -> None:
        self.events: list[tuple[str, tuple[object, ...]]] = []

    def _record(self, name: str, *args: object) -> None:
        self.events.append((name, args))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def args_of(self, name: str) -> list[tuple[object, ...]]:
        return [args for event, args in self.events if event == name]

    def count(self, name: str) -> int:
        return len(self.args_of(name))

    def on_issue_started(self, issue: Issue) -> None:
        self._record("on_issue_started", issue)

    def on_issue_completed(self, result: ExecutionResult) -> None:
        self._record("on_issue_completed", result)

    def on_issue_failed(self, issue: Issue, error: BaseException) -> None:
        self._record("on_issue_failed", issue, error)

    def on_plan_created(self, plan: ExecutionPlan) -> None:
        self._record("on_plan_created", plan)

    def on_issue_decomposed(self, parent: Issue, children: list[Issue]) -> None:
        self._record("on_issue_decomposed", parent, children)

    def on_iteration_started(self, issue_id: str, iteration: int) -> None:
        self._record("on_iteration_started", issue_id, iteration)

    def on_stream_delta(self, issue_id: str, text: str) -> None:
        self._record("on_stream_delta", issue_id, text)

    def on_tool_called(
        self, issue_id: str, tool_name: str, arguments: str, result: str
    ) -> None:
        self._record("on_tool_called", issue_id, tool_name, arguments, result)

    def on_status_update(self, issue_id: str, status: str) -> None:
        self._record("on_status_update", issue_id, status)

    def on_clarification_needed(
        self, issue_id: str, request: ClarificationRequest
    ) -> None:
        self._record("on_clarification_needed", issue_id, request)

    def on_artifact_generated(self, artifact: Artifact) -> None:
        self._record("on_artifact_generated", artifact)

    def on_verification_completed(
        self, issue_id: str, result: VerificationResult
    ) -> None:
        self._record("on_verification_completed", issue_id, result)

    def on_tokens_consumed(
        self, issue_id: str, input_tokens: int, output_tokens: int
    ) -> None:
        self._record("on_tokens_consumed", issue_id, input_tokens, output_tokens)

    def on_retry_scheduled(
        self, issue_id: str, attempt: int, delay: float, error: BaseException
    ) -> None:
        self._record("on_retry_scheduled", issue_id, attempt, delay, error)


class RaisingEventSink(BaseEventSink):
    """Every callback it overrides raises, to exercise the notify guard."""

    def on_issue_started(self, issue: Issue) -> None:
        raise RuntimeError("sink exploded")

    def on_tool_called(
        self, issue_id: str, tool_name: str, arguments: str, result: str
    ) -> None:
        raise RuntimeError("sink exploded")

    def on_issue_completed(self, result: ExecutionResult) -> None:
        raise RuntimeError("sink exploded")
