"""Protocol definitions for workloop collaborators.

The coordinator and its pipeline stages depend only on these protocols.
Concrete implementations live in ``workloop.infra``; tests supply fakes.

Design principles:
- Protocols use structural typing (typing.Protocol) for flexibility
- Methods match exactly what the pipeline actually calls
- Tool-level failures are reported as result strings, not exceptions
- Event sink notifications are best-effort and must not fail orchestration
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Mapping, Sequence

    from workloop.core.models import (
        AgentTask,
        Artifact,
        ChatMessage,
        ClarificationRequest,
        ExecutionPlan,
        ExecutionResult,
        Issue,
        IssueContext,
        IssueDependency,
        IssueEvent,
        IssueStatus,
        ModelParams,
        StreamEvent,
        ToolSpec,
        VerificationResult,
    )


# =============================================================================
# Model calling
# =============================================================================


@runtime_checkable
class ModelClient(Protocol):
    """Protocol for language-model calls.

    ``stream_deltas`` yields a tagged union: ``TextDelta`` for spoken text and
    ``ToolInvocation`` when the model acts. A stream may contain text followed
    by one or more tool invocations.
    """

    async def complete_once(
        self, messages: Sequence[ChatMessage], params: ModelParams
    ) -> str:
        """Run a single non-streaming completion and return its text."""
        ...

    def stream_deltas(
        self, messages: Sequence[ChatMessage], params: ModelParams
    ) -> AsyncIterator[StreamEvent]:
        """Stream a completion as text deltas and tool invocations."""
        ...


# =============================================================================
# Tool execution
# =============================================================================


@runtime_checkable
class ToolExecutor(Protocol):
    """Protocol for executing tools requested by the model.

    Implementations return human-readable text on success and a
    ``[REJECTED] <reason>`` string on failure instead of raising.
    """

    def available_tools(
        self, overrides: Mapping[str, bool] | None = None
    ) -> list[ToolSpec]:
        """List tools that are enabled after applying overrides."""
        ...

    async def execute(
        self,
        name: str,
        json_arguments: str,
        overrides: Mapping[str, bool] | None,
        issue_context: IssueContext,
    ) -> str:
        """Execute a tool and return its textual result."""
        ...


# =============================================================================
# Issue store
# =============================================================================


@runtime_checkable
class IssueStore(Protocol):
    """Protocol for durable issue, task, event and artifact storage.

    The coordinator reads and mutates issues only through this interface.
    """

    async def create_task(self, task: AgentTask) -> AgentTask: ...

    async def get_task(self, task_id: str) -> AgentTask | None: ...

    async def update_task(self, task: AgentTask) -> AgentTask: ...

    async def create_issue(self, issue: Issue) -> Issue: ...

    async def get_issue(self, issue_id: str) -> Issue | None: ...

    async def update_issue(self, issue: Issue) -> Issue: ...

    async def list_issues(self, task_id: str) -> list[Issue]: ...

    async def update_status(self, issue_id: str, status: IssueStatus) -> Issue:
        """Change an issue's status.

        Raises:
            IssueNotFoundError: If the issue does not exist.
            InvalidStatusTransitionError: If the transition is not allowed.
        """
        ...

    async def close_issue(self, issue_id: str, result: str | None) -> Issue:
        """Close an issue with a result summary and unblock its dependents."""
        ...

    async def ready_issues(self, task_id: str | None = None) -> list[Issue]:
        """Open, unblocked issues ordered by priority then age."""
        ...

    async def add_dependency(self, dependency: IssueDependency) -> None: ...

    async def dependencies(self, issue_id: str) -> list[IssueDependency]:
        """All dependencies where the issue is either endpoint."""
        ...

    async def create_event(self, event: IssueEvent) -> None: ...

    async def history(self, issue_id: str) -> list[IssueEvent]:
        """Events for an issue in the order they were recorded."""
        ...

    async def create_artifact(self, artifact: Artifact) -> Artifact: ...

    async def list_artifacts(self, task_id: str) -> list[Artifact]: ...


# =============================================================================
# Event sink
# =============================================================================


@runtime_checkable
class CoordinatorEventSink(Protocol):
    """Observer for coordinator lifecycle notifications.

    All notifications are fire-and-forget. The coordinator invokes them
    through a guard, so an implementation that raises is logged and ignored.
    """

    def on_issue_started(self, issue: Issue) -> None: ...

    def on_issue_completed(self, result: ExecutionResult) -> None: ...

    def on_issue_failed(self, issue: Issue, error: BaseException) -> None: ...

    def on_plan_created(self, plan: ExecutionPlan) -> None: ...

    def on_issue_decomposed(self, parent: Issue, children: list[Issue]) -> None: ...

    def on_iteration_started(self, issue_id: str, iteration: int) -> None: ...

    def on_stream_delta(self, issue_id: str, text: str) -> None: ...

    def on_tool_called(
        self, issue_id: str, tool_name: str, arguments: str, result: str
    ) -> None: ...

    def on_status_update(self, issue_id: str, status: str) -> None: ...

    def on_clarification_needed(
        self, issue_id: str, request: ClarificationRequest
    ) -> None: ...

    def on_artifact_generated(self, artifact: Artifact) -> None: ...

    def on_verification_completed(
        self, issue_id: str, result: VerificationResult
    ) -> None: ...

    def on_tokens_consumed(
        self, issue_id: str, input_tokens: int, output_tokens: int
    ) -> None: ...

    def on_retry_scheduled(
        self, issue_id: str, attempt: int, delay: float, error: BaseException
    ) -> None: ...
