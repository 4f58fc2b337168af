"""Coordinator: the top-level execution state machine.

States::

    Idle -> Executing -> Idle
                      -> AwaitingClarification -> Executing

At most one issue executes at a time per coordinator. A second execution
request while one is in flight fails fast with AlreadyExecutingError. The
single-flight slot is claimed and released without an await in between
the check and the set, so it is linearized on the event loop.

Each execution gets its own cancel token (an asyncio.Event). ``cancel()``
sets the token, returns the coordinator to Idle and drops any suspended
clarification. The running loop observes the token at its next boundary and
raises ExecutionCancelledError. A stale execution unwinding after a cancel
never clears state belonging to a newer execution.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import replace
from typing import TYPE_CHECKING

from workloop.core.errors import (
    AlreadyExecutingError,
    ExecutionCancelledError,
    IssueNotFoundError,
    NoIssueCreatedError,
    NoPendingClarificationError,
    TaskNotFoundError,
    WorkloopError,
)
from workloop.core.models import (
    AgentTask,
    AwaitingClarificationState,
    ChatMessage,
    DependencyType,
    ExecutionResult,
    Issue,
    IssueDependency,
    IssueEvent,
    IssueEventType,
    IssuePriority,
    IssueStatus,
    IssueType,
    RetryConfig,
    VerificationStatus,
)
from workloop.domain.capabilities import (
    filter_specs,
    skill_instructions,
    strip_capability_context,
)
from workloop.domain.prompts import PRIOR_CONTEXT_HEADER, build_system_prompt
from workloop.infra.telemetry import NullTelemetryProvider
from workloop.orchestration.types import ExecutionSettings, PendingExecutionContext
from workloop.pipeline.decomposer import Decomposer
from workloop.pipeline.goal_verifier import GoalVerifier
from workloop.pipeline.notifications import notify
from workloop.pipeline.plan_builder import (
    PlanBuilder,
    PlanNeedsClarification,
    PlanNeedsDecomposition,
)
from workloop.pipeline.retry_controller import RetryController
from workloop.pipeline.step_executor import (
    LoopCompleted,
    LoopNeedsClarification,
    StepExecutor,
)

if TYPE_CHECKING:
    from workloop.core.models import (
        Artifact,
        ClarificationRequest,
        ExecutionPlan,
        IssueErrorState,
        ToolSpec,
        VerificationResult,
    )
    from workloop.core.protocols import (
        CoordinatorEventSink,
        IssueStore,
        ModelClient,
        ToolExecutor,
    )
    from workloop.infra.telemetry import TelemetryProvider
    from workloop.pipeline.step_executor import LoopOutcome

logger = logging.getLogger(__name__)

AWAITING_CLARIFICATION_MESSAGE = "Awaiting clarification"
CLARIFICATION_HEADER = "[Clarification]"
PREVIOUS_ATTEMPT_HEADER = "[Previous Attempt]"
_PREVIOUS_ATTEMPT_RE = re.compile(
    re.escape(PREVIOUS_ATTEMPT_HEADER) + r"\n.*?(?:\n\n|\Z)", re.DOTALL
)
MAX_FOLLOW_UP_TITLE_LENGTH = 80


def iteration_limit_message(iterations: int, tool_calls: int) -> str:
    return (
        f"Partial: Execution paused after {iterations} iterations and "
        f"{tool_calls} tool calls. Task may require continuation."
    )


def append_clarification(body: str, question: str, answer: str) -> str:
    return f"{body}\n\n{CLARIFICATION_HEADER}\nQ: {question}\nA: {answer}"


def with_failure_note(context: str | None, error: str) -> str:
    """Return ``context`` with its failure note replaced by one for ``error``."""
    kept = _PREVIOUS_ATTEMPT_RE.sub("", context or "").strip()
    note = f"{PREVIOUS_ATTEMPT_HEADER}\nThe previous attempt failed: {error}"
    return f"{kept}\n\n{note}" if kept else note


class Coordinator:
    """Owns execution state and sequences plan, execute and verify.

    Construct one per caller (see ``workloop.orchestration.factory``); there
    is no process-wide instance.
    """

    def __init__(
        self,
        store: IssueStore,
        model_client: ModelClient,
        tool_executor: ToolExecutor,
        *,
        event_sink: CoordinatorEventSink | None = None,
        settings: ExecutionSettings | None = None,
        retry_config: RetryConfig | None = None,
        telemetry: TelemetryProvider | None = None,
    ) -> None:
        self._store = store
        self._model_client = model_client
        self._tool_executor = tool_executor
        self._event_sink = event_sink
        self.settings = settings or ExecutionSettings()
        self._telemetry = telemetry or NullTelemetryProvider()
        self._retry = RetryController(
            retry_config or RetryConfig(), event_sink, on_retry=self._record_retry
        )

        self._executing = False
        self._current_issue_id: str | None = None
        self._cancel_token: asyncio.Event | None = None
        self._awaiting: AwaitingClarificationState | None = None
        self._pending_context: PendingExecutionContext | None = None

    # -------------------------------------------------------------------------
    # State inspection
    # -------------------------------------------------------------------------

    @property
    def is_executing(self) -> bool:
        return self._executing

    @property
    def current_issue_id(self) -> str | None:
        return self._current_issue_id

    @property
    def has_pending_clarification(self) -> bool:
        return self._awaiting is not None

    @property
    def pending_clarification(self) -> AwaitingClarificationState | None:
        return self._awaiting

    @property
    def retry_config(self) -> RetryConfig:
        return self._retry.config

    def error_state(self, issue_id: str) -> IssueErrorState | None:
        return self._retry.error_state(issue_id)

    def clear_error_state(self, issue_id: str) -> None:
        self._retry.clear_error_state(issue_id)

    # -------------------------------------------------------------------------
    # Single-flight slot
    # -------------------------------------------------------------------------

    def _ensure_idle(self) -> None:
        if self._executing:
            raise AlreadyExecutingError(self._current_issue_id)

    def _claim(self, issue_id: str | None = None) -> asyncio.Event:
        """Take the single-flight slot.

        Every entry point claims before its first await, so the check and the
        set happen in one step of the event loop. ``issue_id`` may be bound
        later with ``_bind`` when the issue is not known yet.
        """
        self._ensure_idle()
        token = asyncio.Event()
        self._executing = True
        self._current_issue_id = issue_id
        self._cancel_token = token
        return token

    def _bind(self, token: asyncio.Event, issue_id: str) -> None:
        if self._cancel_token is token:
            self._current_issue_id = issue_id

    def _release(self, token: asyncio.Event) -> None:
        if self._cancel_token is not token:
            return
        self._executing = False
        self._current_issue_id = None
        self._cancel_token = None

    @staticmethod
    def _check_cancelled(token: asyncio.Event, issue_id: str) -> None:
        if token.is_set():
            raise ExecutionCancelledError(issue_id)

    def cancel(self) -> None:
        """Stop the current execution and clear its in-memory state.

        The pending clarification is dropped and the error state of the
        cancelled issue is cleared. Error states of other issues are kept.
        Persisted issue status is left to the execution's own failure path.
        """
        if self._cancel_token is not None:
            self._cancel_token.set()
            logger.info("Cancelling execution of %s", self._current_issue_id)
        if self._current_issue_id is not None:
            self._retry.clear_error_state(self._current_issue_id)
        self._executing = False
        self._current_issue_id = None
        self._cancel_token = None
        self._awaiting = None
        self._pending_context = None

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    async def run(
        self,
        query: str,
        *,
        settings: ExecutionSettings | None = None,
        retry_config: RetryConfig | None = None,
    ) -> ExecutionResult:
        """Create a task and its first issue from ``query``, then execute it.

        Raises:
            AlreadyExecutingError: If an execution is in flight. Nothing is
                created in that case.
            NoIssueCreatedError: If the store fails to create the issue.
        """
        token = self._claim()
        try:
            task = await self._store.create_task(AgentTask.from_query(query))
            try:
                issue = await self._store.create_issue(
                    Issue.create(task.id, task.title, description=query)
                )
            except WorkloopError as e:
                raise NoIssueCreatedError() from e
            logger.info("Created task %s with issue %s", task.id, issue.id)
            return await self._execute_claimed(issue, settings, retry_config, token)
        finally:
            self._release(token)

    async def resume(
        self,
        issue_id: str,
        *,
        settings: ExecutionSettings | None = None,
        retry_config: RetryConfig | None = None,
        attempt_resume: bool = True,
    ) -> ExecutionResult:
        """Re-execute an existing issue.

        With ``attempt_resume``, context is recovered from the issue's event
        history: the last recorded failure replaces any earlier failure note
        in its prior context. A clarification suspended for this issue is
        discarded.

        Raises:
            IssueNotFoundError: If the issue does not exist.
        """
        token = self._claim(issue_id)
        try:
            issue = await self._store.get_issue(issue_id)
            if issue is None:
                raise IssueNotFoundError(issue_id)
            if self._awaiting is not None and self._awaiting.issue_id == issue_id:
                self._awaiting = None
                self._pending_context = None
            if attempt_resume:
                issue = await self._recover_context(issue)
            return await self._execute_claimed(issue, settings, retry_config, token)
        finally:
            self._release(token)

    async def next(
        self,
        task_id: str | None = None,
        *,
        settings: ExecutionSettings | None = None,
        retry_config: RetryConfig | None = None,
    ) -> ExecutionResult | None:
        """Execute the highest-priority, oldest ready issue.

        Returns:
            The execution result, or None when no issue is ready.
        """
        token = self._claim()
        try:
            if task_id is not None and await self._store.get_task(task_id) is None:
                raise TaskNotFoundError(task_id)
            ready = await self._store.ready_issues(task_id)
            if not ready:
                logger.info(
                    "No ready issues%s", f" for task {task_id}" if task_id else ""
                )
                return None
            return await self._execute_claimed(
                ready[0], settings, retry_config, token
            )
        finally:
            self._release(token)

    async def create(
        self,
        task_id: str,
        title: str,
        *,
        description: str | None = None,
        priority: IssuePriority = IssuePriority.P2,
        type: IssueType = IssueType.TASK,
    ) -> Issue:
        if await self._store.get_task(task_id) is None:
            raise TaskNotFoundError(task_id)
        return await self._store.create_issue(
            Issue.create(
                task_id, title, description=description, priority=priority, type=type
            )
        )

    async def close(self, issue_id: str, result: str | None = None) -> Issue:
        if await self._store.get_issue(issue_id) is None:
            raise IssueNotFoundError(issue_id)
        return await self._store.close_issue(issue_id, result)

    async def provide_clarification(
        self, issue_id: str, response: str
    ) -> ExecutionResult:
        """Answer a pending clarification and resume execution.

        Only valid while suspended on exactly this issue. The suspension is
        consumed once, and only by the caller that wins the single-flight
        slot. The answer is appended to the issue description and the issue
        is re-executed with the context captured at suspension.

        Raises:
            NoPendingClarificationError: If no clarification is pending for
                ``issue_id``.
            AlreadyExecutingError: If an execution is in flight. The
                suspension is kept in that case.
        """
        awaiting = self._awaiting
        if awaiting is None or awaiting.issue_id != issue_id:
            raise NoPendingClarificationError(issue_id)
        token = self._claim(issue_id)
        context = self._pending_context
        self._awaiting = None
        self._pending_context = None

        try:
            issue = await self._store.get_issue(issue_id)
            if issue is None:
                raise IssueNotFoundError(issue_id)

            question = awaiting.request.question
            await self._record_event(
                issue_id,
                IssueEventType.CLARIFICATION_PROVIDED,
                {"question": question, "response": response},
            )
            issue = await self._store.update_issue(
                replace(
                    issue,
                    description=append_clarification(issue.body, question, response),
                )
            )
            logger.info("Clarification provided for %s; resuming", issue_id)

            if context is None:
                return await self._execute_claimed(issue, None, None, token)
            return await self._execute_claimed(
                issue,
                context.settings,
                context.retry_config,
                token,
                tools=context.tools,
            )
        finally:
            self._release(token)

    async def execute(
        self, issue: Issue, settings: ExecutionSettings | None = None
    ) -> ExecutionResult:
        """Execute ``issue`` once, without retries."""
        return await self.execute_with_retry(issue, settings, RetryConfig.none())

    async def execute_with_retry(
        self,
        issue: Issue,
        settings: ExecutionSettings | None = None,
        retry_config: RetryConfig | None = None,
        *,
        tools: tuple[ToolSpec, ...] | None = None,
    ) -> ExecutionResult:
        """Execute ``issue`` under the retry controller.

        Raises:
            AlreadyExecutingError: If an execution is in flight.
            MaxRetriesExceededError: If every retriable attempt failed.
            ExecutionCancelledError: If cancelled.
        """
        token = self._claim(issue.id)
        try:
            return await self._execute_claimed(
                issue, settings, retry_config, token, tools=tools
            )
        finally:
            self._release(token)

    async def _execute_claimed(
        self,
        issue: Issue,
        settings: ExecutionSettings | None,
        retry_config: RetryConfig | None,
        token: asyncio.Event,
        *,
        tools: tuple[ToolSpec, ...] | None = None,
    ) -> ExecutionResult:
        self._bind(token, issue.id)
        effective = settings or self.settings
        return await self._retry.run(
            issue.id,
            lambda: self._execute_once(issue.id, effective, tools, retry_config, token),
            config=retry_config,
            cancel_event=token,
        )

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    async def _record_event(
        self, issue_id: str, event_type: IssueEventType, payload: dict[str, object]
    ) -> None:
        await self._store.create_event(
            IssueEvent.with_payload(issue_id, event_type, payload)
        )

    async def _record_retry(
        self, issue_id: str, attempt: int, delay: float, error: BaseException
    ) -> None:
        await self._record_event(
            issue_id,
            IssueEventType.RETRY_SCHEDULED,
            {"attempt": attempt, "delay": delay, "error": str(error)},
        )

    async def _recover_context(self, issue: Issue) -> Issue:
        history = await self._store.history(issue.id)
        failures = [
            event
            for event in history
            if event.event_type is IssueEventType.EXECUTION_FAILED
        ]
        if not failures:
            return issue
        error = failures[-1].payload_dict().get("error")
        if not error:
            return issue
        context = with_failure_note(issue.context, str(error))
        if context == issue.context:
            return issue
        logger.debug("Recovered failure context for %s", issue.id)
        return await self._store.update_issue(replace(issue, context=context))

    async def _execute_once(
        self,
        issue_id: str,
        settings: ExecutionSettings,
        tools: tuple[ToolSpec, ...] | None,
        retry_config: RetryConfig | None,
        token: asyncio.Event,
    ) -> ExecutionResult:
        issue = await self._store.get_issue(issue_id)
        if issue is None:
            raise IssueNotFoundError(issue_id)
        self._check_cancelled(token, issue_id)
        if tools is None:
            tools = tuple(self._tool_executor.available_tools(settings.tool_overrides))

        issue = await self._store.update_status(issue_id, IssueStatus.IN_PROGRESS)
        notify(self._event_sink, "on_issue_started", issue)

        with self._telemetry.create_span(
            issue.id, {"task_id": issue.task_id, "mode": settings.mode}
        ) as span:
            span.log_input(issue.body)
            try:
                result = await self._drive(issue, settings, tools, retry_config, token)
            except Exception as e:
                span.set_error(str(e))
                await self._handle_failure(issue, e)
                raise
            span.log_message(result.message)
            span.set_success(result.success)

        notify(self._event_sink, "on_issue_completed", result)
        return result

    async def _handle_failure(self, issue: Issue, error: Exception) -> None:
        logger.warning("Execution of %s failed: %s", issue.id, error)
        notify(self._event_sink, "on_issue_failed", issue, error)
        await self._record_event(
            issue.id,
            IssueEventType.EXECUTION_FAILED,
            {
                "error": str(error),
                "error_type": type(error).__name__,
                "retriable": getattr(error, "retriable", False),
            },
        )
        current = await self._store.get_issue(issue.id)
        if current is not None and current.status is IssueStatus.IN_PROGRESS:
            await self._store.update_status(issue.id, IssueStatus.OPEN)

    async def _drive(
        self,
        issue: Issue,
        settings: ExecutionSettings,
        tools: tuple[ToolSpec, ...],
        retry_config: RetryConfig | None,
        token: asyncio.Event,
    ) -> ExecutionResult:
        builder = PlanBuilder(
            self._model_client,
            model=settings.model,
            max_tool_calls=settings.max_tool_calls,
        )
        outcome = await builder.build_plan(issue, tools, settings.skills)
        self._check_cancelled(token, issue.id)

        if isinstance(outcome, PlanNeedsClarification):
            return await self._suspend(
                issue, outcome.request, settings, tools, retry_config, token
            )

        if isinstance(outcome, PlanNeedsDecomposition):
            children = await Decomposer(self._store, self._event_sink).decompose(
                issue, outcome.chunks, outcome.selection
            )
            closed = await self._store.get_issue(issue.id) or issue
            fallback = f"Decomposed into {len(children)} child issues"
            return ExecutionResult(
                issue=closed,
                success=True,
                message=closed.result or fallback,
                child_issues=children,
            )

        plan = outcome.plan
        await self._record_plan(plan)

        messages: list[ChatMessage] = []
        prior = strip_capability_context(issue.context)
        if prior:
            messages.append(ChatMessage.user(f"{PRIOR_CONTEXT_HEADER}\n{prior}"))
        messages.append(ChatMessage.user(issue.body))
        system_prompt = build_system_prompt(
            settings.system_prompt,
            title=issue.title,
            description=issue.description,
            skill_instructions=skill_instructions(
                settings.skills, plan.selected_skills
            ),
        )
        loop_tools = filter_specs(tools, plan.selected_tools)

        await self._record_event(
            issue.id,
            IssueEventType.EXECUTION_STARTED,
            {
                "mode": settings.mode,
                "model": settings.model or "default",
                "max_iterations": settings.max_iterations,
                "tool_count": len(loop_tools),
            },
        )

        executor = StepExecutor(
            self._model_client,
            self._tool_executor,
            self._store,
            event_sink=self._event_sink,
            config=settings.executor_config(),
            cancel_event=token,
        )
        loop_outcome: LoopOutcome
        if settings.mode == "planned":
            loop_outcome = await executor.execute_plan(
                issue,
                plan,
                system_prompt,
                messages,
                loop_tools,
                overrides=settings.tool_overrides,
            )
        else:
            loop_outcome = await executor.run_loop(
                issue,
                system_prompt,
                messages,
                loop_tools,
                plan=plan,
                overrides=settings.tool_overrides,
            )
        self._check_cancelled(token, issue.id)
        return await self._finish(
            issue, loop_outcome, messages, settings, tools, retry_config, token
        )

    async def _record_plan(self, plan: ExecutionPlan) -> None:
        await self._record_event(
            plan.issue_id,
            IssueEventType.PLAN_CREATED,
            {
                "step_count": len(plan.steps),
                "steps": [
                    {"description": step.description, "tool": step.tool_name}
                    for step in plan.steps
                ],
                "max_tool_calls": plan.max_tool_calls,
                "selected_tools": list(plan.selected_tools),
                "selected_skills": list(plan.selected_skills),
            },
        )
        notify(self._event_sink, "on_plan_created", plan)

    async def _suspend(
        self,
        issue: Issue,
        request: ClarificationRequest,
        settings: ExecutionSettings,
        tools: tuple[ToolSpec, ...],
        retry_config: RetryConfig | None,
        token: asyncio.Event,
    ) -> ExecutionResult:
        self._check_cancelled(token, issue.id)
        self._awaiting = AwaitingClarificationState(issue_id=issue.id, request=request)
        self._pending_context = PendingExecutionContext(
            settings=settings, tools=tools, retry_config=retry_config
        )
        await self._record_event(
            issue.id,
            IssueEventType.CLARIFICATION_REQUESTED,
            {
                "question": request.question,
                "options": list(request.options or ()),
                "context": request.context,
            },
        )
        notify(self._event_sink, "on_clarification_needed", issue.id, request)
        logger.info("Issue %s awaiting clarification: %s", issue.id, request.question)
        current = await self._store.get_issue(issue.id) or issue
        return ExecutionResult(
            issue=current,
            success=False,
            message=AWAITING_CLARIFICATION_MESSAGE,
            awaiting_clarification=request,
        )

    async def _finish(
        self,
        issue: Issue,
        outcome: LoopOutcome,
        messages: list[ChatMessage],
        settings: ExecutionSettings,
        tools: tuple[ToolSpec, ...],
        retry_config: RetryConfig | None,
        token: asyncio.Event,
    ) -> ExecutionResult:
        if isinstance(outcome, LoopNeedsClarification):
            return await self._suspend(
                issue, outcome.request, settings, tools, retry_config, token
            )

        artifact: Artifact | None = None
        remaining: str | None = None
        if isinstance(outcome, LoopCompleted):
            summary = outcome.summary
            artifact = outcome.artifact
            remaining = outcome.remaining_work
        else:
            summary = iteration_limit_message(outcome.iterations, outcome.tool_calls)

        if not settings.verify:
            if isinstance(outcome, LoopCompleted) and not outcome.success:
                return await self._reopen(issue, summary, artifact)
            return await self._complete(issue, summary, artifact)

        verification = await GoalVerifier(
            self._model_client, model=settings.model
        ).verify(issue, messages)
        await self._record_event(
            issue.id,
            IssueEventType.VERIFICATION_COMPLETED,
            {
                "status": verification.status.value,
                "summary": verification.summary,
                "remaining_work": verification.remaining_work,
            },
        )
        notify(self._event_sink, "on_verification_completed", issue.id, verification)
        return await self._apply_verification(
            issue, verification, summary, artifact, remaining
        )

    async def _complete(
        self,
        issue: Issue,
        summary: str,
        artifact: Artifact | None,
        *,
        verification: VerificationResult | None = None,
        follow_ups: list[Issue] | None = None,
    ) -> ExecutionResult:
        closed = await self._store.close_issue(issue.id, summary)
        await self._record_event(
            issue.id,
            IssueEventType.EXECUTION_COMPLETED,
            {"summary": summary, "success": True},
        )
        return ExecutionResult(
            issue=closed,
            success=True,
            message=summary,
            child_issues=follow_ups or [],
            artifact=artifact,
            verification=verification,
        )

    async def _apply_verification(
        self,
        issue: Issue,
        verification: VerificationResult,
        summary: str,
        artifact: Artifact | None,
        remaining: str | None,
    ) -> ExecutionResult:
        if verification.status is VerificationStatus.ACHIEVED:
            return await self._complete(
                issue, summary, artifact, verification=verification
            )

        if verification.status is VerificationStatus.PARTIAL:
            follow_ups: list[Issue] = []
            remaining_work = verification.remaining_work or remaining
            if remaining_work:
                follow_ups.append(await self._create_follow_up(issue, remaining_work))
            return await self._complete(
                issue,
                summary,
                artifact,
                verification=verification,
                follow_ups=follow_ups,
            )

        return await self._reopen(
            issue, verification.summary, artifact, verification=verification
        )

    async def _reopen(
        self,
        issue: Issue,
        message: str,
        artifact: Artifact | None,
        *,
        verification: VerificationResult | None = None,
    ) -> ExecutionResult:
        reopened = await self._store.update_status(issue.id, IssueStatus.OPEN)
        await self._record_event(
            issue.id,
            IssueEventType.EXECUTION_COMPLETED,
            {"summary": message, "success": False},
        )
        logger.info("Issue %s not achieved; reopened", issue.id)
        return ExecutionResult(
            issue=reopened,
            success=False,
            message=message,
            artifact=artifact,
            verification=verification,
        )

    async def _create_follow_up(self, issue: Issue, remaining_work: str) -> Issue:
        title = f"Follow up: {issue.title}"
        if len(title) > MAX_FOLLOW_UP_TITLE_LENGTH:
            title = title[: MAX_FOLLOW_UP_TITLE_LENGTH - 3] + "..."
        follow_up = await self._store.create_issue(
            Issue.create(
                issue.task_id,
                title,
                description=remaining_work,
                context=issue.context,
                priority=issue.priority,
                type=IssueType.DISCOVERY,
            )
        )
        await self._store.add_dependency(
            IssueDependency(issue.id, follow_up.id, DependencyType.DISCOVERED_FROM)
        )
        await self._record_event(
            issue.id, IssueEventType.DISCOVERED, {"issue_id": follow_up.id}
        )
        return follow_up
