"""Step executor: the model-driven tool loop.

Two entry points share one turn implementation:

- ``run_loop``: free-form reasoning loop bounded by an iteration budget.
- ``execute_plan`` / ``execute_step``: bounded-planning variant that walks a
  fixed ExecutionPlan, allowing a few sub-calls per step until the step's
  expected tool fires.

Every turn streams one model response. Text-only turns are checked for a
completion phrase; tool turns dispatch each invocation. Two tool names are
meta signals intercepted before execution (``complete_task`` and
``request_clarification``). All other tools run through the ToolExecutor
under a per-call timeout, and every execution is counted against the plan's
tool-call cap.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from workloop.core.errors import (
    ExecutionCancelledError,
    NoPlanForIssueError,
    StepOutOfBoundsError,
    ToolCallLimitReachedError,
    UnknownExecutionError,
    WorkloopError,
)
from workloop.core.models import (
    Artifact,
    ChatMessage,
    ClarificationRequest,
    IssueContext,
    IssueEvent,
    IssueEventType,
    ModelParams,
    TextDelta,
    ToolCall,
    ToolInvocation,
    ToolSpec,
    new_call_id,
)
from workloop.domain.loop_signals import (
    COMPLETE_TASK_TOOL,
    CREATE_ISSUE_TOOL,
    FINAL_RESULT_FILENAME,
    REJECTED_PREFIX,
    REQUEST_CLARIFICATION_TOOL,
    TIMEOUT_PREFIX,
    contains_completion_phrase,
    extract_completion_summary,
    fallback_summary,
    is_failure_result,
    parse_clarification_request,
    parse_complete_task,
    parse_generated_artifact,
    strip_function_call_leakage,
)
from workloop.domain.prompts import CONTINUE_NUDGE, build_step_prompt
from workloop.pipeline.notifications import notify

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from workloop.core.models import ExecutionPlan, Issue, PlanStep
    from workloop.core.protocols import (
        CoordinatorEventSink,
        IssueStore,
        ModelClient,
        ToolExecutor,
    )

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 30
MAX_CONSECUTIVE_TEXT_ONLY = 3
DEFAULT_TOOL_TIMEOUT_SECONDS = 120.0
MAX_SUB_CALLS_PER_STEP = 3
CHARS_PER_TOKEN = 4

META_TOOL_SPECS: tuple[ToolSpec, ...] = (
    ToolSpec(
        name=COMPLETE_TASK_TOOL,
        description="Signal that the task is finished and report the outcome.",
        parameters={
            "type": "object",
            "properties": {
                "summary": {"type": "string", "description": "What was done."},
                "success": {"type": "boolean"},
                "artifact": {
                    "type": "string",
                    "description": "Final deliverable as markdown.",
                },
                "remaining_work": {"type": "string"},
            },
            "required": ["summary"],
        },
    ),
    ToolSpec(
        name=REQUEST_CLARIFICATION_TOOL,
        description="Ask the user a question when the request is ambiguous.",
        parameters={
            "type": "object",
            "properties": {
                "question": {"type": "string"},
                "options": {"type": "array", "items": {"type": "string"}},
                "context": {"type": "string"},
            },
            "required": ["question"],
        },
    ),
)


# =============================================================================
# Outcomes
# =============================================================================


@dataclass(frozen=True)
class LoopCompleted:
    summary: str
    artifact: Artifact | None = None
    success: bool = True
    remaining_work: str | None = None


@dataclass(frozen=True)
class LoopNeedsClarification:
    request: ClarificationRequest


@dataclass(frozen=True)
class LoopIterationLimitReached:
    iterations: int
    tool_calls: int
    last_response: str = ""


LoopOutcome = LoopCompleted | LoopNeedsClarification | LoopIterationLimitReached


@dataclass(frozen=True)
class StepDone:
    """A plan step finished without a terminal signal."""

    step: PlanStep
    results: tuple[str, ...] = ()
    expected_tool_fired: bool = False


@dataclass
class StepExecutorConfig:
    """Sampling and budget settings for one execution.

    Attributes:
        model: Model identifier, or None for the client's default.
        temperature: Sampling temperature for loop turns.
        max_tokens: Max tokens per model response.
        top_p: Optional nucleus sampling override.
        max_iterations: Iteration budget for the reasoning loop.
        tool_timeout_seconds: Hard timeout for each tool execution.
        max_sub_calls_per_step: Model turns allowed per plan step.
    """

    model: str | None = None
    temperature: float = 0.3
    max_tokens: int = 4096
    top_p: float | None = None
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    tool_timeout_seconds: float = DEFAULT_TOOL_TIMEOUT_SECONDS
    max_sub_calls_per_step: int = MAX_SUB_CALLS_PER_STEP


@dataclass
class _Turn:
    text: str
    invoked: list[str] = field(default_factory=list)
    results: list[str] = field(default_factory=list)
    outcome: LoopCompleted | LoopNeedsClarification | None = None

    @property
    def is_text_only(self) -> bool:
        return not self.invoked and self.outcome is None


# =============================================================================
# Executor
# =============================================================================


class StepExecutor:
    """Drives the model through tool-using turns for a single issue.

    One instance serves one execution. The caller owns ``messages`` (the
    running conversation, excluding the system prompt) so it can hand the
    transcript to the goal verifier afterwards.
    """

    def __init__(
        self,
        model_client: ModelClient,
        tool_executor: ToolExecutor,
        store: IssueStore,
        *,
        event_sink: CoordinatorEventSink | None = None,
        config: StepExecutorConfig | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        self._model_client = model_client
        self._tool_executor = tool_executor
        self._store = store
        self._event_sink = event_sink
        self.config = config or StepExecutorConfig()
        self._cancel_event = cancel_event or asyncio.Event()
        self.iterations = 0
        self.tool_calls = 0

    # -------------------------------------------------------------------------
    # Shared plumbing
    # -------------------------------------------------------------------------

    def _check_cancelled(self, issue_id: str) -> None:
        if self._cancel_event.is_set():
            raise ExecutionCancelledError(issue_id)

    def _params(self, tools: Sequence[ToolSpec]) -> ModelParams:
        return ModelParams(
            model=self.config.model,
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
            top_p=self.config.top_p,
            tools=(*tools, *META_TOOL_SPECS),
        )

    async def _record_event(
        self, issue_id: str, event_type: IssueEventType, payload: dict[str, object]
    ) -> None:
        await self._store.create_event(
            IssueEvent.with_payload(issue_id, event_type, payload)
        )

    async def _stream(
        self,
        issue: Issue,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        tools: Sequence[ToolSpec],
    ) -> tuple[str, list[ToolInvocation]]:
        conversation = [ChatMessage.system(system_prompt), *messages]
        chunks: list[str] = []
        invocations: list[ToolInvocation] = []
        try:
            async for event in self._model_client.stream_deltas(
                conversation, self._params(tools)
            ):
                self._check_cancelled(issue.id)
                if isinstance(event, TextDelta):
                    chunks.append(event.text)
                    notify(self._event_sink, "on_stream_delta", issue.id, event.text)
                elif isinstance(event, ToolInvocation):
                    invocations.append(event)
        except WorkloopError:
            raise
        except Exception as e:
            raise UnknownExecutionError(f"Model stream failed: {e}") from e

        text = "".join(chunks)
        input_chars = sum(len(message.content or "") for message in conversation)
        output_chars = len(text) + sum(len(inv.json_arguments) for inv in invocations)
        notify(
            self._event_sink,
            "on_tokens_consumed",
            issue.id,
            input_chars // CHARS_PER_TOKEN,
            output_chars // CHARS_PER_TOKEN,
        )
        return text, invocations

    async def _execute_tool(
        self,
        issue: Issue,
        call: ToolCall,
        plan: ExecutionPlan | None,
        overrides: Mapping[str, bool] | None,
    ) -> str:
        if plan is not None and plan.is_at_limit:
            raise ToolCallLimitReachedError(issue.id, plan.max_tool_calls)
        self._check_cancelled(issue.id)

        timeout = self.config.tool_timeout_seconds
        context = IssueContext(issue_id=issue.id, task_id=issue.task_id)
        try:
            result = await asyncio.wait_for(
                self._tool_executor.execute(
                    call.name, call.arguments, overrides, context
                ),
                timeout=timeout,
            )
        except TimeoutError:
            logger.warning("Tool %s timed out after %ss", call.name, timeout)
            result = (
                f"{TIMEOUT_PREFIX} Tool '{call.name}' did not complete within "
                f"{timeout:g} seconds."
            )
        except WorkloopError:
            raise
        except Exception as e:
            logger.warning("Tool %s raised: %s", call.name, e)
            result = f"{REJECTED_PREFIX} {e}"

        if plan is not None:
            plan.record_tool_call()
        self.tool_calls += 1

        await self._record_event(
            issue.id,
            IssueEventType.TOOL_CALL_COMPLETED,
            {
                "tool_name": call.name,
                "iteration": self.iterations,
                "arguments": call.arguments,
                "result": result,
                "success": not is_failure_result(result),
            },
        )
        notify(
            self._event_sink,
            "on_tool_called",
            issue.id,
            call.name,
            call.arguments,
            result,
        )
        if call.name == CREATE_ISSUE_TOOL:
            notify(
                self._event_sink,
                "on_status_update",
                issue.id,
                "Created follow-up issue",
            )

        generated = parse_generated_artifact(result)
        if generated is not None:
            await self._save_artifact(
                issue, generated.filename, generated.content, False
            )
        return result

    async def _save_artifact(
        self, issue: Issue, filename: str, content: str, is_final: bool
    ) -> Artifact:
        artifact = await self._store.create_artifact(
            Artifact.create(issue.task_id, filename, content, is_final_result=is_final)
        )
        await self._record_event(
            issue.id,
            IssueEventType.ARTIFACT_GENERATED,
            {
                "artifact_id": artifact.id,
                "filename": artifact.filename,
                "is_final_result": artifact.is_final_result,
            },
        )
        notify(self._event_sink, "on_artifact_generated", artifact)
        return artifact

    async def _complete(self, issue: Issue, call: ToolCall) -> LoopCompleted:
        signal = parse_complete_task(call.arguments)
        artifact = None
        if signal.artifact_content:
            artifact = await self._save_artifact(
                issue, FINAL_RESULT_FILENAME, signal.artifact_content, True
            )
        return LoopCompleted(
            summary=signal.summary,
            artifact=artifact,
            success=signal.success,
            remaining_work=signal.remaining_work,
        )

    async def _take_turn(
        self,
        issue: Issue,
        system_prompt: str,
        messages: list[ChatMessage],
        tools: Sequence[ToolSpec],
        plan: ExecutionPlan | None,
        overrides: Mapping[str, bool] | None,
    ) -> _Turn:
        self._check_cancelled(issue.id)
        self.iterations += 1
        iteration = self.iterations
        notify(self._event_sink, "on_iteration_started", issue.id, iteration)
        notify(self._event_sink, "on_status_update", issue.id, f"Iteration {iteration}")
        await self._record_event(
            issue.id, IssueEventType.LOOP_ITERATION, {"iteration": iteration}
        )

        text, invocations = await self._stream(issue, system_prompt, messages, tools)
        if not invocations:
            messages.append(ChatMessage.assistant(text))
            return _Turn(text=text)

        calls = tuple(
            ToolCall(inv.call_id or new_call_id(), inv.tool_name, inv.json_arguments)
            for inv in invocations
        )
        commentary = strip_function_call_leakage(text)
        messages.append(ChatMessage.assistant(commentary or None, calls))

        turn = _Turn(text=text)
        for call in calls:
            if call.name == COMPLETE_TASK_TOOL:
                turn.outcome = await self._complete(issue, call)
                return turn
            if call.name == REQUEST_CLARIFICATION_TOOL:
                request = parse_clarification_request(call.arguments)
                turn.outcome = LoopNeedsClarification(request=request)
                return turn
            result = await self._execute_tool(issue, call, plan, overrides)
            messages.append(ChatMessage.tool(result, call.id))
            turn.invoked.append(call.name)
            turn.results.append(result)
        return turn

    # -------------------------------------------------------------------------
    # Reasoning loop
    # -------------------------------------------------------------------------

    async def run_loop(
        self,
        issue: Issue,
        system_prompt: str,
        messages: list[ChatMessage],
        tools: Sequence[ToolSpec],
        *,
        plan: ExecutionPlan | None = None,
        overrides: Mapping[str, bool] | None = None,
    ) -> LoopOutcome:
        """Iterate until completion, clarification or the iteration budget.

        Args:
            issue: Issue being executed.
            system_prompt: System prompt sent with every turn.
            messages: Running conversation, mutated in place.
            tools: Tools advertised to the model (meta tools are added).
            plan: Plan whose tool-call cap bounds this execution.
            overrides: Per-tool enable/disable overrides.

        Returns:
            LoopCompleted, LoopNeedsClarification or LoopIterationLimitReached.

        Raises:
            ExecutionCancelledError: If cancelled at an iteration boundary.
            ToolCallLimitReachedError: If a tool call is attempted at the cap.
        """
        consecutive_text_only = 0
        last_response = ""

        for _ in range(self.config.max_iterations):
            turn = await self._take_turn(
                issue, system_prompt, messages, tools, plan, overrides
            )
            if turn.outcome is not None:
                return turn.outcome
            if turn.text:
                last_response = turn.text

            if not turn.is_text_only:
                consecutive_text_only = 0
                continue

            if contains_completion_phrase(turn.text):
                return LoopCompleted(summary=extract_completion_summary(turn.text))

            consecutive_text_only += 1
            if consecutive_text_only >= MAX_CONSECUTIVE_TEXT_ONLY:
                logger.warning(
                    "Issue %s: %d consecutive text-only responses; ending loop",
                    issue.id,
                    consecutive_text_only,
                )
                return LoopCompleted(summary=fallback_summary(turn.text))
            messages.append(ChatMessage.user(CONTINUE_NUDGE))

        logger.info(
            "Issue %s reached iteration limit (%d iterations, %d tool calls)",
            issue.id,
            self.iterations,
            self.tool_calls,
        )
        return LoopIterationLimitReached(
            iterations=self.iterations,
            tool_calls=self.tool_calls,
            last_response=last_response,
        )

    # -------------------------------------------------------------------------
    # Bounded planning variant
    # -------------------------------------------------------------------------

    async def execute_step(
        self,
        issue: Issue,
        plan: ExecutionPlan | None,
        step_index: int,
        system_prompt: str,
        messages: list[ChatMessage],
        tools: Sequence[ToolSpec],
        *,
        overrides: Mapping[str, bool] | None = None,
    ) -> StepDone | LoopCompleted | LoopNeedsClarification:
        """Run one plan step with up to ``max_sub_calls_per_step`` turns.

        The step stops once its expected tool fires (or any tool, when the
        step names none) or the sub-call budget is exhausted. The step's
        completion flag and the plan's tool-call counter are updated before
        this returns.

        Raises:
            NoPlanForIssueError: If ``plan`` is missing or belongs to another issue.
            StepOutOfBoundsError: If ``step_index`` is outside the plan.
            ToolCallLimitReachedError: If the plan is already at its cap.
        """
        if plan is None or plan.issue_id != issue.id:
            raise NoPlanForIssueError(issue.id)
        if not 0 <= step_index < len(plan.steps):
            raise StepOutOfBoundsError(step_index, len(plan.steps))
        if plan.is_at_limit:
            raise ToolCallLimitReachedError(issue.id, plan.max_tool_calls)

        step = plan.steps[step_index]
        notify(
            self._event_sink,
            "on_status_update",
            issue.id,
            f"Step {step.step_number}/{len(plan.steps)}: {step.description}",
        )
        step_prompt = build_step_prompt(step.description, step.tool_name)
        messages.append(ChatMessage.user(step_prompt))

        results: list[str] = []
        fired = False
        budget = self.config.max_sub_calls_per_step
        for sub_call in range(budget):
            turn = await self._take_turn(
                issue, system_prompt, messages, tools, plan, overrides
            )
            if turn.outcome is not None:
                step.is_complete = True
                return turn.outcome
            if turn.is_text_only:
                if contains_completion_phrase(turn.text):
                    step.is_complete = True
                    return LoopCompleted(summary=extract_completion_summary(turn.text))
                if sub_call + 1 < budget:
                    messages.append(ChatMessage.user(CONTINUE_NUDGE))
                continue
            results.extend(turn.results)
            if step.tool_name is None or step.tool_name in turn.invoked:
                fired = True
                break

        if not fired:
            logger.info(
                "Issue %s step %d ended without its expected tool %s",
                issue.id,
                step.step_number,
                step.tool_name,
            )
        step.is_complete = True
        return StepDone(step=step, results=tuple(results), expected_tool_fired=fired)

    async def execute_plan(
        self,
        issue: Issue,
        plan: ExecutionPlan,
        system_prompt: str,
        messages: list[ChatMessage],
        tools: Sequence[ToolSpec],
        *,
        overrides: Mapping[str, bool] | None = None,
    ) -> LoopCompleted | LoopNeedsClarification:
        """Run every step of ``plan`` in order.

        Returns early on a completion or clarification signal. Otherwise
        returns a completion summarizing how many steps ran.
        """
        for index in range(len(plan.steps)):
            outcome = await self.execute_step(
                issue,
                plan,
                index,
                system_prompt,
                messages,
                tools,
                overrides=overrides,
            )
            if not isinstance(outcome, StepDone):
                return outcome

        return LoopCompleted(
            summary=(
                f"Completed {plan.completed_steps} of {len(plan.steps)} plan steps "
                f"using {plan.tool_call_count} tool calls."
            )
        )
