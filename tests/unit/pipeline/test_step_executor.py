"""Unit tests for StepExecutor: the reasoning loop and the planned variant."""

import asyncio
import re

import pytest

from tests.fakes import (
    FakeToolExecutor,
    RecordingEventSink,
    ScriptedModelClient,
    clarification_turn,
    complete_turn,
    text_turn,
    tool_turn,
)
from workloop.core.errors import (
    ExecutionCancelledError,
    NetworkError,
    NoPlanForIssueError,
    StepOutOfBoundsError,
    ToolCallLimitReachedError,
    UnknownExecutionError,
)
from workloop.core.models import (
    AgentTask,
    ChatMessage,
    ExecutionPlan,
    Issue,
    IssueEventType,
    PlanStep,
)
from workloop.domain.loop_signals import format_generated_artifact
from workloop.domain.prompts import CONTINUE_NUDGE
from workloop.infra.issue_store import InMemoryIssueStore
from workloop.pipeline.step_executor import (
    LoopCompleted,
    LoopIterationLimitReached,
    LoopNeedsClarification,
    StepDone,
    StepExecutor,
    StepExecutorConfig,
)

SYSTEM = "system prompt"


class Harness:
    def __init__(self, *turns: object, config: StepExecutorConfig | None = None) -> None:
        self.client = ScriptedModelClient(turns=turns)  # type: ignore[arg-type]
        self.tools = FakeToolExecutor().add_tool("write_file", "wrote 5 bytes")
        self.store = InMemoryIssueStore()
        self.sink = RecordingEventSink()
        self.cancel = asyncio.Event()
        self.executor = StepExecutor(
            self.client,
            self.tools,
            self.store,
            event_sink=self.sink,
            config=config,
            cancel_event=self.cancel,
        )
        self.messages: list[ChatMessage] = [ChatMessage.user("Write hello.txt")]
        self.issue: Issue

    async def setup(self) -> "Harness":
        task = await self.store.create_task(AgentTask.from_query("Write hello.txt"))
        self.issue = await self.store.create_issue(Issue.create(task.id, "Write hello.txt"))
        return self

    def specs(self) -> list:
        return self.tools.available_tools()

    async def run(self, plan: ExecutionPlan | None = None):  # noqa: ANN201
        return await self.executor.run_loop(
            self.issue, SYSTEM, self.messages, self.specs(), plan=plan
        )

    async def events(self, event_type: IssueEventType) -> list[dict]:
        history = await self.store.history(self.issue.id)
        return [e.payload_dict() for e in history if e.event_type is event_type]


# =============================================================================
# Reasoning loop
# =============================================================================


@pytest.mark.asyncio
async def test_tool_call_then_complete() -> None:
    h = await Harness(
        tool_turn("write_file", {"path": "hello.txt", "content": "hi"}, text="Writing."),
        complete_turn("Wrote hello.txt"),
    ).setup()

    outcome = await h.run()

    assert outcome == LoopCompleted(summary="Wrote hello.txt")
    assert [c.name for c in h.tools.calls] == ["write_file"]
    assert h.tools.calls[0].context.issue_id == h.issue.id
    events = await h.events(IssueEventType.TOOL_CALL_COMPLETED)
    assert len(events) == 1
    assert events[0]["tool_name"] == "write_file"
    assert events[0]["iteration"] == 1
    assert events[0]["result"] == "wrote 5 bytes"
    assert events[0]["success"] is True
    assert [e["iteration"] for e in await h.events(IssueEventType.LOOP_ITERATION)] == [
        1,
        2,
    ]
    tool_message = h.messages[2]
    assert tool_message.role == "tool"
    assert tool_message.content == "wrote 5 bytes"
    assert h.sink.count("on_tool_called") == 1
    assert h.sink.count("on_iteration_started") == 2


@pytest.mark.asyncio
async def test_meta_tools_are_advertised_not_executed() -> None:
    h = await Harness(complete_turn("Done")).setup()
    await h.run()
    names = [spec.name for spec in h.client.stream_calls[0].params.tools]
    assert names == ["write_file", "complete_task", "request_clarification"]
    assert h.tools.calls == []
    first_message = h.client.stream_calls[0].messages[0]
    assert first_message.role == "system"
    assert first_message.content == SYSTEM


@pytest.mark.asyncio
async def test_three_text_only_responses_end_the_loop() -> None:
    h = await Harness(
        text_turn("Let me think about this."),
        text_turn("Still considering the options."),
        text_turn("x" * 700),
    ).setup()

    outcome = await h.run()

    assert isinstance(outcome, LoopCompleted)
    assert outcome.summary == "x" * 500
    assert len(h.client.stream_calls) == 3
    nudges = [m for m in h.messages if m.role == "user" and m.content == CONTINUE_NUDGE]
    assert len(nudges) == 2


@pytest.mark.asyncio
async def test_tool_turn_resets_text_only_count() -> None:
    h = await Harness(
        text_turn("Thinking."),
        text_turn("Thinking more."),
        tool_turn("write_file"),
        text_turn("Checking."),
        text_turn("Checking again."),
        complete_turn("Done"),
    ).setup()
    outcome = await h.run()
    assert outcome == LoopCompleted(summary="Done")


@pytest.mark.asyncio
async def test_completion_phrase_ends_loop() -> None:
    h = await Harness(
        text_turn("Checked the file.\nSummary: wrote hello.txt\nTASK_COMPLETE")
    ).setup()
    outcome = await h.run()
    assert isinstance(outcome, LoopCompleted)
    assert outcome.summary == "Summary: wrote hello.txt\nTASK_COMPLETE"


@pytest.mark.asyncio
async def test_clarification_request() -> None:
    h = await Harness(clarification_turn("Which folder?", ["docs", "src"])).setup()
    outcome = await h.run()
    assert isinstance(outcome, LoopNeedsClarification)
    assert outcome.request.question == "Which folder?"
    assert outcome.request.options == ("docs", "src")
    assert h.tools.calls == []


@pytest.mark.asyncio
async def test_iteration_limit() -> None:
    h = await Harness(
        tool_turn("write_file", text="first"),
        tool_turn("write_file"),
        config=StepExecutorConfig(max_iterations=2),
    ).setup()
    outcome = await h.run()
    assert outcome == LoopIterationLimitReached(
        iterations=2, tool_calls=2, last_response="first"
    )


@pytest.mark.asyncio
async def test_tool_timeout_returns_timeout_result() -> None:
    h = await Harness(
        tool_turn("slow_tool"),
        complete_turn("Gave up on slow tool"),
        config=StepExecutorConfig(tool_timeout_seconds=0.05),
    ).setup()
    h.tools.add_hanging_tool("slow_tool")

    outcome = await asyncio.wait_for(h.run(), timeout=5)

    assert outcome == LoopCompleted(summary="Gave up on slow tool")
    [event] = await h.events(IssueEventType.TOOL_CALL_COMPLETED)
    assert event["result"].startswith("[TIMEOUT]")
    assert event["success"] is False
    assert h.messages[2].content.startswith("[TIMEOUT] Tool 'slow_tool'")


@pytest.mark.asyncio
async def test_tool_cap_is_enforced() -> None:
    plan = ExecutionPlan("placeholder", [PlanStep(1, "write")], max_tool_calls=1)
    h = await Harness(tool_turn("write_file"), tool_turn("write_file")).setup()
    plan.issue_id = h.issue.id

    with pytest.raises(ToolCallLimitReachedError):
        await h.run(plan)

    assert plan.tool_call_count == 1
    assert len(h.tools.calls) == 1


@pytest.mark.asyncio
async def test_complete_with_artifact_saves_final_result() -> None:
    h = await Harness(complete_turn("Report ready", artifact="# Report\\nBody")).setup()

    outcome = await h.run()

    assert isinstance(outcome, LoopCompleted)
    assert outcome.artifact is not None
    final = await h.store.final_artifact(h.issue.task_id)
    assert final is not None
    assert final.filename == "result.md"
    assert final.content == "# Report\nBody"
    assert h.sink.count("on_artifact_generated") == 1


@pytest.mark.asyncio
async def test_generated_artifact_tool_result_is_saved() -> None:
    h = await Harness(tool_turn("make_notes"), complete_turn("Done")).setup()
    h.tools.add_tool(
        "make_notes", format_generated_artifact("notes.md", "- a\n- b", "markdown")
    )

    await h.run()

    [artifact] = await h.store.list_artifacts(h.issue.task_id)
    assert artifact.filename == "notes.md"
    assert artifact.content == "- a\n- b"
    assert artifact.is_final_result is False
    assert len(await h.events(IssueEventType.ARTIFACT_GENERATED)) == 1


@pytest.mark.asyncio
async def test_create_issue_posts_status_update() -> None:
    h = await Harness(tool_turn("create_issue", {"title": "x"}), complete_turn()).setup()
    h.tools.add_tool("create_issue", "Created issue os-1: x")
    await h.run()
    statuses = [args[1] for args in h.sink.args_of("on_status_update")]
    assert "Created follow-up issue" in statuses


@pytest.mark.asyncio
async def test_call_ids_and_leakage() -> None:
    h = await Harness(
        tool_turn(
            "write_file",
            text='I will write. Function: {"name": "write_file"}',
        ),
        complete_turn(),
    ).setup()
    await h.run()

    assistant = h.messages[1]
    assert assistant.content == "I will write."
    [call] = assistant.tool_calls
    assert re.fullmatch(r"call_[0-9a-f]{24}", call.id)
    assert h.messages[2].tool_call_id == call.id


@pytest.mark.asyncio
async def test_supplied_call_id_is_kept() -> None:
    h = await Harness(tool_turn("write_file", call_id="toolu_1"), complete_turn()).setup()
    await h.run()
    assert h.messages[2].tool_call_id == "toolu_1"


@pytest.mark.asyncio
async def test_tokens_are_estimated() -> None:
    h = await Harness(text_turn("TASK_COMPLETE " + "y" * 86)).setup()
    await h.run()
    [(issue_id, input_tokens, output_tokens)] = h.sink.args_of("on_tokens_consumed")
    assert issue_id == h.issue.id
    assert output_tokens == 25
    assert input_tokens == (len(SYSTEM) + len("Write hello.txt")) // 4


@pytest.mark.asyncio
async def test_cancelled_before_turn() -> None:
    h = await Harness(complete_turn()).setup()
    h.cancel.set()
    with pytest.raises(ExecutionCancelledError):
        await h.run()


@pytest.mark.asyncio
async def test_stream_errors() -> None:
    h = await Harness(NetworkError("reset"), RuntimeError("socket closed")).setup()
    with pytest.raises(NetworkError):
        await h.run()
    with pytest.raises(UnknownExecutionError, match="socket closed"):
        await h.run()


# =============================================================================
# Planned variant
# =============================================================================


def _plan(issue: Issue, *steps: PlanStep, cap: int = 10) -> ExecutionPlan:
    return ExecutionPlan(issue.id, list(steps), max_tool_calls=cap)


@pytest.mark.asyncio
async def test_execute_plan_walks_steps() -> None:
    h = await Harness(tool_turn("write_file"), tool_turn("read_file")).setup()
    h.tools.add_tool("read_file", "hi")
    plan = _plan(
        h.issue,
        PlanStep(1, "Write the file", "write_file"),
        PlanStep(2, "Read it back", "read_file"),
    )

    outcome = await h.executor.execute_plan(h.issue, plan, SYSTEM, h.messages, h.specs())

    assert outcome == LoopCompleted(
        summary="Completed 2 of 2 plan steps using 2 tool calls."
    )
    assert all(step.is_complete for step in plan.steps)
    step_prompts = [m.content or "" for m in h.messages if m.role == "user"]
    assert "You should use the `write_file` tool." in step_prompts[1]
    assert "You should use the `read_file` tool." in step_prompts[2]


@pytest.mark.asyncio
async def test_step_sub_call_budget() -> None:
    h = await Harness(
        text_turn("Hmm."),
        text_turn("Let me see."),
        text_turn("Not sure."),
    ).setup()
    plan = _plan(h.issue, PlanStep(1, "Write the file", "write_file"))

    outcome = await h.executor.execute_step(
        h.issue, plan, 0, SYSTEM, h.messages, h.specs()
    )

    assert isinstance(outcome, StepDone)
    assert outcome.expected_tool_fired is False
    assert plan.steps[0].is_complete
    assert len(h.client.stream_calls) == 3


@pytest.mark.asyncio
async def test_step_waits_for_expected_tool() -> None:
    h = await Harness(tool_turn("lookup"), tool_turn("write_file")).setup()
    h.tools.add_tool("lookup", "found")
    plan = _plan(h.issue, PlanStep(1, "Write the file", "write_file"))

    outcome = await h.executor.execute_step(
        h.issue, plan, 0, SYSTEM, h.messages, h.specs()
    )

    assert isinstance(outcome, StepDone)
    assert outcome.expected_tool_fired
    assert outcome.results == ("found", "wrote 5 bytes")
    assert plan.tool_call_count == 2


@pytest.mark.asyncio
async def test_step_completion_signal_short_circuits_plan() -> None:
    h = await Harness(complete_turn("Finished early")).setup()
    plan = _plan(h.issue, PlanStep(1, "a"), PlanStep(2, "b"))
    outcome = await h.executor.execute_plan(h.issue, plan, SYSTEM, h.messages, h.specs())
    assert outcome == LoopCompleted(summary="Finished early")
    assert plan.steps[0].is_complete
    assert not plan.steps[1].is_complete


@pytest.mark.asyncio
async def test_execute_step_validation() -> None:
    h = await Harness().setup()
    with pytest.raises(NoPlanForIssueError):
        await h.executor.execute_step(h.issue, None, 0, SYSTEM, h.messages, [])
    other = ExecutionPlan("os-other", [PlanStep(1, "a")])
    with pytest.raises(NoPlanForIssueError):
        await h.executor.execute_step(h.issue, other, 0, SYSTEM, h.messages, [])
    plan = _plan(h.issue, PlanStep(1, "a"))
    with pytest.raises(StepOutOfBoundsError):
        await h.executor.execute_step(h.issue, plan, 1, SYSTEM, h.messages, [])
    full = _plan(h.issue, PlanStep(1, "a"), cap=1)
    full.record_tool_call()
    with pytest.raises(ToolCallLimitReachedError):
        await h.executor.execute_step(h.issue, full, 0, SYSTEM, h.messages, [])
