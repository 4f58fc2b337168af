"""Unit tests for PlanBuilder."""

import pytest

from tests.fakes import ScriptedModelClient, plan_json
from workloop.core.errors import NetworkError, PlanGenerationError
from workloop.core.models import Issue, ToolSpec
from workloop.domain.capabilities import (
    CapabilitySelection,
    format_capability_context,
)
from workloop.domain.prompts import INHERITED_CAPABILITIES_NOTICE
from workloop.pipeline.plan_builder import (
    PlanBuilder,
    PlanNeedsClarification,
    PlanNeedsDecomposition,
    PlanReady,
)

TOOLS = [
    ToolSpec(name="write_file", description="Write a file"),
    ToolSpec(name="web_search", description="Search the web"),
]
SKILLS = [ToolSpec(name="tone", description="Writing tone", category="skill")]


def _issue(context: str | None = None) -> Issue:
    return Issue.create("task-1", "Write hello.txt", description="Say hi", context=context)


def _prompt(client: ScriptedModelClient) -> str:
    content = client.completion_calls[-1].messages[0].content
    assert content is not None
    return content


@pytest.mark.asyncio
async def test_plan_ready_with_selection() -> None:
    client = ScriptedModelClient(
        completions=[
            plan_json(
                [("Write the file", "write_file")],
                selected_tools=["write_file", "made_up"],
                selected_skills=["tone"],
            )
        ]
    )
    outcome = await PlanBuilder(client, max_tool_calls=5).build_plan(
        _issue(), TOOLS, SKILLS
    )

    assert isinstance(outcome, PlanReady)
    plan = outcome.plan
    assert [s.tool_name for s in plan.steps] == ["write_file"]
    assert plan.max_tool_calls == 5
    assert plan.tool_call_count == 0
    assert plan.selected_tools == ("write_file",)
    assert plan.selected_skills == ("tone",)
    prompt = _prompt(client)
    assert "- write_file: Write a file" in prompt
    assert "- tone: Writing tone" in prompt


@pytest.mark.asyncio
async def test_oversized_plan_is_decomposed() -> None:
    steps = [f"Do part number {i}" for i in range(1, 16)]
    client = ScriptedModelClient(completions=[plan_json(steps)])

    outcome = await PlanBuilder(client, max_tool_calls=10).build_plan(_issue(), TOOLS)

    assert isinstance(outcome, PlanNeedsDecomposition)
    assert len(outcome.steps) == 15
    assert [len(chunk) for chunk in outcome.chunks] == [10, 5]


@pytest.mark.asyncio
async def test_plan_at_cap_is_not_decomposed() -> None:
    steps = [f"Do part number {i}" for i in range(1, 11)]
    client = ScriptedModelClient(completions=[plan_json(steps)])
    outcome = await PlanBuilder(client, max_tool_calls=10).build_plan(_issue(), TOOLS)
    assert isinstance(outcome, PlanReady)


@pytest.mark.asyncio
async def test_clarification() -> None:
    client = ScriptedModelClient(
        completions=['{"clarification": {"question": "Which directory?"}}']
    )
    outcome = await PlanBuilder(client).build_plan(_issue(), TOOLS)
    assert isinstance(outcome, PlanNeedsClarification)
    assert outcome.request.question == "Which directory?"


@pytest.mark.asyncio
async def test_inherited_capabilities_skip_selection() -> None:
    inherited = CapabilitySelection(tools=("web_search",))
    context = f"Parent notes\n\n{format_capability_context(inherited)}"
    client = ScriptedModelClient(
        completions=[plan_json(["Search it"], selected_tools=["write_file"])]
    )

    outcome = await PlanBuilder(client).build_plan(_issue(context), TOOLS)

    assert isinstance(outcome, PlanReady)
    assert outcome.plan.selected_tools == ("web_search",)
    prompt = _prompt(client)
    assert INHERITED_CAPABILITIES_NOTICE in prompt
    assert "- write_file: Write a file" not in prompt
    assert "Parent notes" in prompt
    assert "[Selected Capabilities]" not in prompt


@pytest.mark.asyncio
async def test_empty_response_raises() -> None:
    client = ScriptedModelClient(completions=["   "])
    with pytest.raises(PlanGenerationError):
        await PlanBuilder(client).build_plan(_issue(), TOOLS)


@pytest.mark.asyncio
async def test_model_errors() -> None:
    client = ScriptedModelClient(completions=[NetworkError("down"), RuntimeError("x")])
    builder = PlanBuilder(client)
    with pytest.raises(NetworkError):
        await builder.build_plan(_issue(), TOOLS)
    with pytest.raises(PlanGenerationError, match="x"):
        await builder.build_plan(_issue(), TOOLS)


def test_invalid_cap() -> None:
    with pytest.raises(ValueError):
        PlanBuilder(ScriptedModelClient(), max_tool_calls=0)
