"""Scripted ModelClient for deterministic tests.

Completions (used by the plan builder and goal verifier) and stream turns
(used by the step executor) are kept in separate FIFO queues. A scripted
entry that is an exception instance is raised instead of returned.
"""

from __future__ import annotations

import json
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from workloop.core.models import TextDelta, ToolInvocation

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable, Sequence

    from workloop.core.models import ChatMessage, ModelParams, StreamEvent

Turn = list[TextDelta | ToolInvocation]


def text_turn(text: str) -> Turn:
    return [TextDelta(text)]


def tool_turn(
    tool_name: str,
    arguments: dict[str, Any] | None = None,
    *,
    text: str = "",
    call_id: str | None = None,
) -> Turn:
    events: Turn = [TextDelta(text)] if text else []
    events.append(ToolInvocation(tool_name, json.dumps(arguments or {}), call_id))
    return events


def complete_turn(summary: str = "Done", **arguments: Any) -> Turn:  # noqa: ANN401
    return tool_turn("complete_task", {"summary": summary, **arguments})


def clarification_turn(question: str, options: list[str] | None = None) -> Turn:
    arguments: dict[str, Any] = {"question": question}
    if options is not None:
        arguments["options"] = options
    return tool_turn("request_clarification", arguments)


def plan_json(
    steps: Iterable[str | tuple[str, str]],
    *,
    selected_tools: Sequence[str] = (),
    selected_skills: Sequence[str] = (),
) -> str:
    """Render a planning response. A tuple step is (description, tool)."""
    rendered: list[dict[str, str]] = []
    for step in steps:
        if isinstance(step, tuple):
            rendered.append({"description": step[0], "tool": step[1]})
        else:
            rendered.append({"description": step})
    return json.dumps(
        {
            "steps": rendered,
            "selected_tools": list(selected_tools),
            "selected_skills": list(selected_skills),
        }
    )


@dataclass(frozen=True)
class ModelCall:
    messages: tuple[ChatMessage, ...]
    params: ModelParams


class ScriptedModelClient:
    """ModelClient replaying scripted responses in order.

    Raises AssertionError when a queue runs dry so that a test scripting too
    few responses fails loudly instead of hanging.
    """

    def __init__(
        self,
        completions: Iterable[str | Exception] = (),
        turns: Iterable[Turn | Exception] = (),
    ) -> None:
        self.completions: deque[str | Exception] = deque(completions)
        self.turns: deque[Turn | Exception] = deque(turns)
        self.completion_calls: list[ModelCall] = []
        self.stream_calls: list[ModelCall] = []

    def add_completion(self, response: str | Exception) -> None:
        self.completions.append(response)

    def add_turns(self, *turns: Turn | Exception) -> None:
        self.turns.extend(turns)

    async def complete_once(
        self, messages: Sequence[ChatMessage], params: ModelParams
    ) -> str:
        self.completion_calls.append(ModelCall(tuple(messages), params))
        if not self.completions:
            raise AssertionError("ScriptedModelClient: no completion scripted")
        response = self.completions.popleft()
        if isinstance(response, Exception):
            raise response
        return response

    async def stream_deltas(
        self, messages: Sequence[ChatMessage], params: ModelParams
    ) -> AsyncIterator[StreamEvent]:
        self.stream_calls.append(ModelCall(tuple(messages), params))
        if not self.turns:
            raise AssertionError("ScriptedModelClient: no stream turn scripted")
        turn = self.turns.popleft()
        if isinstance(turn, Exception):
            raise turn
        for event in turn:
            yield event
