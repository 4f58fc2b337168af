"""In-memory fake implementations for testing.

Fakes implement the real protocols from ``workloop.core.protocols`` so that
interface drift shows up as test failures, and they let tests assert on
outputs and recorded state rather than on mock call order.

Available fakes:
- ScriptedModelClient: Replays scripted completions and stream turns
- FakeToolExecutor: Name-keyed tools with canned results, recording calls
- RecordingEventSink: Captures every coordinator notification

Usage:
    from tests.fakes import ScriptedModelClient, text_turn

    client = ScriptedModelClient(turns=[text_turn("TASK_COMPLETE")])
"""

from tests.fakes.event_sink import RaisingEventSink, RecordingEventSink
from tests.fakes.model_client import (
    ScriptedModelClient,
    clarification_turn,
    complete_turn,
    plan_json,
    text_turn,
    tool_turn,
)
from tests.fakes.tool_executor import FakeToolExecutor, ToolCallRecord

__all__ = [
    "FakeToolExecutor",
    "RaisingEventSink",
    "RecordingEventSink",
    "ScriptedModelClient",
    "ToolCallRecord",
    "clarification_turn",
    "complete_turn",
    "plan_json",
    "text_turn",
    "tool_turn",
]
