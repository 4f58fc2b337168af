"""Unit tests for core data model behavior."""

import re

import pytest

from workloop.core.errors import (
    AlreadyExecutingError,
    ExecutionCancelledError,
    MaxRetriesExceededError,
    NetworkError,
    PlanGenerationError,
    RateLimitedError,
    ToolCallLimitReachedError,
    UnknownExecutionError,
    VerificationError,
    is_retriable,
)
from workloop.core.models import (
    AgentTask,
    Artifact,
    ArtifactContentType,
    ExecutionPlan,
    Issue,
    IssueEvent,
    IssueEventType,
    IssueStatus,
    PlanStep,
    RetryConfig,
    new_call_id,
    task_title_from_query,
)


class TestIssueStatus:
    @pytest.mark.parametrize(
        ("source", "target", "allowed"),
        [
            (IssueStatus.OPEN, IssueStatus.IN_PROGRESS, True),
            (IssueStatus.OPEN, IssueStatus.CLOSED, True),
            (IssueStatus.IN_PROGRESS, IssueStatus.OPEN, True),
            (IssueStatus.IN_PROGRESS, IssueStatus.BLOCKED, True),
            (IssueStatus.BLOCKED, IssueStatus.OPEN, True),
            (IssueStatus.BLOCKED, IssueStatus.IN_PROGRESS, False),
            (IssueStatus.CLOSED, IssueStatus.OPEN, False),
            (IssueStatus.CLOSED, IssueStatus.IN_PROGRESS, False),
            (IssueStatus.CLOSED, IssueStatus.CLOSED, True),
        ],
    )
    def test_transitions(
        self, source: IssueStatus, target: IssueStatus, allowed: bool
    ) -> None:
        assert source.can_transition_to(target) is allowed


class TestIdentifiers:
    def test_issue_id_format(self) -> None:
        issue = Issue.create("task", "Title")
        assert re.fullmatch(r"os-[0-9a-f]{8}", issue.id)

    def test_call_id_format(self) -> None:
        assert re.fullmatch(r"call_[0-9a-f]{24}", new_call_id())

    def test_issue_body_prefers_description(self) -> None:
        assert Issue.create("t", "Title").body == "Title"
        assert Issue.create("t", "Title", description="Details").body == "Details"


class TestTaskTitle:
    def test_first_line(self) -> None:
        assert task_title_from_query("  Write hello.txt\nwith a greeting") == (
            "Write hello.txt"
        )

    def test_long_title_is_cut(self) -> None:
        title = task_title_from_query("a" * 60)
        assert title == "a" * 47 + "..."
        assert len(title) == 50

    def test_exactly_fifty(self) -> None:
        assert task_title_from_query("b" * 50) == "b" * 50

    def test_empty(self) -> None:
        assert task_title_from_query("   \n ") == "New Task"
        assert AgentTask.from_query("").title == "New Task"


class TestRecords:
    def test_artifact_content_type(self) -> None:
        assert ArtifactContentType.from_filename("REPORT.MD") is ArtifactContentType.MARKDOWN
        assert ArtifactContentType.from_filename("a.markdown") is ArtifactContentType.MARKDOWN
        assert ArtifactContentType.from_filename("hello.txt") is ArtifactContentType.TEXT
        assert Artifact.create("t", "result.md", "x").content_type is (
            ArtifactContentType.MARKDOWN
        )

    def test_event_payload(self) -> None:
        event = IssueEvent.with_payload("os-1", IssueEventType.CLOSED, {"result": "ok"})
        assert event.payload_dict() == {"result": "ok"}
        assert IssueEvent("id", "os-1", IssueEventType.CLOSED).payload_dict() == {}
        assert IssueEvent("id", "os-1", IssueEventType.CLOSED, "{bad").payload_dict() == {}

    def test_plan_limit(self) -> None:
        plan = ExecutionPlan("os-1", [PlanStep(1, "a")], max_tool_calls=2)
        plan.record_tool_call()
        assert not plan.is_at_limit
        assert plan.remaining_tool_calls == 1
        plan.record_tool_call()
        assert plan.is_at_limit
        assert plan.remaining_tool_calls == 0


class TestRetryConfig:
    def test_delays_are_monotonic_and_capped(self) -> None:
        config = RetryConfig(max_attempts=6, base_delay=1.0, max_delay=5.0)
        delays = [config.delay_for_attempt(n) for n in range(6)]
        assert delays == [0.0, 1.0, 2.0, 4.0, 5.0, 5.0]
        assert delays == sorted(delays)

    def test_none(self) -> None:
        config = RetryConfig.none()
        assert config.max_attempts == 1
        assert config.delay_for_attempt(3) == 0.0

    @pytest.mark.parametrize(
        "kwargs",
        [{"max_attempts": 0}, {"base_delay": -1.0}, {"backoff_multiplier": 0.5}],
    )
    def test_invalid(self, kwargs: dict[str, float]) -> None:
        with pytest.raises(ValueError):
            RetryConfig(**kwargs)  # type: ignore[arg-type]


class TestRetriability:
    @pytest.mark.parametrize(
        "error",
        [
            NetworkError("down"),
            RateLimitedError(2.0),
            UnknownExecutionError("?"),
            PlanGenerationError("empty"),
        ],
    )
    def test_retriable(self, error: Exception) -> None:
        assert is_retriable(error)

    @pytest.mark.parametrize(
        "error",
        [
            ToolCallLimitReachedError("os-1", 10),
            VerificationError("bad"),
            ExecutionCancelledError("os-1"),
            AlreadyExecutingError("os-1"),
            MaxRetriesExceededError(NetworkError("x"), 3),
            ValueError("not ours"),
        ],
    )
    def test_not_retriable(self, error: Exception) -> None:
        assert not is_retriable(error)

    def test_max_retries_carries_underlying(self) -> None:
        underlying = NetworkError("down")
        error = MaxRetriesExceededError(underlying, 3)
        assert error.underlying is underlying
        assert error.attempts == 3
        assert "down" in str(error)
