"""Unit tests for ConsoleEventSink output."""

from collections.abc import Iterator

import pytest

from workloop.core.models import (
    ClarificationRequest,
    ExecutionResult,
    Issue,
    VerificationResult,
    VerificationStatus,
)
from workloop.infra.io.event_sink import ConsoleEventSink, NullEventSink
from workloop.infra.io.log_output.console import set_verbose, truncate_text


@pytest.fixture(autouse=True)
def quiet() -> Iterator[None]:
    set_verbose(False)
    yield
    set_verbose(False)


@pytest.fixture
def issue() -> Issue:
    return Issue.create("task-1", "Write hello.txt")


def test_streamed_text_is_buffered_until_tool_call(
    issue: Issue, capsys: pytest.CaptureFixture[str]
) -> None:
    sink = ConsoleEventSink()
    sink.on_stream_delta(issue.id, "Let me ")
    sink.on_stream_delta(issue.id, "write the file.")
    assert capsys.readouterr().out == ""

    sink.on_tool_called(issue.id, "write_file", '{"path": "hello.txt"}', "ok")

    out = capsys.readouterr().out
    assert out.index("Let me write the file.") < out.index("write_file")
    assert "hello.txt" in out


def test_completion_flushes_and_reports(
    issue: Issue, capsys: pytest.CaptureFixture[str]
) -> None:
    sink = ConsoleEventSink()
    sink.on_stream_delta(issue.id, "All done.")
    sink.on_tokens_consumed(issue.id, 100, 20)

    sink.on_issue_completed(
        ExecutionResult(issue=issue, success=True, message="Wrote it")
    )

    out = capsys.readouterr().out
    assert "All done." in out
    assert "✓ Wrote it" in out
    # token totals are verbose-only
    assert "Estimated tokens" not in out


def test_verbose_token_totals(
    issue: Issue, capsys: pytest.CaptureFixture[str]
) -> None:
    set_verbose(True)
    sink = ConsoleEventSink()
    sink.on_tokens_consumed(issue.id, 100, 20)
    sink.on_tokens_consumed(issue.id, 50, 5)

    sink.on_issue_completed(ExecutionResult(issue=issue, success=False, message="no"))

    out = capsys.readouterr().out
    assert "✗ no" in out
    assert "Estimated tokens: 150 in / 25 out" in out


def test_awaiting_clarification(
    issue: Issue, capsys: pytest.CaptureFixture[str]
) -> None:
    sink = ConsoleEventSink()
    request = ClarificationRequest(question="Which format?", options=("csv", "json"))
    sink.on_clarification_needed(issue.id, request)
    sink.on_issue_completed(
        ExecutionResult(
            issue=issue,
            success=False,
            message="Awaiting clarification",
            awaiting_clarification=request,
        )
    )

    out = capsys.readouterr().out
    assert "Clarification needed: Which format?" in out
    assert "- csv" in out
    assert "Awaiting clarification" in out


def test_verification_line(issue: Issue, capsys: pytest.CaptureFixture[str]) -> None:
    ConsoleEventSink().on_verification_completed(
        issue.id,
        VerificationResult(
            status=VerificationStatus.PARTIAL,
            summary="Most of it",
            remaining_work="Add tests",
        ),
    )
    assert "Verification: partial - Most of it" in capsys.readouterr().out


def test_truncate_text() -> None:
    assert truncate_text("abcdef", 3) == "abc..."
    assert truncate_text("abc", 3) == "abc"
    set_verbose(True)
    assert truncate_text("abcdef", 3) == "abcdef"


def test_null_sink_is_silent(issue: Issue, capsys: pytest.CaptureFixture[str]) -> None:
    sink = NullEventSink()
    sink.on_issue_started(issue)
    sink.on_stream_delta(issue.id, "text")
    assert capsys.readouterr().out == ""
