"""Error taxonomy for workloop.

Three families:
- CoordinatorError: orchestration-state errors, never retried.
- ExecutionError: errors raised while planning, executing or verifying an
  issue. Each carries a ``retriable`` flag that the retry controller reads.
- MaxRetriesExceededError: retry exhaustion, wrapping the last error.
"""

from __future__ import annotations


class WorkloopError(Exception):
    """Base class for all workloop errors."""

    retriable: bool = False


# ---------------------------------------------------------------------------
# Orchestration-state errors
# ---------------------------------------------------------------------------


class CoordinatorError(WorkloopError):
    """Errors about the coordinator's own state. Always non-retriable."""


class AlreadyExecutingError(CoordinatorError):
    def __init__(self, current_issue_id: str | None = None) -> None:
        self.current_issue_id = current_issue_id
        detail = f" (issue {current_issue_id})" if current_issue_id else ""
        super().__init__(f"An issue is already executing{detail}")


class IssueNotFoundError(CoordinatorError):
    def __init__(self, issue_id: str) -> None:
        self.issue_id = issue_id
        super().__init__(f"Issue not found: {issue_id}")


class TaskNotFoundError(CoordinatorError):
    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(f"Task not found: {task_id}")


class NoIssueCreatedError(CoordinatorError):
    def __init__(self) -> None:
        super().__init__("Failed to create an issue for the task")


class NoPendingClarificationError(CoordinatorError):
    def __init__(self, issue_id: str) -> None:
        self.issue_id = issue_id
        super().__init__(f"No pending clarification for issue {issue_id}")


class InvalidStatusTransitionError(WorkloopError):
    """Raised by the issue store for a disallowed status change."""

    def __init__(self, issue_id: str, from_status: str, to_status: str) -> None:
        self.issue_id = issue_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid status transition for {issue_id}: {from_status} -> {to_status}"
        )


class MaxRetriesExceededError(CoordinatorError):
    """All retry attempts failed; ``underlying`` is the last error."""

    def __init__(self, underlying: BaseException, attempts: int) -> None:
        self.underlying = underlying
        self.attempts = attempts
        super().__init__(
            f"Max retries exceeded after {attempts} attempts: {underlying}"
        )


# ---------------------------------------------------------------------------
# Execution errors
# ---------------------------------------------------------------------------


class ExecutionError(WorkloopError):
    """An error raised while executing an issue."""

    retriable = True


class PlanGenerationError(ExecutionError):
    retriable = True

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Failed to generate plan: {reason}")


class NoPlanForIssueError(ExecutionError):
    retriable = False

    def __init__(self, issue_id: str) -> None:
        self.issue_id = issue_id
        super().__init__(f"No plan exists for issue {issue_id}")


class StepOutOfBoundsError(ExecutionError):
    retriable = False

    def __init__(self, index: int, step_count: int) -> None:
        self.index = index
        self.step_count = step_count
        super().__init__(f"Step index {index} out of bounds (plan has {step_count})")


class ToolCallLimitReachedError(ExecutionError):
    retriable = False

    def __init__(self, issue_id: str, limit: int) -> None:
        self.issue_id = issue_id
        self.limit = limit
        super().__init__(f"Tool call limit of {limit} reached for issue {issue_id}")


class VerificationError(ExecutionError):
    retriable = False

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Verification failed: {reason}")


class ExecutionCancelledError(ExecutionError):
    retriable = False

    def __init__(self, issue_id: str | None = None) -> None:
        self.issue_id = issue_id
        detail = f" for issue {issue_id}" if issue_id else ""
        super().__init__(f"Execution cancelled{detail}")


class NetworkError(ExecutionError):
    retriable = True


class RateLimitedError(ExecutionError):
    retriable = True

    def __init__(self, retry_after: float | None = None) -> None:
        self.retry_after = retry_after
        detail = f" (retry after {retry_after}s)" if retry_after is not None else ""
        super().__init__(f"Rate limited{detail}")


class UnknownExecutionError(ExecutionError):
    retriable = True


def is_retriable(error: BaseException) -> bool:
    """Whether the retry controller may retry after ``error``.

    Only execution errors flagged retriable qualify; anything else,
    including unexpected exceptions, surfaces immediately.
    """
    return isinstance(error, ExecutionError) and error.retriable
