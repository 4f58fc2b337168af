"""Shared dataclasses for workloop.

This module holds the data model used across the planner, executor,
verifier and coordinator. Nothing here performs I/O; every type is either
a plain value or a record owned by the issue store.

Types:
- IssueStatus / IssuePriority / IssueType / DependencyType: Issue enums
- Issue, AgentTask, IssueDependency, IssueEvent, Artifact: Store records
- PlanStep, ExecutionPlan: Plan produced for a single issue
- ClarificationRequest, AwaitingClarificationState: Clarification suspension
- VerificationResult: Goal verifier judgment
- ExecutionResult, IssueErrorState: Coordinator outputs and retry tracking
- RetryConfig: Exponential backoff configuration
- ChatMessage, ToolCall, ToolSpec: Conversation and capability shapes
- TextDelta, ToolInvocation: Tagged stream events from the model client
"""

from __future__ import annotations

import json
import secrets
import uuid
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum, IntEnum
from typing import Any, Literal


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def new_issue_id() -> str:
    """Generate an issue id of the form ``os-xxxxxxxx``."""
    return f"os-{secrets.token_hex(4)}"


def new_call_id() -> str:
    """Generate a tool call id of the form ``call_<24 hex chars>``."""
    return f"call_{secrets.token_hex(12)}"


def new_record_id() -> str:
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# Issue enums
# ---------------------------------------------------------------------------


class IssueStatus(Enum):
    """Lifecycle status of an issue."""

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    CLOSED = "closed"

    def can_transition_to(self, target: IssueStatus) -> bool:
        """Whether moving from this status to ``target`` is allowed."""
        if self is target:
            return True
        return target in _VALID_TRANSITIONS[self]


_VALID_TRANSITIONS: dict[IssueStatus, frozenset[IssueStatus]] = {
    IssueStatus.OPEN: frozenset(
        {IssueStatus.IN_PROGRESS, IssueStatus.CLOSED, IssueStatus.BLOCKED}
    ),
    IssueStatus.IN_PROGRESS: frozenset(
        {IssueStatus.CLOSED, IssueStatus.OPEN, IssueStatus.BLOCKED}
    ),
    IssueStatus.BLOCKED: frozenset({IssueStatus.OPEN}),
    IssueStatus.CLOSED: frozenset(),
}


class IssuePriority(IntEnum):
    """Issue priority. Lower values are more urgent."""

    P0 = 0
    P1 = 1
    P2 = 2
    P3 = 3


class IssueType(Enum):
    TASK = "task"
    BUG = "bug"
    DISCOVERY = "discovery"


class DependencyType(Enum):
    """Relationship between two issues.

    BLOCKS: the source must close before the target becomes ready.
    PARENT_CHILD: the target was produced by decomposing the source.
    DISCOVERED_FROM: the target was discovered while executing the source.
    """

    BLOCKS = "blocks"
    PARENT_CHILD = "parent_child"
    DISCOVERED_FROM = "discovered_from"


class IssueEventType(Enum):
    """Audit event types written to the issue store."""

    CREATED = "created"
    STATUS_CHANGED = "status_changed"
    EXECUTION_STARTED = "execution_started"
    EXECUTION_COMPLETED = "execution_completed"
    EXECUTION_FAILED = "execution_failed"
    PLAN_CREATED = "plan_created"
    ARTIFACT_GENERATED = "artifact_generated"
    CLARIFICATION_REQUESTED = "clarification_requested"
    CLARIFICATION_PROVIDED = "clarification_provided"
    DECOMPOSED = "decomposed"
    DISCOVERED = "discovered"
    CLOSED = "closed"
    LOOP_ITERATION = "loop_iteration"
    TOOL_CALL_COMPLETED = "tool_call_completed"
    DEPENDENCY_ADDED = "dependency_added"
    VERIFICATION_COMPLETED = "verification_completed"
    RETRY_SCHEDULED = "retry_scheduled"


class TaskStatus(Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ArtifactContentType(Enum):
    MARKDOWN = "markdown"
    TEXT = "text"

    @classmethod
    def from_filename(cls, filename: str) -> ArtifactContentType:
        """Derive the content type from a filename extension."""
        lowered = filename.lower()
        if lowered.endswith((".md", ".markdown")):
            return cls.MARKDOWN
        return cls.TEXT


# ---------------------------------------------------------------------------
# Store records
# ---------------------------------------------------------------------------


@dataclass
class Issue:
    """A unit of orchestrated work.

    Attributes:
        id: Issue identifier (``os-`` prefix).
        task_id: Task grouping sibling issues.
        title: Short human-readable title.
        description: Free-text body; clarification answers are appended here.
        context: Prior context carried in from a parent or earlier run,
            including the inherited capability block for decomposition children.
        priority: Scheduling priority (lower is more urgent).
        type: Issue type.
        status: Lifecycle status.
        result: Result summary written when the issue closes.
    """

    id: str
    task_id: str
    title: str
    description: str | None = None
    context: str | None = None
    priority: IssuePriority = IssuePriority.P2
    type: IssueType = IssueType.TASK
    status: IssueStatus = IssueStatus.OPEN
    result: str | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @classmethod
    def create(
        cls,
        task_id: str,
        title: str,
        *,
        description: str | None = None,
        context: str | None = None,
        priority: IssuePriority = IssuePriority.P2,
        type: IssueType = IssueType.TASK,
    ) -> Issue:
        return cls(
            id=new_issue_id(),
            task_id=task_id,
            title=title,
            description=description,
            context=context,
            priority=priority,
            type=type,
        )

    @property
    def body(self) -> str:
        """Description when present, otherwise the title."""
        return self.description or self.title


@dataclass
class AgentTask:
    """A group of issues created from one user query."""

    id: str
    title: str
    query: str
    status: TaskStatus = TaskStatus.ACTIVE
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @classmethod
    def from_query(cls, query: str) -> AgentTask:
        return cls(id=new_record_id(), title=task_title_from_query(query), query=query)


def task_title_from_query(query: str) -> str:
    """Derive a task title from the first line of a query.

    Titles longer than 50 characters are cut to 47 characters plus an
    ellipsis. An empty query yields "New Task".
    """
    stripped = query.strip()
    first_line = stripped.splitlines()[0].strip() if stripped else ""
    if not first_line:
        return "New Task"
    if len(first_line) > 50:
        return first_line[:47] + "..."
    return first_line


@dataclass(frozen=True)
class IssueDependency:
    from_issue_id: str
    to_issue_id: str
    type: DependencyType
    created_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class IssueEvent:
    """An append-only audit record for an issue.

    The payload is stored as a JSON string so events can be written to any
    store without schema changes.
    """

    id: str
    issue_id: str
    event_type: IssueEventType
    payload: str | None = None
    created_at: datetime = field(default_factory=utc_now)

    @classmethod
    def with_payload(
        cls,
        issue_id: str,
        event_type: IssueEventType,
        payload: dict[str, Any] | None = None,
    ) -> IssueEvent:
        return cls(
            id=new_record_id(),
            issue_id=issue_id,
            event_type=event_type,
            payload=json.dumps(payload, default=str) if payload is not None else None,
        )

    def payload_dict(self) -> dict[str, Any]:
        """Decode the payload, returning an empty dict when absent or invalid."""
        if not self.payload:
            return {}
        try:
            data = json.loads(self.payload)
        except json.JSONDecodeError:
            return {}
        return data if isinstance(data, dict) else {}


@dataclass(frozen=True)
class Artifact:
    """A named content blob associated with a task."""

    id: str
    task_id: str
    filename: str
    content: str
    content_type: ArtifactContentType
    is_final_result: bool = False
    created_at: datetime = field(default_factory=utc_now)

    @classmethod
    def create(
        cls,
        task_id: str,
        filename: str,
        content: str,
        *,
        is_final_result: bool = False,
    ) -> Artifact:
        return cls(
            id=new_record_id(),
            task_id=task_id,
            filename=filename,
            content=content,
            content_type=ArtifactContentType.from_filename(filename),
            is_final_result=is_final_result,
        )


# ---------------------------------------------------------------------------
# Plans
# ---------------------------------------------------------------------------


@dataclass
class PlanStep:
    """One ordered step of an execution plan.

    Only ``is_complete`` changes after creation.
    """

    step_number: int
    description: str
    tool_name: str | None = None
    is_complete: bool = False


@dataclass
class ExecutionPlan:
    """Plan for exactly one issue.

    Invariant: ``tool_call_count <= max_tool_calls``. Once the counter reaches
    the cap no further tool execution is permitted for the issue.
    """

    issue_id: str
    steps: list[PlanStep]
    max_tool_calls: int = 10
    tool_call_count: int = 0
    selected_tools: tuple[str, ...] = ()
    selected_skills: tuple[str, ...] = ()
    created_at: datetime = field(default_factory=utc_now)

    @property
    def is_at_limit(self) -> bool:
        return self.tool_call_count >= self.max_tool_calls

    @property
    def remaining_tool_calls(self) -> int:
        return max(0, self.max_tool_calls - self.tool_call_count)

    @property
    def completed_steps(self) -> int:
        return sum(1 for step in self.steps if step.is_complete)

    def record_tool_call(self) -> None:
        self.tool_call_count += 1


# ---------------------------------------------------------------------------
# Clarification
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ClarificationRequest:
    """A question posed by the model when the task is ambiguous."""

    question: str
    options: tuple[str, ...] | None = None
    context: str | None = None


@dataclass(frozen=True)
class AwaitingClarificationState:
    """Suspended execution waiting for a human answer."""

    issue_id: str
    request: ClarificationRequest
    timestamp: datetime = field(default_factory=utc_now)


# ---------------------------------------------------------------------------
# Verification and results
# ---------------------------------------------------------------------------


class VerificationStatus(Enum):
    ACHIEVED = "achieved"
    PARTIAL = "partial"
    NOT_ACHIEVED = "not_achieved"


@dataclass(frozen=True)
class VerificationResult:
    """Judgment of whether an issue's goal was met.

    Attributes:
        status: Achieved, partial or not achieved.
        summary: Never empty; falls back to the raw verifier response.
        remaining_work: Description of work left, or None when nothing remains.
    """

    status: VerificationStatus
    summary: str
    remaining_work: str | None = None


@dataclass
class ExecutionResult:
    """Outcome of executing one issue."""

    issue: Issue
    success: bool
    message: str
    child_issues: list[Issue] = field(default_factory=list)
    artifact: Artifact | None = None
    awaiting_clarification: ClarificationRequest | None = None
    verification: VerificationResult | None = None

    @property
    def is_awaiting_input(self) -> bool:
        return self.awaiting_clarification is not None


@dataclass(frozen=True)
class IssueErrorState:
    """Last failure recorded for an issue while retries are outstanding."""

    issue_id: str
    error: BaseException
    attempt: int
    timestamp: datetime
    can_retry: bool


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behavior with exponential backoff.

    Attempts are counted from zero. Attempt 0 runs immediately; attempt ``n``
    waits ``min(base_delay * backoff_multiplier ** (n - 1), max_delay)``.

    Attributes:
        max_attempts: Total attempts including the first.
        base_delay: Delay in seconds before the first retry.
        max_delay: Cap on any single delay in seconds.
        backoff_multiplier: Exponential backoff multiplier.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got: {self.max_attempts}")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("retry delays must be >= 0")
        if self.backoff_multiplier < 1:
            raise ValueError(
                f"backoff_multiplier must be >= 1, got: {self.backoff_multiplier}"
            )

    @classmethod
    def none(cls) -> RetryConfig:
        """A single attempt with no backoff."""
        return cls(
            max_attempts=1, base_delay=0.0, max_delay=0.0, backoff_multiplier=1.0
        )

    def delay_for_attempt(self, attempt: int) -> float:
        if attempt <= 0:
            return 0.0
        delay = self.base_delay * self.backoff_multiplier ** (attempt - 1)
        return min(delay, self.max_delay)


# ---------------------------------------------------------------------------
# Conversation and capabilities
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ToolCall:
    id: str
    name: str
    arguments: str


@dataclass(frozen=True)
class ChatMessage:
    """One conversation message in provider-neutral form."""

    role: Literal["system", "user", "assistant", "tool"]
    content: str | None = None
    tool_calls: tuple[ToolCall, ...] = ()
    tool_call_id: str | None = None

    @classmethod
    def system(cls, content: str) -> ChatMessage:
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> ChatMessage:
        return cls(role="user", content=content)

    @classmethod
    def assistant(
        cls, content: str | None, tool_calls: tuple[ToolCall, ...] = ()
    ) -> ChatMessage:
        return cls(role="assistant", content=content, tool_calls=tool_calls)

    @classmethod
    def tool(cls, content: str, tool_call_id: str) -> ChatMessage:
        return cls(role="tool", content=content, tool_call_id=tool_call_id)


@dataclass(frozen=True)
class ToolSpec:
    """A tool (or skill) the model may use.

    Skills carry ``instructions`` and no ``parameters``; they are advertised
    in the capability catalog but cannot be invoked.
    """

    name: str
    description: str
    parameters: dict[str, Any] = field(default_factory=dict)
    category: str = "tool"
    instructions: str | None = None

    @classmethod
    def skill(cls, name: str, description: str, instructions: str) -> ToolSpec:
        return cls(
            name=name,
            description=description,
            category="skill",
            instructions=instructions,
        )

    @property
    def is_skill(self) -> bool:
        return self.category == "skill"


@dataclass(frozen=True)
class ModelParams:
    """Sampling parameters for a model call."""

    model: str | None = None
    temperature: float = 0.3
    max_tokens: int = 4096
    top_p: float | None = None
    tools: tuple[ToolSpec, ...] = ()

    def with_tools(self, tools: tuple[ToolSpec, ...]) -> ModelParams:
        return replace(self, tools=tools)


@dataclass(frozen=True)
class TextDelta:
    """A chunk of streamed assistant text."""

    text: str


@dataclass(frozen=True)
class ToolInvocation:
    """The model asked to call a tool instead of (or after) speaking."""

    tool_name: str
    json_arguments: str
    call_id: str | None = None


StreamEvent = TextDelta | ToolInvocation


@dataclass(frozen=True)
class IssueContext:
    """Issue identity handed to tool executions."""

    issue_id: str
    task_id: str
