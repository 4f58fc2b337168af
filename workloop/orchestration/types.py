"""Shared types for the coordinator.

This module contains dataclasses shared between coordinator.py and
factory.py to break circular imports.

- ExecutionSettings: Per-execution configuration captured at execution start
- PendingExecutionContext: What a suspended clarification resumes with
- CoordinatorDependencies: Protocol implementations for the coordinator
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

from workloop.pipeline.step_executor import (
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_TOOL_TIMEOUT_SECONDS,
    StepExecutorConfig,
)

if TYPE_CHECKING:
    from workloop.core.models import RetryConfig, ToolSpec
    from workloop.core.protocols import (
        CoordinatorEventSink,
        IssueStore,
        ModelClient,
        ToolExecutor,
    )
    from workloop.infra.telemetry import TelemetryProvider

ExecutionMode = Literal["reasoning", "planned"]

DEFAULT_MAX_TOOL_CALLS = 10


@dataclass(frozen=True)
class ExecutionSettings:
    """Configuration consumed at execution start.

    Attributes:
        model: Model identifier. None means the client's default model.
        system_prompt: Base system prompt; the work-mode section is appended.
        temperature: Sampling temperature for execution turns.
        max_tokens: Max tokens per model response.
        top_p: Optional nucleus sampling override.
        max_iterations: Iteration budget for the reasoning loop.
        max_tool_calls: Per-issue tool-call cap; also the decomposition threshold.
        tool_timeout_seconds: Hard timeout for each tool execution.
        mode: "reasoning" runs the free-form loop, "planned" walks plan steps.
        verify: Run the goal verifier after execution.
        tool_overrides: Per-tool enable (True) / disable (False) overrides.
        skills: Skill catalog offered for capability selection.
    """

    model: str | None = None
    system_prompt: str | None = None
    temperature: float = 0.3
    max_tokens: int = 4096
    top_p: float | None = None
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    max_tool_calls: int = DEFAULT_MAX_TOOL_CALLS
    tool_timeout_seconds: float = DEFAULT_TOOL_TIMEOUT_SECONDS
    mode: ExecutionMode = "reasoning"
    verify: bool = True
    tool_overrides: dict[str, bool] = field(default_factory=dict)
    skills: tuple[ToolSpec, ...] = ()

    def __post_init__(self) -> None:
        """Validate configuration invariants."""
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be >= 1")
        if self.max_tool_calls < 1:
            raise ValueError("max_tool_calls must be >= 1")
        if self.tool_timeout_seconds <= 0:
            raise ValueError("tool_timeout_seconds must be > 0")
        if self.mode not in ("reasoning", "planned"):
            raise ValueError(f"mode must be 'reasoning' or 'planned', got: {self.mode}")

    def executor_config(self) -> StepExecutorConfig:
        return StepExecutorConfig(
            model=self.model,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            top_p=self.top_p,
            max_iterations=self.max_iterations,
            tool_timeout_seconds=self.tool_timeout_seconds,
        )


@dataclass(frozen=True)
class PendingExecutionContext:
    """Execution context captured when a clarification suspends a run.

    Resuming uses exactly this context, not whatever the caller supplies
    at resume time.
    """

    settings: ExecutionSettings
    tools: tuple[ToolSpec, ...]
    retry_config: RetryConfig | None = None


@dataclass
class CoordinatorDependencies:
    """Protocol implementations for the coordinator.

    Any field left None is filled with the default implementation by
    ``create_coordinator``.
    """

    store: IssueStore | None = None
    model_client: ModelClient | None = None
    tool_executor: ToolExecutor | None = None
    event_sink: CoordinatorEventSink | None = None
    telemetry: TelemetryProvider | None = None
