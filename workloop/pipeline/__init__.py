"""Pipeline stages driven by the Coordinator.

Each module is one stage with explicit inputs/outputs that can be tested in
isolation.

Modules:
    plan_builder: Plan request, parse and cap enforcement
    step_executor: Reasoning loop and bounded-planning variant
    goal_verifier: Post-execution goal check
    decomposer: Oversized plan to chained child issues
    retry_controller: Exponential backoff over execution attempts
"""

from workloop.pipeline.decomposer import Decomposer
from workloop.pipeline.goal_verifier import GoalVerifier
from workloop.pipeline.plan_builder import (
    PlanBuilder,
    PlanNeedsClarification,
    PlanNeedsDecomposition,
    PlanOutcome,
    PlanReady,
)
from workloop.pipeline.retry_controller import RetryController
from workloop.pipeline.step_executor import (
    LoopCompleted,
    LoopIterationLimitReached,
    LoopNeedsClarification,
    LoopOutcome,
    StepExecutor,
    StepExecutorConfig,
)

__all__ = [
    "Decomposer",
    "GoalVerifier",
    "LoopCompleted",
    "LoopIterationLimitReached",
    "LoopNeedsClarification",
    "LoopOutcome",
    "PlanBuilder",
    "PlanNeedsClarification",
    "PlanNeedsDecomposition",
    "PlanOutcome",
    "PlanReady",
    "RetryController",
    "StepExecutor",
    "StepExecutorConfig",
]
