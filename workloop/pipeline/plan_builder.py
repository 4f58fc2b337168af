"""Plan builder: turns an issue into an execution plan.

The builder asks the model for a structured plan and interprets the
response as one of three outcomes:

- PlanReady: an ExecutionPlan within the per-issue tool-call cap
- PlanNeedsDecomposition: more steps than the cap, pre-chunked for children
- PlanNeedsClarification: the model could not plan without more information

Decomposition children carry their parent's capability selection in their
context; for them the capability catalog is replaced by an inherited notice
and the parent's selection is reused verbatim.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from workloop.core.errors import PlanGenerationError, WorkloopError
from workloop.core.models import (
    ChatMessage,
    ClarificationRequest,
    ExecutionPlan,
    ModelParams,
    PlanStep,
)
from workloop.domain.capabilities import (
    CapabilitySelection,
    format_catalog,
    parse_capability_context,
    strip_capability_context,
)
from workloop.domain.plan_parsing import chunk_steps, parse_plan_response
from workloop.domain.prompts import INHERITED_CAPABILITIES_NOTICE, build_plan_prompt

if TYPE_CHECKING:
    from collections.abc import Sequence

    from workloop.core.models import Issue, ToolSpec
    from workloop.core.protocols import ModelClient

logger = logging.getLogger(__name__)

PLANNING_TEMPERATURE = 0.2
PLANNING_MAX_TOKENS = 2048
DEFAULT_MAX_TOOL_CALLS = 10


@dataclass(frozen=True)
class PlanReady:
    plan: ExecutionPlan


@dataclass(frozen=True)
class PlanNeedsDecomposition:
    steps: list[PlanStep]
    chunks: list[list[PlanStep]]
    selection: CapabilitySelection


@dataclass(frozen=True)
class PlanNeedsClarification:
    request: ClarificationRequest


PlanOutcome = PlanReady | PlanNeedsDecomposition | PlanNeedsClarification


class PlanBuilder:
    """Builds plans for issues using a single model completion."""

    def __init__(
        self,
        model_client: ModelClient,
        *,
        model: str | None = None,
        max_tool_calls: int = DEFAULT_MAX_TOOL_CALLS,
    ) -> None:
        if max_tool_calls < 1:
            raise ValueError(f"max_tool_calls must be >= 1, got: {max_tool_calls}")
        self._model_client = model_client
        self._model = model
        self.max_tool_calls = max_tool_calls

    def _capability_section(
        self,
        tools: Sequence[ToolSpec],
        skills: Sequence[ToolSpec],
        inherited: CapabilitySelection | None,
    ) -> str:
        if inherited is None:
            return format_catalog(tools, skills)
        names = ", ".join(inherited.tools + inherited.skills) or "all available"
        return f"{INHERITED_CAPABILITIES_NOTICE}\nInherited: {names}"

    @staticmethod
    def _known_selection(
        tools: Sequence[str],
        skills: Sequence[str],
        available_tools: Sequence[ToolSpec],
        available_skills: Sequence[ToolSpec],
    ) -> CapabilitySelection:
        tool_names = {spec.name for spec in available_tools}
        skill_names = {spec.name for spec in available_skills}
        kept_tools = tuple(name for name in tools if name in tool_names)
        kept_skills = tuple(name for name in skills if name in skill_names)
        dropped = (len(tools) - len(kept_tools)) + (len(skills) - len(kept_skills))
        if dropped:
            logger.debug("Dropped %d unknown capability selections", dropped)
        return CapabilitySelection(tools=kept_tools, skills=kept_skills)

    async def _request_plan(self, prompt: str) -> str:
        params = ModelParams(
            model=self._model,
            temperature=PLANNING_TEMPERATURE,
            max_tokens=PLANNING_MAX_TOKENS,
        )
        try:
            response = await self._model_client.complete_once(
                [ChatMessage.user(prompt)], params
            )
        except WorkloopError:
            raise
        except Exception as e:
            raise PlanGenerationError(str(e)) from e
        if not response or not response.strip():
            raise PlanGenerationError("model returned an empty response")
        return response

    async def build_plan(
        self,
        issue: Issue,
        tools: Sequence[ToolSpec],
        skills: Sequence[ToolSpec] = (),
        prior_capabilities: CapabilitySelection | None = None,
    ) -> PlanOutcome:
        """Build a plan for ``issue``.

        Args:
            issue: Issue to plan.
            tools: Tools available to the executor.
            skills: Skills available for selection.
            prior_capabilities: Selection inherited from a parent issue. When
                None, the issue's context is checked for an inherited block.

        Returns:
            PlanReady, PlanNeedsDecomposition or PlanNeedsClarification.

        Raises:
            PlanGenerationError: If the model call fails or returns nothing.
        """
        inherited = prior_capabilities or parse_capability_context(issue.context)
        prompt = build_plan_prompt(
            title=issue.title,
            description=issue.description,
            prior_context=strip_capability_context(issue.context),
            capabilities=self._capability_section(tools, skills, inherited),
            max_steps=self.max_tool_calls,
            inherits_capabilities=inherited is not None,
        )

        response = await self._request_plan(prompt)
        parsed = parse_plan_response(response, self.max_tool_calls)

        if parsed.clarification is not None:
            logger.info("Planner requested clarification for %s", issue.id)
            return PlanNeedsClarification(request=parsed.clarification)

        if inherited is not None:
            selection = inherited
        else:
            selection = self._known_selection(
                parsed.selected_tools, parsed.selected_skills, tools, skills
            )

        steps = parsed.steps
        if len(steps) > self.max_tool_calls:
            chunks = chunk_steps(steps, self.max_tool_calls)
            logger.info(
                "Plan for %s has %d steps (cap %d); decomposing into %d chunks",
                issue.id,
                len(steps),
                self.max_tool_calls,
                len(chunks),
            )
            return PlanNeedsDecomposition(
                steps=steps, chunks=chunks, selection=selection
            )

        plan = ExecutionPlan(
            issue_id=issue.id,
            steps=steps,
            max_tool_calls=self.max_tool_calls,
            selected_tools=selection.tools,
            selected_skills=selection.skills,
        )
        logger.debug("Plan for %s ready with %d steps", issue.id, len(steps))
        return PlanReady(plan=plan)
