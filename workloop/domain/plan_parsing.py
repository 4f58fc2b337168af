"""Plan response parsing.

Models do not reliably return clean JSON, so plan responses go through an
ordered chain of strategies. Each strategy returns a ``ParsedPlan`` or None;
the first one that yields at least one step (or a clarification request)
wins:

1. Strict JSON (the whole response, or a fenced code block)
2. First balanced ``{...}`` block embedded in prose
3. ``STEP N: description (tool: name)`` lines
4. Numbered list items (``1.``, ``1)``, ``1:``)

When every strategy fails, each non-trivial line becomes its own step.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from workloop.core.models import ClarificationRequest, PlanStep

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

# Lines shorter than this are headings, separators or noise.
_MIN_FALLBACK_LINE_LENGTH = 10
# Lines accepted beyond the step cap by the fallback strategy.
_FALLBACK_SLACK = 5

_CODE_BLOCK_PATTERN = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)```")
_STEP_LINE_PATTERN = re.compile(r"^\s*STEP\s+(\d+)\s*[:.\-]\s*(.+?)\s*$", re.IGNORECASE)
_NUMBERED_LINE_PATTERN = re.compile(r"^\s*(\d+)\s*[.):]\s+(.+?)\s*$")
_TOOL_SUFFIX_PATTERN = re.compile(
    r"\s*[\(\[]\s*tool\s*:\s*`?([A-Za-z0-9_.\-]+)`?\s*[\)\]]\s*$", re.IGNORECASE
)


@dataclass
class ParsedPlan:
    """Result of parsing a planning response.

    Exactly one of ``steps`` (non-empty) or ``clarification`` is meaningful.
    Absent capability fields parse as empty tuples.
    """

    steps: list[PlanStep] = field(default_factory=list)
    selected_tools: tuple[str, ...] = ()
    selected_skills: tuple[str, ...] = ()
    clarification: ClarificationRequest | None = None

    @property
    def is_usable(self) -> bool:
        return bool(self.steps) or self.clarification is not None


def extract_balanced_json(text: str) -> str | None:
    """Return the first balanced ``{...}`` block in ``text``.

    Braces inside JSON string literals are ignored so that descriptions
    containing ``{`` or ``}`` do not end the scan early.
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start : index + 1]
        # Unbalanced from this brace; try the next opening brace.
        start = text.find("{", start + 1)
    return None


def _split_tool_suffix(description: str) -> tuple[str, str | None]:
    match = _TOOL_SUFFIX_PATTERN.search(description)
    if match is None:
        return description.strip(), None
    return description[: match.start()].strip(), match.group(1)


def _string_tuple(value: object) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(str(item).strip() for item in value if str(item).strip())


def _clarification_from(data: object) -> ClarificationRequest | None:
    if isinstance(data, str) and data.strip():
        return ClarificationRequest(question=data.strip())
    if not isinstance(data, dict):
        return None
    question = str(data.get("question") or "").strip()
    if not question:
        return None
    options = _string_tuple(data.get("options"))
    context = data.get("context")
    return ClarificationRequest(
        question=question,
        options=options or None,
        context=str(context) if context else None,
    )


def _plan_from_data(data: Any) -> ParsedPlan | None:  # noqa: ANN401
    if not isinstance(data, dict):
        return None

    clarification = _clarification_from(data.get("clarification"))
    if clarification is not None:
        return ParsedPlan(clarification=clarification)

    raw_steps = data.get("steps")
    if not isinstance(raw_steps, list):
        return None

    steps: list[PlanStep] = []
    for raw in raw_steps:
        if isinstance(raw, str):
            description, tool = _split_tool_suffix(raw)
        elif isinstance(raw, dict):
            description = str(raw.get("description") or "").strip()
            tool_value = raw.get("tool") or raw.get("tool_name")
            tool = str(tool_value).strip() if tool_value else None
        else:
            continue
        if description:
            steps.append(PlanStep(len(steps) + 1, description, tool or None))

    # An empty step list falls through to the text strategies.
    if not steps:
        return None
    return ParsedPlan(
        steps=steps,
        selected_tools=_string_tuple(data.get("selected_tools")),
        selected_skills=_string_tuple(data.get("selected_skills")),
    )


def _loads(candidate: str) -> object | None:
    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        return None


def parse_strict_json(text: str) -> ParsedPlan | None:
    """Parse the whole response, or a fenced JSON code block, as JSON."""
    plan = _plan_from_data(_loads(text.strip()))
    if plan is not None:
        return plan
    for match in _CODE_BLOCK_PATTERN.finditer(text):
        content = match.group(1).strip()
        if content.startswith("{"):
            plan = _plan_from_data(_loads(content))
            if plan is not None:
                return plan
    return None


def parse_embedded_json(text: str) -> ParsedPlan | None:
    """Parse the first balanced JSON object embedded in prose."""
    candidate = extract_balanced_json(text)
    if candidate is None:
        return None
    return _plan_from_data(_loads(candidate))


def _parse_line_pattern(text: str, pattern: re.Pattern[str]) -> ParsedPlan | None:
    steps: list[PlanStep] = []
    for line in text.splitlines():
        match = pattern.match(line)
        if match is None:
            continue
        description, tool = _split_tool_suffix(match.group(2))
        if description:
            steps.append(PlanStep(len(steps) + 1, description, tool))
    return ParsedPlan(steps=steps) if steps else None


def parse_step_lines(text: str) -> ParsedPlan | None:
    """Parse ``STEP N: description (tool: name)`` lines."""
    return _parse_line_pattern(text, _STEP_LINE_PATTERN)


def parse_numbered_list(text: str) -> ParsedPlan | None:
    """Parse ``1. description`` style numbered list items."""
    return _parse_line_pattern(text, _NUMBERED_LINE_PATTERN)


PLAN_STRATEGIES: tuple[tuple[str, Callable[[str], ParsedPlan | None]], ...] = (
    ("strict_json", parse_strict_json),
    ("embedded_json", parse_embedded_json),
    ("step_lines", parse_step_lines),
    ("numbered_list", parse_numbered_list),
)


def fallback_plan(text: str, max_steps: int) -> ParsedPlan:
    """Turn every non-trivial line into a step.

    Never returns an empty plan: when no line qualifies, the whole stripped
    response (or a generic instruction) becomes the only step.
    """
    limit = max_steps + _FALLBACK_SLACK
    steps: list[PlanStep] = []
    for line in text.splitlines():
        cleaned = line.strip().lstrip("-*# ").strip()
        if len(cleaned) <= _MIN_FALLBACK_LINE_LENGTH:
            continue
        description, tool = _split_tool_suffix(cleaned)
        steps.append(PlanStep(len(steps) + 1, description, tool))
        if len(steps) >= limit:
            break
    if not steps:
        steps = [PlanStep(1, text.strip() or "Complete the task")]
    return ParsedPlan(steps=steps)


def parse_plan_response(text: str, max_steps: int) -> ParsedPlan:
    """Run the strategy chain over a planning response.

    Args:
        text: Raw model response.
        max_steps: Per-issue tool-call cap, used to bound the fallback.

    Returns:
        The first usable parse, or the line-based fallback plan.
    """
    for name, strategy in PLAN_STRATEGIES:
        plan = strategy(text)
        if plan is not None and plan.is_usable:
            logger.debug("Plan parsed via %s (%d steps)", name, len(plan.steps))
            return plan
    logger.warning("Plan response matched no structured format; using line fallback")
    return fallback_plan(text, max_steps)


def chunk_steps(steps: list[PlanStep], size: int) -> list[list[PlanStep]]:
    """Split steps into consecutive chunks of at most ``size``."""
    if size < 1:
        raise ValueError(f"chunk size must be >= 1, got: {size}")
    return [steps[i : i + size] for i in range(0, len(steps), size)]
