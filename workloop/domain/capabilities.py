"""Capability selection context.

When the planner selects a subset of tools and skills for an issue, the
selection is carried to decomposition children as a tagged block inside the
child's context string. A child whose context carries the block skips
capability selection and reuses the parent's choice verbatim.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from workloop.core.models import ToolSpec

CAPABILITY_MARKER = "[Selected Capabilities]"
CAPABILITY_END_MARKER = "[/Selected Capabilities]"

_TOOLS_PREFIX = "Tools:"
_SKILLS_PREFIX = "Skills:"


@dataclass(frozen=True)
class CapabilitySelection:
    tools: tuple[str, ...] = ()
    skills: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.tools and not self.skills


def format_capability_context(selection: CapabilitySelection) -> str:
    tools = ", ".join(selection.tools) or "none"
    skills = ", ".join(selection.skills) or "none"
    return (
        f"{CAPABILITY_MARKER}\n"
        f"{_TOOLS_PREFIX} {tools}\n"
        f"{_SKILLS_PREFIX} {skills}\n"
        f"{CAPABILITY_END_MARKER}"
    )


def _split_names(value: str) -> tuple[str, ...]:
    names = tuple(part.strip() for part in value.split(",") if part.strip())
    return () if names == ("none",) else names


def parse_capability_context(context: str | None) -> CapabilitySelection | None:
    """Read an inherited capability block, or None when the context has none."""
    if not context or CAPABILITY_MARKER not in context:
        return None
    block = context.split(CAPABILITY_MARKER, 1)[1].split(CAPABILITY_END_MARKER, 1)[0]
    tools: tuple[str, ...] = ()
    skills: tuple[str, ...] = ()
    for line in block.splitlines():
        stripped = line.strip()
        if stripped.startswith(_TOOLS_PREFIX):
            tools = _split_names(stripped[len(_TOOLS_PREFIX) :])
        elif stripped.startswith(_SKILLS_PREFIX):
            skills = _split_names(stripped[len(_SKILLS_PREFIX) :])
    return CapabilitySelection(tools=tools, skills=skills)


def strip_capability_context(context: str | None) -> str | None:
    """Remove the capability block, returning the remaining prior context."""
    if not context:
        return None
    if CAPABILITY_MARKER not in context:
        return context.strip() or None
    before, _, rest = context.partition(CAPABILITY_MARKER)
    _, found_end, after = rest.partition(CAPABILITY_END_MARKER)
    remaining = before + (after if found_end else "")
    return remaining.strip() or None


def merge_context(
    prior: str | None, selection: CapabilitySelection | None
) -> str | None:
    """Combine prior free-text context with a capability block."""
    parts = [part for part in (strip_capability_context(prior),) if part]
    if selection is not None:
        parts.append(format_capability_context(selection))
    return "\n\n".join(parts) or None


def filter_specs(
    specs: Sequence[ToolSpec], selected: Sequence[str]
) -> list[ToolSpec]:
    """Restrict specs to the selected names; an empty selection keeps all."""
    if not selected:
        return list(specs)
    wanted = set(selected)
    return [spec for spec in specs if spec.name in wanted]


def format_catalog(tools: Sequence[ToolSpec], skills: Sequence[ToolSpec]) -> str:
    """Render the capability catalog shown to the planner."""
    lines: list[str] = []
    if tools:
        lines.append("Tools:")
        lines.extend(f"- {spec.name}: {spec.description}" for spec in tools)
    if skills:
        if lines:
            lines.append("")
        lines.append("Skills:")
        lines.extend(f"- {spec.name}: {spec.description}" for spec in skills)
    return "\n".join(lines) if lines else "No tools or skills are available."


def skill_instructions(
    skills: Sequence[ToolSpec], selected: Sequence[str]
) -> str | None:
    """Render the instruction sections of the selected skills.

    Sections follow the selection order. Skills without instructions, and
    names missing from the catalog, are skipped. An empty selection renders
    nothing.
    """
    catalog = {
        spec.name: (spec.instructions or "").strip()
        for spec in skills
        if spec.is_skill
    }
    sections = [
        f"### {name}\n\n{catalog[name]}"
        for name in dict.fromkeys(selected)
        if catalog.get(name)
    ]
    return "\n\n---\n\n".join(sections) or None
