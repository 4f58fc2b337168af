"""Shared prompt loading utilities.

Prompt templates live in ``workloop/prompts/`` as markdown files. Templates
may contain literal JSON examples, so every brace is escaped before
formatting except the placeholders each template declares.
"""

from __future__ import annotations

import functools
from pathlib import Path

# Prompt directory - points to workloop/prompts/ where prompt files live
_PROMPT_DIR = Path(__file__).parent.parent / "prompts"

CONTINUE_NUDGE = "Continue with the next action."
PRIOR_CONTEXT_HEADER = "[Prior Context]:"
ACTIVE_SKILLS_HEADER = "## Active Skills"
INHERITED_CAPABILITIES_NOTICE = (
    "Capabilities were already selected by the parent issue and are inherited "
    "as-is. Do not select capabilities again."
)

_TEMPLATE_KEYS: dict[str, tuple[str, ...]] = {
    "plan_request": (
        "title",
        "description",
        "prior_context",
        "capabilities",
        "max_steps",
        "selection_instruction",
    ),
    "step": ("step_description", "tool_hint"),
    "verification": ("title", "description", "transcript"),
    "work_mode": ("title", "description"),
}


@functools.cache
def load_template(name: str) -> str:
    """Load a prompt template with non-placeholder braces escaped.

    Args:
        name: Template name without the ``.md`` suffix.

    Returns:
        Template text ready for ``str.format``.

    Raises:
        FileNotFoundError: If the template file is missing.
    """
    template = (_PROMPT_DIR / f"{name}.md").read_text()
    escaped = template.replace("{", "{{").replace("}", "}}")
    for key in _TEMPLATE_KEYS.get(name, ()):
        escaped = escaped.replace(f"{{{{{key}}}}}", f"{{{key}}}")
    return escaped


def render(name: str, **values: object) -> str:
    return load_template(name).format(**values).strip()


def build_plan_prompt(
    *,
    title: str,
    description: str | None,
    prior_context: str | None,
    capabilities: str,
    max_steps: int,
    inherits_capabilities: bool,
) -> str:
    if inherits_capabilities:
        selection_instruction = (
            "Leave selected_tools and selected_skills empty; capabilities are "
            "inherited."
        )
    else:
        selection_instruction = (
            "List in selected_tools and selected_skills only the capabilities "
            "you intend to use."
        )
    return render(
        "plan_request",
        title=title,
        description=description or "No description provided.",
        prior_context=prior_context or "None.",
        capabilities=capabilities,
        max_steps=max_steps,
        selection_instruction=selection_instruction,
    )


def build_step_prompt(step_description: str, tool_name: str | None) -> str:
    tool_hint = f"You should use the `{tool_name}` tool." if tool_name else ""
    return render("step", step_description=step_description, tool_hint=tool_hint)


def build_verification_prompt(
    *, title: str, description: str | None, transcript: str
) -> str:
    return render(
        "verification",
        title=title,
        description=description or "No description provided.",
        transcript=transcript or "No work was recorded.",
    )


def build_system_prompt(
    base_prompt: str | None,
    *,
    title: str,
    description: str | None,
    skill_instructions: str | None = None,
) -> str:
    """Combine a caller-supplied system prompt with the work-mode section.

    Instructions of the skills selected for the issue follow the work-mode
    section under an ``## Active Skills`` heading.
    """
    parts = [base_prompt.strip()] if base_prompt and base_prompt.strip() else []
    parts.append(render("work_mode", title=title, description=description or ""))
    if skill_instructions:
        parts.append(f"{ACTIVE_SKILLS_HEADER}\n\n{skill_instructions}")
    return "\n\n".join(parts)
