"""Built-in tools available to every issue.

- generate_artifact: hands a named document back to the loop, which saves it
  as a task artifact.
- create_issue: files a discovery follow-up in the current task, linked
  discovered_from the calling issue.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from workloop.core.models import (
    ArtifactContentType,
    DependencyType,
    Issue,
    IssueDependency,
    IssueEvent,
    IssueEventType,
    IssuePriority,
    IssueType,
    ToolSpec,
)
from workloop.domain.loop_signals import CREATE_ISSUE_TOOL, format_generated_artifact
from workloop.infra.tools.registry import rejected

if TYPE_CHECKING:
    from workloop.core.models import IssueContext
    from workloop.core.protocols import IssueStore
    from workloop.infra.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

GENERATE_ARTIFACT_TOOL = "generate_artifact"

GENERATE_ARTIFACT_SPEC = ToolSpec(
    name=GENERATE_ARTIFACT_TOOL,
    description=(
        "Save a named document (report, summary, code file) as an artifact of "
        "the current task."
    ),
    parameters={
        "type": "object",
        "properties": {
            "filename": {
                "type": "string",
                "description": "File name including extension, e.g. report.md",
            },
            "content": {"type": "string", "description": "Full file content"},
        },
        "required": ["filename", "content"],
    },
)

CREATE_ISSUE_SPEC = ToolSpec(
    name=CREATE_ISSUE_TOOL,
    description=(
        "Record follow-up work discovered while executing the current issue. "
        "The new issue is picked up after the current one."
    ),
    parameters={
        "type": "object",
        "properties": {
            "title": {"type": "string", "description": "Short issue title"},
            "description": {
                "type": "string",
                "description": "What needs to be done and why",
            },
            "priority": {
                "type": "string",
                "enum": ["p0", "p1", "p2", "p3"],
                "description": "p0 is most urgent; defaults to p2",
            },
        },
        "required": ["title"],
    },
)


def parse_priority(value: object) -> IssuePriority:
    """Accept "p1", "P1", 1 or "1"; anything else falls back to p2."""
    text = str(value).strip().lower().removeprefix("p") if value is not None else ""
    try:
        return IssuePriority(int(text))
    except ValueError:
        return IssuePriority.P2


async def generate_artifact(arguments: dict[str, Any], context: IssueContext) -> str:
    filename = str(arguments.get("filename") or "").strip()
    content = arguments.get("content")
    if not filename:
        return rejected("generate_artifact requires a filename")
    if not isinstance(content, str):
        return rejected("generate_artifact requires string content")
    content_type = ArtifactContentType.from_filename(filename)
    return format_generated_artifact(filename, content, content_type.value)


class CreateIssueTool:
    """Handler for create_issue, bound to an issue store."""

    def __init__(self, store: IssueStore) -> None:
        self._store = store

    async def __call__(self, arguments: dict[str, Any], context: IssueContext) -> str:
        title = str(arguments.get("title") or "").strip()
        if not title:
            return rejected("create_issue requires a title")
        description = arguments.get("description")
        issue = await self._store.create_issue(
            Issue.create(
                context.task_id,
                title,
                description=str(description) if description else None,
                priority=parse_priority(arguments.get("priority")),
                type=IssueType.DISCOVERY,
            )
        )
        await self._store.add_dependency(
            IssueDependency(context.issue_id, issue.id, DependencyType.DISCOVERED_FROM)
        )
        await self._store.create_event(
            IssueEvent.with_payload(
                context.issue_id, IssueEventType.DISCOVERED, {"issue_id": issue.id}
            )
        )
        logger.info("Issue %s discovered follow-up %s", context.issue_id, issue.id)
        return f"Created issue {issue.id}: {issue.title}"


def register_builtin_tools(registry: ToolRegistry, store: IssueStore) -> None:
    registry.register(GENERATE_ARTIFACT_SPEC, generate_artifact)
    registry.register(CREATE_ISSUE_SPEC, CreateIssueTool(store))
