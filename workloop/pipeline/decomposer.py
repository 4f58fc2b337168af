"""Decomposer: splits an oversized plan into child issues.

Each chunk of steps becomes one child issue. Children are linked to the
parent with a parent_child dependency and chained with blocks dependencies
so they become ready one after another. Every child inherits the parent's
capability selection through its context, so it skips re-selection when
planned. The parent is closed with a summary of how many children were made.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from workloop.core.models import (
    DependencyType,
    Issue,
    IssueDependency,
    IssueEvent,
    IssueEventType,
)
from workloop.domain.capabilities import merge_context
from workloop.pipeline.notifications import notify

if TYPE_CHECKING:
    from collections.abc import Sequence

    from workloop.core.models import PlanStep
    from workloop.core.protocols import CoordinatorEventSink, IssueStore
    from workloop.domain.capabilities import CapabilitySelection

logger = logging.getLogger(__name__)

MAX_CHILD_TITLE_LENGTH = 80


def child_title(first_step: PlanStep) -> str:
    title = first_step.description.strip().splitlines()[0]
    if len(title) > MAX_CHILD_TITLE_LENGTH:
        return title[: MAX_CHILD_TITLE_LENGTH - 3] + "..."
    return title


def child_description(
    parent: Issue, chunk: Sequence[PlanStep], part: int, total: int
) -> str:
    lines = [f"Part {part} of {total} of: {parent.title}", "", "Steps:"]
    for number, step in enumerate(chunk, start=1):
        suffix = f" (tool: {step.tool_name})" if step.tool_name else ""
        lines.append(f"{number}. {step.description}{suffix}")
    return "\n".join(lines)


def decomposition_summary(child_count: int) -> str:
    return f"Decomposed into {child_count} child issues"


class Decomposer:
    def __init__(
        self, store: IssueStore, event_sink: CoordinatorEventSink | None = None
    ) -> None:
        self._store = store
        self._event_sink = event_sink

    async def decompose(
        self,
        issue: Issue,
        chunks: Sequence[Sequence[PlanStep]],
        selection: CapabilitySelection | None = None,
    ) -> list[Issue]:
        """Create one child issue per chunk and close the parent.

        Args:
            issue: The parent issue whose plan was too large.
            chunks: Step chunks, each no larger than the tool-call cap.
            selection: Capability selection inherited by every child.

        Returns:
            The created children, in execution order.
        """
        context = merge_context(issue.context, selection)
        total = len(chunks)
        children: list[Issue] = []

        for part, chunk in enumerate(chunks, start=1):
            if not chunk:
                continue
            child = await self._store.create_issue(
                Issue.create(
                    issue.task_id,
                    child_title(chunk[0]),
                    description=child_description(issue, chunk, part, total),
                    context=context,
                    priority=issue.priority,
                    type=issue.type,
                )
            )
            await self._store.add_dependency(
                IssueDependency(issue.id, child.id, DependencyType.PARENT_CHILD)
            )
            if children:
                await self._store.add_dependency(
                    IssueDependency(children[-1].id, child.id, DependencyType.BLOCKS)
                )
            children.append(child)

        summary = decomposition_summary(len(children))
        await self._store.create_event(
            IssueEvent.with_payload(
                issue.id,
                IssueEventType.DECOMPOSED,
                {
                    "child_count": len(children),
                    "child_ids": [child.id for child in children],
                },
            )
        )
        await self._store.close_issue(issue.id, summary)
        logger.info("Issue %s: %s", issue.id, summary)
        notify(self._event_sink, "on_issue_decomposed", issue, children)
        return children
