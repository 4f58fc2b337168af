"""In-memory IssueStore implementation.

Keeps tasks, issues, dependencies, events and artifacts in dictionaries and
lists. Events are append-only and returned in insertion order. Mutations
that change an issue's status validate the transition and record audit
events, matching what a durable store is expected to do.
"""

from __future__ import annotations

import logging
from dataclasses import replace

from workloop.core.errors import (
    InvalidStatusTransitionError,
    IssueNotFoundError,
    TaskNotFoundError,
)
from workloop.core.models import (
    AgentTask,
    Artifact,
    Issue,
    IssueDependency,
    IssueEvent,
    IssueEventType,
    IssueStatus,
    utc_now,
)
from workloop.infra.issue_manager import IssueManager

logger = logging.getLogger(__name__)


class InMemoryIssueStore:
    """Dictionary-backed store satisfying the IssueStore protocol.

    Returned Issue objects are copies; callers must write changes back with
    ``update_issue`` or the status helpers.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, AgentTask] = {}
        self._issues: dict[str, Issue] = {}
        self._dependencies: list[IssueDependency] = []
        self._events: list[IssueEvent] = []
        self._artifacts: list[Artifact] = []

    # -------------------------------------------------------------------------
    # Tasks
    # -------------------------------------------------------------------------

    async def create_task(self, task: AgentTask) -> AgentTask:
        self._tasks[task.id] = replace(task)
        return replace(task)

    async def get_task(self, task_id: str) -> AgentTask | None:
        task = self._tasks.get(task_id)
        return replace(task) if task is not None else None

    async def update_task(self, task: AgentTask) -> AgentTask:
        if task.id not in self._tasks:
            raise TaskNotFoundError(task.id)
        updated = replace(task, updated_at=utc_now())
        self._tasks[task.id] = updated
        return replace(updated)

    # -------------------------------------------------------------------------
    # Issues
    # -------------------------------------------------------------------------

    def _require(self, issue_id: str) -> Issue:
        issue = self._issues.get(issue_id)
        if issue is None:
            raise IssueNotFoundError(issue_id)
        return issue

    async def create_issue(self, issue: Issue) -> Issue:
        if issue.task_id not in self._tasks:
            raise TaskNotFoundError(issue.task_id)
        self._issues[issue.id] = replace(issue)
        await self.create_event(
            IssueEvent.with_payload(
                issue.id,
                IssueEventType.CREATED,
                {"title": issue.title, "type": issue.type.value},
            )
        )
        logger.debug("Created issue %s: %s", issue.id, issue.title)
        return replace(issue)

    async def get_issue(self, issue_id: str) -> Issue | None:
        issue = self._issues.get(issue_id)
        return replace(issue) if issue is not None else None

    async def update_issue(self, issue: Issue) -> Issue:
        current = self._require(issue.id)
        if not current.status.can_transition_to(issue.status):
            raise InvalidStatusTransitionError(
                issue.id, current.status.value, issue.status.value
            )
        updated = replace(issue, updated_at=utc_now())
        self._issues[issue.id] = updated
        return replace(updated)

    async def list_issues(self, task_id: str) -> list[Issue]:
        return IssueManager.sort_by_priority_and_age(
            replace(issue) for issue in self._issues.values() if issue.task_id == task_id
        )

    async def update_status(self, issue_id: str, status: IssueStatus) -> Issue:
        current = self._require(issue_id)
        if current.status is status:
            return replace(current)
        if not current.status.can_transition_to(status):
            raise InvalidStatusTransitionError(
                issue_id, current.status.value, status.value
            )
        updated = replace(current, status=status, updated_at=utc_now())
        self._issues[issue_id] = updated
        await self.create_event(
            IssueEvent.with_payload(
                issue_id,
                IssueEventType.STATUS_CHANGED,
                {"from": current.status.value, "to": status.value},
            )
        )
        return replace(updated)

    async def close_issue(self, issue_id: str, result: str | None) -> Issue:
        closed = await self.update_status(issue_id, IssueStatus.CLOSED)
        closed = replace(closed, result=result)
        self._issues[issue_id] = replace(closed)
        await self.create_event(
            IssueEvent.with_payload(issue_id, IssueEventType.CLOSED, {"result": result})
        )
        for dependent_id in IssueManager.unblocked_by_close(
            issue_id, self._dependencies, self._issues
        ):
            await self.update_status(dependent_id, IssueStatus.OPEN)
            logger.debug("Issue %s unblocked by %s", dependent_id, issue_id)
        return closed

    async def ready_issues(self, task_id: str | None = None) -> list[Issue]:
        ready = IssueManager.ready(
            self._issues.values(), self._dependencies, self._issues, task_id
        )
        return [replace(issue) for issue in ready]

    # -------------------------------------------------------------------------
    # Dependencies
    # -------------------------------------------------------------------------

    async def add_dependency(self, dependency: IssueDependency) -> None:
        self._require(dependency.from_issue_id)
        self._require(dependency.to_issue_id)
        self._dependencies.append(dependency)
        await self.create_event(
            IssueEvent.with_payload(
                dependency.to_issue_id,
                IssueEventType.DEPENDENCY_ADDED,
                {
                    "from_issue_id": dependency.from_issue_id,
                    "type": dependency.type.value,
                },
            )
        )

    async def dependencies(self, issue_id: str) -> list[IssueDependency]:
        return [
            dep
            for dep in self._dependencies
            if issue_id in (dep.from_issue_id, dep.to_issue_id)
        ]

    # -------------------------------------------------------------------------
    # Events and artifacts
    # -------------------------------------------------------------------------

    async def create_event(self, event: IssueEvent) -> None:
        self._events.append(event)

    async def history(self, issue_id: str) -> list[IssueEvent]:
        return [event for event in self._events if event.issue_id == issue_id]

    async def create_artifact(self, artifact: Artifact) -> Artifact:
        self._artifacts.append(artifact)
        return artifact

    async def list_artifacts(self, task_id: str) -> list[Artifact]:
        return [a for a in self._artifacts if a.task_id == task_id]

    async def final_artifact(self, task_id: str) -> Artifact | None:
        """Most recent artifact flagged as the task's final result."""
        finals = [
            a for a in self._artifacts if a.task_id == task_id and a.is_final_result
        ]
        return finals[-1] if finals else None
