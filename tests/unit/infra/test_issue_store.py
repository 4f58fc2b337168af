"""Unit tests for InMemoryIssueStore and IssueManager."""

from datetime import timedelta

import pytest

from workloop.core.errors import (
    InvalidStatusTransitionError,
    IssueNotFoundError,
    TaskNotFoundError,
)
from workloop.core.models import (
    AgentTask,
    Artifact,
    DependencyType,
    Issue,
    IssueDependency,
    IssueEventType,
    IssuePriority,
    IssueStatus,
)
from workloop.infra.issue_manager import IssueManager
from workloop.infra.issue_store import InMemoryIssueStore


@pytest.fixture
def store() -> InMemoryIssueStore:
    return InMemoryIssueStore()


async def _task(store: InMemoryIssueStore) -> AgentTask:
    return await store.create_task(AgentTask.from_query("Some work"))


@pytest.mark.asyncio
async def test_issue_requires_task(store: InMemoryIssueStore) -> None:
    with pytest.raises(TaskNotFoundError):
        await store.create_issue(Issue.create("missing", "x"))


@pytest.mark.asyncio
async def test_returned_issues_are_copies(store: InMemoryIssueStore) -> None:
    task = await _task(store)
    issue = await store.create_issue(Issue.create(task.id, "Original"))
    issue.title = "Mutated"
    stored = await store.get_issue(issue.id)
    assert stored is not None
    assert stored.title == "Original"


@pytest.mark.asyncio
async def test_status_transitions_are_validated(store: InMemoryIssueStore) -> None:
    task = await _task(store)
    issue = await store.create_issue(Issue.create(task.id, "x"))
    await store.update_status(issue.id, IssueStatus.IN_PROGRESS)
    await store.close_issue(issue.id, "done")

    with pytest.raises(InvalidStatusTransitionError) as exc_info:
        await store.update_status(issue.id, IssueStatus.IN_PROGRESS)
    assert exc_info.value.from_status == "closed"
    with pytest.raises(IssueNotFoundError):
        await store.update_status("os-missing", IssueStatus.OPEN)


@pytest.mark.asyncio
async def test_close_records_events_in_order(store: InMemoryIssueStore) -> None:
    task = await _task(store)
    issue = await store.create_issue(Issue.create(task.id, "x"))
    closed = await store.close_issue(issue.id, "all good")

    assert closed.result == "all good"
    assert [e.event_type for e in await store.history(issue.id)] == [
        IssueEventType.CREATED,
        IssueEventType.STATUS_CHANGED,
        IssueEventType.CLOSED,
    ]


@pytest.mark.asyncio
async def test_ready_ordering(store: InMemoryIssueStore) -> None:
    task = await _task(store)
    low = await store.create_issue(Issue.create(task.id, "low", priority=IssuePriority.P3))
    older = Issue.create(task.id, "older", priority=IssuePriority.P1)
    older.created_at -= timedelta(minutes=5)
    older = await store.create_issue(older)
    newer = await store.create_issue(Issue.create(task.id, "newer", priority=IssuePriority.P1))
    busy = await store.create_issue(Issue.create(task.id, "busy", priority=IssuePriority.P0))
    await store.update_status(busy.id, IssueStatus.IN_PROGRESS)

    ready = await store.ready_issues(task.id)

    assert [i.id for i in ready] == [older.id, newer.id, low.id]


@pytest.mark.asyncio
async def test_ready_filters_by_task(store: InMemoryIssueStore) -> None:
    first = await _task(store)
    second = await _task(store)
    a = await store.create_issue(Issue.create(first.id, "a"))
    b = await store.create_issue(Issue.create(second.id, "b"))
    assert [i.id for i in await store.ready_issues(first.id)] == [a.id]
    assert {i.id for i in await store.ready_issues()} == {a.id, b.id}


@pytest.mark.asyncio
async def test_blocks_dependency_gates_readiness(store: InMemoryIssueStore) -> None:
    task = await _task(store)
    blocker = await store.create_issue(Issue.create(task.id, "blocker"))
    dependent = await store.create_issue(Issue.create(task.id, "dependent"))
    await store.add_dependency(
        IssueDependency(blocker.id, dependent.id, DependencyType.BLOCKS)
    )
    await store.update_status(dependent.id, IssueStatus.BLOCKED)

    assert [i.id for i in await store.ready_issues(task.id)] == [blocker.id]

    await store.close_issue(blocker.id, None)

    reopened = await store.get_issue(dependent.id)
    assert reopened is not None
    assert reopened.status is IssueStatus.OPEN
    assert [i.id for i in await store.ready_issues(task.id)] == [dependent.id]


@pytest.mark.asyncio
async def test_non_blocking_dependencies_do_not_gate(store: InMemoryIssueStore) -> None:
    task = await _task(store)
    parent = await store.create_issue(Issue.create(task.id, "parent"))
    found = await store.create_issue(Issue.create(task.id, "found"))
    await store.add_dependency(
        IssueDependency(parent.id, found.id, DependencyType.DISCOVERED_FROM)
    )
    assert found.id in {i.id for i in await store.ready_issues(task.id)}
    assert len(await store.dependencies(parent.id)) == 1
    with pytest.raises(IssueNotFoundError):
        await store.add_dependency(
            IssueDependency(parent.id, "os-missing", DependencyType.BLOCKS)
        )


@pytest.mark.asyncio
async def test_artifacts(store: InMemoryIssueStore) -> None:
    task = await _task(store)
    await store.create_artifact(Artifact.create(task.id, "notes.md", "n"))
    assert await store.final_artifact(task.id) is None
    await store.create_artifact(
        Artifact.create(task.id, "result.md", "r", is_final_result=True)
    )
    assert len(await store.list_artifacts(task.id)) == 2
    final = await store.final_artifact(task.id)
    assert final is not None
    assert final.filename == "result.md"


def test_missing_blocker_counts_as_closed() -> None:
    dep = IssueDependency("os-gone", "os-1", DependencyType.BLOCKS)
    assert not IssueManager.is_blocked("os-1", [dep], {})
