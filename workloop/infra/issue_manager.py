"""IssueManager: pure ordering and readiness logic for issues.

Contains only static helpers operating on Issue and IssueDependency records,
so they can be tested without a store and reused by any store
implementation.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from workloop.core.models import DependencyType, IssueStatus

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from workloop.core.models import Issue, IssueDependency


class IssueManager:
    """Static helpers for issue readiness and ordering."""

    @staticmethod
    def blockers_of(
        issue_id: str, dependencies: Iterable[IssueDependency]
    ) -> set[str]:
        """IDs of issues that block ``issue_id`` via a blocks dependency."""
        return {
            dep.from_issue_id
            for dep in dependencies
            if dep.type is DependencyType.BLOCKS and dep.to_issue_id == issue_id
        }

    @staticmethod
    def is_blocked(
        issue_id: str,
        dependencies: Iterable[IssueDependency],
        issues_by_id: Mapping[str, Issue],
    ) -> bool:
        """Whether any blocker of ``issue_id`` is not yet closed.

        Blockers missing from ``issues_by_id`` are treated as closed.
        """
        for blocker_id in IssueManager.blockers_of(issue_id, dependencies):
            blocker = issues_by_id.get(blocker_id)
            if blocker is not None and blocker.status is not IssueStatus.CLOSED:
                return True
        return False

    @staticmethod
    def sort_by_priority_and_age(issues: Iterable[Issue]) -> list[Issue]:
        """Sort by priority ascending, then creation time ascending."""
        return sorted(issues, key=lambda i: (int(i.priority), i.created_at))

    @staticmethod
    def ready(
        issues: Iterable[Issue],
        dependencies: Iterable[IssueDependency],
        issues_by_id: Mapping[str, Issue],
        task_id: str | None = None,
    ) -> list[Issue]:
        """Open, unblocked issues (optionally within a task), in pick order.

        Args:
            issues: Candidate issues.
            dependencies: All known dependencies.
            issues_by_id: Lookup used to resolve blocker status.
            task_id: If set, only include issues from this task.

        Returns:
            Ready issues, highest priority and oldest first.
        """
        deps = list(dependencies)
        candidates = [
            issue
            for issue in issues
            if issue.status is IssueStatus.OPEN
            and (task_id is None or issue.task_id == task_id)
            and not IssueManager.is_blocked(issue.id, deps, issues_by_id)
        ]
        return IssueManager.sort_by_priority_and_age(candidates)

    @staticmethod
    def unblocked_by_close(
        closed_id: str,
        dependencies: Iterable[IssueDependency],
        issues_by_id: Mapping[str, Issue],
    ) -> list[str]:
        """IDs of BLOCKED-status issues whose blockers are now all closed."""
        deps = list(dependencies)
        dependents = {
            dep.to_issue_id
            for dep in deps
            if dep.type is DependencyType.BLOCKS and dep.from_issue_id == closed_id
        }
        return sorted(
            dependent_id
            for dependent_id in dependents
            if (dependent := issues_by_id.get(dependent_id)) is not None
            and dependent.status is IssueStatus.BLOCKED
            and not IssueManager.is_blocked(dependent_id, deps, issues_by_id)
        )
