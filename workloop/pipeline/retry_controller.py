"""Retry controller with exponential backoff.

Wraps one issue execution attempt at a time. Only execution errors flagged
retriable are retried; everything else surfaces on first occurrence. After
every failed attempt an IssueErrorState is recorded, and a success clears it.

Backoff sleeps wait on the caller's cancel event so that cancellation
interrupts a pending retry immediately.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, TypeVar

from workloop.core.errors import (
    ExecutionCancelledError,
    MaxRetriesExceededError,
    RateLimitedError,
    is_retriable,
)
from workloop.core.models import IssueErrorState, RetryConfig, utc_now
from workloop.pipeline.notifications import notify

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from workloop.core.protocols import CoordinatorEventSink

    RetryHook = Callable[[str, int, float, BaseException], Awaitable[None]]

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryController:
    """Runs an operation under a RetryConfig and tracks per-issue failures.

    The error-state map is shared across executions. It is only mutated by
    the execution currently holding the coordinator's single-flight slot.
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        event_sink: CoordinatorEventSink | None = None,
        *,
        on_retry: RetryHook | None = None,
    ) -> None:
        self.config = config or RetryConfig()
        self._event_sink = event_sink
        self._on_retry = on_retry
        self._error_states: dict[str, IssueErrorState] = {}

    def error_state(self, issue_id: str) -> IssueErrorState | None:
        return self._error_states.get(issue_id)

    def clear_error_state(self, issue_id: str) -> None:
        self._error_states.pop(issue_id, None)

    def clear_all(self) -> None:
        self._error_states.clear()

    def _record(
        self, issue_id: str, error: BaseException, attempt: int, can_retry: bool
    ) -> None:
        self._error_states[issue_id] = IssueErrorState(
            issue_id=issue_id,
            error=error,
            attempt=attempt,
            timestamp=utc_now(),
            can_retry=can_retry,
        )

    @staticmethod
    def _delay_for(
        config: RetryConfig, attempt: int, error: BaseException | None
    ) -> float:
        delay = config.delay_for_attempt(attempt)
        if isinstance(error, RateLimitedError) and error.retry_after is not None:
            delay = max(delay, min(error.retry_after, config.max_delay))
        return delay

    async def _sleep(
        self, delay: float, issue_id: str, cancel_event: asyncio.Event | None
    ) -> None:
        if delay <= 0:
            return
        if cancel_event is None:
            await asyncio.sleep(delay)
            return
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=delay)
        except TimeoutError:
            return
        raise ExecutionCancelledError(issue_id)

    async def run(
        self,
        issue_id: str,
        operation: Callable[[], Awaitable[T]],
        *,
        config: RetryConfig | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> T:
        """Run ``operation`` with retries.

        Args:
            issue_id: Issue the attempts belong to.
            operation: Zero-argument coroutine factory, called once per attempt.
            config: Per-call override of the controller's RetryConfig.
            cancel_event: When set, interrupts a pending backoff sleep.

        Returns:
            The operation's result from the first successful attempt.

        Raises:
            ExecutionCancelledError: If cancelled during backoff.
            MaxRetriesExceededError: If every attempt failed with a retriable error.
            Exception: Any non-retriable error, unchanged, on first occurrence.
        """
        return await self._run(
            issue_id, operation, config or self.config, cancel_event
        )

    async def _run(
        self,
        issue_id: str,
        operation: Callable[[], Awaitable[T]],
        config: RetryConfig,
        cancel_event: asyncio.Event | None,
    ) -> T:
        max_attempts = config.max_attempts
        last_error: BaseException | None = None

        for attempt in range(max_attempts):
            if attempt > 0:
                delay = self._delay_for(config, attempt, last_error)
                assert last_error is not None
                logger.info(
                    "Retrying issue %s (attempt %d/%d) in %.1fs",
                    issue_id,
                    attempt + 1,
                    max_attempts,
                    delay,
                )
                notify(
                    self._event_sink,
                    "on_retry_scheduled",
                    issue_id,
                    attempt,
                    delay,
                    last_error,
                )
                if self._on_retry is not None:
                    await self._on_retry(issue_id, attempt, delay, last_error)
                await self._sleep(delay, issue_id, cancel_event)

            try:
                result = await operation()
            except Exception as e:
                if not is_retriable(e):
                    self._record(issue_id, e, attempt + 1, can_retry=False)
                    raise
                can_retry = attempt + 1 < max_attempts
                self._record(issue_id, e, attempt + 1, can_retry=can_retry)
                logger.warning(
                    "Attempt %d/%d for issue %s failed: %s",
                    attempt + 1,
                    max_attempts,
                    issue_id,
                    e,
                )
                last_error = e
                continue

            self.clear_error_state(issue_id)
            return result

        assert last_error is not None
        raise MaxRetriesExceededError(last_error, max_attempts) from last_error
