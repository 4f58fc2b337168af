"""Telemetry abstraction for issue tracing.

Provides a pluggable telemetry system with:
- TelemetryProvider protocol for abstraction
- NullTelemetryProvider for testing and opt-out
- BraintrustProvider wrapping braintrust_integration.py

Usage:
    provider = BraintrustProvider() if is_braintrust_enabled() else NullTelemetryProvider()
    with provider.create_span("os-1a2b3c4d", {"mode": "reasoning"}) as span:
        span.log_input(prompt)
        span.set_success(True)
    provider.flush()
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, Self

from workloop.infra.braintrust_integration import (
    TracedIssueExecution,
    flush_braintrust,
    is_braintrust_enabled,
)

if TYPE_CHECKING:
    from types import TracebackType


class TelemetrySpan(Protocol):
    """Protocol for a telemetry span context manager."""

    def __enter__(self) -> Self: ...

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None: ...

    def log_input(self, prompt: str) -> None:
        """Log the issue prompt."""
        ...

    def log_message(self, message: object) -> None:
        """Log the execution's result message."""
        ...

    def set_success(self, success: bool) -> None: ...

    def set_error(self, error: str) -> None: ...


class TelemetryProvider(Protocol):
    """Protocol for telemetry providers.

    Abstracts the tracing backend so tests use a null implementation and
    production uses Braintrust.
    """

    def is_enabled(self) -> bool: ...

    def create_span(
        self, name: str, metadata: dict[str, Any] | None = None
    ) -> TelemetrySpan:
        """Create a span context manager for one issue execution.

        Args:
            name: Span name (the issue id).
            metadata: Optional metadata dict.
        """
        ...

    def flush(self) -> None: ...


class NullSpan:
    """No-op span implementation for testing and opt-out."""

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        pass

    def log_input(self, prompt: str) -> None:
        pass

    def log_message(self, message: object) -> None:
        pass

    def set_success(self, success: bool) -> None:
        pass

    def set_error(self, error: str) -> None:
        pass


class NullTelemetryProvider:
    """No-op telemetry provider; stateless with no side effects."""

    def is_enabled(self) -> bool:
        return False

    def create_span(
        self, name: str, metadata: dict[str, Any] | None = None
    ) -> NullSpan:
        return NullSpan()

    def flush(self) -> None:
        pass


class BraintrustSpan:
    """Adapter exposing TracedIssueExecution as a TelemetrySpan."""

    def __init__(self, issue_id: str, metadata: dict[str, Any] | None = None):
        self._tracer = TracedIssueExecution(issue_id=issue_id, metadata=metadata)

    def __enter__(self) -> Self:
        self._tracer.__enter__()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self._tracer.__exit__(exc_type, exc_val, exc_tb)

    def log_input(self, prompt: str) -> None:
        self._tracer.log_input(prompt)

    def log_message(self, message: object) -> None:
        self._tracer.log_message(message)

    def set_success(self, success: bool) -> None:
        self._tracer.set_success(success)

    def set_error(self, error: str) -> None:
        self._tracer.set_error(error)


class BraintrustProvider:
    """Telemetry provider backed by Braintrust.

    Enabled when BRAINTRUST_API_KEY is set; spans are no-ops otherwise.
    """

    def is_enabled(self) -> bool:
        return is_braintrust_enabled()

    def create_span(
        self, name: str, metadata: dict[str, Any] | None = None
    ) -> BraintrustSpan:
        return BraintrustSpan(issue_id=name, metadata=dict(metadata or {}))

    def flush(self) -> None:
        flush_braintrust()
