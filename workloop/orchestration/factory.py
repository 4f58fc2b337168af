"""Composition root for the Coordinator.

Design principles:
- WorkloopConfig: process-level configuration (API keys, limits, retries)
- ExecutionSettings: per-execution configuration, optionally from workloop.yaml
- CoordinatorDependencies: protocol implementations (DI for testability)
- create_coordinator(): wires defaults for anything not supplied

Usage:
    # Defaults: Anthropic client, in-memory store, built-in tools
    coordinator = create_coordinator(WorkloopConfig.from_env())

    # With fakes for testing
    deps = CoordinatorDependencies(model_client=fake_client, store=store)
    coordinator = create_coordinator(WorkloopConfig(), deps)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from workloop.infra.clients.anthropic_client import (
    AnthropicModelClient,
    create_anthropic_client,
)
from workloop.infra.io.event_sink import NullEventSink
from workloop.infra.issue_store import InMemoryIssueStore
from workloop.infra.telemetry import BraintrustProvider, NullTelemetryProvider
from workloop.infra.tools.builtin import register_builtin_tools
from workloop.infra.tools.registry import ToolRegistry
from workloop.orchestration.coordinator import Coordinator
from workloop.orchestration.types import CoordinatorDependencies, ExecutionSettings

if TYPE_CHECKING:
    from workloop.core.models import RetryConfig
    from workloop.infra.io.config import WorkloopConfig
    from workloop.infra.telemetry import TelemetryProvider

__all__ = [
    "CoordinatorDependencies",
    "create_coordinator",
    "settings_from_config",
]

logger = logging.getLogger(__name__)


def settings_from_config(config: WorkloopConfig) -> ExecutionSettings:
    """Execution settings carrying the limits from process configuration."""
    return ExecutionSettings(
        model=config.model,
        max_iterations=config.max_iterations,
        max_tool_calls=config.max_tool_calls,
        tool_timeout_seconds=config.tool_timeout_seconds,
    )


def _default_telemetry(config: WorkloopConfig) -> TelemetryProvider:
    if config.braintrust_enabled:
        return BraintrustProvider()
    return NullTelemetryProvider()


def create_coordinator(
    config: WorkloopConfig,
    deps: CoordinatorDependencies | None = None,
    *,
    settings: ExecutionSettings | None = None,
    retry_config: RetryConfig | None = None,
) -> Coordinator:
    """Create a Coordinator with defaults for any missing dependency.

    Args:
        config: Process-level configuration.
        deps: Protocol implementations; None fields get defaults.
        settings: Default execution settings. Derived from ``config`` if None.
        retry_config: Default retry policy. Derived from ``config`` if None.

    Returns:
        A ready-to-use Coordinator owned by the caller.
    """
    deps = deps or CoordinatorDependencies()

    store = deps.store or InMemoryIssueStore()
    tool_executor = deps.tool_executor
    if tool_executor is None:
        registry = ToolRegistry()
        register_builtin_tools(registry, store)
        tool_executor = registry

    model_client = deps.model_client
    if model_client is None:
        model_client = AnthropicModelClient(
            create_anthropic_client(
                api_key=config.llm_api_key,
                base_url=config.llm_base_url,
                timeout=config.request_timeout,
            )
        )

    telemetry = deps.telemetry or _default_telemetry(config)
    logger.debug("Telemetry enabled: %s", telemetry.is_enabled())

    return Coordinator(
        store,
        model_client,
        tool_executor,
        event_sink=deps.event_sink or NullEventSink(),
        settings=settings or settings_from_config(config),
        retry_config=retry_config or config.retry_config(),
        telemetry=telemetry,
    )
