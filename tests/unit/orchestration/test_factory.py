"""Unit tests for coordinator wiring."""

import pytest

from tests.fakes import RecordingEventSink, ScriptedModelClient, complete_turn, plan_json
from workloop.core.models import RetryConfig
from workloop.infra.clients.anthropic_client import AnthropicModelClient
from workloop.infra.io.config import WorkloopConfig
from workloop.infra.issue_store import InMemoryIssueStore
from workloop.infra.telemetry import BraintrustProvider, NullTelemetryProvider
from workloop.orchestration.factory import (
    CoordinatorDependencies,
    create_coordinator,
    settings_from_config,
)
from workloop.orchestration.types import ExecutionSettings


def test_settings_from_config() -> None:
    config = WorkloopConfig(
        model="claude-x", max_iterations=5, max_tool_calls=3, tool_timeout_seconds=9.0
    )
    settings = settings_from_config(config)
    assert settings.model == "claude-x"
    assert settings.max_iterations == 5
    assert settings.max_tool_calls == 3
    assert settings.tool_timeout_seconds == 9.0
    assert settings.mode == "reasoning"
    assert settings.verify


def test_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("BRAINTRUST_API_KEY", raising=False)
    coordinator = create_coordinator(
        WorkloopConfig(llm_api_key="sk-test", retry_attempts=5)
    )
    assert isinstance(coordinator._model_client, AnthropicModelClient)
    assert isinstance(coordinator._telemetry, NullTelemetryProvider)
    assert coordinator.retry_config.max_attempts == 5
    assert coordinator.settings == settings_from_config(WorkloopConfig())
    # The built-in registry is used when no executor is supplied.
    names = [spec.name for spec in coordinator._tool_executor.available_tools()]
    assert "generate_artifact" in names


def test_braintrust_telemetry_when_configured() -> None:
    coordinator = create_coordinator(
        WorkloopConfig(llm_api_key="sk-test", braintrust_api_key="bt"),
        CoordinatorDependencies(model_client=ScriptedModelClient()),
    )
    assert isinstance(coordinator._telemetry, BraintrustProvider)


def test_explicit_settings_win() -> None:
    settings = ExecutionSettings(mode="planned", verify=False)
    retry = RetryConfig.none()
    coordinator = create_coordinator(
        WorkloopConfig(),
        CoordinatorDependencies(model_client=ScriptedModelClient()),
        settings=settings,
        retry_config=retry,
    )
    assert coordinator.settings is settings
    assert coordinator.retry_config is retry


@pytest.mark.asyncio
async def test_supplied_dependencies_are_used() -> None:
    store = InMemoryIssueStore()
    model = ScriptedModelClient(
        completions=[plan_json(["Answer directly"])],
        turns=[complete_turn("Answered")],
    )
    sink = RecordingEventSink()
    coordinator = create_coordinator(
        WorkloopConfig(),
        CoordinatorDependencies(store=store, model_client=model, event_sink=sink),
        settings=ExecutionSettings(verify=False),
    )

    result = await coordinator.run("What is 2 + 2?")

    assert result.success
    assert await store.get_issue(result.issue.id) is not None
    assert sink.count("on_issue_completed") == 1
