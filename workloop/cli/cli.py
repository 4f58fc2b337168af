#!/usr/bin/env python3
"""
workloop CLI: plan, execute and verify a task with a tool-using model.

Usage:
    workloop run [OPTIONS] QUERY
    workloop version
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer

from workloop import __version__
from workloop.core.errors import WorkloopError
from workloop.infra.braintrust_integration import flush_braintrust, init_braintrust_logger
from workloop.infra.io.config import ConfigurationError, WorkloopConfig
from workloop.infra.io.env import get_settings_path, load_user_env
from workloop.infra.io.event_sink import ConsoleEventSink
from workloop.infra.io.log_output.console import Colors, log, set_verbose
from workloop.infra.io.settings_loader import SettingsError, load_settings
from workloop.orchestration.factory import (
    CoordinatorDependencies,
    create_coordinator,
    settings_from_config,
)

if TYPE_CHECKING:
    from workloop.core.models import ExecutionResult, RetryConfig
    from workloop.orchestration.coordinator import Coordinator
    from workloop.orchestration.types import ExecutionSettings

# Bootstrap state: tracks whether bootstrap() has been called
_bootstrapped = False

VALID_MODES = ("reasoning", "planned")


def bootstrap() -> None:
    """Load environment variables and set up tracing.

    Idempotent. Loads ~/.config/workloop/.env then ./.env.
    """
    global _bootstrapped
    if _bootstrapped:
        return
    load_user_env()
    init_braintrust_logger()
    _bootstrapped = True


app = typer.Typer(
    name="workloop",
    help="Autonomous task execution: plan, act with tools, verify",
    add_completion=False,
)


def _resolve_settings(
    config: WorkloopConfig,
    settings_file: Path | None,
) -> tuple[ExecutionSettings, RetryConfig]:
    base = settings_from_config(config)
    base_retry = config.retry_config()
    path = settings_file or get_settings_path()
    if path is None:
        return base, base_retry
    loaded = load_settings(path, base=base, base_retry=base_retry)
    log("◦", f"Settings: {path}", Colors.MUTED)
    return loaded.settings, loaded.retry_config


def _apply_overrides(
    settings: ExecutionSettings,
    *,
    model: str | None,
    max_iterations: int | None,
    max_tool_calls: int | None,
    mode: str | None,
    no_verify: bool,
) -> ExecutionSettings:
    overrides: dict[str, object] = {}
    if model is not None:
        overrides["model"] = model
    if max_iterations is not None:
        overrides["max_iterations"] = max_iterations
    if max_tool_calls is not None:
        overrides["max_tool_calls"] = max_tool_calls
    if mode is not None:
        overrides["mode"] = mode
    if no_verify:
        overrides["verify"] = False
    return replace(settings, **overrides) if overrides else settings


async def _run_interactive(
    coordinator: Coordinator,
    query: str,
    settings: ExecutionSettings,
    retry_config: RetryConfig,
) -> ExecutionResult:
    """Run the query, prompting on stdin whenever the model asks a question."""
    result = await coordinator.run(query, settings=settings, retry_config=retry_config)
    while result.is_awaiting_input:
        request = result.awaiting_clarification
        assert request is not None
        prompt = request.question
        if request.options:
            prompt += " [" + " / ".join(request.options) + "]"
        answer = await asyncio.to_thread(typer.prompt, prompt)
        result = await coordinator.provide_clarification(result.issue.id, answer)
    return result


def _print_result(result: ExecutionResult) -> None:
    print()
    if result.success:
        log("✓", result.message, Colors.GREEN)
    else:
        log("✗", result.message, Colors.RED)
    for child in result.child_issues:
        log("◦", f"{child.id}: {child.title}", Colors.MUTED)
    if result.artifact is not None:
        print()
        print(f"{Colors.BOLD}{result.artifact.filename}{Colors.RESET}")
        print(result.artifact.content)


@app.command()
def run(
    query: Annotated[str, typer.Argument(help="What you want done")],
    model: Annotated[
        str | None,
        typer.Option("--model", "-m", help="Model identifier (default: client default)"),
    ] = None,
    max_iterations: Annotated[
        int | None,
        typer.Option("--max-iterations", help="Reasoning loop iteration budget"),
    ] = None,
    max_tool_calls: Annotated[
        int | None,
        typer.Option(
            "--max-tool-calls",
            help="Per-issue tool-call cap; larger plans are decomposed",
        ),
    ] = None,
    mode: Annotated[
        str | None,
        typer.Option("--mode", help="Execution mode: 'reasoning' or 'planned'"),
    ] = None,
    settings_file: Annotated[
        Path | None,
        typer.Option("--settings", help="Path to workloop.yaml"),
    ] = None,
    no_verify: Annotated[
        bool,
        typer.Option("--no-verify", help="Skip goal verification after execution"),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show full tool arguments and plan steps"),
    ] = False,
) -> None:
    """Create a task from QUERY and execute it."""
    bootstrap()
    set_verbose(verbose)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if mode is not None and mode not in VALID_MODES:
        log("✗", f"Invalid --mode '{mode}' (expected reasoning or planned)", Colors.RED)
        raise typer.Exit(1)

    try:
        config = WorkloopConfig.from_env()
        settings, retry_config = _resolve_settings(config, settings_file)
        settings = _apply_overrides(
            settings,
            model=model,
            max_iterations=max_iterations,
            max_tool_calls=max_tool_calls,
            mode=mode,
            no_verify=no_verify,
        )
    except (ConfigurationError, SettingsError, ValueError) as e:
        log("✗", str(e), Colors.RED)
        raise typer.Exit(1) from e

    if not config.llm_api_key:
        log("✗", "Set ANTHROPIC_API_KEY or LLM_API_KEY", Colors.RED)
        raise typer.Exit(1)

    coordinator = create_coordinator(
        config,
        CoordinatorDependencies(event_sink=ConsoleEventSink()),
        settings=settings,
        retry_config=retry_config,
    )
    try:
        result = asyncio.run(
            _run_interactive(coordinator, query, settings, retry_config)
        )
    except WorkloopError as e:
        log("✗", f"{type(e).__name__}: {e}", Colors.RED)
        raise typer.Exit(1) from e
    except KeyboardInterrupt:
        coordinator.cancel()
        log("✗", "Interrupted", Colors.YELLOW)
        raise typer.Exit(130) from None
    finally:
        flush_braintrust()

    _print_result(result)
    raise typer.Exit(0 if result.success else 1)


@app.command()
def version() -> None:
    """Print the workloop version."""
    print(f"workloop {__version__}")
