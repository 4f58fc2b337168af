"""Configuration dataclass for workloop.

Provides WorkloopConfig for centralized configuration management. Programmatic
users construct it directly; the CLI loads it from environment variables via
from_env().

Environment Variables:
    LLM_API_KEY: API key for model calls (falls back to ANTHROPIC_API_KEY)
    LLM_BASE_URL: Base URL for the model API (proxy/routing)
    WORKLOOP_MODEL: Model identifier (default: client default)
    WORKLOOP_MAX_ITERATIONS: Reasoning loop iteration budget (default: 30)
    WORKLOOP_MAX_TOOL_CALLS: Per-issue tool-call cap (default: 10)
    WORKLOOP_TOOL_TIMEOUT: Per-tool timeout in seconds (default: 120)
    WORKLOOP_RETRY_ATTEMPTS: Max execution attempts (default: 3)
    WORKLOOP_RETRY_BASE_DELAY: Backoff base delay in seconds (default: 1.0)
    WORKLOOP_RETRY_MAX_DELAY: Backoff delay ceiling in seconds (default: 30.0)
    BRAINTRUST_API_KEY: Braintrust API key (enables tracing when set)
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from workloop.core.models import RetryConfig
from workloop.orchestration.types import DEFAULT_MAX_TOOL_CALLS
from workloop.pipeline.step_executor import (
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_TOOL_TIMEOUT_SECONDS,
)


def _safe_int(value: str | None, default: int) -> int:
    """Safely parse an integer with fallback to default."""
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _safe_float(value: str | None, default: float) -> float:
    """Safely parse a float with fallback to default."""
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        message = "Configuration validation failed:\n" + "\n".join(
            f"  - {e}" for e in errors
        )
        super().__init__(message)


@dataclass(frozen=True)
class WorkloopConfig:
    """Process-level configuration for workloop.

    Attributes:
        llm_api_key: API key for model calls.
            Env: LLM_API_KEY (falls back to ANTHROPIC_API_KEY)
        llm_base_url: Base URL for model API requests.
            Env: LLM_BASE_URL
        model: Model identifier. None uses the client default.
            Env: WORKLOOP_MODEL
        max_iterations: Reasoning loop iteration budget.
            Env: WORKLOOP_MAX_ITERATIONS (default: 30)
        max_tool_calls: Per-issue tool-call cap and decomposition threshold.
            Env: WORKLOOP_MAX_TOOL_CALLS (default: 10)
        tool_timeout_seconds: Hard timeout for each tool call.
            Env: WORKLOOP_TOOL_TIMEOUT (default: 120)
        retry_attempts: Max execution attempts under the retry controller.
            Env: WORKLOOP_RETRY_ATTEMPTS (default: 3)
        retry_base_delay: Backoff base delay in seconds.
            Env: WORKLOOP_RETRY_BASE_DELAY (default: 1.0)
        retry_max_delay: Backoff delay ceiling in seconds.
            Env: WORKLOOP_RETRY_MAX_DELAY (default: 30.0)
        braintrust_api_key: Braintrust API key for tracing.
            Env: BRAINTRUST_API_KEY
        request_timeout: Timeout in seconds for each model API request.

    Example:
        config = WorkloopConfig(model="claude-sonnet-4-20250514", max_tool_calls=5)
        config = WorkloopConfig.from_env()
    """

    llm_api_key: str | None = None
    llm_base_url: str | None = None
    model: str | None = None
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    max_tool_calls: int = DEFAULT_MAX_TOOL_CALLS
    tool_timeout_seconds: float = DEFAULT_TOOL_TIMEOUT_SECONDS
    retry_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0
    braintrust_api_key: str | None = None
    request_timeout: float = 120.0

    @property
    def braintrust_enabled(self) -> bool:
        return bool(self.braintrust_api_key)

    @classmethod
    def from_env(cls, *, validate: bool = True) -> WorkloopConfig:
        """Create config by reading environment variables.

        Args:
            validate: If True (default), run validate() and raise on errors.

        Raises:
            ConfigurationError: If validate is True and the config is invalid.
        """
        config = cls(
            llm_api_key=(
                os.environ.get("LLM_API_KEY") or os.environ.get("ANTHROPIC_API_KEY")
            ),
            llm_base_url=os.environ.get("LLM_BASE_URL") or None,
            model=os.environ.get("WORKLOOP_MODEL") or None,
            max_iterations=_safe_int(
                os.environ.get("WORKLOOP_MAX_ITERATIONS"), DEFAULT_MAX_ITERATIONS
            ),
            max_tool_calls=_safe_int(
                os.environ.get("WORKLOOP_MAX_TOOL_CALLS"), DEFAULT_MAX_TOOL_CALLS
            ),
            tool_timeout_seconds=_safe_float(
                os.environ.get("WORKLOOP_TOOL_TIMEOUT"), DEFAULT_TOOL_TIMEOUT_SECONDS
            ),
            retry_attempts=_safe_int(os.environ.get("WORKLOOP_RETRY_ATTEMPTS"), 3),
            retry_base_delay=_safe_float(
                os.environ.get("WORKLOOP_RETRY_BASE_DELAY"), 1.0
            ),
            retry_max_delay=_safe_float(
                os.environ.get("WORKLOOP_RETRY_MAX_DELAY"), 30.0
            ),
            braintrust_api_key=os.environ.get("BRAINTRUST_API_KEY") or None,
        )
        if validate:
            errors = config.validate()
            if errors:
                raise ConfigurationError(errors)
        return config

    def validate(self) -> list[str]:
        """Return a list of validation errors (empty when valid)."""
        errors: list[str] = []
        if self.max_iterations < 1:
            errors.append(f"max_iterations must be >= 1, got {self.max_iterations}")
        if self.max_tool_calls < 1:
            errors.append(f"max_tool_calls must be >= 1, got {self.max_tool_calls}")
        if self.tool_timeout_seconds <= 0:
            errors.append(
                f"tool_timeout_seconds must be > 0, got {self.tool_timeout_seconds}"
            )
        if self.retry_attempts < 1:
            errors.append(f"retry_attempts must be >= 1, got {self.retry_attempts}")
        if self.retry_base_delay < 0:
            errors.append(
                f"retry_base_delay must be >= 0, got {self.retry_base_delay}"
            )
        if self.retry_max_delay < self.retry_base_delay:
            errors.append(
                "retry_max_delay must be >= retry_base_delay "
                f"({self.retry_max_delay} < {self.retry_base_delay})"
            )
        if self.request_timeout <= 0:
            errors.append(f"request_timeout must be > 0, got {self.request_timeout}")
        return errors

    def retry_config(self) -> RetryConfig:
        return RetryConfig(
            max_attempts=self.retry_attempts,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
        )
