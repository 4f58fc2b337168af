"""YAML loader for workloop.yaml execution settings.

The file is optional. When present it must be a mapping containing only
known fields; values are merged over the defaults supplied by the caller
(typically built from WorkloopConfig) into ExecutionSettings and RetryConfig.

Example workloop.yaml::

    model: claude-sonnet-4-20250514
    mode: planned
    max_tool_calls: 8
    verify: false
    retry:
      max_attempts: 5
      base_delay: 2
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

import yaml

from workloop.core.models import RetryConfig
from workloop.orchestration.types import ExecutionSettings

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)


class SettingsError(Exception):
    """Raised when workloop.yaml is unreadable, malformed or invalid."""


_ALLOWED_TOP_LEVEL_FIELDS = frozenset(
    {
        "model",
        "system_prompt",
        "temperature",
        "max_tokens",
        "top_p",
        "max_iterations",
        "max_tool_calls",
        "tool_timeout_seconds",
        "mode",
        "verify",
        "retry",
    }
)

_ALLOWED_RETRY_FIELDS = frozenset(
    {"max_attempts", "base_delay", "max_delay", "backoff_multiplier"}
)

_STRING_FIELDS = frozenset({"model", "system_prompt", "mode"})
_INT_FIELDS = frozenset({"max_tokens", "max_iterations", "max_tool_calls"})
_FLOAT_FIELDS = frozenset({"temperature", "top_p", "tool_timeout_seconds"})


@dataclass(frozen=True)
class LoadedSettings:
    settings: ExecutionSettings
    retry_config: RetryConfig


def load_settings(
    path: Path,
    *,
    base: ExecutionSettings | None = None,
    base_retry: RetryConfig | None = None,
) -> LoadedSettings:
    """Load workloop.yaml and merge it over the given defaults.

    Args:
        path: Path to the YAML file.
        base: Settings the file's values override.
        base_retry: Retry configuration the file's ``retry`` block overrides.

    Returns:
        The merged settings and retry configuration.

    Raises:
        SettingsError: If the file cannot be read, is not valid YAML, contains
            unknown fields, or holds values of the wrong type.
    """
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise SettingsError(f"Failed to read {path}: {e}") from e
    except UnicodeDecodeError as e:
        raise SettingsError(f"Failed to decode {path}: {e}") from e
    loaded = parse_settings(content, base=base, base_retry=base_retry)
    logger.debug("Loaded settings from %s", path)
    return loaded


def parse_settings(
    content: str,
    *,
    base: ExecutionSettings | None = None,
    base_retry: RetryConfig | None = None,
) -> LoadedSettings:
    data = _parse_yaml(content)
    _validate_schema(data)
    settings = _build_settings(data, base or ExecutionSettings())
    retry_config = _build_retry(data.get("retry"), base_retry or RetryConfig())
    return LoadedSettings(settings=settings, retry_config=retry_config)


def _parse_yaml(content: str) -> dict[str, Any]:
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise SettingsError(f"Invalid YAML syntax in workloop.yaml: {e}") from e

    # Empty file or comments only
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise SettingsError(
            f"workloop.yaml must be a YAML mapping, got {type(data).__name__}"
        )
    return data


def _validate_schema(data: dict[str, Any]) -> None:
    unknown_fields = set(data.keys()) - _ALLOWED_TOP_LEVEL_FIELDS
    if unknown_fields:
        first_unknown = sorted(str(k) for k in unknown_fields)[0]
        raise SettingsError(f"Unknown field '{first_unknown}' in workloop.yaml")


def _coerce(name: str, value: Any) -> Any:  # noqa: ANN401
    if value is None:
        if name in ("model", "system_prompt", "top_p"):
            return None
        raise SettingsError(f"Field '{name}' cannot be null")
    if name == "verify":
        if not isinstance(value, bool):
            raise SettingsError(f"Field 'verify' must be a boolean, got {value!r}")
        return value
    # bool is an int subclass; reject it for numeric fields
    if name in _INT_FIELDS:
        if isinstance(value, bool) or not isinstance(value, int):
            raise SettingsError(f"Field '{name}' must be an integer, got {value!r}")
        return value
    if name in _FLOAT_FIELDS:
        if isinstance(value, bool) or not isinstance(value, int | float):
            raise SettingsError(f"Field '{name}' must be a number, got {value!r}")
        return float(value)
    if name in _STRING_FIELDS:
        if not isinstance(value, str):
            raise SettingsError(f"Field '{name}' must be a string, got {value!r}")
        return value
    return value


def _build_settings(data: dict[str, Any], base: ExecutionSettings) -> ExecutionSettings:
    overrides = {
        name: _coerce(name, value) for name, value in data.items() if name != "retry"
    }
    try:
        return replace(base, **overrides)
    except ValueError as e:
        raise SettingsError(f"Invalid settings in workloop.yaml: {e}") from e


def _build_retry(data: Any, base: RetryConfig) -> RetryConfig:  # noqa: ANN401
    if data is None:
        return base
    if not isinstance(data, dict):
        raise SettingsError(
            f"Field 'retry' must be a mapping, got {type(data).__name__}"
        )
    unknown_fields = set(data.keys()) - _ALLOWED_RETRY_FIELDS
    if unknown_fields:
        first_unknown = sorted(str(k) for k in unknown_fields)[0]
        raise SettingsError(f"Unknown field 'retry.{first_unknown}' in workloop.yaml")

    overrides: dict[str, int | float] = {}
    for name, value in data.items():
        if isinstance(value, bool) or not isinstance(value, int | float):
            raise SettingsError(
                f"Field 'retry.{name}' must be a number, got {value!r}"
            )
        if name == "max_attempts" and not isinstance(value, int):
            raise SettingsError(
                f"Field 'retry.max_attempts' must be an integer, got {value!r}"
            )
        overrides[name] = value if name == "max_attempts" else float(value)
    try:
        return replace(base, **overrides)
    except ValueError as e:
        raise SettingsError(f"Invalid retry settings in workloop.yaml: {e}") from e
