"""ToolRegistry: the in-process ToolExecutor.

Tools are registered as a ToolSpec plus an async handler receiving the
decoded JSON arguments and the calling issue's context. Every tool-level
failure (unknown or disabled tool, bad arguments, handler exception) comes
back as a ``[REJECTED] <reason>`` string; ``execute`` never raises for them.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from workloop.domain.loop_signals import META_TOOLS, REJECTED_PREFIX

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    from workloop.core.models import IssueContext, ToolSpec

    ToolHandler = Callable[[dict[str, Any], IssueContext], Awaitable[str]]

logger = logging.getLogger(__name__)


def rejected(reason: str) -> str:
    return f"{REJECTED_PREFIX} {reason}"


@dataclass(frozen=True)
class RegisteredTool:
    spec: ToolSpec
    handler: ToolHandler
    enabled: bool = True


class ToolRegistry:
    """Name-keyed tool catalog implementing the ToolExecutor protocol.

    Overrides map a tool name to True (force on) or False (force off) and
    take precedence over the tool's registered default.
    """

    def __init__(self) -> None:
        self._tools: dict[str, RegisteredTool] = {}

    def register(
        self, spec: ToolSpec, handler: ToolHandler, *, enabled: bool = True
    ) -> None:
        """Register a tool.

        Raises:
            ValueError: If the name is already registered or is reserved for
                the loop's meta tools.
        """
        if spec.name in META_TOOLS:
            raise ValueError(f"Tool name '{spec.name}' is reserved")
        if spec.name in self._tools:
            raise ValueError(f"Tool '{spec.name}' is already registered")
        self._tools[spec.name] = RegisteredTool(spec, handler, enabled)
        logger.debug("Registered tool %s", spec.name)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def _is_enabled(
        self, tool: RegisteredTool, overrides: Mapping[str, bool] | None
    ) -> bool:
        if overrides and tool.spec.name in overrides:
            return overrides[tool.spec.name]
        return tool.enabled

    def available_tools(
        self, overrides: Mapping[str, bool] | None = None
    ) -> list[ToolSpec]:
        return [
            tool.spec
            for tool in self._tools.values()
            if self._is_enabled(tool, overrides)
        ]

    async def execute(
        self,
        name: str,
        json_arguments: str,
        overrides: Mapping[str, bool] | None,
        issue_context: IssueContext,
    ) -> str:
        tool = self._tools.get(name)
        if tool is None:
            return rejected(f"Unknown tool: {name}")
        if not self._is_enabled(tool, overrides):
            return rejected(f"Tool '{name}' is disabled")

        try:
            arguments = json.loads(json_arguments) if json_arguments.strip() else {}
        except json.JSONDecodeError as e:
            return rejected(f"Invalid JSON arguments for {name}: {e}")
        if not isinstance(arguments, dict):
            return rejected(f"Arguments for {name} must be a JSON object")

        try:
            return await tool.handler(arguments, issue_context)
        except Exception as e:
            logger.warning("Tool %s failed: %s", name, e)
            return rejected(f"{name} failed: {e}")
