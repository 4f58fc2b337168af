"""In-process tool registry and built-in tools."""

from workloop.infra.tools.builtin import register_builtin_tools
from workloop.infra.tools.registry import ToolRegistry

__all__ = ["ToolRegistry", "register_builtin_tools"]
