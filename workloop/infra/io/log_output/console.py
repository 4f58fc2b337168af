"""Console logging helpers for workloop.

Colored terminal output keyed by issue id, used by ConsoleEventSink and the
CLI.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

# Global verbose setting (can be modified at runtime)
_verbose_enabled: bool = False


def set_verbose(enabled: bool) -> None:
    """Enable or disable verbose output globally."""
    global _verbose_enabled
    _verbose_enabled = enabled


def is_verbose_enabled() -> bool:
    return _verbose_enabled


def truncate_text(text: str, max_length: int) -> str:
    """Truncate text to max_length, adding ellipsis if truncated.

    Respects the global verbose setting: in verbose mode the text is
    returned unchanged.
    """
    if _verbose_enabled:
        return text
    if len(text) > max_length:
        return text[:max_length] + "..."
    return text


class Colors:
    """ANSI color codes for terminal output (bright variants)."""

    RESET = "\033[0m"
    BOLD = "\033[1m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    BLUE = "\033[94m"
    MAGENTA = "\033[95m"
    CYAN = "\033[96m"
    RED = "\033[91m"
    GRAY = "\033[90m"
    WHITE = "\033[97m"
    MUTED = "\033[90m"


# Palette for distinguishing issues in the same run
ISSUE_COLORS = [
    "\033[96m",  # Bright Cyan
    "\033[93m",  # Bright Yellow
    "\033[95m",  # Bright Magenta
    "\033[92m",  # Bright Green
    "\033[94m",  # Bright Blue
    "\033[97m",  # Bright White
]

_issue_color_map: dict[str, str] = {}


def get_issue_color(issue_id: str) -> str:
    """Get a stable color for an issue id."""
    if issue_id not in _issue_color_map:
        _issue_color_map[issue_id] = ISSUE_COLORS[
            len(_issue_color_map) % len(ISSUE_COLORS)
        ]
    return _issue_color_map[issue_id]


def _prefix(issue_id: str | None) -> str:
    if not issue_id:
        return ""
    return f"{get_issue_color(issue_id)}[{issue_id}]{Colors.RESET} "


def log(
    icon: str,
    message: str,
    color: str = Colors.RESET,
    dim: bool = False,
    issue_id: str | None = None,
) -> None:
    """Print a timestamped line with optional issue color coding."""
    style = Colors.MUTED if dim else ""
    timestamp = datetime.now().strftime("%H:%M:%S")
    print(
        f"{Colors.GRAY}{timestamp}{Colors.RESET} {_prefix(issue_id)}"
        f"{style}{color}{icon} {message}{Colors.RESET}"
    )


def log_verbose(
    icon: str,
    message: str,
    color: str = Colors.MUTED,
    issue_id: str | None = None,
) -> None:
    """Like log(), but only printed when verbose output is enabled."""
    if _verbose_enabled:
        log(icon, message, color, issue_id=issue_id)


def _format_arguments(arguments: dict[str, Any]) -> str:
    lines = []
    for key, value in arguments.items():
        if isinstance(value, dict | list):
            formatted = json.dumps(value, indent=2, ensure_ascii=False)
            lines.append(f"{Colors.CYAN}{key}:{Colors.RESET}")
            lines.extend(
                f"  {Colors.MUTED}{line}{Colors.RESET}" for line in formatted.split("\n")
            )
        else:
            lines.append(
                f"{Colors.CYAN}{key}:{Colors.RESET} {Colors.WHITE}{value}{Colors.RESET}"
            )
    return "\n    ".join(lines)


def _quiet_summary(arguments: dict[str, Any] | None) -> str:
    if not arguments:
        return ""
    for key in ("filename", "path", "file_path", "title"):
        if arguments.get(key):
            return str(arguments[key])
    keys = list(arguments.keys())[:3]
    preview = ", ".join(f"{k}=..." for k in keys)
    if len(arguments) > 3:
        preview += f", +{len(arguments) - 3} more"
    return f"{{{preview}}}"


def log_tool(
    tool_name: str,
    result: str = "",
    issue_id: str | None = None,
    arguments: dict[str, Any] | None = None,
) -> None:
    """Log a tool call.

    Quiet mode prints one line with a short argument summary. Verbose mode
    prints every argument and the truncated result.
    """
    icon = "⚙"
    prefix = _prefix(issue_id)

    if not _verbose_enabled:
        summary = _quiet_summary(arguments)
        suffix = f" {Colors.MUTED}{summary}{Colors.RESET}" if summary else ""
        print(f"  {prefix}{Colors.CYAN}{icon} {tool_name}{Colors.RESET}{suffix}")
        return

    args_output = f"\n    {_format_arguments(arguments)}" if arguments else ""
    result_output = (
        f"\n    {Colors.MUTED}↳ {result}{Colors.RESET}" if result else ""
    )
    print(
        f"  {prefix}{Colors.CYAN}{icon} {tool_name}{Colors.RESET}"
        f"{args_output}{result_output}"
    )


def log_agent_text(text: str, issue_id: str) -> None:
    """Log model text with the issue prefix, truncated unless verbose."""
    truncated = truncate_text(text, 100)
    print(f"  {_prefix(issue_id)}{Colors.MUTED}{truncated}{Colors.RESET}")
