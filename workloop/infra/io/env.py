"""Environment configuration and loading for workloop.

Centralizes config paths and dotenv loading. Call ``load_user_env`` early so
API keys are present before clients and Braintrust are set up.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# User config directory (stores .env and workloop.yaml)
USER_CONFIG_DIR = Path.home() / ".config" / "workloop"

SETTINGS_FILENAME = "workloop.yaml"


def get_settings_path(cwd: Path | None = None) -> Path | None:
    """Locate workloop.yaml, respecting WORKLOOP_SETTINGS.

    Lookup order: $WORKLOOP_SETTINGS, ./workloop.yaml, then
    ~/.config/workloop/workloop.yaml. Returns None when none exists.
    """
    explicit = os.environ.get("WORKLOOP_SETTINGS")
    if explicit:
        return Path(explicit)
    for candidate in (
        (cwd or Path.cwd()) / SETTINGS_FILENAME,
        USER_CONFIG_DIR / SETTINGS_FILENAME,
    ):
        if candidate.exists():
            return candidate
    return None


def load_user_env(cwd: Path | None = None) -> None:
    """Load environment from the user config directory, then the working dir.

    Loads ~/.config/workloop/.env followed by ./.env. Neither overrides
    variables that are already set in the process environment.
    """
    load_dotenv(dotenv_path=USER_CONFIG_DIR / ".env")
    load_dotenv(dotenv_path=(cwd or Path.cwd()) / ".env")
