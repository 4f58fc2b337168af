"""Pytest configuration for workloop tests."""

import os
from pathlib import Path

import pytest


def pytest_configure(config: pytest.Config) -> None:
    """Configure test environment before collection.

    Removes BRAINTRUST_API_KEY so no test ever starts a real trace, and
    points WORKLOOP_SETTINGS away from any user-level workloop.yaml.
    """
    os.environ.pop("BRAINTRUST_API_KEY", None)
    os.environ.pop("WORKLOOP_SETTINGS", None)


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Mark tests by directory; unmarked tests default to unit."""
    for item in items:
        if any(marker in item.keywords for marker in ("unit", "integration")):
            continue
        if "integration" in Path(str(item.fspath)).parts:
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)
