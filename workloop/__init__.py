"""workloop: autonomous task execution with planning, tools and verification."""

__version__ = "0.1.0"

from workloop.orchestration.coordinator import Coordinator  # noqa: E402
from workloop.orchestration.factory import create_coordinator  # noqa: E402

__all__ = ["Coordinator", "__version__", "create_coordinator"]
