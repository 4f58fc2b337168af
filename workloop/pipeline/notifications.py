"""Best-effort event sink dispatch.

Sink callbacks are observers. A failing callback is logged and ignored so
that it can never fail or stall an execution.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from workloop.core.protocols import CoordinatorEventSink

logger = logging.getLogger(__name__)


def notify(sink: CoordinatorEventSink | None, callback: str, *args: object) -> None:
    """Invoke ``sink.<callback>(*args)``, logging and suppressing failures."""
    if sink is None:
        return
    handler = getattr(sink, callback, None)
    if handler is None:
        return
    try:
        handler(*args)
    except Exception:
        logger.warning("Event sink callback %s failed", callback, exc_info=True)
