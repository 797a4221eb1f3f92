"""
System event logging for reltrack.

Components report lifecycle events (rotation completed, corrupted log file,
...) through an EventLogger. The logger is a fire-and-forget consumer:
a failure inside it must never turn into a rotation or relation failure.

Invariants:
    - Event names are snake_case and stable; dashboards key on them
    - Payloads are JSON-serializable dictionaries
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class EventLogger(Protocol):
    """Protocol for consumers of structured system events."""

    @abstractmethod
    async def log_system_event(self, event_name: str, payload: dict[str, Any]) -> None:
        """Record one event.

        Args:
            event_name: Stable snake_case event name
            payload: JSON-serializable event fields
        """
        ...


class LoggingEventLogger(EventLogger):
    """Writes system events through the logging module.

    The payload is attached as ``extra`` so JSON formatters render it as
    top-level fields.
    """

    def __init__(self, name: str = "reltrack.events") -> None:
        self._logger = logging.getLogger(name)

    async def log_system_event(self, event_name: str, payload: dict[str, Any]) -> None:
        self._logger.info(event_name, extra={"event": event_name, "payload": payload})


async def emit_event(
    event_logger: EventLogger | None,
    event_name: str,
    payload: dict[str, Any],
) -> None:
    """Send an event, logging instead of raising if the consumer fails."""
    if event_logger is None:
        return
    try:
        await event_logger.log_system_event(event_name, payload)
    except Exception as e:
        logger.warning(f"Failed to log system event {event_name}: {e}")
