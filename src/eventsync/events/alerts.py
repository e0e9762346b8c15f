"""User-facing alert sink.

The engine reports local-only saves and partial failures through an
``AlertSink``; the presentation layer decides how to show them. Delivery is
fire-and-forget.
"""

from __future__ import annotations

import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class AlertSink(Protocol):
    """Receives short messages meant for the user."""

    def notify(self, title: str, message: str) -> None:
        """Deliver one alert."""
        ...


class LoggingAlertSink:
    """Alert sink that writes alerts to the log."""

    def notify(self, title: str, message: str) -> None:
        logger.warning("%s: %s", title, message)
