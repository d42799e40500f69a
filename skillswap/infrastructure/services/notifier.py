from __future__ import annotations

import logging

from ...core.ports.services import Notifier

logger = logging.getLogger("skillswap.alerts")


class LoggingNotifier(Notifier):
    """Notifier for headless runs: alerts and reminders go to the log."""

    def alert(self, title: str, message: str) -> None:
        logger.warning("ALERT title=%s message=%s", title, message)

    def remind(self, title: str, message: str) -> None:
        logger.info("REMINDER title=%s message=%s", title, message)
