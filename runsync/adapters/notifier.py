"""Notification port.

The engine decides *what* to tell the user; a Notifier decides how it is
shown. Front ends plug in their own implementation.
"""
from __future__ import annotations

import logging
from typing import Protocol

from runsync.engine.models import Advisory, AdvisoryLevel

logger = logging.getLogger(__name__)

_LOG_LEVELS: dict[AdvisoryLevel, int] = {
    AdvisoryLevel.SUCCESS: logging.INFO,
    AdvisoryLevel.INFO: logging.INFO,
    AdvisoryLevel.WARNING: logging.WARNING,
    AdvisoryLevel.ERROR: logging.ERROR,
}


class Notifier(Protocol):
    def notify(self, advisory: Advisory) -> None: ...


class LoggingNotifier:
    """Default sink: advisories go to the ``runsync.advisory`` logger."""

    def __init__(self, name: str = "runsync.advisory") -> None:
        self._logger = logging.getLogger(name)

    def notify(self, advisory: Advisory) -> None:
        self._logger.log(
            _LOG_LEVELS.get(advisory.level, logging.INFO),
            "[%s] %s", advisory.level.value, advisory.message,
        )


class CollectingNotifier:
    """Keeps advisories in memory, in emission order."""

    def __init__(self) -> None:
        self.advisories: list[Advisory] = []

    def notify(self, advisory: Advisory) -> None:
        self.advisories.append(advisory)

    def messages(self, level: AdvisoryLevel | None = None) -> list[str]:
        return [
            a.message for a in self.advisories
            if level is None or a.level is level
        ]

    def clear(self) -> None:
        self.advisories.clear()
