from __future__ import annotations

import itertools
from typing import Any

import pytest

from runsync.adapters.notifier import CollectingNotifier
from runsync.engine.errors import CommandError
from runsync.engine.registry import SessionRegistry


class FakeCommandClient:
    """In-memory CommandClient that records every call."""

    def __init__(self) -> None:
        self.calls: list[tuple[Any, ...]] = []
        self.failures: dict[str, CommandError] = {}
        self.workers: set[str] = set()
        self.logs: dict[str, list[dict[str, Any]]] = {"info": [], "error": []}
        self.candles: list[Any] = []

    def fail(self, method: str, status_code: int = 500, message: str = "boom") -> None:
        self.failures[method] = CommandError(status_code, message)

    def names(self) -> list[str]:
        return [call[0] for call in self.calls]

    def _record(self, method: str, *args: Any) -> None:
        self.calls.append((method, *args))
        if method in self.failures:
            raise self.failures[method]

    async def start_backtest(self, session_id, body):
        self._record("start_backtest", session_id, body)

    async def cancel_backtest(self, session_id):
        self._record("cancel_backtest", session_id)

    async def start_live(self, session_id, body):
        self._record("start_live", session_id, body)

    async def cancel_live(self, session_id, paper_mode):
        self._record("cancel_live", session_id, paper_mode)

    async def import_candles(self, session_id, exchange, symbol, start_date):
        self._record("import_candles", session_id, exchange, symbol, start_date)

    async def cancel_import(self, session_id):
        self._record("cancel_import", session_id)

    async def get_logs(self, session_id, log_type, start_time):
        self._record("get_logs", session_id, log_type, start_time)
        return list(self.logs[log_type])

    async def get_candles(self, session_id, exchange, symbol, timeframe):
        self._record("get_candles", session_id, exchange, symbol, timeframe)
        return list(self.candles)

    async def active_workers(self):
        self._record("active_workers")
        return set(self.workers)


def counting_ids(prefix: str = "s"):
    counter = itertools.count(1)
    return lambda: f"{prefix}{next(counter)}"


@pytest.fixture
def client() -> FakeCommandClient:
    return FakeCommandClient()


@pytest.fixture
def notifier() -> CollectingNotifier:
    return CollectingNotifier()


@pytest.fixture
def registry(client, notifier) -> SessionRegistry:
    return SessionRegistry(client, notifier=notifier, id_factory=counting_ids())
