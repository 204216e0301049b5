"""SessionRegistry: structural mutations and command flows against a fake backend."""

from __future__ import annotations

import pytest

from runsync.engine.config import SyncConfig
from runsync.engine.errors import SessionNotFoundError
from runsync.engine.models import AdvisoryLevel, SessionKind, SessionStatus
from runsync.engine.registry import CLOSE_RUNNING_MESSAGE, SessionRegistry
from runsync.engine.router import EventRouter
from runsync.engine.state_machine import FORM_LOCKED_MESSAGE
from runsync.shared.models.session import Route

from conftest import counting_ids


def _backtest(registry, routes=1, fast_mode=False) -> str:
    session_id = registry.create(SessionKind.BACKTEST)
    registry.update_form(
        session_id,
        exchange="binance",
        routes=[Route("binance", f"SYM{i}-USDT", "4h", "Strat") for i in range(routes)],
        fast_mode=fast_mode,
    )
    return session_id


def _live(registry, paper_mode=True) -> str:
    session_id = registry.create(SessionKind.LIVE)
    registry.update_form(
        session_id,
        exchange="Binance Perpetual Futures",
        exchange_api_key_id="key-1",
        notification_api_key_id="tg-1",
        paper_mode=paper_mode,
        routes=[
            Route("Binance Perpetual Futures", "BTC-USDT", "1m", "Scalper"),
            Route("Binance Perpetual Futures", "ETH-USDT", "5m", "Scalper"),
        ],
    )
    return session_id


async def _running(registry, session_id) -> None:
    await registry.start(session_id)
    EventRouter(registry).apply(session_id, "progress", {"current": 1})


# ── Structure ──


def test_create_uses_injected_ids_and_fresh_forms(registry) -> None:
    first = registry.create(SessionKind.BACKTEST)
    second = registry.create(SessionKind.BACKTEST)

    assert (first, second) == ("s1", "s2")
    assert registry.get(first).form is not registry.get(second).form
    registry.get(first).form.routes.append(Route("binance", "BTC-USDT", "1h", "A"))
    assert registry.get(second).form.routes == []


def test_ids_are_never_reused(client) -> None:
    ids = iter(["dup", "dup", "other"])
    registry = SessionRegistry(client, id_factory=lambda: next(ids))
    assert registry.create(SessionKind.LIVE) == "dup"
    assert registry.create(SessionKind.BACKTEST) == "other"


def test_duplicate_deep_copies_form(registry) -> None:
    source = _backtest(registry, routes=2)
    copy_id = registry.duplicate(source)

    copied = registry.get(copy_id)
    assert copied.status is SessionStatus.IDLE
    assert copied.form == registry.get(source).form
    copied.form.routes[0].symbol = "CHANGED"
    assert registry.get(source).form.routes[0].symbol == "SYM0-USDT"


def test_get_unknown_raises(registry) -> None:
    with pytest.raises(SessionNotFoundError):
        registry.get("missing")
    with pytest.raises(KeyError):
        registry.get("missing")
    assert registry.find("missing") is None


@pytest.mark.asyncio
async def test_remove_is_refused_while_running(registry, notifier) -> None:
    session_id = _backtest(registry)
    await _running(registry, session_id)

    assert registry.remove(session_id) is False
    assert session_id in registry
    assert notifier.messages(AdvisoryLevel.ERROR) == [CLOSE_RUNNING_MESSAGE]

    EventRouter(registry).apply(session_id, "exception", {"error": "ValueError"})
    assert registry.remove(session_id) is True
    assert session_id not in registry


def test_remove_idle_session(registry) -> None:
    session_id = registry.create(SessionKind.CANDLES)
    assert registry.remove(session_id) is True
    assert len(registry) == 0


def test_update_form_replaces_the_form(registry) -> None:
    session_id = _backtest(registry)
    before = registry.get(session_id).form

    assert registry.update_form(session_id, fast_mode=True) is True

    after = registry.get(session_id).form
    assert after is not before
    assert after.fast_mode is True
    assert before.fast_mode is False
    assert after.routes == before.routes
    assert after.routes is not before.routes


@pytest.mark.asyncio
async def test_update_form_is_refused_while_running(registry, notifier) -> None:
    session_id = _backtest(registry)
    await _running(registry, session_id)
    running = registry.get(session_id)

    assert registry.update_form(session_id, exchange="bybit") is False

    assert registry.get(session_id) is running
    assert running.form.exchange == "binance"
    assert notifier.messages(AdvisoryLevel.ERROR) == [FORM_LOCKED_MESSAGE]


# ── Start ──


@pytest.mark.asyncio
async def test_start_backtest_sends_form(client) -> None:
    config = SyncConfig(backtest_settings={"warm_up_candles": 210})
    registry = SessionRegistry(client, id_factory=counting_ids(), config=config)
    session_id = _backtest(registry)

    assert await registry.start(session_id) is True

    assert registry.get(session_id).status is SessionStatus.STARTING
    (name, sent_id, body), = client.calls
    assert (name, sent_id) == ("start_backtest", session_id)
    assert body["exchange"] == "binance"
    assert body["routes"] == [
        {"exchange": "binance", "symbol": "SYM0-USDT", "timeframe": "4h", "strategy": "Strat"},
    ]
    assert body["config"] == {"warm_up_candles": 210}
    assert body["start_date"] == "2024-01-01"
    assert body["finish_date"] == "2024-03-01"
    assert body["fast_mode"] is False
    assert body["benchmark"] is True


@pytest.mark.asyncio
async def test_fast_mode_with_two_routes_never_reaches_backend(registry, client, notifier) -> None:
    session_id = _backtest(registry, routes=2, fast_mode=True)

    assert await registry.start(session_id) is False

    assert client.calls == []
    assert registry.get(session_id).status is SessionStatus.IDLE
    assert notifier.messages(AdvisoryLevel.ERROR) == [
        "For the moment, the fast mode can only be used with one trading route",
    ]


@pytest.mark.asyncio
async def test_second_start_while_running_is_rejected(registry, client) -> None:
    session_id = _backtest(registry)
    await _running(registry, session_id)
    before = registry.get(session_id)

    assert await registry.start(session_id) is False

    after = registry.get(session_id)
    assert after is before
    assert after.progress.current == 1
    assert client.names() == ["start_backtest"]


@pytest.mark.asyncio
async def test_backend_rejection_reverts_to_idle(registry, client, notifier) -> None:
    client.fail("start_backtest", 400, "Route strategy not found")
    session_id = _backtest(registry)
    form_before = registry.get(session_id).form

    assert await registry.start(session_id) is False

    session = registry.get(session_id)
    assert session.status is SessionStatus.IDLE
    assert session.form == form_before
    assert notifier.messages(AdvisoryLevel.ERROR) == ["Route strategy not found"]


@pytest.mark.asyncio
async def test_start_live_paper_mode_hides_exchange_key(client) -> None:
    config = SyncConfig(live_settings={"persistency": True})
    registry = SessionRegistry(client, id_factory=counting_ids(), config=config)
    paper = _live(registry, paper_mode=True)
    real = _live(registry, paper_mode=False)

    await registry.start(paper)
    await registry.start(real)

    paper_body = client.calls[0][2]
    real_body = client.calls[1][2]
    assert paper_body["exchange_api_key_id"] == ""
    assert real_body["exchange_api_key_id"] == "key-1"
    assert paper_body["notification_api_key_id"] == "tg-1"
    assert paper_body["config"] == {"persistency": True}
    assert paper_body["paper_mode"] is True
    assert registry.get(paper).selected_route.symbol == "BTC-USDT"


@pytest.mark.asyncio
async def test_start_candle_import(registry, client) -> None:
    session_id = registry.create(SessionKind.CANDLES)
    registry.update_form(session_id, exchange="Binance Spot", symbol="BTC-USDT")

    assert await registry.start(session_id) is True
    assert client.calls == [("import_candles", session_id, "Binance Spot", "BTC-USDT", "2021-01-01")]


@pytest.mark.asyncio
async def test_start_in_new_session(registry, client) -> None:
    source = _backtest(registry)
    new_id = await registry.start_in_new_session(source)

    assert new_id is not None and new_id != source
    assert registry.get(source).status is SessionStatus.IDLE
    assert registry.get(new_id).status is SessionStatus.STARTING
    assert client.calls[0][1] == new_id


@pytest.mark.asyncio
async def test_rerun_and_new_run(registry) -> None:
    session_id = _backtest(registry)
    router = EventRouter(registry)
    await registry.start(session_id)
    router.apply(session_id, "progress", {"current": 100})
    router.apply(session_id, "equity_curve", [{"t": 1, "v": 10}])
    assert registry.get(session_id).show_results is True

    assert await registry.rerun(session_id) is True
    rerun = registry.get(session_id)
    assert rerun.status is SessionStatus.STARTING
    assert rerun.equity_curve == []
    assert rerun.show_results is False

    router.apply(session_id, "termination")
    assert registry.new_run(session_id) is True
    assert registry.get(session_id).status is SessionStatus.IDLE
    assert registry.new_run(session_id) is False


# ── Cancel / stop ──


@pytest.mark.asyncio
async def test_backtest_cancel_closes_even_when_command_fails(registry, client, notifier) -> None:
    client.fail("cancel_backtest", 500, "Worker not found")
    session_id = _backtest(registry)
    await _running(registry, session_id)

    assert await registry.cancel(session_id) is True
    assert registry.get(session_id).status is SessionStatus.CANCELLED
    assert notifier.messages(AdvisoryLevel.ERROR) == ["Worker not found"]


@pytest.mark.asyncio
async def test_backtest_cancel_with_exception_is_local(registry, client) -> None:
    session_id = _backtest(registry)
    await _running(registry, session_id)
    EventRouter(registry).apply(session_id, "exception", {"error": "IndexError"})

    assert await registry.cancel(session_id) is True
    assert "cancel_backtest" not in client.names()
    assert registry.get(session_id).status is SessionStatus.CANCELLED


@pytest.mark.asyncio
async def test_live_cancel_failure_keeps_running(registry, client) -> None:
    client.fail("cancel_live", 500, "nope")
    session_id = _live(registry)
    await _running(registry, session_id)

    assert await registry.cancel(session_id) is False
    assert registry.get(session_id).status is SessionStatus.RUNNING
    assert client.calls[-1] == ("cancel_live", session_id, True)


@pytest.mark.asyncio
async def test_live_stop_waits_for_termination(registry, client, notifier) -> None:
    session_id = _live(registry)
    await _running(registry, session_id)

    assert await registry.stop(session_id) is True
    assert registry.get(session_id).status is SessionStatus.AWAITING_TERMINATION

    EventRouter(registry).apply(session_id, "termination")
    assert registry.get(session_id).status is SessionStatus.FINISHED
    assert notifier.messages(AdvisoryLevel.SUCCESS) == ["Session terminated successfully"]


@pytest.mark.asyncio
async def test_live_stop_failure_reverts(registry, client, notifier) -> None:
    client.fail("cancel_live", 503, "Backend busy")
    session_id = _live(registry)
    await _running(registry, session_id)

    assert await registry.stop(session_id) is False
    assert registry.get(session_id).status is SessionStatus.RUNNING
    assert notifier.messages(AdvisoryLevel.ERROR) == ["Backend busy"]


@pytest.mark.asyncio
async def test_cancel_candle_import(registry, client) -> None:
    session_id = registry.create(SessionKind.CANDLES)
    registry.update_form(session_id, exchange="Binance Spot", symbol="ETH-USDT")
    await _running(registry, session_id)

    assert await registry.cancel(session_id) is True
    assert client.calls[-1] == ("cancel_import", session_id)
    assert registry.get(session_id).status is SessionStatus.CANCELLED


# ── Queries ──


@pytest.mark.asyncio
async def test_fetch_logs_replaces_wholesale(registry, client) -> None:
    session_id = _live(registry)
    router = EventRouter(registry)
    await registry.start(session_id)
    router.apply(session_id, "info_log", {"timestamp": 9, "message": "partial"})
    client.logs["info"] = [
        {"timestamp": 1, "message": "one"},
        {"timestamp": 2, "message": "two"},
        {"bad": "record"},
    ]

    assert await registry.fetch_logs(session_id) is True
    assert [line.message for line in registry.get(session_id).info_logs] == ["one", "two"]


@pytest.mark.asyncio
async def test_fetch_candles_for_selected_route(registry, client) -> None:
    client.candles = [[1, 2, 3, 4, 5, 6]]
    session_id = _live(registry)
    await registry.start(session_id)

    assert await registry.fetch_candles(session_id) is True
    assert client.calls[-1] == (
        "get_candles", session_id, "Binance Perpetual Futures", "BTC-USDT", "1m",
    )
    assert registry.get(session_id).candles == [[1, 2, 3, 4, 5, 6]]


@pytest.mark.asyncio
async def test_fetch_candles_without_route(registry, client) -> None:
    session_id = registry.create(SessionKind.LIVE)
    assert await registry.fetch_candles(session_id) is False
    assert client.calls == []
