"""Session state: one tracked backtest, live or candle-import run."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
import uuid
from typing import Any, Union

from runsync.engine.models import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    SessionKind,
    SessionStatus,
)
from runsync.shared.formatters.log_line import format_log_line, join_log_lines


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_session_id() -> str:
    """Default id factory for the registry."""
    return str(uuid.uuid4())


# ── Routes ──


@dataclass
class Route:
    """A trading route: which strategy runs on which symbol/timeframe."""
    exchange: str = ""
    symbol: str = ""
    timeframe: str = ""
    strategy: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Route:
        return cls(
            exchange=str(data.get("exchange") or ""),
            symbol=str(data.get("symbol") or ""),
            timeframe=str(data.get("timeframe") or ""),
            # Backend reports use "strategy_name" in some events
            strategy=str(data.get("strategy") or data.get("strategy_name") or ""),
        )


@dataclass
class DataRoute:
    """An extra candle feed a strategy reads but does not trade."""
    exchange: str = ""
    symbol: str = ""
    timeframe: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DataRoute:
        return cls(
            exchange=str(data.get("exchange") or ""),
            symbol=str(data.get("symbol") or ""),
            timeframe=str(data.get("timeframe") or ""),
        )


@dataclass(frozen=True)
class RouteInfo:
    """One row of the routes table reported by the backend."""
    symbol: str
    timeframe: str
    strategy: str


# ── Forms ──


@dataclass
class BacktestForm:
    start_date: str = "2024-01-01"
    finish_date: str = "2024-03-01"
    debug_mode: bool = False
    export_chart: bool = False
    export_tradingview: bool = False
    export_full_reports: bool = False
    export_csv: bool = False
    export_json: bool = False
    fast_mode: bool = False
    benchmark: bool = True
    exchange: str = ""
    routes: list[Route] = field(default_factory=list)
    data_routes: list[DataRoute] = field(default_factory=list)


@dataclass
class LiveForm:
    debug_mode: bool = True
    paper_mode: bool = True
    exchange_api_key_id: str = ""
    notification_api_key_id: str = ""
    exchange: str = ""
    routes: list[Route] = field(default_factory=list)
    data_routes: list[DataRoute] = field(default_factory=list)


@dataclass
class CandlesForm:
    start_date: str = "2021-01-01"
    exchange: str = ""
    symbol: str = ""


SessionForm = Union[BacktestForm, LiveForm, CandlesForm]

_FORM_TYPES: dict[SessionKind, type] = {
    SessionKind.BACKTEST: BacktestForm,
    SessionKind.LIVE: LiveForm,
    SessionKind.CANDLES: CandlesForm,
}


def new_form(kind: SessionKind) -> SessionForm:
    """Return a fresh default form. Never shared between sessions."""
    return _FORM_TYPES[kind]()


# ── Result value types ──


@dataclass(frozen=True)
class Progress:
    current: float = 0
    estimated_remaining_seconds: float = 0


@dataclass(frozen=True)
class LogLine:
    timestamp: int
    message: str

    def format(self) -> str:
        return format_log_line(self.timestamp, self.message)


@dataclass(frozen=True)
class ExceptionInfo:
    error: str = ""
    traceback: str = ""

    def __bool__(self) -> bool:
        return bool(self.error)


@dataclass(frozen=True)
class Alert:
    message: str = ""
    type: str = ""


# ── Session ──


@dataclass
class Session:
    """Holds all client-side state for one run, keyed by id."""

    id: str
    kind: SessionKind
    form: SessionForm
    status: SessionStatus = SessionStatus.IDLE
    progress: Progress = field(default_factory=Progress)
    info_logs: list[LogLine] = field(default_factory=list)
    error_logs: list[LogLine] = field(default_factory=list)
    exception: ExceptionInfo = field(default_factory=ExceptionInfo)
    alert: Alert = field(default_factory=Alert)
    metrics: dict[str, Any] = field(default_factory=dict)
    general_info: dict[str, Any] = field(default_factory=dict)
    routes_info: list[RouteInfo] = field(default_factory=list)
    candles_info: dict[str, Any] = field(default_factory=dict)
    hyperparameters: list[Any] = field(default_factory=list)
    equity_curve: list[Any] = field(default_factory=list)
    show_results: bool = False
    # Live-only monitoring data
    routes: list[RouteInfo] = field(default_factory=list)
    positions: list[dict[str, Any]] = field(default_factory=list)
    orders: list[dict[str, Any]] = field(default_factory=list)
    watchlist: list[Any] = field(default_factory=list)
    current_candles: dict[str, Any] = field(default_factory=dict)
    candles: list[Any] = field(default_factory=list)
    selected_route: Route | None = None
    created_at: datetime | None = field(default_factory=_utcnow)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def info_logs_text(self) -> str:
        return join_log_lines(self.info_logs)

    @property
    def error_logs_text(self) -> str:
        return join_log_lines(self.error_logs)

    def fresh_run(self) -> Session:
        """A new Session under the same id: form copied, results reset."""
        return Session(
            id=self.id,
            kind=self.kind,
            form=copy.deepcopy(self.form),
            status=self.status,
            created_at=self.created_at,
        )

    def fork(self, new_id: str) -> Session:
        """An idle session under *new_id* with a deep copy of this form."""
        return Session(id=new_id, kind=self.kind, form=copy.deepcopy(self.form))


def new_session(kind: SessionKind, session_id: str | None = None) -> Session:
    """Pure factory: a fresh idle session with a default form."""
    return Session(
        id=session_id or new_session_id(),
        kind=kind,
        form=new_form(kind),
    )
