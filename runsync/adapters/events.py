"""Push events emitted by the compute backend.

Each wire message ``{"id": ..., "event": ..., "data": ...}`` is parsed into
one typed dataclass of a closed union. Kinds not listed in ``_EVENT_MAP``
have no class: ``parse_event`` returns None for them and callers ignore
the message.
"""
from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, ClassVar

from runsync.engine.errors import MalformedEventError


def _check_route_items(items: list[Any]) -> None:
    for item in items:
        if not isinstance(item, dict):
            raise TypeError(f"route entries must be objects, got {type(item).__name__}")


@dataclass
class SessionEvent:
    """Base event from the compute backend, keyed by session id."""
    event_type: ClassVar[str] = ""
    # Name of the field that receives a non-mapping payload wholesale.
    payload_field: ClassVar[str | None] = None
    payload_type: ClassVar[type | tuple[type, ...]] = dict

    session_id: str = ""


@dataclass
class ProgressUpdated(SessionEvent):
    event_type: ClassVar[str] = "progress"
    current: float = 0
    estimated_remaining_seconds: float = 0

    def __post_init__(self) -> None:
        self.current = float(self.current)
        self.estimated_remaining_seconds = float(self.estimated_remaining_seconds or 0)


@dataclass
class InfoLogged(SessionEvent):
    event_type: ClassVar[str] = "info_log"
    timestamp: int = 0
    message: str = ""

    def __post_init__(self) -> None:
        self.timestamp = int(self.timestamp)
        self.message = str(self.message)


@dataclass
class ErrorLogged(SessionEvent):
    event_type: ClassVar[str] = "error_log"
    timestamp: int = 0
    message: str = ""

    def __post_init__(self) -> None:
        self.timestamp = int(self.timestamp)
        self.message = str(self.message)


@dataclass
class ExceptionRaised(SessionEvent):
    """A run-time failure reported by the backend. A termination still follows."""
    event_type: ClassVar[str] = "exception"
    error: str = ""
    traceback: str = ""


@dataclass
class CandlesInfoReported(SessionEvent):
    event_type: ClassVar[str] = "candles_info"
    payload_field: ClassVar[str | None] = "info"
    info: dict[str, Any] = field(default_factory=dict)


@dataclass
class RoutesInfoReported(SessionEvent):
    event_type: ClassVar[str] = "routes_info"
    payload_field: ClassVar[str | None] = "routes"
    payload_type: ClassVar[type | tuple[type, ...]] = list
    routes: list[dict[str, Any]] = field(default_factory=list)

    def __post_init__(self) -> None:
        _check_route_items(self.routes)


@dataclass
class GeneralInfoReported(SessionEvent):
    event_type: ClassVar[str] = "general_info"
    payload_field: ClassVar[str | None] = "info"
    info: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        routes = self.info.get("routes")
        if routes is not None:
            if not isinstance(routes, list):
                raise TypeError(f"routes must be a list, got {type(routes).__name__}")
            _check_route_items(routes)


@dataclass
class HyperparametersReported(SessionEvent):
    event_type: ClassVar[str] = "hyperparameters"
    payload_field: ClassVar[str | None] = "items"
    payload_type: ClassVar[type | tuple[type, ...]] = list
    items: list[Any] = field(default_factory=list)


@dataclass
class MetricsReported(SessionEvent):
    """Performance metrics; a null payload means no trades were executed."""
    event_type: ClassVar[str] = "metrics"
    payload_field: ClassVar[str | None] = "metrics"
    metrics: dict[str, Any] = field(default_factory=dict)


@dataclass
class EquityCurveReported(SessionEvent):
    event_type: ClassVar[str] = "equity_curve"
    payload_field: ClassVar[str | None] = "curve"
    payload_type: ClassVar[type | tuple[type, ...]] = list
    curve: list[Any] = field(default_factory=list)


@dataclass
class CurrentCandlesReported(SessionEvent):
    event_type: ClassVar[str] = "current_candles"
    payload_field: ClassVar[str | None] = "candles"
    candles: dict[str, Any] = field(default_factory=dict)


@dataclass
class WatchlistReported(SessionEvent):
    event_type: ClassVar[str] = "watchlist"
    payload_field: ClassVar[str | None] = "items"
    payload_type: ClassVar[type | tuple[type, ...]] = list
    items: list[Any] = field(default_factory=list)


@dataclass
class PositionsReported(SessionEvent):
    event_type: ClassVar[str] = "positions"
    payload_field: ClassVar[str | None] = "positions"
    payload_type: ClassVar[type | tuple[type, ...]] = list
    positions: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class OrdersReported(SessionEvent):
    event_type: ClassVar[str] = "orders"
    payload_field: ClassVar[str | None] = "orders"
    payload_type: ClassVar[type | tuple[type, ...]] = list
    orders: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class AlertRaised(SessionEvent):
    """Transient, non-fatal advisory from the backend."""
    event_type: ClassVar[str] = "alert"
    message: str = ""
    type: str = ""


@dataclass
class NotificationReceived(SessionEvent):
    event_type: ClassVar[str] = "notification"
    type: str = ""
    message: str = ""


@dataclass
class Terminated(SessionEvent):
    event_type: ClassVar[str] = "termination"


@dataclass
class TerminatedUnexpectedly(SessionEvent):
    event_type: ClassVar[str] = "unexpected_termination"


# Map of event kind strings to dataclass constructors
_EVENT_MAP: dict[str, type[SessionEvent]] = {
    cls.event_type: cls
    for cls in (
        ProgressUpdated,
        InfoLogged,
        ErrorLogged,
        ExceptionRaised,
        CandlesInfoReported,
        RoutesInfoReported,
        GeneralInfoReported,
        HyperparametersReported,
        MetricsReported,
        EquityCurveReported,
        CurrentCandlesReported,
        WatchlistReported,
        PositionsReported,
        OrdersReported,
        AlertRaised,
        NotificationReceived,
        Terminated,
        TerminatedUnexpectedly,
    )
}

# Older backends name a few events differently
_EVENT_ALIASES: dict[str, str] = {
    "progressbar": "progress",
}

EVENT_KINDS: frozenset[str] = frozenset(_EVENT_MAP)


def normalize_event_kind(event_kind: str) -> str:
    return _EVENT_ALIASES.get(event_kind, event_kind)


def split_event_name(name: str) -> tuple[str | None, str]:
    """Split a namespaced wire name ``"live.progress"`` into (namespace, kind)."""
    namespace, sep, kind = name.rpartition(".")
    if not sep:
        return None, normalize_event_kind(name)
    return namespace or None, normalize_event_kind(kind)


def parse_event(event_kind: str, session_id: str, payload: Any) -> SessionEvent | None:
    """Convert a raw push event into a typed event dataclass.

    Returns None for unknown kinds. Raises MalformedEventError when a known
    kind carries a payload that does not fit its schema.
    """
    cls = _EVENT_MAP.get(normalize_event_kind(event_kind))
    if cls is None:
        return None

    try:
        if cls.payload_field is not None:
            if payload is None:
                return cls(session_id=session_id)
            if not isinstance(payload, cls.payload_type):
                raise MalformedEventError(
                    cls.event_type,
                    f"expected {_type_name(cls.payload_type)}, got {type(payload).__name__}",
                )
            return cls(session_id=session_id, **{cls.payload_field: payload})

        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            raise MalformedEventError(
                cls.event_type, f"expected object, got {type(payload).__name__}"
            )
        # Filter dict keys to only those the dataclass accepts
        valid_fields = {f.name for f in fields(cls) if f.name != "session_id"}
        filtered = {k: v for k, v in payload.items() if k in valid_fields}
        return cls(session_id=session_id, **filtered)
    except (TypeError, ValueError) as exc:
        raise MalformedEventError(cls.event_type, str(exc)) from exc


def event_to_dict(event: SessionEvent) -> dict[str, Any]:
    """Convert a typed event back to its wire form ``{"id", "event", "data"}``."""
    cls = type(event)
    if cls.payload_field is not None:
        data: Any = getattr(event, cls.payload_field)
    else:
        data = {
            f.name: getattr(event, f.name)
            for f in fields(event)
            if f.name != "session_id"
        }
    return {"id": event.session_id, "event": cls.event_type, "data": data}


def _type_name(t: type | tuple[type, ...]) -> str:
    if isinstance(t, tuple):
        return " or ".join(x.__name__ for x in t)
    return t.__name__
