"""Pure session transitions.

Every function takes a Session and returns a Transition carrying a *new*
Session plus the advisories and follow-ups the caller should act on. The
input session is never mutated, and nothing here performs I/O: emitting
advisories and running follow-ups is the job of the registry and router.
Forms are only replaced through edit_form, never edited in place on a
session held by the registry.
"""
from __future__ import annotations

import copy
import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import Any

from runsync.adapters.events import (
    AlertRaised,
    CandlesInfoReported,
    CurrentCandlesReported,
    EquityCurveReported,
    ErrorLogged,
    ExceptionRaised,
    GeneralInfoReported,
    HyperparametersReported,
    InfoLogged,
    MetricsReported,
    NotificationReceived,
    OrdersReported,
    PositionsReported,
    ProgressUpdated,
    RoutesInfoReported,
    SessionEvent,
    Terminated,
    TerminatedUnexpectedly,
    WatchlistReported,
)
from runsync.shared.models.session import (
    Alert,
    ExceptionInfo,
    LiveForm,
    LogLine,
    Progress,
    Route,
    RouteInfo,
    Session,
)

from .errors import SessionActiveError, StartValidationError
from .lifecycle import validate_transition
from .models import (
    Advisory,
    AdvisoryLevel,
    FollowUp,
    SessionKind,
    SessionStatus,
    parse_advisory_level,
)

logger = logging.getLogger(__name__)

TERMINATED_MESSAGE = "Session terminated successfully"
UNEXPECTED_TERMINATION_MESSAGE = "Session terminated unexpectedly"
FAST_MODE_ROUTES_MESSAGE = "For the moment, the fast mode can only be used with one trading route"
ALREADY_RUNNING_MESSAGE = "This session is already running"
FORM_LOCKED_MESSAGE = "Cannot edit the form of a session that is currently running"


@dataclass
class Transition:
    """Result of applying one trigger to a session."""
    session: Session
    advisories: list[Advisory] = field(default_factory=list)
    follow_ups: list[FollowUp] = field(default_factory=list)
    changed: bool = True


def unchanged(session: Session) -> Transition:
    return Transition(session=session, changed=False)


def _move(session: Session, target: SessionStatus, **changes: Any) -> Session:
    validate_transition(session.status, target)
    return replace(session, status=target, **changes)


def _activate(session: Session, **changes: Any) -> Session:
    """Data arrived from the backend: an idle or starting session is now running."""
    if session.status in (SessionStatus.IDLE, SessionStatus.STARTING):
        return _move(session, SessionStatus.RUNNING, **changes)
    return replace(session, **changes)


# ── Commands ──


def validate_start(session: Session) -> None:
    """Static preconditions checked before any command leaves the client.

    Raises SessionActiveError while a run is in flight and
    StartValidationError for invalid form combinations.
    """
    if session.is_active:
        raise SessionActiveError(session.id, ALREADY_RUNNING_MESSAGE)

    form = session.form
    if session.kind is SessionKind.CANDLES:
        if not form.exchange or not form.symbol:
            raise StartValidationError(
                session.id, "Exchange and symbol are required to import candles"
            )
        return

    if not form.routes:
        raise StartValidationError(session.id, "At least one trading route is required")
    if session.kind is SessionKind.BACKTEST and form.fast_mode and len(form.routes) > 1:
        raise StartValidationError(session.id, FAST_MODE_ROUTES_MESSAGE)


def edit_form(session: Session, **changes: Any) -> Transition:
    """Return the session with form fields replaced.

    A run keeps the form it was started with: editing is refused with
    SessionActiveError while the session executes. The new form shares no
    mutable state with the old one.
    """
    if session.is_active:
        raise SessionActiveError(session.id, FORM_LOCKED_MESSAGE)
    form = replace(copy.deepcopy(session.form), **changes)
    return Transition(session=replace(session, form=form))


def begin_start(session: Session) -> Transition:
    """Optimistic start: reset transient fields and enter STARTING."""
    validate_start(session)
    fresh = session.fresh_run()
    changes: dict[str, Any] = {}
    if isinstance(fresh.form, LiveForm) and fresh.form.routes:
        changes["selected_route"] = fresh.form.routes[0]
    return Transition(session=_move(fresh, SessionStatus.STARTING, **changes))


def start_rejected(session: Session, message: str) -> Transition:
    """The backend refused the start. Form stays as submitted."""
    if session.status is not SessionStatus.STARTING:
        return unchanged(session)
    return Transition(
        session=_move(session, SessionStatus.IDLE),
        advisories=[Advisory(AdvisoryLevel.ERROR, message)],
    )


def cancel_requested(session: Session) -> Transition:
    if not session.is_active:
        return unchanged(session)
    return Transition(session=_move(session, SessionStatus.CANCELLED))


def stop_requested(session: Session) -> Transition:
    """Live stop sent; wait for the backend's termination event."""
    if session.status is not SessionStatus.RUNNING:
        return unchanged(session)
    return Transition(session=_move(session, SessionStatus.AWAITING_TERMINATION))


def stop_failed(session: Session, message: str) -> Transition:
    advisories = [Advisory(AdvisoryLevel.ERROR, message)]
    if session.status is not SessionStatus.AWAITING_TERMINATION:
        return Transition(session=session, advisories=advisories, changed=False)
    return Transition(
        session=_move(session, SessionStatus.RUNNING), advisories=advisories
    )


def force_close(session: Session) -> Transition:
    """Close a session the backend no longer runs. No advisory, no round trip."""
    if not session.is_active:
        return unchanged(session)
    target = (
        SessionStatus.CANCELLED
        if session.kind is SessionKind.CANDLES
        else SessionStatus.FINISHED
    )
    return Transition(session=_move(session, target))


def new_run(session: Session) -> Transition:
    """User leaves a finished run's results to edit the form again."""
    if not session.is_terminal:
        return unchanged(session)
    return Transition(session=_move(session, SessionStatus.IDLE, show_results=False))


def replace_logs(
    session: Session, info_logs: list[LogLine], error_logs: list[LogLine]
) -> Transition:
    return Transition(
        session=replace(session, info_logs=list(info_logs), error_logs=list(error_logs))
    )


def store_candles(session: Session, candles: list) -> Transition:
    return Transition(session=replace(session, candles=list(candles)))


# ── Push events ──


def _on_progress(session: Session, event: ProgressUpdated) -> Transition:
    progress = Progress(event.current, event.estimated_remaining_seconds)
    if session.kind is SessionKind.CANDLES and event.current >= 100:
        return Transition(session=replace(session, progress=progress))
    return Transition(session=_activate(session, progress=progress))


def _on_info_log(session: Session, event: InfoLogged) -> Transition:
    line = LogLine(event.timestamp, event.message)
    return Transition(session=_activate(session, info_logs=[*session.info_logs, line]))


def _on_error_log(session: Session, event: ErrorLogged) -> Transition:
    line = LogLine(event.timestamp, event.message)
    return Transition(
        session=_activate(session, error_logs=[*session.error_logs, line]),
        advisories=[Advisory(AdvisoryLevel.ERROR, event.message)],
    )


def _on_exception(session: Session, event: ExceptionRaised) -> Transition:
    info = ExceptionInfo(error=str(event.error or ""), traceback=str(event.traceback or ""))
    return Transition(session=replace(session, exception=info))


def _on_candles_info(session: Session, event: CandlesInfoReported) -> Transition:
    return Transition(session=replace(session, candles_info=dict(event.info)))


def _route_rows(routes: list[dict[str, Any]]) -> list[RouteInfo]:
    rows = []
    for item in routes:
        route = Route.from_dict(item)
        rows.append(RouteInfo(route.symbol, route.timeframe, route.strategy))
    return rows


def _on_routes_info(session: Session, event: RoutesInfoReported) -> Transition:
    return Transition(session=replace(session, routes_info=_route_rows(event.routes)))


def _on_general_info(session: Session, event: GeneralInfoReported) -> Transition:
    first_report = not session.general_info
    changes: dict[str, Any] = {"general_info": dict(event.info)}
    follow_ups: list[FollowUp] = []

    if session.kind is SessionKind.LIVE:
        reported = event.info.get("routes") or []
        # The backend is authoritative over what is actually running
        routes = [Route.from_dict(r) for r in reported]
        changes["form"] = replace(session.form, routes=routes)
        changes["routes"] = [RouteInfo(r.symbol, r.timeframe, r.strategy) for r in routes]
        if session.selected_route is None and routes:
            changes["selected_route"] = routes[0]
        if first_report:
            follow_ups.append(FollowUp.FETCH_LOGS)

    return Transition(session=_activate(session, **changes), follow_ups=follow_ups)


def _on_hyperparameters(session: Session, event: HyperparametersReported) -> Transition:
    return Transition(session=replace(session, hyperparameters=list(event.items)))


def _on_metrics(session: Session, event: MetricsReported) -> Transition:
    # null metrics: no trades were executed
    return Transition(session=replace(session, metrics=dict(event.metrics or {})))


def _on_equity_curve(session: Session, event: EquityCurveReported) -> Transition:
    changes: dict[str, Any] = {"equity_curve": list(event.curve), "show_results": True}
    if session.kind is SessionKind.BACKTEST and session.is_active:
        # Backtest is finished, time to show results
        return Transition(session=_move(session, SessionStatus.FINISHED, **changes))
    return Transition(session=replace(session, **changes))


def _on_current_candles(session: Session, event: CurrentCandlesReported) -> Transition:
    return Transition(session=replace(session, current_candles=dict(event.candles)))


def _on_watchlist(session: Session, event: WatchlistReported) -> Transition:
    return Transition(session=replace(session, watchlist=list(event.items)))


def _on_positions(session: Session, event: PositionsReported) -> Transition:
    return Transition(session=replace(session, positions=list(event.positions)))


def _on_orders(session: Session, event: OrdersReported) -> Transition:
    return Transition(session=replace(session, orders=list(event.orders)))


def _on_alert(session: Session, event: AlertRaised) -> Transition:
    alert = Alert(message=str(event.message or ""), type=str(event.type or ""))
    if session.kind is SessionKind.CANDLES and session.is_active:
        # Candle import reports completion through an alert
        return Transition(session=_move(
            session,
            SessionStatus.FINISHED,
            alert=alert,
            progress=replace(session.progress, current=100),
            exception=ExceptionInfo(),
        ))
    return Transition(session=replace(session, alert=alert))


def _on_notification(session: Session, event: NotificationReceived) -> Transition:
    return Transition(
        session=session,
        advisories=[Advisory(parse_advisory_level(event.type), str(event.message))],
        changed=False,
    )


def _on_termination(session: Session, event: Terminated) -> Transition:
    if not session.is_active:
        # Already terminal (or never started): never re-notify
        return unchanged(session)
    return Transition(
        session=_move(session, SessionStatus.FINISHED),
        advisories=[Advisory(AdvisoryLevel.SUCCESS, TERMINATED_MESSAGE)],
    )


def _on_unexpected_termination(
    session: Session, event: TerminatedUnexpectedly
) -> Transition:
    if not session.is_active:
        return unchanged(session)
    exception = session.exception
    if not exception.error:
        exception = replace(exception, error=UNEXPECTED_TERMINATION_MESSAGE)
    return Transition(
        session=_move(session, SessionStatus.FAILED, exception=exception)
    )


_HANDLERS: dict[type[SessionEvent], Callable[[Session, Any], Transition]] = {
    ProgressUpdated: _on_progress,
    InfoLogged: _on_info_log,
    ErrorLogged: _on_error_log,
    ExceptionRaised: _on_exception,
    CandlesInfoReported: _on_candles_info,
    RoutesInfoReported: _on_routes_info,
    GeneralInfoReported: _on_general_info,
    HyperparametersReported: _on_hyperparameters,
    MetricsReported: _on_metrics,
    EquityCurveReported: _on_equity_curve,
    CurrentCandlesReported: _on_current_candles,
    WatchlistReported: _on_watchlist,
    PositionsReported: _on_positions,
    OrdersReported: _on_orders,
    AlertRaised: _on_alert,
    NotificationReceived: _on_notification,
    Terminated: _on_termination,
    TerminatedUnexpectedly: _on_unexpected_termination,
}


def apply_event(session: Session, event: SessionEvent) -> Transition:
    """Apply one push event. Events without a handler leave the session unchanged."""
    handler = _HANDLERS.get(type(event))
    if handler is None:
        logger.debug("No handler for %s on session %s", type(event).__name__, session.id)
        return unchanged(session)
    return handler(session, event)
