"""Session registry: owns the id → Session map and issues commands.

Creation and removal are the only structural mutations. Every other change
goes through a pure transition from state_machine and is committed here,
which is also where the transition's advisories reach the Notifier.
Validation and transport failures are recovered in this module and surfaced
as advisories; command methods report success as a bool instead of raising.
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from dataclasses import asdict
from typing import Any

from runsync.adapters.command_client import CommandClient
from runsync.adapters.notifier import LoggingNotifier, Notifier
from runsync.shared.models.session import (
    BacktestForm,
    CandlesForm,
    LiveForm,
    LogLine,
    Session,
    new_session,
    new_session_id,
)
from runsync.shared.services.persistence import SessionStore

from . import state_machine as sm
from .config import SyncConfig
from .errors import CommandError, SessionActiveError, SessionNotFoundError, StartValidationError
from .models import Advisory, AdvisoryLevel, SessionKind

logger = logging.getLogger(__name__)

CLOSE_RUNNING_MESSAGE = "Cannot close a session that is currently running"


class SessionRegistry:
    """Top-level store of tracked sessions.

    The id generator and the notification port are injected so that the
    registry never reaches for module-level counters or UI navigation.
    """

    def __init__(
        self,
        client: CommandClient,
        store: SessionStore | None = None,
        *,
        notifier: Notifier | None = None,
        id_factory: Callable[[], str] = new_session_id,
        config: SyncConfig | None = None,
    ) -> None:
        self._client = client
        self._store = store
        self._notifier: Notifier = notifier or LoggingNotifier()
        self._id_factory = id_factory
        self._config = config or SyncConfig()
        self._sessions: dict[str, Session] = {}

    # ── Lookup ──────────────────────────────────────────────────────

    @property
    def client(self) -> CommandClient:
        return self._client

    @property
    def notifier(self) -> Notifier:
        return self._notifier

    def get(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def find(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._sessions))

    def sessions(self) -> dict[str, Session]:
        """Snapshot of the map; mutating it does not affect the registry."""
        return dict(self._sessions)

    def active_ids(self) -> list[str]:
        return [sid for sid, s in self._sessions.items() if s.is_active]

    # ── Structural mutations ────────────────────────────────────────

    def _new_id(self) -> str:
        session_id = self._id_factory()
        while session_id in self._sessions:
            # Ids are never reused, even across kinds
            session_id = self._id_factory()
        return session_id

    def create(self, kind: SessionKind) -> str:
        """Register a fresh idle session and return its id."""
        session = new_session(kind, self._new_id())
        self._sessions[session.id] = session
        logger.info("Session created: %s (%s)", session.id, kind.value)
        return session.id

    def duplicate(self, session_id: str) -> str:
        """Register a new idle session with a deep copy of *session_id*'s form."""
        source = self.get(session_id)
        session = source.fork(self._new_id())
        self._sessions[session.id] = session
        logger.info("Session %s duplicated from %s", session.id, session_id)
        return session.id

    def ensure(self, session_id: str, kind: SessionKind) -> Session:
        """Return the session for *session_id*, materializing an idle one if unknown."""
        session = self._sessions.get(session_id)
        if session is None:
            session = new_session(kind, session_id)
            self._sessions[session_id] = session
            logger.info("Session materialized from push event: %s (%s)", session_id, kind.value)
        return session

    def remove(self, session_id: str) -> bool:
        """Forget a session. Refused while it executes, unless the backend already failed it."""
        session = self.get(session_id)
        if session.is_active and not session.exception:
            self.emit([Advisory(AdvisoryLevel.ERROR, CLOSE_RUNNING_MESSAGE)])
            return False
        del self._sessions[session_id]
        logger.info("Session removed: %s", session_id)
        return True

    # ── Transition plumbing ────────────────────────────────────────

    def emit(self, advisories: list[Advisory]) -> None:
        for advisory in advisories:
            self._notifier.notify(advisory)

    def commit(self, transition: sm.Transition) -> Session:
        """Store the transition's session and surface its advisories."""
        session = transition.session
        if transition.changed:
            previous = self._sessions.get(session.id)
            self._sessions[session.id] = session
            if previous is not None and previous.status is not session.status:
                logger.debug(
                    "Session %s: %s -> %s",
                    session.id, previous.status.value, session.status.value,
                )
        self.emit(transition.advisories)
        return session

    # ── Persistence ─────────────────────────────────────────────────

    def load(self) -> int:
        """Replace the map with the persisted one. Returns the number restored."""
        if self._store is None:
            return 0
        self._sessions = self._store.load()
        return len(self._sessions)

    def save(self) -> None:
        if self._store is not None:
            self._store.save(self._sessions)

    # ── Commands ────────────────────────────────────────────────────

    def _start_body(self, session: Session) -> dict[str, Any]:
        form = session.form
        config = self._config.settings_for(session.kind)
        if isinstance(form, BacktestForm):
            return {
                "exchange": form.exchange,
                "routes": [asdict(r) for r in form.routes],
                "data_routes": [asdict(r) for r in form.data_routes],
                "config": config,
                "start_date": form.start_date,
                "finish_date": form.finish_date,
                "debug_mode": form.debug_mode,
                "export_csv": form.export_csv,
                "export_chart": form.export_chart,
                "export_tradingview": form.export_tradingview,
                "export_full_reports": form.export_full_reports,
                "export_json": form.export_json,
                "fast_mode": form.fast_mode,
                "benchmark": form.benchmark,
            }
        if isinstance(form, LiveForm):
            return {
                "exchange": form.exchange,
                # Paper sessions never send exchange credentials
                "exchange_api_key_id": "" if form.paper_mode else form.exchange_api_key_id,
                "notification_api_key_id": form.notification_api_key_id or "",
                "routes": [asdict(r) for r in form.routes],
                "data_routes": [asdict(r) for r in form.data_routes],
                "config": config,
                "debug_mode": form.debug_mode,
                "paper_mode": form.paper_mode,
            }
        raise TypeError(f"No start body for {type(form).__name__}")

    async def _send_start(self, session: Session) -> None:
        form = session.form
        if isinstance(form, CandlesForm):
            await self._client.import_candles(
                session.id, form.exchange, form.symbol, form.start_date
            )
        elif session.kind is SessionKind.BACKTEST:
            await self._client.start_backtest(session.id, self._start_body(session))
        else:
            await self._client.start_live(session.id, self._start_body(session))

    async def start(self, session_id: str) -> bool:
        """Start a run. Returns False when rejected locally or by the backend."""
        session = self.get(session_id)
        try:
            transition = sm.begin_start(session)
        except (StartValidationError, SessionActiveError) as exc:
            logger.info("Start of %s rejected locally: %s", session_id, exc)
            self.emit([Advisory(AdvisoryLevel.ERROR, str(exc))])
            return False

        started = self.commit(transition)
        logger.info("Starting %s session %s", started.kind.value, session_id)
        try:
            await self._send_start(started)
        except CommandError as exc:
            logger.warning("Start of %s failed: %s", session_id, exc)
            # Events may have arrived while the command was in flight
            self.commit(sm.start_rejected(self.get(session_id), exc.message))
            return False
        return True

    def update_form(self, session_id: str, **changes: Any) -> bool:
        """Replace form fields. Refused with an advisory while the session executes."""
        try:
            transition = sm.edit_form(self.get(session_id), **changes)
        except SessionActiveError as exc:
            self.emit([Advisory(AdvisoryLevel.ERROR, str(exc))])
            return False
        self.commit(transition)
        return True

    async def start_in_new_session(self, session_id: str) -> str | None:
        """Copy *session_id*'s form into a new session and start it there."""
        new_id = self.duplicate(session_id)
        started = await self.start(new_id)
        return new_id if started else None

    async def rerun(self, session_id: str) -> bool:
        """Start the same form again under the same id; old results are dropped."""
        return await self.start(session_id)

    def new_run(self, session_id: str) -> bool:
        """Leave a finished run's results and go back to editing the form."""
        transition = sm.new_run(self.get(session_id))
        self.commit(transition)
        return transition.changed

    async def cancel(self, session_id: str) -> bool:
        session = self.get(session_id)
        if not session.is_active:
            return False

        if session.kind is SessionKind.LIVE:
            try:
                await self._client.cancel_live(session_id, session.form.paper_mode)
            except CommandError as exc:
                logger.warning("Cancel of %s failed: %s", session_id, exc)
                self.emit([Advisory(AdvisoryLevel.ERROR, exc.message)])
                return False
            self.commit(sm.cancel_requested(self.get(session_id)))
            return True

        if not session.exception:
            try:
                if session.kind is SessionKind.CANDLES:
                    await self._client.cancel_import(session_id)
                else:
                    await self._client.cancel_backtest(session_id)
            except CommandError as exc:
                # The run is closed locally either way
                logger.warning("Cancel of %s failed: %s", session_id, exc)
                self.emit([Advisory(AdvisoryLevel.ERROR, exc.message)])
        self.commit(sm.cancel_requested(self.get(session_id)))
        return True

    async def stop(self, session_id: str) -> bool:
        """Ask the backend to stop a running live session."""
        session = self.get(session_id)
        if session.kind is not SessionKind.LIVE:
            return await self.cancel(session_id)

        transition = sm.stop_requested(session)
        if not transition.changed:
            return False
        self.commit(transition)
        try:
            await self._client.cancel_live(session_id, session.form.paper_mode)
        except CommandError as exc:
            logger.warning("Stop of %s failed: %s", session_id, exc)
            self.commit(sm.stop_failed(self.get(session_id), exc.message))
            return False
        return True

    async def fetch_logs(self, session_id: str) -> bool:
        """Replace a session's logs with the backend's copy since the run started."""
        session = self.get(session_id)
        start_time = session.general_info.get("started_at")
        try:
            info = await self._client.get_logs(session_id, "info", start_time)
            errors = await self._client.get_logs(session_id, "error", start_time)
        except CommandError as exc:
            logger.warning("Fetching logs for %s failed: %s", session_id, exc)
            self.emit([Advisory(AdvisoryLevel.ERROR, exc.message)])
            return False

        current = self.find(session_id)
        if current is None:
            return False
        self.commit(sm.replace_logs(current, _log_lines(info), _log_lines(errors)))
        logger.debug(
            "Fetched %d info / %d error log lines for %s", len(info), len(errors), session_id
        )
        return True

    async def fetch_candles(self, session_id: str) -> bool:
        """Load chart candles for a live session's selected route."""
        session = self.get(session_id)
        route = session.selected_route
        if route is None:
            return False
        exchange = route.exchange or getattr(session.form, "exchange", "")
        try:
            candles = await self._client.get_candles(
                session_id, exchange, route.symbol, route.timeframe
            )
        except CommandError as exc:
            logger.warning("Fetching candles for %s failed: %s", session_id, exc)
            self.emit([Advisory(AdvisoryLevel.ERROR, exc.message)])
            return False

        current = self.find(session_id)
        if current is None:
            return False
        self.commit(sm.store_candles(current, candles))
        return True


def _log_lines(records: list[dict[str, Any]]) -> list[LogLine]:
    lines = []
    for record in records:
        try:
            lines.append(LogLine(int(record["timestamp"]), str(record["message"])))
        except (KeyError, TypeError, ValueError):
            logger.debug("Skipping malformed log record: %r", record)
    return lines
