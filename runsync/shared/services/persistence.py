"""Session persistence: save and restore the whole session map.

Storage layout:
    ~/.runsync/sessions.json   (override with RUNSYNC_STATE_FILE)

The document is ``{"version", "saved_at", "sessions": {id: {...}}}`` and is
rewritten wholesale on every save through a temp file + rename so a crash
never leaves a half-written map behind.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import asdict, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from runsync.engine.config import default_state_file
from runsync.engine.models import SessionKind, parse_kind, parse_status
from runsync.shared.models.session import (
    Alert,
    BacktestForm,
    CandlesForm,
    DataRoute,
    ExceptionInfo,
    LiveForm,
    LogLine,
    Progress,
    Route,
    RouteInfo,
    Session,
    SessionForm,
)

logger = logging.getLogger(__name__)

STORE_VERSION = "1.0"


def _atomic_write_text(path: Path, content: str, *, encoding: str = "utf-8") -> None:
    """Write *content* to a sibling temp file, fsync it, then rename over *path*."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding=encoding) as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            try:
                tmp_path.unlink()
            except OSError:
                pass


class SessionStore:
    """Key-value persistence for the session map, backed by one JSON file."""

    def __init__(self, path: Path | str | None = None) -> None:
        self._path = Path(path if path is not None else default_state_file())

    @property
    def path(self) -> Path:
        return self._path

    def save(self, sessions: dict[str, Session]) -> Path:
        data = {
            "version": STORE_VERSION,
            "saved_at": datetime.now(timezone.utc).isoformat(),
            "sessions": {sid: session_to_dict(s) for sid, s in sessions.items()},
        }
        _atomic_write_text(self._path, json.dumps(data, indent=2))
        logger.info("Saved %d session(s) to %s", len(sessions), self._path)
        return self._path

    def load(self) -> dict[str, Session]:
        """Restore the session map. A missing or unreadable file yields an empty map."""
        if not self._path.is_file():
            logger.debug("No session state at %s", self._path)
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.error("Cannot read session state %s: %s", self._path, exc)
            return {}

        raw_sessions = data.get("sessions") if isinstance(data, dict) else None
        if not isinstance(raw_sessions, dict):
            logger.warning("Session state %s has no sessions map", self._path)
            return {}

        sessions: dict[str, Session] = {}
        for sid, raw in raw_sessions.items():
            try:
                session = dict_to_session(raw)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping unreadable session %s: %s", sid, exc)
                continue
            sessions[session.id] = session
        logger.info("Loaded %d session(s) from %s", len(sessions), self._path)
        return sessions


# ── Serialization helpers ──


def session_to_dict(session: Session) -> dict[str, Any]:
    return {
        "id": session.id,
        "kind": session.kind.value,
        "status": session.status.value,
        "form": asdict(session.form),
        "progress": asdict(session.progress),
        "info_logs": [[line.timestamp, line.message] for line in session.info_logs],
        "error_logs": [[line.timestamp, line.message] for line in session.error_logs],
        "exception": asdict(session.exception),
        "alert": asdict(session.alert),
        "metrics": session.metrics,
        "general_info": session.general_info,
        "routes_info": [asdict(r) for r in session.routes_info],
        "candles_info": session.candles_info,
        "hyperparameters": session.hyperparameters,
        "equity_curve": session.equity_curve,
        "show_results": session.show_results,
        "routes": [asdict(r) for r in session.routes],
        "positions": session.positions,
        "orders": session.orders,
        "watchlist": session.watchlist,
        "current_candles": session.current_candles,
        "candles": session.candles,
        "selected_route": asdict(session.selected_route) if session.selected_route else None,
        "created_at": session.created_at.isoformat() if session.created_at else None,
    }


def _filtered(cls: type, data: dict[str, Any]) -> dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


def _form_from_dict(kind: SessionKind, data: dict[str, Any]) -> SessionForm:
    if kind is SessionKind.CANDLES:
        return CandlesForm(**_filtered(CandlesForm, data))
    cls = BacktestForm if kind is SessionKind.BACKTEST else LiveForm
    values = _filtered(cls, data)
    values["routes"] = [Route.from_dict(r) for r in data.get("routes") or []]
    values["data_routes"] = [DataRoute.from_dict(r) for r in data.get("data_routes") or []]
    return cls(**values)


def _log_lines(raw: list[Any] | None) -> list[LogLine]:
    return [LogLine(int(ts), str(msg)) for ts, msg in raw or []]


def _route_infos(raw: list[Any] | None) -> list[RouteInfo]:
    return [RouteInfo(**_filtered(RouteInfo, r)) for r in raw or []]


def dict_to_session(data: dict[str, Any]) -> Session:
    kind = parse_kind(data["kind"])
    created_at = None
    if data.get("created_at"):
        dt = datetime.fromisoformat(data["created_at"])
        created_at = dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
    selected = data.get("selected_route")

    return Session(
        id=str(data["id"]),
        kind=kind,
        form=_form_from_dict(kind, data.get("form") or {}),
        status=parse_status(data.get("status")),
        progress=Progress(**_filtered(Progress, data.get("progress") or {})),
        info_logs=_log_lines(data.get("info_logs")),
        error_logs=_log_lines(data.get("error_logs")),
        exception=ExceptionInfo(**_filtered(ExceptionInfo, data.get("exception") or {})),
        alert=Alert(**_filtered(Alert, data.get("alert") or {})),
        metrics=dict(data.get("metrics") or {}),
        general_info=dict(data.get("general_info") or {}),
        routes_info=_route_infos(data.get("routes_info")),
        candles_info=dict(data.get("candles_info") or {}),
        hyperparameters=list(data.get("hyperparameters") or []),
        equity_curve=list(data.get("equity_curve") or []),
        show_results=bool(data.get("show_results", False)),
        routes=_route_infos(data.get("routes")),
        positions=list(data.get("positions") or []),
        orders=list(data.get("orders") or []),
        watchlist=list(data.get("watchlist") or []),
        current_candles=dict(data.get("current_candles") or {}),
        candles=list(data.get("candles") or []),
        selected_route=Route.from_dict(selected) if isinstance(selected, dict) else None,
        created_at=created_at,
    )
