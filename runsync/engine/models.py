"""Core enums and value types for the session engine.

Single source of truth for session kinds and statuses to avoid circular
imports between the state machine, the registry and persistence.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class SessionKind(str, Enum):
    """What kind of run a session tracks."""
    BACKTEST = "backtest"
    LIVE = "live"
    CANDLES = "candles"


class SessionStatus(str, Enum):
    """Session lifecycle statuses. See lifecycle.py for transition rules."""
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    AWAITING_TERMINATION = "awaiting_termination"
    FINISHED = "finished"
    FAILED = "failed"
    CANCELLED = "cancelled"


ACTIVE_STATUSES: frozenset[SessionStatus] = frozenset({
    SessionStatus.STARTING,
    SessionStatus.RUNNING,
    SessionStatus.AWAITING_TERMINATION,
})

TERMINAL_STATUSES: frozenset[SessionStatus] = frozenset({
    SessionStatus.FINISHED,
    SessionStatus.FAILED,
    SessionStatus.CANCELLED,
})


class AdvisoryLevel(str, Enum):
    """Severity of a one-shot user-facing advisory."""
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Advisory:
    """A notification the caller should show once. Never stored on a session."""
    level: AdvisoryLevel
    message: str


class FollowUp(str, Enum):
    """Asynchronous side effects requested by a pure transition."""
    FETCH_LOGS = "fetch_logs"


# ── String → enum parsing (for persistence deserialization) ──

def parse_status(value: str | None) -> SessionStatus:
    """Parse a persisted status string, falling back to IDLE."""
    try:
        return SessionStatus(value)
    except ValueError:
        return SessionStatus.IDLE


def parse_kind(value: str | None) -> SessionKind:
    """Parse a persisted kind string.

    Raises ValueError for unknown kinds: a session whose kind cannot be
    determined cannot be routed safely.
    """
    return SessionKind(value)


def parse_advisory_level(value: str | None) -> AdvisoryLevel:
    """Map server notification types ("success", "error", ...) to a level."""
    try:
        return AdvisoryLevel(value)
    except ValueError:
        return AdvisoryLevel.INFO
