"""Session lifecycle state machine table.

Defines valid status transitions and enforces them. Invalid transitions
raise InvalidTransitionError rather than silently proceeding.

State Diagram:

    IDLE ──> STARTING ──> RUNNING ──┬──> FINISHED
      │         │            │      ├──> FAILED
      │         └──> IDLE    │      └──> CANCELLED
      │   (start rejected)   │
      └──> RUNNING           └──> AWAITING_TERMINATION ──┬──> FINISHED
     (adopted remote run)         (live stop requested)  ├──> RUNNING (stop failed)
                                                         └──> FAILED / CANCELLED

    FINISHED / FAILED / CANCELLED ──> STARTING  (user starts a new run)
                                  ──> IDLE      (user opens a new form)
"""
from __future__ import annotations

from .errors import InvalidTransitionError
from .models import SessionStatus

_RESTARTABLE = {SessionStatus.STARTING, SessionStatus.IDLE}

VALID_TRANSITIONS: dict[SessionStatus, set[SessionStatus]] = {
    SessionStatus.IDLE: {
        SessionStatus.STARTING,
        SessionStatus.RUNNING,
    },
    SessionStatus.STARTING: {
        SessionStatus.IDLE,
        SessionStatus.RUNNING,
        SessionStatus.FINISHED,
        SessionStatus.FAILED,
        SessionStatus.CANCELLED,
    },
    SessionStatus.RUNNING: {
        SessionStatus.AWAITING_TERMINATION,
        SessionStatus.FINISHED,
        SessionStatus.FAILED,
        SessionStatus.CANCELLED,
    },
    SessionStatus.AWAITING_TERMINATION: {
        SessionStatus.RUNNING,
        SessionStatus.FINISHED,
        SessionStatus.FAILED,
        SessionStatus.CANCELLED,
    },
    SessionStatus.FINISHED: set(_RESTARTABLE),
    SessionStatus.FAILED: set(_RESTARTABLE),
    SessionStatus.CANCELLED: set(_RESTARTABLE),
}


def can_transition(current: SessionStatus, target: SessionStatus) -> bool:
    return target in VALID_TRANSITIONS.get(current, set())


def validate_transition(current: SessionStatus, target: SessionStatus) -> None:
    """Validate a status transition. Raises InvalidTransitionError if invalid."""
    if not can_transition(current, target):
        allowed = sorted(s.value for s in VALID_TRANSITIONS.get(current, set()))
        raise InvalidTransitionError(current.value, target.value, allowed)
