from __future__ import annotations

import pytest

from runsync.engine.errors import InvalidTransitionError
from runsync.engine.lifecycle import VALID_TRANSITIONS, can_transition, validate_transition
from runsync.engine.models import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    AdvisoryLevel,
    SessionStatus,
    parse_advisory_level,
    parse_kind,
    parse_status,
)


def test_every_status_has_a_row() -> None:
    assert set(VALID_TRANSITIONS) == set(SessionStatus)


def test_terminal_statuses_only_leave_through_user_actions() -> None:
    for status in TERMINAL_STATUSES:
        assert VALID_TRANSITIONS[status] == {SessionStatus.STARTING, SessionStatus.IDLE}


def test_active_statuses_can_reach_every_terminal_status() -> None:
    for status in ACTIVE_STATUSES:
        for terminal in TERMINAL_STATUSES:
            assert can_transition(status, terminal), (status, terminal)


def test_stop_round_trip() -> None:
    assert can_transition(SessionStatus.RUNNING, SessionStatus.AWAITING_TERMINATION)
    assert can_transition(SessionStatus.AWAITING_TERMINATION, SessionStatus.RUNNING)
    assert not can_transition(SessionStatus.STARTING, SessionStatus.AWAITING_TERMINATION)


def test_idle_cannot_finish_directly() -> None:
    with pytest.raises(InvalidTransitionError) as excinfo:
        validate_transition(SessionStatus.IDLE, SessionStatus.FINISHED)
    assert excinfo.value.current == "idle"
    assert excinfo.value.target == "finished"
    assert "running, starting" in str(excinfo.value)


def test_invalid_transition_is_a_value_error() -> None:
    with pytest.raises(ValueError):
        validate_transition(SessionStatus.FINISHED, SessionStatus.RUNNING)


def test_parse_helpers() -> None:
    assert parse_status("awaiting_termination") is SessionStatus.AWAITING_TERMINATION
    assert parse_status("bogus") is SessionStatus.IDLE
    assert parse_status(None) is SessionStatus.IDLE
    assert parse_advisory_level("success") is AdvisoryLevel.SUCCESS
    assert parse_advisory_level("weird") is AdvisoryLevel.INFO
    with pytest.raises(ValueError):
        parse_kind("optimization")
