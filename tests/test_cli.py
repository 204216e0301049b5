from __future__ import annotations

from dataclasses import replace

import pytest

from runsync.engine.cli import main
from runsync.engine.models import SessionKind, SessionStatus
from runsync.shared.models.session import ExceptionInfo, LogLine, new_session
from runsync.shared.services.persistence import SessionStore


@pytest.fixture
def state_file(tmp_path):
    path = tmp_path / "sessions.json"
    crashed = replace(
        new_session(SessionKind.LIVE, "live-1"),
        status=SessionStatus.FAILED,
        exception=ExceptionInfo("Session terminated unexpectedly", ""),
        info_logs=[LogLine(0, "booted"), LogLine(61000, "first trade")],
        error_logs=[LogLine(5000, "rate limited")],
    )
    SessionStore(path).save({"live-1": crashed})
    return path


def test_status_lists_sessions(state_file, capsys) -> None:
    main(["--state-file", str(state_file), "status"])
    out = capsys.readouterr().out
    assert "live-1" in out
    assert "failed" in out
    assert "error: Session terminated unexpectedly" in out


def test_status_with_no_sessions(tmp_path, capsys) -> None:
    main(["--state-file", str(tmp_path / "empty.json"), "status"])
    assert "No sessions" in capsys.readouterr().out


def test_logs_prints_formatted_lines(state_file, capsys) -> None:
    main(["--state-file", str(state_file), "logs", "live-1"])
    assert capsys.readouterr().out == "[00:00:00] booted\n[00:01:01] first trade\n"

    main(["--state-file", str(state_file), "logs", "live-1", "--errors"])
    assert capsys.readouterr().out == "[00:00:05] rate limited\n"


def test_logs_for_unknown_session_exits(state_file) -> None:
    with pytest.raises(SystemExit):
        main(["--state-file", str(state_file), "logs", "missing"])


def test_malformed_yaml_config_exits_with_message(tmp_path, capsys) -> None:
    config_file = tmp_path / "runsync.yaml"
    config_file.write_text("backend: [unclosed\n")
    with pytest.raises(SystemExit) as excinfo:
        main(["--config", str(config_file), "status"])
    assert excinfo.value.code == 1
    assert "Error: Cannot load config" in capsys.readouterr().out
