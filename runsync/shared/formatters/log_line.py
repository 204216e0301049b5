"""Formatting for session log lines.

Backend timestamps are epoch milliseconds; lines render as
``[HH:MM:SS] message`` in UTC.
"""
from __future__ import annotations

from datetime import datetime, timezone


def timestamp_to_time(timestamp: int | float) -> str:
    """Render an epoch-milliseconds timestamp as ``HH:MM:SS`` (UTC)."""
    dt = datetime.fromtimestamp(float(timestamp) / 1000.0, tz=timezone.utc)
    return dt.strftime("%H:%M:%S")


def format_log_line(timestamp: int | float, message: str) -> str:
    return f"[{timestamp_to_time(timestamp)}] {message}"


def join_log_lines(lines) -> str:
    """Render a sequence of LogLine objects as one newline-terminated block."""
    return "".join(f"{line.format()}\n" for line in lines)
