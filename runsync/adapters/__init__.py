"""Adapters package - Bridge between the engine and the compute backend.

This package contains the command client, push event types, event bus and
notification sinks that connect the engine to a backend and a frontend.
"""
from __future__ import annotations

__all__ = [
    "CommandClient",
    "HttpCommandClient",
    "EventBus",
    "parse_event",
    "Notifier",
    "LoggingNotifier",
    "CollectingNotifier",
]

from runsync.adapters.command_client import CommandClient, HttpCommandClient
from runsync.adapters.event_bus import EventBus
from runsync.adapters.events import parse_event
from runsync.adapters.notifier import CollectingNotifier, LoggingNotifier, Notifier
