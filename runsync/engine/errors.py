"""Exception hierarchy for the session engine.

Specific exceptions for each failure mode. Registry, router and
reconciliation recover these at the call site and surface advisories;
nothing here is allowed to be fatal to the process.
"""
from __future__ import annotations


class SyncError(Exception):
    """Base exception for all session-sync errors."""


class StartValidationError(SyncError):
    """A start command violates a static precondition. Never reaches the network."""
    def __init__(self, session_id: str, reason: str):
        self.session_id = session_id
        self.reason = reason
        super().__init__(reason)


class CommandError(SyncError):
    """The backend answered a command with a non-success status."""
    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"[{status_code}] {message}")


class SessionNotFoundError(SyncError, KeyError):
    """No session is registered under the given id."""
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")

    def __str__(self) -> str:
        return self.args[0]


class SessionActiveError(SyncError):
    """The operation is refused while the session is executing."""
    def __init__(self, session_id: str, reason: str):
        self.session_id = session_id
        self.reason = reason
        super().__init__(reason)


class InvalidTransitionError(SyncError, ValueError):
    """A status change not allowed by the lifecycle table."""
    def __init__(self, current: str, target: str, allowed: list[str]):
        self.current = current
        self.target = target
        allowed_str = ", ".join(allowed) or "none"
        super().__init__(
            f"Invalid status transition: {current} -> {target}. "
            f"Allowed from {current}: {allowed_str}"
        )


class MalformedEventError(SyncError):
    """A push event payload does not match its kind's schema."""
    def __init__(self, event_kind: str, reason: str):
        self.event_kind = event_kind
        self.reason = reason
        super().__init__(f"Malformed '{event_kind}' event: {reason}")
