"""runsync engine: session state machine, registry, router and reconciliation."""
from .models import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    Advisory,
    AdvisoryLevel,
    FollowUp,
    SessionKind,
    SessionStatus,
)
from .config import SyncConfig
from .lifecycle import VALID_TRANSITIONS, can_transition, validate_transition
from .errors import (
    CommandError,
    InvalidTransitionError,
    MalformedEventError,
    SessionActiveError,
    SessionNotFoundError,
    StartValidationError,
    SyncError,
)

__all__ = [
    # Core engine (lazy import to avoid circular deps)
    "SyncEngine",
    "SessionRegistry",
    "EventRouter",
    "ReconciliationService",
    "ReconciliationReport",
    "Transition",
    # Models
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
    "Advisory",
    "AdvisoryLevel",
    "FollowUp",
    "SessionKind",
    "SessionStatus",
    # Lifecycle
    "VALID_TRANSITIONS",
    "can_transition",
    "validate_transition",
    # Config
    "SyncConfig",
    # YAML config (lazy import)
    "load_yaml_config",
    # Errors
    "CommandError",
    "InvalidTransitionError",
    "MalformedEventError",
    "SessionActiveError",
    "SessionNotFoundError",
    "StartValidationError",
    "SyncError",
]


def __getattr__(name: str):
    if name == "SyncEngine":
        from .engine import SyncEngine
        return SyncEngine
    if name == "SessionRegistry":
        from .registry import SessionRegistry
        return SessionRegistry
    if name == "EventRouter":
        from .router import EventRouter
        return EventRouter
    if name == "ReconciliationService":
        from .reconciliation import ReconciliationService
        return ReconciliationService
    if name == "ReconciliationReport":
        from .reconciliation import ReconciliationReport
        return ReconciliationReport
    if name == "Transition":
        from .state_machine import Transition
        return Transition
    if name == "load_yaml_config":
        from .yaml_config import load_yaml_config
        return load_yaml_config
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
