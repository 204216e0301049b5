"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via RUNSYNC_* env vars, or
load a YAML file with yaml_config.load_yaml_config().
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .models import SessionKind

logger = logging.getLogger(__name__)


def default_state_file() -> str:
    """~/.runsync/sessions.json, resolved at call time."""
    return str(Path.home() / ".runsync" / "sessions.json")


@dataclass
class SyncConfig:
    """Client configuration for the session engine."""

    # Backend
    base_url: str = "http://localhost:9000"
    auth_token: str | None = field(default=None, repr=False)
    request_timeout_seconds: float = 30.0

    # Push events
    events_path: str = "/ws"
    reconnect_delay_seconds: float = 5.0
    event_queue_size: int = 5000
    # Kind given to sessions materialized from events without a namespace
    default_kind: SessionKind = SessionKind.LIVE

    # Persistence
    state_file: str = field(default_factory=default_state_file)

    # Logging
    log_level: str = "INFO"

    # Sent verbatim as the "config" field of start commands
    backtest_settings: dict[str, Any] = field(default_factory=dict)
    live_settings: dict[str, Any] = field(default_factory=dict)

    def settings_for(self, kind: SessionKind) -> dict[str, Any]:
        if kind is SessionKind.BACKTEST:
            return dict(self.backtest_settings)
        if kind is SessionKind.LIVE:
            return dict(self.live_settings)
        return {}

    @classmethod
    def from_env(cls) -> SyncConfig:
        """Load configuration from RUNSYNC_* environment variables."""
        env_vars = sorted(k for k in os.environ if k.startswith("RUNSYNC_"))
        if env_vars:
            # Names only: RUNSYNC_AUTH_TOKEN must never reach the logs
            logger.info("SyncConfig.from_env: overrides from %s", ", ".join(env_vars))
        else:
            logger.debug("SyncConfig.from_env: no RUNSYNC_* env vars set, using defaults")

        config = cls(
            base_url=os.getenv("RUNSYNC_BASE_URL", cls.base_url),
            auth_token=os.getenv("RUNSYNC_AUTH_TOKEN") or None,
            request_timeout_seconds=float(os.getenv(
                "RUNSYNC_REQUEST_TIMEOUT", str(cls.request_timeout_seconds)
            )),
            events_path=os.getenv("RUNSYNC_EVENTS_PATH", cls.events_path),
            reconnect_delay_seconds=float(os.getenv(
                "RUNSYNC_RECONNECT_DELAY", str(cls.reconnect_delay_seconds)
            )),
            event_queue_size=int(os.getenv(
                "RUNSYNC_QUEUE_SIZE", str(cls.event_queue_size)
            )),
            default_kind=SessionKind(os.getenv(
                "RUNSYNC_DEFAULT_KIND", cls.default_kind.value
            )),
            state_file=os.getenv("RUNSYNC_STATE_FILE") or default_state_file(),
            log_level=os.getenv("RUNSYNC_LOG_LEVEL", cls.log_level),
        )
        logger.info(
            "SyncConfig.from_env: base_url=%s state_file=%s log_level=%s",
            config.base_url, config.state_file, config.log_level,
        )
        return config
