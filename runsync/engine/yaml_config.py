"""YAML configuration loader.

Loads a single YAML file layered over the RUNSYNC_* environment
configuration: keys present in the file win, everything else keeps its
env/default value.

Example YAML:
    backend:
      base_url: http://localhost:9000
      auth_token_env: JESSE_TOKEN      # read the token from this env var
      request_timeout: 20

    events:
      path: /ws
      reconnect_delay: 5
      queue_size: 5000
      default_kind: live

    storage:
      state_file: ~/.runsync/sessions.json

    logging:
      level: DEBUG

    backtest:                          # sent as "config" with start-backtest
      warm_up_candles: 210
      logging:
        order_submission: true

    live:                              # sent as "config" with start-live
      persistency: true
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml

from .config import SyncConfig
from .models import SessionKind

logger = logging.getLogger(__name__)


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ValueError(f"YAML section '{name}' must be a mapping, got {type(value).__name__}")
    return value


def load_yaml_config(path: str | Path, base: SyncConfig | None = None) -> SyncConfig:
    """Load and parse a YAML config file into a SyncConfig.

    *base* defaults to SyncConfig.from_env(). Raises FileNotFoundError,
    yaml.YAMLError or ValueError for missing or invalid files.
    """
    path = Path(path).expanduser()
    logger.info("load_yaml_config: loading %s (exists=%s)", path, path.exists())
    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error("load_yaml_config: config file not found at %s", path.absolute())
        raise
    except yaml.YAMLError as exc:
        logger.error("load_yaml_config: YAML parse error in %s: %s", path, exc)
        raise

    if not isinstance(raw, dict):
        raise ValueError(f"{path}: top level must be a mapping")

    logger.info(
        "Parsed YAML config %s, sections: %s",
        path.name, ", ".join(sorted(raw)) if raw else "(empty)",
    )

    config = base if base is not None else SyncConfig.from_env()

    backend = _section(raw, "backend")
    if "base_url" in backend:
        config.base_url = str(backend["base_url"])
    if "auth_token" in backend:
        config.auth_token = str(backend["auth_token"]) or None
    elif "auth_token_env" in backend:
        env_name = str(backend["auth_token_env"])
        config.auth_token = os.getenv(env_name) or None
        if config.auth_token is None:
            logger.warning("load_yaml_config: %s is not set; no auth token", env_name)
    if "request_timeout" in backend:
        config.request_timeout_seconds = float(backend["request_timeout"])

    events = _section(raw, "events")
    if "path" in events:
        config.events_path = str(events["path"])
    if "reconnect_delay" in events:
        config.reconnect_delay_seconds = float(events["reconnect_delay"])
    if "queue_size" in events:
        config.event_queue_size = int(events["queue_size"])
    if "default_kind" in events:
        config.default_kind = SessionKind(str(events["default_kind"]))

    storage = _section(raw, "storage")
    if "state_file" in storage:
        config.state_file = str(Path(str(storage["state_file"])).expanduser())

    log_section = _section(raw, "logging")
    if "level" in log_section:
        config.log_level = str(log_section["level"]).upper()

    if "backtest" in raw:
        config.backtest_settings = _section(raw, "backtest")
    if "live" in raw:
        config.live_settings = _section(raw, "live")

    return config
