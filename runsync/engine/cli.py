"""CLI entry point for the session sync engine.

Usage:
    runsync status
    runsync logs <session-id> --errors
    runsync reconcile --config runsync.yaml
    runsync watch --base-url http://localhost:9000 -v
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys

import yaml

from runsync.shared.services.persistence import SessionStore

from .config import SyncConfig
from .engine import SyncEngine


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="runsync",
        description="Keep a local map of backtest, live and candle-import sessions in sync with a compute backend",
    )
    parser.add_argument(
        "--config", "-c",
        default=None,
        help="YAML config file (default: RUNSYNC_* env vars only)",
    )
    parser.add_argument(
        "--state-file",
        default=None,
        help="Session state file (default: ~/.runsync/sessions.json)",
    )
    parser.add_argument(
        "--base-url",
        default=None,
        help="Backend base URL (default: from config)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("status", help="List stored sessions")
    logs = sub.add_parser("logs", help="Print the stored logs of one session")
    logs.add_argument("session_id")
    logs.add_argument("--errors", action="store_true", help="Print error logs instead of info logs")
    sub.add_parser("reconcile", help="Close stored sessions the backend no longer runs")
    sub.add_parser("watch", help="Apply backend push events until interrupted")

    args = parser.parse_args(argv)

    # Configure logging
    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
    )

    config = _build_config(args)
    if not args.verbose:
        logging.getLogger().setLevel(config.log_level)

    if args.command == "status":
        _print_status(SessionStore(config.state_file))
    elif args.command == "logs":
        _print_logs(SessionStore(config.state_file), args.session_id, args.errors)
    elif args.command == "reconcile":
        asyncio.run(_reconcile(config))
    elif args.command == "watch":
        engine = SyncEngine(config=config)
        try:
            asyncio.run(_watch(engine))
        except KeyboardInterrupt:
            print("\nInterrupted.")
            sys.exit(1)


def _build_config(args: argparse.Namespace) -> SyncConfig:
    if args.config:
        from .yaml_config import load_yaml_config

        try:
            config = load_yaml_config(args.config)
        except (OSError, ValueError, yaml.YAMLError) as exc:
            print(f"Error: Cannot load config {args.config}: {exc}")
            sys.exit(1)
    else:
        config = SyncConfig.from_env()
    if args.state_file is not None:
        config.state_file = args.state_file
    if args.base_url is not None:
        config.base_url = args.base_url
    return config


def _print_status(store: SessionStore) -> None:
    sessions = store.load()
    if not sessions:
        print(f"No sessions in {store.path}")
        return
    for session in sessions.values():
        line = (
            f"{session.id}  {session.kind.value:<8}  {session.status.value:<20}"
            f"  {session.progress.current:5.1f}%"
        )
        if session.exception:
            line += f"  error: {session.exception.error}"
        print(line)


def _print_logs(store: SessionStore, session_id: str, errors: bool) -> None:
    session = store.load().get(session_id)
    if session is None:
        print(f"Error: No session {session_id} in {store.path}")
        sys.exit(1)
    text = session.error_logs_text if errors else session.info_logs_text
    print(text, end="")


async def _reconcile(config: SyncConfig) -> None:
    async with SyncEngine(config=config) as engine:
        report = engine.last_report
    print(
        f"closed: {len(report.closed)}  refreshed: {len(report.refreshed)}"
        f"  skipped: {len(report.skipped)}"
    )
    for session_id in report.closed:
        print(f"  closed {session_id}")


async def _watch(engine: SyncEngine) -> None:
    try:
        await engine.run()
    finally:
        await engine.close()


if __name__ == "__main__":
    main()
