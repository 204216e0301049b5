"""Reconciliation of locally "running" sessions with the backend.

After a restart, or when a second client took over, the local map can claim
sessions are running that the backend has long forgotten. On startup the
service asks the backend which sessions it is executing and closes every
other locally active one, without a cancel round trip. Running it again
changes nothing.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

from runsync.adapters.command_client import CommandClient

from . import state_machine as sm
from .errors import CommandError
from .models import Advisory, AdvisoryLevel, SessionKind
from .registry import SessionRegistry

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationReport:
    """What a reconciliation pass did, by session id."""
    closed: list[str] = field(default_factory=list)
    refreshed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    active_workers: frozenset[str] = frozenset()

    @property
    def changed(self) -> bool:
        return bool(self.closed)


class ReconciliationService:
    def __init__(self, registry: SessionRegistry, client: CommandClient | None = None) -> None:
        self._registry = registry
        self._client = client or registry.client

    async def _query_active_workers(self) -> set[str]:
        try:
            return set(await self._client.active_workers())
        except CommandError as exc:
            # Unknown server state reconciles as "nothing is active"
            logger.warning("Active worker query failed, treating as empty: %s", exc)
            self._registry.emit([Advisory(
                AdvisoryLevel.WARNING,
                f"Could not query active sessions: {exc.message}",
            )])
            return set()

    async def run(self, active_workers: set[str] | None = None) -> ReconciliationReport:
        """Reconcile every locally active session against *active_workers*.

        When *active_workers* is None it is queried from the backend.
        """
        if active_workers is None:
            active_workers = await self._query_active_workers()
        workers = frozenset(str(w) for w in active_workers)
        report = ReconciliationReport(active_workers=workers)

        for session_id in list(self._registry):
            session = self._registry.find(session_id)
            if session is None or not session.is_active:
                continue
            if session.exception:
                # The backend already reported the failure; nothing to ask it
                report.skipped.append(session_id)
                continue

            is_live = session.kind is SessionKind.LIVE
            if session_id not in workers:
                self._registry.commit(sm.force_close(session))
                report.closed.append(session_id)
                logger.info(
                    "Reconciled %s session %s: not running on the backend, closed",
                    session.kind.value, session_id,
                )
                if is_live:
                    # Backfill whatever was logged while this client was away
                    await self._registry.fetch_logs(session_id)
                    report.refreshed.append(session_id)
            elif is_live:
                await self._registry.fetch_logs(session_id)
                report.refreshed.append(session_id)

        logger.info(
            "Reconciliation done: %d closed, %d refreshed, %d skipped (%d active on backend)",
            len(report.closed), len(report.refreshed), len(report.skipped), len(workers),
        )
        return report
