"""Top-level sync engine.

Wires together the SessionRegistry, EventRouter, ReconciliationService and
the EventBus fed by the backend's push stream. Single entry point for
keeping a local session map in step with a compute backend.

Usage:
    async with SyncEngine(SyncConfig.from_env()) as engine:
        await engine.registry.start(engine.registry.create(SessionKind.BACKTEST))
        await engine.run()
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any

from runsync.adapters.command_client import CommandClient, HttpCommandClient
from runsync.adapters.event_bus import EventBus
from runsync.adapters.notifier import Notifier
from runsync.shared.services.persistence import SessionStore

from .config import SyncConfig
from .reconciliation import ReconciliationReport, ReconciliationService
from .registry import SessionRegistry
from .router import EventRouter

logger = logging.getLogger(__name__)


class SyncEngine:
    """Owns the session map for one backend.

    ``start()`` restores persisted sessions and reconciles them with the
    backend before any push event is applied; ``run()`` then streams events
    until ``stop()`` is called.
    """

    def __init__(
        self,
        config: SyncConfig | None = None,
        *,
        client: CommandClient | None = None,
        store: SessionStore | None = None,
        notifier: Notifier | None = None,
        bus: EventBus | None = None,
    ) -> None:
        self._config = config or SyncConfig.from_env()
        self._owns_client = client is None
        self._client: CommandClient = client or HttpCommandClient(
            self._config.base_url,
            self._config.auth_token,
            timeout=self._config.request_timeout_seconds,
        )
        self._store = store or SessionStore(self._config.state_file)
        self._bus = bus or EventBus(maxsize=self._config.event_queue_size)
        self._registry = SessionRegistry(
            self._client,
            self._store,
            notifier=notifier,
            config=self._config,
        )
        self._router = EventRouter(self._registry, default_kind=self._config.default_kind)
        self._reconciliation = ReconciliationService(self._registry, self._client)
        self._started = False
        self._last_report: ReconciliationReport | None = None
        self._stop_event = asyncio.Event()

    async def __aenter__(self) -> SyncEngine:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def config(self) -> SyncConfig:
        return self._config

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    @property
    def router(self) -> EventRouter:
        return self._router

    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def started(self) -> bool:
        return self._started

    @property
    def last_report(self) -> ReconciliationReport | None:
        return self._last_report

    async def start(self) -> ReconciliationReport:
        """Restore persisted sessions and reconcile them with the backend."""
        restored = self._registry.load()
        logger.info(
            "Restored %d session(s) from %s (%d active)",
            restored, self._store.path, len(self._registry.active_ids()),
        )
        report = await self.reconcile()
        self._started = True
        return report

    async def reconcile(self, active_workers: set[str] | None = None) -> ReconciliationReport:
        report = await self._reconciliation.run(active_workers)
        self._last_report = report
        if report.changed:
            self._registry.save()
        return report

    async def publish(self, message: dict[str, Any]) -> None:
        """Queue a push message as if it came from the backend stream."""
        await self._bus.publish(message)

    async def run(self) -> None:
        """Apply push events until stop() is called.

        Reconnects to the backend stream after ``reconnect_delay_seconds``
        whenever it drops. Clients without a stream only consume what is
        published to the bus directly. If the router task dies the loop ends
        at once and its exception is re-raised.
        """
        if not self._started:
            await self.start()
        if self._bus.closed:
            self._bus.reset()

        consumer = asyncio.create_task(self._router.run(self._bus), name="runsync-router")
        streamer = asyncio.create_task(self._stream_forever(), name="runsync-stream")
        stopper = asyncio.create_task(self._stop_event.wait(), name="runsync-stop")
        try:
            done, _ = await asyncio.wait(
                {consumer, streamer, stopper}, return_when=asyncio.FIRST_COMPLETED
            )
            if consumer in done and not consumer.cancelled() and consumer.exception() is not None:
                logger.error("Event router stopped: %s", consumer.exception())
        finally:
            for task in (streamer, stopper):
                task.cancel()
            await asyncio.gather(streamer, stopper, return_exceptions=True)
            self._bus.close()
            await asyncio.gather(consumer, return_exceptions=True)
            await self._router.drain()
            self._registry.save()
            self._stop_event.clear()
            logger.info("Event loop stopped (%s)", self._router.stats)

        for task in (consumer, streamer):
            if not task.cancelled() and task.exception() is not None:
                raise task.exception()

    async def _stream_forever(self) -> None:
        stream = getattr(self._client, "stream_events", None)
        if stream is None:
            await self._stop_event.wait()
            return
        while not self._stop_event.is_set():
            await stream(self._bus, self._config.events_path)
            if self._stop_event.is_set():
                break
            logger.info(
                "Push stream dropped; reconnecting in %.1fs",
                self._config.reconnect_delay_seconds,
            )
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self._config.reconnect_delay_seconds
                )
            except asyncio.TimeoutError:
                continue

    def stop(self) -> None:
        self._stop_event.set()

    async def close(self) -> None:
        """Stop streaming, finish pending follow-ups and persist the map."""
        self.stop()
        await self._router.drain()
        self._registry.save()
        if self._owns_client and isinstance(self._client, HttpCommandClient):
            await self._client.close()
