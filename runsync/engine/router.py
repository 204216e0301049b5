"""Event router: applies push events to the right session.

Consumes push messages from the EventBus, materializes sessions the client
has not seen yet, and runs each event through the state machine. Events for
one session are applied in arrival order; sessions are independent of each
other. A malformed or unknown event is logged and dropped so it can never
break tracking of other sessions.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any

from runsync.adapters.event_bus import EventBus
from runsync.adapters.events import parse_event, split_event_name

from . import state_machine as sm
from .errors import InvalidTransitionError, MalformedEventError
from .models import FollowUp, SessionKind
from .registry import SessionRegistry

logger = logging.getLogger(__name__)


class EventRouter:
    """Single entry point for push events: ``apply(session_id, kind, payload)``."""

    def __init__(
        self,
        registry: SessionRegistry,
        default_kind: SessionKind = SessionKind.LIVE,
    ) -> None:
        self._registry = registry
        self._default_kind = default_kind
        self._tasks: set[asyncio.Task] = set()
        self._applied = 0
        self._ignored = 0

    @property
    def stats(self) -> dict[str, int]:
        return {
            "applied": self._applied,
            "ignored": self._ignored,
            "pending_follow_ups": len(self._tasks),
        }

    def apply(
        self,
        session_id: str,
        event_kind: str,
        payload: Any = None,
        *,
        kind: SessionKind | None = None,
    ) -> sm.Transition | None:
        """Apply one event synchronously. Returns None when the event was ignored."""
        try:
            event = parse_event(event_kind, session_id, payload)
        except MalformedEventError as exc:
            self._ignored += 1
            logger.warning("Ignoring event for %s: %s", session_id, exc)
            return None
        if event is None:
            self._ignored += 1
            logger.debug("Ignoring unknown event kind %r for %s", event_kind, session_id)
            return None

        session = self._registry.ensure(session_id, kind or self._default_kind)
        try:
            transition = sm.apply_event(session, event)
        except InvalidTransitionError as exc:
            self._ignored += 1
            logger.warning("Ignoring %s for %s: %s", event_kind, session_id, exc)
            return None
        except Exception:
            self._ignored += 1
            logger.exception("Failed to apply %s to %s; session left unchanged", event_kind, session_id)
            return None

        self._registry.commit(transition)
        self._applied += 1
        logger.debug(
            "Applied %s to %s (status=%s)",
            event_kind, session_id, transition.session.status.value,
        )
        return transition

    async def handle(
        self,
        session_id: str,
        event_kind: str,
        payload: Any = None,
        *,
        kind: SessionKind | None = None,
    ) -> sm.Transition | None:
        """Apply an event and schedule its follow-ups without blocking other sessions."""
        transition = self.apply(session_id, event_kind, payload, kind=kind)
        if transition is not None:
            for follow_up in transition.follow_ups:
                self._schedule(session_id, follow_up)
        return transition

    async def dispatch_message(self, message: dict[str, Any]) -> sm.Transition | None:
        """Handle one wire message ``{"id", "event", "data"}``.

        ``event`` may be namespaced as ``"<kind>.<event>"``; the namespace
        picks the kind used when the session has to be materialized.
        """
        session_id = message.get("id")
        name = message.get("event")
        if not session_id or not isinstance(name, str):
            self._ignored += 1
            logger.warning("Ignoring push message without id/event: %.120r", message)
            return None

        namespace, event_kind = split_event_name(name)
        kind = None
        if namespace is not None:
            try:
                kind = SessionKind(namespace)
            except ValueError:
                logger.debug("Unknown event namespace %r; using default kind", namespace)
        return await self.handle(str(session_id), event_kind, message.get("data"), kind=kind)

    async def run(self, bus: EventBus) -> None:
        """Consume the bus until it is closed and empty."""
        async for message in bus.consume():
            await self.dispatch_message(message)

    def _schedule(self, session_id: str, follow_up: FollowUp) -> None:
        if follow_up is FollowUp.FETCH_LOGS:
            coro = self._registry.fetch_logs(session_id)
        else:
            logger.warning("Unknown follow-up %s for %s", follow_up, session_id)
            return
        task = asyncio.create_task(coro, name=f"{follow_up.value}:{session_id}")
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Follow-up %s failed: %s", task.get_name(), exc, exc_info=exc)

    async def drain(self) -> None:
        """Wait for every scheduled follow-up to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
