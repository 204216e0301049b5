"""Async event bus funnelling push messages to the event router.

Transports (WebSocket readers, tests, other tabs) publish raw wire
messages; the router consumes them one at a time. This queue is the single
serialization point in front of the session map.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any

logger = logging.getLogger(__name__)

PushMessage = dict[str, Any]


class EventBus:
    """Async FIFO queue of ``{"id", "event", "data"}`` push messages."""

    def __init__(self, maxsize: int = 5000, put_timeout: float = 30.0) -> None:
        self._queue: asyncio.Queue[PushMessage] = asyncio.Queue(maxsize=maxsize)
        self._put_timeout = put_timeout
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        return self._queue.qsize()

    async def publish(self, message: PushMessage) -> None:
        """Queue one push message, applying backpressure instead of dropping."""
        if self._closed:
            return
        try:
            await asyncio.wait_for(self._queue.put(message), timeout=self._put_timeout)
        except asyncio.TimeoutError:
            logger.error(
                "EventBus queue blocked for %ss, dropping: %s for %s (queue size: %d)",
                self._put_timeout,
                message.get("event"),
                message.get("id"),
                self._queue.qsize(),
            )

    def publish_nowait(self, message: PushMessage) -> bool:
        """Queue without waiting. Returns False if the bus is closed or full."""
        if self._closed:
            return False
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.error("EventBus full, dropping: %s for %s", message.get("event"), message.get("id"))
            return False
        return True

    async def consume(self) -> AsyncIterator[PushMessage]:
        """Yield messages as they arrive. Stops on close() once the queue is empty."""
        while not (self._closed and self._queue.empty()):
            try:
                message = await asyncio.wait_for(self._queue.get(), timeout=0.5)
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                break
            yield message

    def close(self) -> None:
        """Stop accepting messages; consumers finish what is already queued."""
        self._closed = True

    def reset(self) -> None:
        """Drain leftover messages and re-open the bus."""
        while not self._queue.empty():
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
        self._closed = False
