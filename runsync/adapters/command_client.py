"""Command transport to the compute backend.

``CommandClient`` is the interface the engine depends on. Every method
either succeeds or raises CommandError carrying the backend's status code
and message. ``HttpCommandClient`` implements it over aiohttp JSON POSTs
and also reads the backend's push-event WebSocket into an EventBus.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any, Protocol

import aiohttp

from runsync.engine.errors import CommandError

if TYPE_CHECKING:
    from runsync.adapters.event_bus import EventBus

logger = logging.getLogger(__name__)

# Status code used when the backend could not be reached at all
TRANSPORT_FAILURE = 0


class CommandClient(Protocol):
    async def start_backtest(self, session_id: str, body: dict[str, Any]) -> None: ...

    async def cancel_backtest(self, session_id: str) -> None: ...

    async def start_live(self, session_id: str, body: dict[str, Any]) -> None: ...

    async def cancel_live(self, session_id: str, paper_mode: bool) -> None: ...

    async def import_candles(
        self, session_id: str, exchange: str, symbol: str, start_date: str
    ) -> None: ...

    async def cancel_import(self, session_id: str) -> None: ...

    async def get_logs(
        self, session_id: str, log_type: str, start_time: int | None
    ) -> list[dict[str, Any]]: ...

    async def get_candles(
        self, session_id: str, exchange: str, symbol: str, timeframe: str
    ) -> list[Any]: ...

    async def active_workers(self) -> set[str]: ...


def _unwrap_list(data: Any, *keys: str) -> list[Any]:
    """Backends wrap collections as ``{"data": [...]}``; accept bare lists too."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in keys:
            value = data.get(key)
            if isinstance(value, list):
                return value
    return []


class HttpCommandClient:
    """aiohttp implementation of CommandClient."""

    def __init__(
        self,
        base_url: str,
        auth_token: str | None = None,
        *,
        timeout: float = 30.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._auth_token = auth_token
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> HttpCommandClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def base_url(self) -> str:
        return self._base_url

    def _headers(self) -> dict[str, str]:
        if self._auth_token:
            return {"Authorization": self._auth_token}
        return {}

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def _post(self, path: str, body: dict[str, Any]) -> Any:
        session = self._ensure_session()
        url = f"{self._base_url}{path}"
        logger.debug("POST %s (id=%s)", path, body.get("id"))
        try:
            async with session.post(url, json=body, headers=self._headers()) as resp:
                text = await resp.text()
                try:
                    data = json.loads(text) if text else None
                except json.JSONDecodeError:
                    data = None
                if resp.status != 200:
                    message = ""
                    if isinstance(data, dict):
                        message = str(data.get("message") or data.get("error") or "")
                    raise CommandError(resp.status, message or text or resp.reason or "Request failed")
                return data
        except aiohttp.ClientError as exc:
            raise CommandError(TRANSPORT_FAILURE, f"Backend unreachable: {exc}") from exc
        except asyncio.TimeoutError as exc:
            raise CommandError(TRANSPORT_FAILURE, f"Request to {path} timed out") from exc

    # ── Commands ──

    async def start_backtest(self, session_id: str, body: dict[str, Any]) -> None:
        await self._post("/backtest", {"id": session_id, **body})

    async def cancel_backtest(self, session_id: str) -> None:
        await self._post("/cancel-backtest", {"id": session_id})

    async def start_live(self, session_id: str, body: dict[str, Any]) -> None:
        await self._post("/live", {"id": session_id, **body})

    async def cancel_live(self, session_id: str, paper_mode: bool) -> None:
        await self._post("/cancel-live", {"id": session_id, "paper_mode": paper_mode})

    async def import_candles(
        self, session_id: str, exchange: str, symbol: str, start_date: str
    ) -> None:
        await self._post("/import-candles", {
            "id": session_id,
            "exchange": exchange,
            "symbol": symbol,
            "start_date": start_date,
        })

    async def cancel_import(self, session_id: str) -> None:
        await self._post("/cancel-import-candles", {"id": session_id})

    async def get_logs(
        self, session_id: str, log_type: str, start_time: int | None
    ) -> list[dict[str, Any]]:
        data = await self._post("/get-logs", {
            "id": session_id,
            "type": log_type,
            "start_time": start_time,
        })
        return _unwrap_list(data, "data")

    async def get_candles(
        self, session_id: str, exchange: str, symbol: str, timeframe: str
    ) -> list[Any]:
        data = await self._post("/get-candles", {
            "id": session_id,
            "exchange": exchange,
            "symbol": symbol,
            "timeframe": timeframe,
        })
        return _unwrap_list(data, "data")

    async def active_workers(self) -> set[str]:
        data = await self._post("/active-workers", {})
        return {str(i) for i in _unwrap_list(data, "data", "active_workers")}

    # ── Push events ──

    async def stream_events(self, bus: EventBus, path: str = "/ws") -> None:
        """Publish every backend WebSocket message to *bus* until the socket closes."""
        session = self._ensure_session()
        params = {"token": self._auth_token} if self._auth_token else None
        url = f"{self._base_url}{path}"
        try:
            async with session.ws_connect(url, params=params, heartbeat=30.0) as ws:
                logger.info("Connected to push events at %s", url)
                async for msg in ws:
                    if msg.type == aiohttp.WSMsgType.TEXT:
                        try:
                            message = json.loads(msg.data)
                        except json.JSONDecodeError:
                            logger.warning("Dropping non-JSON push message: %.80s", msg.data)
                            continue
                        if isinstance(message, dict):
                            await bus.publish(message)
                    elif msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                        break
        except aiohttp.ClientError as exc:
            logger.warning("Push event stream failed: %s", exc)
        logger.info("Push event stream closed")
