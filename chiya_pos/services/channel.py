"""Push channel from the backend: typed "something changed" notifications.

Frames are JSON objects with a ``type`` field. The channel carries no
entity data the store relies on; subscribers react by refetching.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import urlsplit, urlunsplit

import websockets
from websockets.exceptions import WebSocketException

from ..core.bus import EventBus

log = logging.getLogger(__name__)

CONNECTION = "connection"
PUSH_EVENTS = (
    "MENU_UPDATE",
    "STAFF_UPDATE",
    "ORDER_UPDATE",
    "BILL_UPDATE",
    "CUSTOMER_UPDATE",
    "WAITER_CALL",
    "SETTINGS_UPDATE",
    "EXPENSE_UPDATE",
    "CATEGORIES_UPDATE",
)
MIN_BACKOFF = 1.0
MAX_BACKOFF = 30.0


def ws_url_for(base_url: str) -> str:
    """``http://host:3001/anything`` -> ``ws://host:3001/ws``."""
    parts = urlsplit(base_url.strip())
    scheme = {"http": "ws", "https": "wss"}.get(parts.scheme, parts.scheme or "ws")
    return urlunsplit((scheme, parts.netloc, "/ws", "", ""))


class SyncChannel:
    def __init__(
        self,
        url: str,
        *,
        connect: Callable[[str], Any] | None = None,
        bus: EventBus | None = None,
        min_backoff: float = MIN_BACKOFF,
        max_backoff: float = MAX_BACKOFF,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.url = url
        self._connect = connect or websockets.connect
        self.bus = bus or EventBus()
        self.min_backoff = min_backoff
        self.max_backoff = max_backoff
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self._closing = False
        self._connected = False
        self.attempts = 0

    @property
    def connected(self) -> bool:
        return self._connected

    def on(self, event: str, handler: Callable[[dict], None]) -> Callable[[], None]:
        return self.bus.subscribe(event, handler)

    async def connect(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._closing = False
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def close(self) -> None:
        self._closing = True
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def _set_connected(self, connected: bool) -> None:
        if self._connected == connected:
            return
        self._connected = connected
        status = "connected" if connected else "disconnected"
        log.info("sync channel %s (%s)", status, self.url)
        self._publish(CONNECTION, {"type": CONNECTION, "status": status})

    def _publish(self, event: str, message: dict) -> None:
        try:
            self.bus.emit(event, message)
        except Exception:
            log.exception("handler for %s failed", event)

    def _dispatch(self, raw: Any) -> None:
        try:
            message = json.loads(raw)
        except (TypeError, ValueError):
            log.warning("dropping undecodable frame from sync channel")
            return
        if not isinstance(message, dict):
            log.warning("dropping non-object frame from sync channel")
            return
        event = message.get("type")
        if event not in PUSH_EVENTS:
            log.debug("ignoring unknown event type %r", event)
            return
        self._publish(event, message)

    async def _run(self) -> None:
        delay = self.min_backoff
        try:
            while not self._closing:
                self.attempts += 1
                try:
                    async with self._connect(self.url) as ws:
                        delay = self.min_backoff
                        self._set_connected(True)
                        async for raw in ws:
                            self._dispatch(raw)
                except (OSError, WebSocketException, asyncio.TimeoutError) as exc:
                    log.warning("sync channel error: %s", exc)
                finally:
                    self._set_connected(False)
                if self._closing:
                    break
                log.debug("reconnecting in %.1fs", delay)
                await self._sleep(delay)
                delay = min(delay * 2, self.max_backoff)
        finally:
            self._set_connected(False)
