"""Single realtime socket with automatic reconnect.

Frames are JSON envelopes (see ``liftsync.realtime.messages``). The socket
reconnects with exponential backoff after any close. Going to the background
closes it cleanly and going to the foreground reconnects immediately.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, AsyncContextManager, Awaitable, Callable, Optional, Union

import websockets
from websockets.exceptions import WebSocketException

from liftsync.realtime.backoff import ReconnectBackoff
from liftsync.realtime.messages import Message, MessageParseError, encode_message, parse_message

logger = logging.getLogger(__name__)

Connector = Callable[[str], AsyncContextManager[Any]]
MessageListener = Callable[[Message], Union[Awaitable[None], None]]


class RealtimeTransport:
    def __init__(
        self,
        url: str | None,
        *,
        connector: Connector | None = None,
        backoff: ReconnectBackoff | None = None,
    ) -> None:
        self._url = url
        self._connector: Connector = connector or websockets.connect
        self._backoff = backoff or ReconnectBackoff()
        self._listeners: list[MessageListener] = []
        self._ws: Any = None
        self._task: Optional[asyncio.Task[None]] = None
        self._wake = asyncio.Event()
        self._enabled = False
        self._suspended = False
        self.last_message: Message | None = None
        self.last_delay: float | None = None

    @property
    def enabled(self) -> bool:
        return self._url is not None

    @property
    def connected(self) -> bool:
        return self._ws is not None

    @property
    def backoff(self) -> ReconnectBackoff:
        return self._backoff

    def add_listener(self, listener: MessageListener) -> None:
        self._listeners.append(listener)

    def start(self) -> None:
        if self._url is None:
            logger.info("[WS] no signed-in user, realtime disabled")
            return
        if self._task is not None and not self._task.done():
            return
        self._enabled = True
        self._suspended = False
        self._wake = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name="realtime-transport")

    async def stop(self) -> None:
        self._enabled = False
        self._wake.set()
        await self._close("client stop")
        if self._task is not None:
            await self._task
            self._task = None

    async def on_background(self) -> None:
        if self._suspended:
            return
        logger.info("[WS] app backgrounded, closing socket")
        self._suspended = True
        await self._close("background")

    def on_foreground(self) -> None:
        if self.connected and not self._suspended:
            return
        logger.info("[WS] app foregrounded, reconnecting now")
        self._suspended = False
        self._backoff.reset()
        self._wake.set()

    async def send(self, message: Message) -> bool:
        ws = self._ws
        if ws is None:
            logger.warning("[WS_SEND_FAILED] socket not open, dropping %s", message.get("type"))
            return False
        try:
            await ws.send(encode_message(message))
        except (OSError, WebSocketException) as exc:
            logger.warning("[WS_SEND_FAILED] %s: %s", message.get("type"), exc)
            return False
        return True

    async def _run(self) -> None:
        while self._enabled:
            if self._suspended:
                await self._wake.wait()
                self._wake.clear()
                continue

            await self._connect_once()
            if not self._enabled or self._suspended:
                continue

            delay = self._backoff.next_delay()
            self.last_delay = delay
            logger.info("[WS] reconnecting in %.1fs", delay)
            self._wake.clear()
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
            self._wake.clear()

    async def _connect_once(self) -> None:
        assert self._url is not None
        logger.info("[WS] connecting")
        try:
            async with self._connector(self._url) as ws:
                if not self._enabled or self._suspended:
                    # stop() or on_background() ran while the handshake was in flight
                    reason = "background" if self._enabled else "client stop"
                    logger.info("[WS] opened after close was requested, closing (%s)", reason)
                    await ws.close(code=1000, reason=reason)
                    return
                self._ws = ws
                self._backoff.reset()
                logger.info("[WS] connected")
                async for frame in ws:
                    await self._dispatch(frame)
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            logger.warning("[WS] connection error: %s", exc)
        finally:
            self._ws = None
        logger.info("[WS] closed")

    async def _close(self, reason: str) -> None:
        ws = self._ws
        if ws is None:
            return
        try:
            await ws.close(code=1000, reason=reason)
        except (OSError, WebSocketException) as exc:
            logger.debug("[WS] close failed: %s", exc)

    async def _dispatch(self, frame: str | bytes) -> None:
        try:
            message = parse_message(frame)
        except MessageParseError as exc:
            logger.warning("[WS] ignoring malformed frame: %s", exc)
            return
        self.last_message = message
        for listener in list(self._listeners):
            try:
                result = listener(message)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("[WS] listener failed for %s", message.get("type"))
