"""Live socket handles owned by the realtime registry."""
from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional, Protocol

from fastapi import WebSocket
from starlette.websockets import WebSocketState

logger = logging.getLogger(__name__)

WRITE_FAILED_CLOSE_CODE = 1011
WRITE_FAILED_REASON = "Write failed"


class ConnectionHandle(Protocol):
    """What the registry and dispatcher need from a connection.

    Both methods return immediately and may be called from any thread.
    """

    user_id: str

    @property
    def is_open(self) -> bool: ...

    def send_nowait(self, text: str) -> None: ...

    def close_nowait(self, code: int = 1000, reason: str = "") -> None: ...


class WebSocketConnection:
    """One authenticated WebSocket bound to a single user for its lifetime.

    Frames are queued and written by a single writer task, so frames handed to
    ``send_nowait`` reach the client in call order. ``close_nowait`` marks the
    handle closed at once; the close frame follows any frames already queued.

    ``on_drop`` is called once for every accepted frame that never reaches the
    socket (queue overflow, discarded at close, failed write).
    """

    def __init__(
        self,
        websocket: WebSocket,
        user_id: str,
        loop: asyncio.AbstractEventLoop,
        max_queue: int = 100,
        on_drop: Optional[Callable[[], None]] = None,
    ) -> None:
        self.user_id = user_id
        self._websocket = websocket
        self._loop = loop
        self._on_drop = on_drop
        self._queue: asyncio.Queue[tuple[str, object]] = asyncio.Queue(maxsize=max_queue)
        self._closing = False
        self._writer: Optional[asyncio.Task] = None

    def __repr__(self) -> str:
        return f"<WebSocketConnection user_id={self.user_id} open={self.is_open}>"

    @property
    def is_open(self) -> bool:
        if self._closing:
            return False
        return (
            self._websocket.application_state == WebSocketState.CONNECTED
            and self._websocket.client_state == WebSocketState.CONNECTED
        )

    def start(self) -> None:
        if self._writer is None:
            self._writer = self._loop.create_task(self._write_loop())

    def send_nowait(self, text: str, tracked: bool = True) -> None:
        """Queue a text frame. Untracked frames are not reported through ``on_drop``."""
        if not self.is_open:
            raise ConnectionError("connection is closed")
        self._call_in_loop(self._enqueue, ("text" if tracked else "control", text))

    def close_nowait(self, code: int = 1000, reason: str = "") -> None:
        if self._closing:
            return
        self._closing = True
        self._call_in_loop(self._enqueue_close, ("close", (code, reason)))

    async def aclose(self) -> None:
        """Stop the writer; called once the socket's receive loop has ended."""
        self._closing = True
        if self._writer is not None and not self._writer.done():
            self._writer.cancel()
            try:
                await self._writer
            except asyncio.CancelledError:
                pass
        self._discard_pending()

    def _call_in_loop(self, fn, item) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            fn(item)
        else:
            self._loop.call_soon_threadsafe(fn, item)

    def _enqueue(self, item) -> None:
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            logger.warning("Send queue full, dropping frame user_id=%s", self.user_id)
            if item[0] == "text":
                self._report_drop()

    def _enqueue_close(self, item) -> None:
        if self._queue.full():
            # Client is not reading; pending frames are abandoned so the close gets through
            self._discard_pending()
        self._queue.put_nowait(item)

    def _discard_pending(self) -> None:
        while not self._queue.empty():
            kind, _data = self._queue.get_nowait()
            if kind == "text":
                self._report_drop()

    def _report_drop(self) -> None:
        if self._on_drop is not None:
            self._on_drop()

    async def _write_loop(self) -> None:
        while True:
            kind, data = await self._queue.get()
            if kind == "close":
                code, reason = data  # type: ignore[misc]
                try:
                    await self._websocket.close(code=code, reason=reason)
                except Exception as exc:
                    # Peer already gone; nothing left to tell it
                    logger.debug("Close failed user_id=%s: %s", self.user_id, exc)
                self._discard_pending()
                return
            try:
                await self._websocket.send_text(data)  # type: ignore[arg-type]
            except Exception as exc:
                logger.warning("Write failed user_id=%s: %s", self.user_id, exc)
                self._closing = True
                if kind == "text":
                    self._report_drop()
                self._discard_pending()
                # Closing ends the receive loop, which unregisters the handle
                try:
                    await self._websocket.close(code=WRITE_FAILED_CLOSE_CODE, reason=WRITE_FAILED_REASON)
                except Exception as close_exc:
                    logger.debug("Close after failed write failed user_id=%s: %s", self.user_id, close_exc)
                return
