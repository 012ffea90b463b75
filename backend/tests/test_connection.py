import asyncio
import logging
import threading

import pytest
from starlette.websockets import WebSocketState

from visa_portal.realtime.connection import WebSocketConnection
from visa_portal.realtime.hub import RealtimeHub


class RecordingSocket:
    def __init__(self):
        self.application_state = WebSocketState.CONNECTED
        self.client_state = WebSocketState.CONNECTED
        self.frames: list[str] = []
        self.closed: tuple[int, str] | None = None

    async def send_text(self, data: str) -> None:
        await asyncio.sleep(0)
        self.frames.append(data)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.closed = (code, reason)
        self.application_state = WebSocketState.DISCONNECTED


class ServerSocket(RecordingSocket):
    """Enough of a server-side socket for the lifecycle manager."""

    def __init__(self, fail_after: int | None = None, gone_on_accept: bool = False):
        super().__init__()
        self.query_params = {"token": "signed"}
        self.fail_after = fail_after
        self.gone_on_accept = gone_on_accept
        self.disconnected = asyncio.Event()

    async def accept(self) -> None:
        if self.gone_on_accept:
            self.client_state = WebSocketState.DISCONNECTED

    async def send_text(self, data: str) -> None:
        if self.fail_after is not None and len(self.frames) >= self.fail_after:
            raise RuntimeError("transport lost")
        await super().send_text(data)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        await super().close(code, reason)
        self.disconnected.set()

    async def receive(self) -> dict:
        await self.disconnected.wait()
        return {"type": "websocket.disconnect", "code": self.closed[0]}


async def _until(condition, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        assert loop.time() < deadline, "condition not reached"
        await asyncio.sleep(0.01)


def test_frames_are_written_in_order_then_closed():
    socket = RecordingSocket()

    async def scenario():
        conn = WebSocketConnection(socket, "u1", asyncio.get_running_loop())
        conn.start()
        for i in range(3):
            conn.send_nowait(f"frame-{i}")
        conn.close_nowait(1000, "bye")
        assert not conn.is_open
        await _until(lambda: socket.closed is not None)
        await conn.aclose()

    asyncio.run(scenario())
    assert socket.frames == ["frame-0", "frame-1", "frame-2"]
    assert socket.closed == (1000, "bye")


def test_send_after_close_is_refused():
    socket = RecordingSocket()

    async def scenario():
        conn = WebSocketConnection(socket, "u1", asyncio.get_running_loop())
        conn.start()
        conn.close_nowait()
        with pytest.raises(ConnectionError):
            conn.send_nowait("late")
        await conn.aclose()

    asyncio.run(scenario())


def test_send_from_worker_thread_hops_onto_the_loop():
    socket = RecordingSocket()

    async def scenario():
        conn = WebSocketConnection(socket, "u1", asyncio.get_running_loop())
        conn.start()
        worker = threading.Thread(target=conn.send_nowait, args=("from-thread",))
        worker.start()
        await asyncio.get_running_loop().run_in_executor(None, worker.join)
        await _until(lambda: socket.frames)
        await conn.aclose()

    asyncio.run(scenario())
    assert socket.frames == ["from-thread"]


def test_full_queue_drops_new_frames():
    socket = RecordingSocket()
    drops = []

    async def scenario():
        # Writer not started, so nothing drains the queue
        conn = WebSocketConnection(
            socket, "u1", asyncio.get_running_loop(), max_queue=2, on_drop=lambda: drops.append(1),
        )
        for i in range(5):
            conn.send_nowait(f"frame-{i}")
        conn.start()
        await _until(lambda: len(socket.frames) == 2)
        await asyncio.sleep(0.05)
        await conn.aclose()

    asyncio.run(scenario())
    assert socket.frames == ["frame-0", "frame-1"]
    assert len(drops) == 3


def test_client_side_disconnect_is_observable():
    socket = RecordingSocket()
    loop = asyncio.new_event_loop()
    try:
        conn = WebSocketConnection(socket, "u1", loop)
        assert conn.is_open
        socket.client_state = WebSocketState.DISCONNECTED
        assert not conn.is_open
    finally:
        loop.close()


def test_failed_write_closes_the_socket():
    drops = []

    async def scenario():
        socket = ServerSocket(fail_after=0)
        conn = WebSocketConnection(socket, "u1", asyncio.get_running_loop(), on_drop=lambda: drops.append(1))
        conn.send_nowait("first")
        conn.send_nowait("second")
        conn.start()
        await _until(lambda: socket.closed is not None)
        assert not conn.is_open
        await conn.aclose()
        return socket

    socket = asyncio.run(scenario())
    assert socket.frames == []
    assert socket.closed == (1011, "Write failed")
    # The failed frame and the one queued behind it
    assert len(drops) == 2


def test_close_with_full_queue_reports_discarded_frames():
    drops = []

    async def scenario():
        socket = RecordingSocket()
        conn = WebSocketConnection(
            socket, "u1", asyncio.get_running_loop(), max_queue=2, on_drop=lambda: drops.append(1),
        )
        conn.send_nowait("a")
        conn.send_nowait("b")
        conn.close_nowait(1000, "bye")
        conn.start()
        await _until(lambda: socket.closed is not None)
        await conn.aclose()
        return socket

    socket = asyncio.run(scenario())
    assert socket.frames == []
    assert socket.closed == (1000, "bye")
    assert len(drops) == 2


def test_failed_write_unregisters_and_counts_the_drop():
    hub = RealtimeHub(verify=lambda token: {"sub": "u1"})

    async def scenario():
        # Greeting goes out, the next write fails
        socket = ServerSocket(fail_after=1)
        serving = asyncio.create_task(hub.lifecycle.serve(socket))
        await _until(lambda: "u1" in hub.registry and socket.frames)
        assert hub.dispatcher.notification_deleted("u1", "n-1") is True
        await asyncio.wait_for(serving, timeout=2)
        return socket

    socket = asyncio.run(scenario())
    assert socket.closed == (1011, "Write failed")
    assert "u1" not in hub.registry
    assert hub.stats() == {"connections": 0, "delivered": 0, "dropped": 1}


def test_client_gone_before_greeting_is_not_an_error(caplog):
    hub = RealtimeHub(verify=lambda token: {"sub": "u1"})

    async def scenario():
        await hub.lifecycle.serve(ServerSocket(gone_on_accept=True))

    with caplog.at_level(logging.INFO, logger="visa_portal.realtime.lifecycle"):
        asyncio.run(scenario())

    assert "u1" not in hub.registry
    assert any("closed early" in r.getMessage() for r in caplog.records)
    assert not [r for r in caplog.records if r.levelno >= logging.ERROR]
