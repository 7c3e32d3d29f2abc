# pylint: disable=missing-module-docstring,missing-function-docstring,missing-class-docstring

import asyncio
import json
from typing import Any

import pytest

from channel.manager import SocketChannelManager
from channel.reconnect import ReconnectSupervisor
from protocol.messages import InboundMessage, Transcription
from session.connection_status import ConnectionState
from session.errors import ChannelConnectionError, ConnectionTimeout


_BROKEN = object()


# ---------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------

class FakeSocket:
    def __init__(self) -> None:
        self.sent: list[str] = []
        self.closed = False
        self._inbound: asyncio.Queue[Any] = asyncio.Queue()

    async def send(self, message: str) -> None:
        self.sent.append(message)

    async def close(self) -> None:
        self.closed = True
        self._inbound.put_nowait(None)

    def push(self, raw: str) -> None:
        self._inbound.put_nowait(raw)

    def peer_close(self) -> None:
        self._inbound.put_nowait(None)

    def break_connection(self) -> None:
        self._inbound.put_nowait(_BROKEN)

    def __aiter__(self) -> "FakeSocket":
        return self

    async def __anext__(self) -> str:
        item = await self._inbound.get()
        if item is None:
            raise StopAsyncIteration
        if item is _BROKEN:
            raise ConnectionResetError("connection reset")
        return item


class FakeSocketFactory:
    def __init__(self, *, fail: bool = False, hang: bool = False) -> None:
        self.fail = fail
        self.hang = hang
        self.urls: list[str] = []
        self.sockets: list[FakeSocket] = []

    async def __call__(self, url: str) -> FakeSocket:
        self.urls.append(url)
        if self.hang:
            await asyncio.Event().wait()
        if self.fail:
            raise OSError("connection refused")
        ws = FakeSocket()
        self.sockets.append(ws)
        return ws


def make_manager(factory: FakeSocketFactory, *, reconnect_delay_ms: int = 20) -> SocketChannelManager:
    return SocketChannelManager(
        url_for=lambda sid: f"ws://backend.test/sessions/ws/sessions/{sid}",
        reconnect_delay_ms=reconnect_delay_ms,
        connect_timeout_ms=500,
        socket_factory=factory,
    )


# ---------------------------------------------------------------------
# Connect / send
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_connect_opens_one_socket_and_sends_in_order() -> None:
    factory = FakeSocketFactory()
    channel = make_manager(factory)
    states: list[ConnectionState] = []
    channel.on_state_change(states.append)

    channel.connect(5)
    channel.connect(5)
    await channel.wait_open()
    channel.connect(5)

    assert channel.state is ConnectionState.OPEN
    assert factory.urls == ["ws://backend.test/sessions/ws/sessions/5"]
    assert states == [ConnectionState.CONNECTING, ConnectionState.OPEN]

    assert channel.send({"type": "audio", "n": 1})
    assert channel.send({"type": "video", "n": 2})
    await asyncio.sleep(0.01)

    assert [json.loads(m)["n"] for m in factory.sockets[0].sent] == [1, 2]
    await channel.close()


@pytest.mark.asyncio
async def test_send_when_not_open_is_dropped(captured_logs: list[dict[str, Any]]) -> None:
    channel = make_manager(FakeSocketFactory())

    assert channel.send({"type": "audio"}) is False
    assert channel.dropped_sends == 1
    assert captured_logs[-1]["event_type"] == "SEND_DROPPED"
    assert captured_logs[-1]["msg_type"] == "audio"


@pytest.mark.asyncio
async def test_connect_to_other_session_refused() -> None:
    channel = make_manager(FakeSocketFactory())
    channel.connect(5)
    await channel.wait_open()

    with pytest.raises(ChannelConnectionError):
        channel.connect(6)
    await channel.close()


@pytest.mark.asyncio
async def test_close_flushes_queued_sends() -> None:
    factory = FakeSocketFactory()
    channel = make_manager(factory)
    channel.connect(5)
    await channel.wait_open()

    channel.send({"type": "session_complete"})
    await channel.close()

    ws = factory.sockets[0]
    assert [json.loads(m)["type"] for m in ws.sent] == ["session_complete"]
    assert ws.closed
    assert channel.state is ConnectionState.CLOSED
    assert channel.session_id is None


# ---------------------------------------------------------------------
# Inbound
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_inbound_dispatch_skips_unknown_and_malformed(
    captured_logs: list[dict[str, Any]],
) -> None:
    factory = FakeSocketFactory()
    channel = make_manager(factory)
    received: list[InboundMessage] = []
    unsubscribe = channel.on_message(received.append)

    channel.connect(5)
    await channel.wait_open()
    ws = factory.sockets[0]

    ws.push(json.dumps({"type": "heartbeat"}))
    ws.push("{not json")
    ws.push(json.dumps({"type": "transcription", "data": "hi", "chunk_number": 0}))
    await asyncio.sleep(0.01)

    assert received == [Transcription(text="hi", chunk_number=0)]
    event_types = [r["event_type"] for r in captured_logs]
    assert "UNKNOWN_MESSAGE_TYPE" in event_types
    assert "INBOUND_DECODE_ERROR" in event_types
    assert channel.state is ConnectionState.OPEN

    unsubscribe()
    ws.push(json.dumps({"type": "transcription", "data": "later", "chunk_number": 1}))
    await asyncio.sleep(0.01)
    assert len(received) == 1
    await channel.close()


@pytest.mark.asyncio
async def test_handler_error_does_not_kill_receive_loop() -> None:
    factory = FakeSocketFactory()
    channel = make_manager(factory)
    received: list[InboundMessage] = []

    def bad_handler(_: InboundMessage) -> None:
        raise RuntimeError("boom")

    channel.on_message(bad_handler)
    channel.on_message(received.append)
    channel.connect(5)
    await channel.wait_open()

    factory.sockets[0].push(json.dumps({"type": "transcription", "data": "x", "chunk_number": 0}))
    await asyncio.sleep(0.01)

    assert len(received) == 1
    assert channel.state is ConnectionState.OPEN
    await channel.close()


# ---------------------------------------------------------------------
# Failure / reconnect
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_unexpected_close_reconnects_once_after_delay() -> None:
    factory = FakeSocketFactory()
    channel = make_manager(factory, reconnect_delay_ms=30)
    channel.connect(5)
    await channel.wait_open()

    factory.sockets[0].break_connection()
    await asyncio.sleep(0.005)

    assert channel.state is ConnectionState.DISCONNECTED
    assert channel.reconnect_pending
    assert len(factory.urls) == 1
    assert channel.send({"type": "audio"}) is False

    await asyncio.sleep(0.06)

    assert len(factory.urls) == 2
    assert channel.state is ConnectionState.OPEN
    # Nothing dropped earlier is replayed on the new socket
    assert factory.sockets[1].sent == []
    await channel.close()


@pytest.mark.asyncio
async def test_failed_open_raises_and_close_cancels_reconnect() -> None:
    factory = FakeSocketFactory(fail=True)
    channel = make_manager(factory, reconnect_delay_ms=20)
    channel.connect(5)

    with pytest.raises(ChannelConnectionError):
        await channel.wait_open()
    assert channel.reconnect_pending

    await channel.close()
    await asyncio.sleep(0.05)

    assert len(factory.urls) == 1
    assert not channel.reconnect_pending
    assert channel.state is ConnectionState.CLOSED


@pytest.mark.asyncio
async def test_wait_open_times_out() -> None:
    channel = make_manager(FakeSocketFactory(hang=True))
    channel.connect(5)

    with pytest.raises(ConnectionTimeout):
        await channel.wait_open(timeout_ms=20)

    await channel.close()
    assert channel.state is ConnectionState.CLOSED


# ---------------------------------------------------------------------
# ReconnectSupervisor
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_supervisor_holds_single_pending_attempt() -> None:
    calls: list[int] = []

    async def reconnect() -> None:
        calls.append(1)

    supervisor = ReconnectSupervisor(
        delay_ms=10,
        reconnect=reconnect,
        should_reconnect=lambda: True,
    )

    assert supervisor.schedule(reason="a")
    assert not supervisor.schedule(reason="b")
    await asyncio.sleep(0.04)

    assert calls == [1]
    assert supervisor.attempts == 1
    assert not supervisor.pending


@pytest.mark.asyncio
async def test_supervisor_skips_when_unbound() -> None:
    bound = {"value": True}
    calls: list[int] = []

    async def reconnect() -> None:
        calls.append(1)

    supervisor = ReconnectSupervisor(
        delay_ms=10,
        reconnect=reconnect,
        should_reconnect=lambda: bound["value"],
    )
    supervisor.schedule(reason="a")
    bound["value"] = False
    await asyncio.sleep(0.03)

    assert not calls
    assert not supervisor.schedule(reason="b")


@pytest.mark.asyncio
async def test_supervisor_cancel_is_idempotent() -> None:
    calls: list[int] = []

    async def reconnect() -> None:
        calls.append(1)

    supervisor = ReconnectSupervisor(
        delay_ms=10,
        reconnect=reconnect,
        should_reconnect=lambda: True,
    )
    supervisor.schedule(reason="a")
    supervisor.cancel()
    supervisor.cancel()
    await asyncio.sleep(0.03)

    assert not calls
