"""
Socket channel manager (one persistent backend socket per interview session).

Core model:
- connect(session_id) opens exactly one socket to the session's URL and
  returns immediately; the handshake runs in a background task.
- send(message) is synchronous and never blocks the caller: if the socket is
  OPEN the message is queued for a single writer task (send order == call
  order); otherwise it is logged as SEND_DROPPED and lost.
- Inbound messages are decoded and delivered to every registered handler.
  Unknown or malformed messages are logged and ignored.
- On error or unexpected close the state becomes DISCONNECTED and exactly one
  reconnect is scheduled (ReconnectSupervisor) while a session id is bound.
- close() unbinds the session, cancels any pending reconnect and closes the
  socket. Dropped units are never re-sent after a reconnect.

Design constraints:
- The manager owns ConnectionState; nobody else sets it.
- The manager knows nothing about chunks, frames or questions.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Awaitable, Callable, Protocol

from websockets.asyncio.client import connect as ws_connect

from channel.reconnect import ReconnectSupervisor
from constants import (
    CONNECT_TIMEOUT_MS,
    RECONNECT_DELAY_MS,
    WS_MAX_MESSAGE_BYTES,
    ms_to_seconds,
)
from observability.logger import log_event
from protocol.messages import (
    InboundMessage,
    MalformedMessage,
    UnknownMessage,
    decode_inbound,
)
from session.connection_status import ConnectionState
from session.errors import ChannelConnectionError, ConnectionTimeout, SendDropped


# ---------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------

class SocketLike(Protocol):
    """The subset of a websockets ClientConnection the manager uses."""

    async def send(self, message: str) -> None: ...
    async def close(self) -> None: ...
    def __aiter__(self) -> Any: ...


SocketFactory = Callable[[str], Awaitable[SocketLike]]
MessageHandler = Callable[[InboundMessage], None]
StateHandler = Callable[[ConnectionState], None]


async def _default_socket_factory(url: str) -> SocketLike:
    return await ws_connect(url, max_size=WS_MAX_MESSAGE_BYTES)


# Bounded wait for queued sends (e.g. session_complete) before closing
_CLOSE_FLUSH_TIMEOUT_S = 2.0


class SocketChannelManager:
    """
    Persistent duplex channel to the backend streaming endpoint.

    Public interface:
    - connect(session_id): open (or no-op if already open/connecting)
    - wait_open(): bounded wait used by the start operation
    - send(message): fire-and-forget structured send
    - on_message(handler) / on_state_change(handler)
    - close(): unbind, cancel reconnect, close socket
    """

    def __init__(
        self,
        *,
        url_for: Callable[[int], str],
        reconnect_delay_ms: int = RECONNECT_DELAY_MS,
        connect_timeout_ms: int = CONNECT_TIMEOUT_MS,
        socket_factory: SocketFactory = _default_socket_factory,
    ) -> None:
        self._url_for = url_for
        self._connect_timeout_ms = connect_timeout_ms
        self._socket_factory = socket_factory

        self._state = ConnectionState.DISCONNECTED
        self._session_id: int | None = None

        self._ws: SocketLike | None = None
        self._conn_task: asyncio.Task[None] | None = None
        self._writer_task: asyncio.Task[None] | None = None
        self._outbound: asyncio.Queue[str] | None = None

        self._opened = asyncio.Event()
        self._last_error: ChannelConnectionError | None = None
        self._failed = asyncio.Event()

        self._message_handlers: list[MessageHandler] = []
        self._state_handlers: list[StateHandler] = []

        self.dropped_sends: int = 0

        self._reconnect = ReconnectSupervisor(
            delay_ms=reconnect_delay_ms,
            reconnect=self._reconnect_now,
            should_reconnect=lambda: self._session_id is not None,
        )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def session_id(self) -> int | None:
        return self._session_id

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect.pending

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def on_message(self, handler: MessageHandler) -> Callable[[], None]:
        """
        Register an inbound message handler.

        Returns an unsubscribe callable.
        """
        self._message_handlers.append(handler)

        def _unsubscribe() -> None:
            if handler in self._message_handlers:
                self._message_handlers.remove(handler)

        return _unsubscribe

    def on_state_change(self, handler: StateHandler) -> None:
        self._state_handlers.append(handler)

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def connect(self, session_id: int) -> None:
        """
        Open one socket for session_id.

        No-op if already OPEN or CONNECTING for the same id. Connecting to a
        different id requires close() first.
        """
        if self._session_id == session_id and self._state in (
            ConnectionState.OPEN,
            ConnectionState.CONNECTING,
        ):
            return

        if self._session_id is not None and self._session_id != session_id:
            raise ChannelConnectionError(
                f"channel bound to session {self._session_id}; close() before connecting "
                f"to {session_id}"
            )

        self._session_id = session_id
        self._open()

    async def wait_open(self, timeout_ms: int | None = None) -> None:
        """
        Wait until the socket is OPEN.

        Raises:
            ChannelConnectionError if the current attempt fails first.
            ConnectionTimeout if neither happens within timeout_ms.
        """
        if self._state is ConnectionState.OPEN:
            return

        timeout_s = ms_to_seconds(
            timeout_ms if timeout_ms is not None else self._connect_timeout_ms
        )

        opened = asyncio.create_task(self._opened.wait())
        failed = asyncio.create_task(self._failed.wait())
        try:
            done, _ = await asyncio.wait(
                {opened, failed},
                timeout=timeout_s,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            opened.cancel()
            failed.cancel()

        if self._state is ConnectionState.OPEN:
            return

        if failed in done and self._last_error is not None:
            raise self._last_error

        raise ConnectionTimeout(
            f"socket for session {self._session_id} not open after {timeout_s:.1f}s"
        )

    async def close(self) -> None:
        """
        Unbind the session and close the socket.

        Pending reconnects are cancelled. Already-queued sends get a short
        bounded chance to flush. Idempotent.
        """
        session_id = self._session_id
        self._session_id = None
        self._reconnect.cancel()

        queue = self._outbound
        if queue is not None and self._state is ConnectionState.OPEN:
            try:
                await asyncio.wait_for(queue.join(), timeout=_CLOSE_FLUSH_TIMEOUT_S)
            except asyncio.TimeoutError:
                log_event({
                    "event_type": "CHANNEL_FLUSH_TIMEOUT",
                    "session_id": session_id,
                    "unsent": queue.qsize(),
                })

        await self._teardown_connection()

        if self._state is not ConnectionState.CLOSED:
            self._set_state(ConnectionState.CLOSED)
            log_event({
                "event_type": "CHANNEL_CLOSED",
                "session_id": session_id,
            })

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    def send(self, message: dict[str, Any]) -> bool:
        """
        Serialize and queue a message for the writer task.

        Returns True if queued, False if dropped (socket not OPEN). A drop
        is logged as SEND_DROPPED and the message is lost.
        """
        if self._state is not ConnectionState.OPEN or self._outbound is None:
            self._record_drop(message, reason=f"state={self._state.value}")
            return False

        self._outbound.put_nowait(json.dumps(message, separators=(",", ":")))
        return True

    def _record_drop(self, message: dict[str, Any], *, reason: str) -> None:
        self.dropped_sends += 1
        err = SendDropped(reason)
        log_event({
            "event_type": "SEND_DROPPED",
            "session_id": self._session_id,
            "msg_type": message.get("type"),
            "error": str(err),
            "dropped_total": self.dropped_sends,
        })

    # ------------------------------------------------------------------
    # Internal: connection tasks
    # ------------------------------------------------------------------

    def _open(self) -> None:
        session_id = self._session_id
        assert session_id is not None, "open without bound session"

        self._opened.clear()
        self._failed.clear()
        self._last_error = None
        self._set_state(ConnectionState.CONNECTING)

        url = self._url_for(session_id)
        log_event({
            "event_type": "CHANNEL_CONNECTING",
            "session_id": session_id,
            "url": url,
        })
        self._conn_task = asyncio.create_task(self._run_connection(session_id, url))

    async def _reconnect_now(self) -> None:
        if self._session_id is None or self._state is not ConnectionState.DISCONNECTED:
            return
        self._open()

    async def _run_connection(self, session_id: int, url: str) -> None:
        """
        Connect, then receive until the socket dies.

        Every exit path other than cancellation ends in _on_failure().
        """
        try:
            ws = await self._socket_factory(url)
        except asyncio.CancelledError:
            raise
        except Exception as e:  # pylint: disable=broad-exception-caught
            self._on_failure(session_id, reason=f"connect_failed: {e!r}")
            return

        if self._session_id != session_id:
            # close() ran during the handshake
            await _close_quietly(ws)
            return

        self._ws = ws
        self._outbound = asyncio.Queue()
        self._writer_task = asyncio.create_task(self._write_loop(ws, self._outbound))
        self._reconnect.reset()
        self._set_state(ConnectionState.OPEN)
        self._opened.set()
        log_event({
            "event_type": "CHANNEL_OPEN",
            "session_id": session_id,
        })

        reason = "closed_by_peer"
        try:
            async for raw in ws:
                self._dispatch_inbound(raw)
        except asyncio.CancelledError:
            raise
        except Exception as e:  # pylint: disable=broad-exception-caught
            reason = f"recv_failed: {e!r}"

        self._on_failure(session_id, reason=reason)

    async def _write_loop(self, ws: SocketLike, queue: asyncio.Queue[str]) -> None:
        """Single writer: preserves send order."""
        while True:
            line = await queue.get()
            try:
                await ws.send(line)
            except asyncio.CancelledError:
                queue.task_done()
                raise
            except Exception as e:  # pylint: disable=broad-exception-caught
                queue.task_done()
                log_event({
                    "event_type": "CHANNEL_SEND_FAILED",
                    "session_id": self._session_id,
                    "error": repr(e),
                })
                # The receive loop observes the broken socket and reports it
                await _close_quietly(ws)
                return
            queue.task_done()

    def _on_failure(self, session_id: int, *, reason: str) -> None:
        """
        Socket errored or closed without close() being called.
        """
        if self._session_id != session_id:
            return

        self._last_error = ChannelConnectionError(reason)
        self._discard_outbound(reason=reason)
        self._stop_writer()
        self._ws = None
        self._conn_task = None

        self._set_state(ConnectionState.DISCONNECTED)
        self._failed.set()
        log_event({
            "event_type": "CHANNEL_DISCONNECTED",
            "session_id": session_id,
            "reason": reason,
        })

        self._reconnect.schedule(reason=reason)

    async def _teardown_connection(self) -> None:
        task = self._conn_task
        self._conn_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        self._discard_outbound(reason="channel_closed")
        self._stop_writer()

        ws = self._ws
        self._ws = None
        if ws is not None:
            await _close_quietly(ws)

    def _stop_writer(self) -> None:
        writer = self._writer_task
        self._writer_task = None
        if writer is not None and not writer.done():
            writer.cancel()

    def _discard_outbound(self, *, reason: str) -> None:
        queue = self._outbound
        self._outbound = None
        if queue is None:
            return
        while not queue.empty():
            line = queue.get_nowait()
            queue.task_done()
            try:
                msg_type = json.loads(line).get("type")
            except ValueError:
                msg_type = None
            self._record_drop({"type": msg_type}, reason=reason)

    # ------------------------------------------------------------------
    # Internal: dispatch
    # ------------------------------------------------------------------

    def _dispatch_inbound(self, raw: str | bytes) -> None:
        try:
            msg = decode_inbound(raw)
        except MalformedMessage as e:
            log_event({
                "event_type": "INBOUND_DECODE_ERROR",
                "session_id": self._session_id,
                "error": str(e),
            })
            return

        if isinstance(msg, UnknownMessage):
            log_event({
                "event_type": "UNKNOWN_MESSAGE_TYPE",
                "session_id": self._session_id,
                "msg_type": msg.msg_type,
            })
            return

        for handler in list(self._message_handlers):
            try:
                handler(msg)
            except Exception as e:  # pylint: disable=broad-exception-caught
                log_event({
                    "event_type": "MESSAGE_HANDLER_ERROR",
                    "session_id": self._session_id,
                    "error": repr(e),
                })

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        self._state = state
        for handler in list(self._state_handlers):
            try:
                handler(state)
            except Exception as e:  # pylint: disable=broad-exception-caught
                log_event({
                    "event_type": "STATE_HANDLER_ERROR",
                    "error": repr(e),
                })


async def _close_quietly(ws: SocketLike) -> None:
    try:
        await ws.close()
    except Exception:  # pylint: disable=broad-exception-caught
        pass
