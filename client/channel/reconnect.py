"""
Reconnection supervisor for the streaming socket.

Responsibilities:
- Hold at most one pending reconnect attempt
- Fire it after a fixed delay
- Give teardown a single place to cancel it

Non-responsibilities:
- NO socket handling
- NO decision about whether a session is still bound (asked via callback)
- NO backoff growth: the delay is fixed
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from constants import ms_to_seconds
from observability.logger import log_event


ReconnectFn = Callable[[], Awaitable[None]]
ShouldReconnectFn = Callable[[], bool]


class ReconnectSupervisor:
    """
    Single-slot reconnect scheduler.

    Lifecycle:
    1. Channel reports a failure -> schedule(reason)
    2. Supervisor sleeps reconnect delay
    3a. should_reconnect() still True -> reconnect()
    3b. cancel() called first (stop / teardown) -> nothing happens

    The supervisor never retries on its own: a failed reconnect reports a
    new failure to the channel, which calls schedule() again.
    """

    def __init__(
        self,
        *,
        delay_ms: int,
        reconnect: ReconnectFn,
        should_reconnect: ShouldReconnectFn,
    ) -> None:
        if delay_ms <= 0:
            raise ValueError("delay_ms must be > 0")

        self._delay_ms = delay_ms
        self._reconnect = reconnect
        self._should_reconnect = should_reconnect

        self._task: asyncio.Task[None] | None = None
        self.attempts: int = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def schedule(self, *, reason: str) -> bool:
        """
        Schedule one reconnect attempt after the configured delay.

        Returns False (and schedules nothing) when an attempt is already
        pending or when reconnecting is no longer wanted.
        """
        if self.pending:
            return False

        if not self._should_reconnect():
            return False

        log_event({
            "event_type": "RECONNECT_SCHEDULED",
            "delay_ms": self._delay_ms,
            "reason": reason,
            "attempt": self.attempts + 1,
        })
        self._task = asyncio.create_task(self._reconnect_after_delay())
        return True

    def cancel(self) -> None:
        """
        Cancel the pending attempt, if any.

        Idempotent. Used on explicit stop and on teardown.
        """
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()
            log_event({"event_type": "RECONNECT_CANCELLED"})

    def reset(self) -> None:
        """Forget the attempt counter after a successful open."""
        self.attempts = 0

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _reconnect_after_delay(self) -> None:
        try:
            await asyncio.sleep(ms_to_seconds(self._delay_ms))
        except asyncio.CancelledError:
            return

        self._task = None

        if not self._should_reconnect():
            return

        self.attempts += 1
        log_event({
            "event_type": "RECONNECT_ATTEMPT",
            "attempt": self.attempts,
        })
        await self._reconnect()
