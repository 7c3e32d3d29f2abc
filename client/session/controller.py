"""
Session page controller.

Owns the user-facing interview lifecycle and wires the streaming core:

    idle -> ready_to_start -> recording -> completing -> terminated
                 (failed: device acquisition refused; preview may be retried)

Ownership:
- The controller owns the MediaStream and is the only place that releases it.
- The session id lives in the SessionBinder; the core reads it, never sets it.
- One channel, one recorder, one sampler, one coordinator per session.

Guards:
- start() checks the session id before any device prompt or socket open.
- preview() and start() share one setup flag; calls that arrive while a
  device prompt or socket handshake is pending are ignored.
- RECORDING is committed only after the recorder and sampler have started.
- next_question() and complete() share one in-flight flag; calls that
  arrive while a completion runs are ignored.
- A terminated controller is not reusable.
"""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

from backend_api.rest import SessionsClient
from capture.recorder import AudioChunkRecorder
from capture.sampler import FrameSampler
from channel.manager import SocketChannelManager
from config import AppConfig
from constants import FIRST_QUESTION_NUMBER
from coordinator.question_pointer import QuestionBoundaryCoordinator
from devices.base import MediaStream
from observability.logger import log_event, now_ms
from protocol.messages import encode_session_complete
from session.connection_status import ConnectionState
from session.errors import (
    APIError,
    ChannelError,
    CompletionFailed,
    DeviceError,
    InvalidSessionState,
)
from session.feed import LiveFeed
from session.identity import SessionBinder


AcquireMedia = Callable[[], Awaitable[MediaStream]]


class SessionPhase(str, Enum):
    IDLE = "idle"
    READY_TO_START = "ready_to_start"
    RECORDING = "recording"
    COMPLETING = "completing"
    TERMINATED = "terminated"
    FAILED = "failed"


@dataclass(frozen=True)
class StreamStatus:
    """Read-only snapshot for display."""

    phase: SessionPhase
    session_id: int | None
    is_connected: bool
    is_recording: bool
    chunks_recorded: int
    frames_recorded: int
    current_question: int | None
    total_questions: int | None
    seconds_remaining: int | None
    audio_enabled: bool
    video_enabled: bool
    error: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "session_id": self.session_id,
            "is_connected": self.is_connected,
            "is_recording": self.is_recording,
            "chunks_recorded": self.chunks_recorded,
            "frames_recorded": self.frames_recorded,
            "current_question": self.current_question,
            "total_questions": self.total_questions,
            "seconds_remaining": self.seconds_remaining,
            "audio_enabled": self.audio_enabled,
            "video_enabled": self.video_enabled,
            "error": self.error,
        }


class SessionPageController:
    """
    One controller == one interview attempt.
    """

    def __init__(
        self,
        *,
        config: AppConfig,
        binder: SessionBinder,
        channel: SocketChannelManager,
        sessions: SessionsClient,
        acquire_media: AcquireMedia,
        feed: LiveFeed | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._config = config
        self._binder = binder
        self._channel = channel
        self._sessions = sessions
        self._acquire_media = acquire_media
        self._clock = clock
        self.feed = feed or LiveFeed(clock=clock)

        self._phase = SessionPhase.IDLE
        self._error: str | None = None
        self._in_flight = False
        self._setup_in_flight = False

        self._media: MediaStream | None = None
        self._pointer: QuestionBoundaryCoordinator | None = None
        self._recorder: AudioChunkRecorder | None = None
        self._sampler: FrameSampler | None = None
        self._unsubscribe_feed: Callable[[], None] | None = None

        self._current_question: int | None = None
        self._total_questions: int | None = None
        self._question_deadline_ms: int | None = None
        self._countdown: asyncio.Task[None] | None = None

        self._capture_stopped = False
        self._channel_closed = False

        self._channel.on_state_change(self._on_connection_state)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def recorder(self) -> AudioChunkRecorder | None:
        return self._recorder

    @property
    def sampler(self) -> FrameSampler | None:
        return self._sampler

    @property
    def status(self) -> StreamStatus:
        recorder = self._recorder
        sampler = self._sampler
        media = self._media

        seconds_remaining: int | None = None
        if self._question_deadline_ms is not None and self._phase is SessionPhase.RECORDING:
            remaining_ms = max(0, self._question_deadline_ms - self._clock())
            seconds_remaining = math.ceil(remaining_ms / 1000)

        return StreamStatus(
            phase=self._phase,
            session_id=self._binder.get_session_id(),
            is_connected=self._channel.state is ConnectionState.OPEN,
            is_recording=(
                self._phase is SessionPhase.RECORDING
                and recorder is not None
                and not recorder.stopped
            ),
            chunks_recorded=recorder.chunks_sealed if recorder is not None else 0,
            frames_recorded=sampler.frames_sampled if sampler is not None else 0,
            current_question=self._current_question,
            total_questions=self._total_questions,
            seconds_remaining=seconds_remaining,
            audio_enabled=media.audio.enabled if media is not None else False,
            video_enabled=media.video.enabled if media is not None else False,
            error=self._error,
        )

    # ------------------------------------------------------------------
    # idle -> ready_to_start
    # ------------------------------------------------------------------

    async def preview(self) -> StreamStatus:
        """
        Acquire camera and microphone for preview. Needs no session id.

        Ignored while a preview or start is already awaiting devices or the
        socket.

        Raises:
            DeviceError (state becomes failed; nothing is built).
        """
        if self._phase is SessionPhase.READY_TO_START:
            return self.status
        if self._setup_in_flight:
            return self._ignore_setup_call("preview")
        if self._phase not in (SessionPhase.IDLE, SessionPhase.FAILED):
            raise InvalidSessionState(f"cannot preview in phase {self._phase.value}")

        self._setup_in_flight = True
        try:
            await self._acquire()
        finally:
            self._setup_in_flight = False
        return self.status

    async def _acquire(self) -> MediaStream:
        try:
            media = await self._acquire_media()
        except DeviceError as e:
            if self._phase is not SessionPhase.TERMINATED:
                self._phase = SessionPhase.FAILED
            self._error = str(e) or type(e).__name__
            log_event({
                "event_type": "MEDIA_ACQUIRE_FAILED",
                "exception": type(e).__name__,
                "message": str(e),
            })
            raise

        if self._phase is SessionPhase.TERMINATED:
            # torn down while the device prompt was open
            media.release()
            raise InvalidSessionState("session ended during device acquisition")

        self._media = media
        self._phase = SessionPhase.READY_TO_START
        self._error = None
        return media

    def _ignore_setup_call(self, operation: str) -> StreamStatus:
        log_event({
            "event_type": "SETUP_CALL_IGNORED",
            "operation": operation,
            "phase": self._phase.value,
        })
        return self.status

    # ------------------------------------------------------------------
    # ready_to_start -> recording
    # ------------------------------------------------------------------

    async def start(
        self,
        *,
        total_questions: int,
        session_id: int | None = None,
    ) -> StreamStatus:
        """
        Bind the channel to the session and begin capture.

        Ignored while a preview or start is already awaiting devices or the
        socket.

        Raises:
            SessionNotReady before any side effect when no id is bound.
            DeviceError if devices were not yet acquired and acquisition fails.
            ChannelError if the socket does not open; the channel is closed
            and the phase is left unchanged.
        """
        if self._phase is SessionPhase.RECORDING:
            return self.status
        if self._setup_in_flight:
            return self._ignore_setup_call("start")
        if self._phase not in (
            SessionPhase.IDLE,
            SessionPhase.READY_TO_START,
            SessionPhase.FAILED,
        ):
            raise InvalidSessionState(f"cannot start in phase {self._phase.value}")

        if session_id is not None:
            try:
                self._binder.bind(session_id)
            except ValueError as e:
                raise InvalidSessionState(str(e)) from e

        sid = self._binder.require()

        if total_questions < 1:
            raise ValueError("total_questions must be >= 1")

        self._setup_in_flight = True
        try:
            await self._open_and_record(sid, total_questions)
        finally:
            self._setup_in_flight = False

        log_event({
            "event_type": "SESSION_RECORDING",
            "session_id": sid,
            "total_questions": total_questions,
        })
        return self.status

    async def _open_and_record(self, sid: int, total_questions: int) -> None:
        media = self._media
        if media is None:
            media = await self._acquire()

        self._channel.connect(sid)
        try:
            await self._channel.wait_open(self._config.connect_timeout_ms)
        except ChannelError as e:
            self._error = str(e) or type(e).__name__
            log_event({
                "event_type": "SESSION_START_FAILED",
                "session_id": sid,
                "exception": type(e).__name__,
                "message": str(e),
            })
            await self._channel.close()
            raise

        if self._phase is SessionPhase.TERMINATED:
            # torn down during the handshake; teardown already released media
            await self._channel.close()
            raise InvalidSessionState("session ended while the channel was opening")

        pointer = QuestionBoundaryCoordinator(initial_question=FIRST_QUESTION_NUMBER)
        recorder = AudioChunkRecorder(
            track=media.audio,
            channel=self._channel,
            pointer=pointer,
            session_id=sid,
            chunk_duration_ms=self._config.audio_chunk_duration_ms,
            clock=self._clock,
            on_sealed=self.feed.record_chunk,
        )
        sampler = FrameSampler(
            source=media.video,
            channel=self._channel,
            session_id=sid,
            interval_ms=self._config.frame_interval_ms,
            clock=self._clock,
        )
        pointer.attach(recorder)

        try:
            recorder.start()
            sampler.start()
        except Exception as e:  # pylint: disable=broad-exception-caught
            sampler.stop()
            recorder.abort(e)
            pointer.detach()
            self._error = str(e) or type(e).__name__
            log_event({
                "event_type": "SESSION_START_FAILED",
                "session_id": sid,
                "exception": type(e).__name__,
                "message": str(e),
            })
            await self._channel.close()
            raise

        self._pointer = pointer
        self._recorder = recorder
        self._sampler = sampler
        self._unsubscribe_feed = self._channel.on_message(self.feed.handle)

        self._total_questions = total_questions
        self._current_question = FIRST_QUESTION_NUMBER
        self._error = None
        self._phase = SessionPhase.RECORDING
        self._restart_countdown()

    # ------------------------------------------------------------------
    # recording -> recording
    # ------------------------------------------------------------------

    async def next_question(self) -> StreamStatus:
        """
        Advance to the next question, or complete after the last one.

        Ignored while a completion is in flight or outside recording.
        """
        if self._in_flight or self._phase is not SessionPhase.RECORDING:
            log_event({
                "event_type": "NEXT_QUESTION_IGNORED",
                "phase": self._phase.value,
                "in_flight": self._in_flight,
            })
            return self.status

        assert self._pointer is not None
        assert self._current_question is not None and self._total_questions is not None

        if self._current_question >= self._total_questions:
            return await self.complete()

        new_number = self._current_question + 1
        self._pointer.switch_question(new_number)
        self._current_question = new_number
        self._restart_countdown()
        return self.status

    # ------------------------------------------------------------------
    # Toggles
    # ------------------------------------------------------------------

    def toggle_audio(self) -> bool:
        media = self._require_media()
        media.audio.enabled = not media.audio.enabled
        log_event({
            "event_type": "AUDIO_TOGGLED",
            "session_id": self._binder.get_session_id(),
            "enabled": media.audio.enabled,
        })
        return media.audio.enabled

    def toggle_video(self) -> bool:
        media = self._require_media()
        media.video.enabled = not media.video.enabled
        log_event({
            "event_type": "VIDEO_TOGGLED",
            "session_id": self._binder.get_session_id(),
            "enabled": media.video.enabled,
        })
        return media.video.enabled

    def _require_media(self) -> MediaStream:
        if self._media is None or self._media.released:
            raise InvalidSessionState("no active media stream")
        return self._media

    # ------------------------------------------------------------------
    # recording -> completing -> terminated
    # ------------------------------------------------------------------

    async def complete(self) -> StreamStatus:
        """
        Finish the interview.

        Second and concurrent calls are no-ops. If the backend rejects the
        completion, CompletionFailed is raised, capture stays stopped and
        calling complete() again retries only the backend notification.
        """
        if self._in_flight or self._phase is SessionPhase.TERMINATED:
            return self.status
        if self._phase not in (SessionPhase.RECORDING, SessionPhase.COMPLETING):
            raise InvalidSessionState(f"cannot complete in phase {self._phase.value}")

        sid = self._binder.require()
        self._in_flight = True
        self._phase = SessionPhase.COMPLETING
        try:
            if not self._capture_stopped:
                self._stop_capture(sid)
            if not self._channel_closed:
                await self._channel.close()
                self._channel_closed = True

            try:
                await self._sessions.end_session(sid)
            except APIError as e:
                self._error = str(e)
                log_event({
                    "event_type": "SESSION_COMPLETE_FAILED",
                    "session_id": sid,
                    "status_code": e.status_code,
                    "message": str(e),
                })
                raise CompletionFailed(str(e)) from e

            self._clear_session_state()
            self._phase = SessionPhase.TERMINATED
            log_event({
                "event_type": "SESSION_COMPLETED",
                "session_id": sid,
            })
        finally:
            self._in_flight = False

        return self.status

    def _stop_capture(self, session_id: int) -> None:
        self._stop_countdown()

        sampler = self._sampler
        recorder = self._recorder
        if sampler is not None:
            sampler.stop()
        if recorder is not None:
            recorder.stop()

        if self._channel.state is ConnectionState.OPEN:
            self._channel.send(encode_session_complete(
                session_id=session_id,
                total_chunks=recorder.chunks_sealed if recorder is not None else 0,
                total_frames=sampler.frames_sampled if sampler is not None else 0,
            ))

        if self._media is not None:
            self._media.release()

        self._capture_stopped = True

    def _clear_session_state(self) -> None:
        if self._unsubscribe_feed is not None:
            self._unsubscribe_feed()
            self._unsubscribe_feed = None
        if self._pointer is not None:
            self._pointer.detach()
            self._pointer.reset()
        self._binder.clear()
        self.feed.clear()
        self._current_question = None
        self._question_deadline_ms = None

    async def teardown(self) -> None:
        """
        Abandon the session (process shutdown / page unmount).

        Stops capture, releases devices and closes the channel without
        notifying the backend. Idempotent.
        """
        if self._phase is SessionPhase.TERMINATED:
            return

        self._stop_countdown()
        if self._sampler is not None:
            self._sampler.stop()
        if self._recorder is not None:
            self._recorder.stop()
        if self._media is not None:
            self._media.release()
        await self._channel.close()

        self._clear_session_state()
        self._phase = SessionPhase.TERMINATED
        log_event({"event_type": "SESSION_ABANDONED"})

    # ------------------------------------------------------------------
    # Question countdown
    # ------------------------------------------------------------------

    def _restart_countdown(self) -> None:
        self._stop_countdown()
        limit_s = self._config.question_time_limit_s
        if limit_s <= 0:
            self._question_deadline_ms = None
            return

        self._question_deadline_ms = self._clock() + limit_s * 1000
        question = self._current_question

        async def _countdown_task() -> None:
            try:
                await asyncio.sleep(limit_s)
            except asyncio.CancelledError:
                return
            self._countdown = None
            log_event({
                "event_type": "QUESTION_TIME_EXPIRED",
                "session_id": self._binder.get_session_id(),
                "question_number": question,
            })
            try:
                await self.next_question()
            except CompletionFailed:
                # Already logged; status.error carries it for the UI
                return

        self._countdown = asyncio.create_task(_countdown_task())

    def _stop_countdown(self) -> None:
        task, self._countdown = self._countdown, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    # ------------------------------------------------------------------
    # Channel callbacks
    # ------------------------------------------------------------------

    def _on_connection_state(self, state: ConnectionState) -> None:
        log_event({
            "event_type": "CONNECTION_STATE",
            "session_id": self._binder.get_session_id(),
            "state": state.value,
        })
