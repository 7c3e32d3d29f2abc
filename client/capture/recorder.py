"""
Audio chunk recorder runtime.

Executes the commands emitted by capture.transitions.reduce against the
microphone track, the question coordinator and the socket channel.

Seal path (one synchronous step, no awaits):
    end_segment -> encode -> coordinator.seal_boundary -> channel.send

Because nothing in that path yields to the event loop, no other task can
observe a half-sealed chunk, and a question switch that forced the seal is
applied strictly after the sealed chunk has been tagged.

Failures:
- end_segment/encode errors drop that chunk (RECORDER_SEAL_FAILED) and the
  next chunk starts under the same index.
- Any other error escaping a timer-driven step stops the recorder through
  abort() (RECORDER_RUNTIME_FAILED).
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Any, Callable, Protocol

from capture.encoding import encode_audio_chunk
from capture.frames import AudioChunk
from capture.transitions import (
    ArmChunkTimer,
    BeginChunk,
    CancelChunkTimer,
    CaptureFailed,
    ChunkPhase,
    ChunkSent,
    ChunkTimerElapsed,
    Command,
    EarlySealRequested,
    LogEvent,
    RecorderEvent,
    RecorderState,
    SealChunk,
    Start,
    Stop,
    reduce,
)
from constants import AUDIO_CHUNK_DURATION_MS, ms_to_seconds
from coordinator.question_pointer import QuestionBoundaryCoordinator
from devices.base import AudioTrack
from observability.logger import log_event, now_ms
from protocol.messages import encode_audio_message


class MessageSink(Protocol):
    """Outbound side of the socket channel. send() never blocks."""

    def send(self, message: dict[str, Any]) -> bool: ...


class AudioChunkRecorder:
    """
    Records fixed-duration audio chunks, sealing early on question switches.

    Also the coordinator's SealTarget: the coordinator calls
    request_early_seal() and reads is_accumulating.
    """

    def __init__(
        self,
        *,
        track: AudioTrack,
        channel: MessageSink,
        pointer: QuestionBoundaryCoordinator,
        session_id: int,
        chunk_duration_ms: int = AUDIO_CHUNK_DURATION_MS,
        clock: Callable[[], int] = now_ms,
        on_sealed: Callable[[AudioChunk], None] | None = None,
    ) -> None:
        if chunk_duration_ms <= 0:
            raise ValueError("chunk_duration_ms must be > 0")

        self._track = track
        self._channel = channel
        self._pointer = pointer
        self._session_id = session_id
        self._chunk_duration_ms = chunk_duration_ms
        self._clock = clock
        self._on_sealed = on_sealed

        self._state = RecorderState()
        self._timer: asyncio.Task[None] | None = None

        # Events raised while commands execute are queued, not nested
        self._inbox: deque[RecorderEvent] = deque()
        self._draining = False

        self.chunks_sealed = 0
        self.chunks_sent = 0

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    @property
    def state(self) -> RecorderState:
        return self._state

    @property
    def is_accumulating(self) -> bool:
        return self._state.phase is ChunkPhase.ACCUMULATING

    @property
    def stopped(self) -> bool:
        return self._state.phase is ChunkPhase.STOPPED

    def start(self) -> None:
        """Begin the first chunk. Must run inside an event loop."""
        self._dispatch(Start(ts_ms=self._clock()))

    def request_early_seal(self) -> None:
        """Seal the in-progress chunk now. Ignored when not accumulating."""
        self._dispatch(EarlySealRequested(ts_ms=self._clock()))

    def stop(self) -> None:
        """
        Stop recording.

        An in-progress chunk is sealed and sent as a final partial chunk
        before this returns. Later calls are no-ops.
        """
        self._dispatch(Stop(ts_ms=self._clock()))
        self._cancel_timer()

    # ------------------------------------------------------------------
    # Event pipeline
    # ------------------------------------------------------------------

    def _dispatch(self, event: RecorderEvent) -> None:
        self._inbox.append(event)
        if self._draining:
            return

        self._draining = True
        try:
            while self._inbox:
                next_event = self._inbox.popleft()
                self._state, commands = reduce(
                    self._state,
                    next_event,
                    chunk_duration_ms=self._chunk_duration_ms,
                )
                for cmd in commands:
                    self._execute(cmd)
        finally:
            self._draining = False

    def _execute(self, cmd: Command) -> None:
        if isinstance(cmd, LogEvent):
            log_event({**cmd.event, "session_id": self._session_id})

        elif isinstance(cmd, BeginChunk):
            self._track.begin_segment()

        elif isinstance(cmd, ArmChunkTimer):
            self._arm_timer(sequence_index=cmd.sequence_index, duration_ms=cmd.duration_ms)

        elif isinstance(cmd, CancelChunkTimer):
            self._cancel_timer()

        elif isinstance(cmd, SealChunk):
            self._seal(cmd)

    def _seal(self, cmd: SealChunk) -> None:
        try:
            samples = self._track.end_segment()
            payload = encode_audio_chunk(
                samples,
                sample_rate_hz=self._track.sample_rate_hz,
                channels=self._track.channels,
            )
        except Exception as e:  # pylint: disable=broad-exception-caught
            # Chunk is lost; a deferred question switch still applies
            question_number = self._pointer.seal_boundary()
            log_event({
                "event_type": "RECORDER_SEAL_FAILED",
                "session_id": self._session_id,
                "sequence_index": cmd.sequence_index,
                "question_number": question_number,
                "reason": cmd.reason.value,
                "exception": type(e).__name__,
                "message": str(e),
            })
            self._inbox.append(
                ChunkSent(ts_ms=self._clock(), track_ended=self._track.ended, sealed=False)
            )
            return

        question_number = self._pointer.seal_boundary()

        chunk = AudioChunk(
            sequence_index=cmd.sequence_index,
            question_number=question_number,
            started_ms=cmd.started_ms,
            ended_ms=cmd.ended_ms,
            payload=payload,
        )
        self.chunks_sealed += 1

        sent = self._channel.send(
            encode_audio_message(payload=chunk.payload, question_number=question_number)
        )
        if sent:
            self.chunks_sent += 1

        log_event({
            "event_type": "AUDIO_CHUNK_SEALED",
            "session_id": self._session_id,
            "sequence_index": chunk.sequence_index,
            "question_number": chunk.question_number,
            "duration_ms": chunk.duration_ms,
            "size_bytes": chunk.size_bytes,
            "reason": cmd.reason.value,
            "sent": sent,
        })

        if self._on_sealed is not None:
            try:
                self._on_sealed(chunk)
            except Exception as e:  # pylint: disable=broad-exception-caught
                log_event({
                    "event_type": "RECORDER_ON_SEALED_FAILED",
                    "session_id": self._session_id,
                    "sequence_index": chunk.sequence_index,
                    "exception": type(e).__name__,
                    "message": str(e),
                })

        self._inbox.append(ChunkSent(ts_ms=self._clock(), track_ended=self._track.ended))

    # ------------------------------------------------------------------
    # Timer management
    # ------------------------------------------------------------------

    def _arm_timer(self, *, sequence_index: int, duration_ms: int) -> None:
        self._cancel_timer()

        async def _timer_task() -> None:
            try:
                await asyncio.sleep(ms_to_seconds(duration_ms))
            except asyncio.CancelledError:
                return
            self._timer = None
            try:
                self._dispatch(
                    ChunkTimerElapsed(ts_ms=self._clock(), sequence_index=sequence_index)
                )
            except Exception as e:  # pylint: disable=broad-exception-caught
                self.abort(e)

        self._timer = asyncio.create_task(_timer_task())

    def abort(self, error: Exception) -> None:
        """Stop without sealing after an unexpected runtime error. The
        in-progress chunk is discarded."""
        self._inbox.clear()
        log_event({
            "event_type": "RECORDER_RUNTIME_FAILED",
            "session_id": self._session_id,
            "phase": self._state.phase.value,
            "exception": type(error).__name__,
            "message": str(error),
        })
        self._dispatch(CaptureFailed(ts_ms=self._clock(), error=f"{type(error).__name__}: {error}"))

    def _cancel_timer(self) -> None:
        task, self._timer = self._timer, None
        if task is not None and not task.done():
            task.cancel()
