"""
Pure audio chunk state machine.

(state, event) -> (new_state, commands)

Rules:
- Pure: no side effects, no IO, no clocks. Timestamps arrive on events.
- Deterministic: output depends only on inputs.
- Total: every (phase, event) pair is handled or explicitly ignored (logged).

Per-chunk lifecycle: ACCUMULATING -> SEALING -> (sent) -> ACCUMULATING | STOPPED

Invariants:
- Sequence indices are assigned at seal time, in seal order, from 0, with
  no gaps (early seals consume an index exactly like timer seals; a chunk
  that failed to seal consumes none).
- A chunk timer carries the index of the chunk it was armed for; a timer for
  any other index is stale and ignored.
- Question attribution is NOT decided here: the runtime reads it from the
  coordinator while executing SealChunk.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from constants import CHUNK_SEQUENCE_START


# =============================================================================
# State
# =============================================================================

class ChunkPhase(str, Enum):
    """
    Recorder phases.

    IDLE:          constructed, nothing recorded yet
    ACCUMULATING:  a chunk is recording
    SEALING:       the current chunk is being finalized and handed off
    STOPPED:       capture stopped globally or the track ended; terminal
    """

    IDLE = "IDLE"
    ACCUMULATING = "ACCUMULATING"
    SEALING = "SEALING"
    STOPPED = "STOPPED"


@dataclass(frozen=True)
class RecorderState:
    """Immutable snapshot of recorder-owned state."""

    phase: ChunkPhase = ChunkPhase.IDLE
    next_sequence: int = CHUNK_SEQUENCE_START
    chunk_started_ms: int | None = None
    stop_requested: bool = False


# =============================================================================
# Events
# =============================================================================

class RecorderEventType(str, Enum):
    START = "START"
    CHUNK_TIMER_ELAPSED = "CHUNK_TIMER_ELAPSED"
    EARLY_SEAL_REQUESTED = "EARLY_SEAL_REQUESTED"
    STOP = "STOP"
    CHUNK_SENT = "CHUNK_SENT"
    CAPTURE_FAILED = "CAPTURE_FAILED"


@dataclass(frozen=True)
class RecorderEvent:
    event_type: RecorderEventType
    ts_ms: int


@dataclass(frozen=True)
class Start(RecorderEvent):
    event_type: RecorderEventType = field(default=RecorderEventType.START, init=False)


@dataclass(frozen=True)
class ChunkTimerElapsed(RecorderEvent):
    sequence_index: int = 0
    event_type: RecorderEventType = field(
        default=RecorderEventType.CHUNK_TIMER_ELAPSED, init=False
    )


@dataclass(frozen=True)
class EarlySealRequested(RecorderEvent):
    event_type: RecorderEventType = field(
        default=RecorderEventType.EARLY_SEAL_REQUESTED, init=False
    )


@dataclass(frozen=True)
class Stop(RecorderEvent):
    event_type: RecorderEventType = field(default=RecorderEventType.STOP, init=False)


@dataclass(frozen=True)
class ChunkSent(RecorderEvent):
    """
    The runtime finished SealChunk. track_ended reflects the device.

    sealed is False when the chunk could not be captured or encoded; the
    chunk is dropped and its index is reused by the next chunk.
    """
    track_ended: bool = False
    sealed: bool = True
    event_type: RecorderEventType = field(default=RecorderEventType.CHUNK_SENT, init=False)


@dataclass(frozen=True)
class CaptureFailed(RecorderEvent):
    """The runtime hit an unexpected error outside the seal path."""
    error: str = ""
    event_type: RecorderEventType = field(default=RecorderEventType.CAPTURE_FAILED, init=False)


# =============================================================================
# Commands
# =============================================================================

class SealReason(str, Enum):
    TIMER = "timer"
    EARLY = "early"
    STOP = "stop"


class Command:
    """Base command: a declarative request for a side effect."""


@dataclass(frozen=True)
class BeginChunk(Command):
    sequence_index: int
    started_ms: int


@dataclass(frozen=True)
class ArmChunkTimer(Command):
    sequence_index: int
    duration_ms: int


@dataclass(frozen=True)
class CancelChunkTimer(Command):
    pass


@dataclass(frozen=True)
class SealChunk(Command):
    sequence_index: int
    started_ms: int
    ended_ms: int
    reason: SealReason


@dataclass(frozen=True)
class LogEvent(Command):
    event: dict[str, Any]


# =============================================================================
# Reducer
# =============================================================================

def _log(state: RecorderState, event: RecorderEvent, decision: str, **extra: Any) -> LogEvent:
    return LogEvent(event={
        "ts_ms": event.ts_ms,
        "event_type": f"RECORDER_{event.event_type.value}",
        "phase": state.phase.value,
        "decision": decision,
        "next_sequence": state.next_sequence,
        **extra,
    })


def _seal(
    state: RecorderState,
    event: RecorderEvent,
    reason: SealReason,
    *,
    stop_requested: bool = False,
) -> tuple[RecorderState, list[Command]]:
    assert state.chunk_started_ms is not None, "sealing without a chunk start"
    new_state = replace(
        state,
        phase=ChunkPhase.SEALING,
        stop_requested=stop_requested,
    )
    commands: list[Command] = []
    if reason is not SealReason.TIMER:
        commands.append(CancelChunkTimer())
    commands.append(_log(state, event, f"seal_{reason.value}"))
    commands.append(
        SealChunk(
            sequence_index=state.next_sequence,
            started_ms=state.chunk_started_ms,
            ended_ms=event.ts_ms,
            reason=reason,
        )
    )
    return new_state, commands


def reduce(
    state: RecorderState,
    event: RecorderEvent,
    *,
    chunk_duration_ms: int,
) -> tuple[RecorderState, list[Command]]:
    """
    Advance the recorder state machine by one event.

    Returns the new state and the commands the runtime must execute, in
    order.
    """
    phase = state.phase

    if isinstance(event, Start):
        if phase is not ChunkPhase.IDLE:
            return state, [_log(state, event, "ignore")]
        new_state = replace(
            state,
            phase=ChunkPhase.ACCUMULATING,
            chunk_started_ms=event.ts_ms,
        )
        return new_state, [
            _log(state, event, "idle_to_accumulating"),
            BeginChunk(sequence_index=state.next_sequence, started_ms=event.ts_ms),
            ArmChunkTimer(sequence_index=state.next_sequence, duration_ms=chunk_duration_ms),
        ]

    if isinstance(event, ChunkTimerElapsed):
        if phase is not ChunkPhase.ACCUMULATING or event.sequence_index != state.next_sequence:
            return state, [_log(state, event, "ignore_stale_timer",
                                timer_sequence=event.sequence_index)]
        return _seal(state, event, SealReason.TIMER)

    if isinstance(event, EarlySealRequested):
        if phase is not ChunkPhase.ACCUMULATING:
            return state, [_log(state, event, "ignore")]
        return _seal(state, event, SealReason.EARLY)

    if isinstance(event, Stop):
        if phase is ChunkPhase.ACCUMULATING:
            return _seal(state, event, SealReason.STOP, stop_requested=True)
        if phase is ChunkPhase.SEALING:
            return replace(state, stop_requested=True), [_log(state, event, "stop_after_seal")]
        if phase is ChunkPhase.IDLE:
            return replace(state, phase=ChunkPhase.STOPPED), [_log(state, event, "idle_to_stopped")]
        return state, [_log(state, event, "ignore")]

    if isinstance(event, ChunkSent):
        if phase is not ChunkPhase.SEALING:
            return state, [_log(state, event, "ignore")]

        # A dropped chunk never reached the wire; its index is not consumed
        sealed_next = state.next_sequence + 1 if event.sealed else state.next_sequence

        if state.stop_requested:
            return (
                replace(state, phase=ChunkPhase.STOPPED, next_sequence=sealed_next,
                        chunk_started_ms=None),
                [_log(state, event, "sealing_to_stopped")],
            )

        if event.track_ended:
            # Graceful stream end: no restart, no error
            return (
                replace(state, phase=ChunkPhase.STOPPED, next_sequence=sealed_next,
                        chunk_started_ms=None),
                [_log(state, event, "track_ended")],
            )

        return (
            replace(state, phase=ChunkPhase.ACCUMULATING, next_sequence=sealed_next,
                    chunk_started_ms=event.ts_ms),
            [
                _log(state, event, "sealing_to_accumulating", sealed=event.sealed),
                BeginChunk(sequence_index=sealed_next, started_ms=event.ts_ms),
                ArmChunkTimer(sequence_index=sealed_next, duration_ms=chunk_duration_ms),
            ],
        )

    if isinstance(event, CaptureFailed):
        if phase is ChunkPhase.STOPPED:
            return state, [_log(state, event, "ignore", error=event.error)]
        return (
            replace(state, phase=ChunkPhase.STOPPED, chunk_started_ms=None),
            [CancelChunkTimer(), _log(state, event, "fault_to_stopped", error=event.error)],
        )

    return state, [_log(state, event, "ignore_unknown")]
