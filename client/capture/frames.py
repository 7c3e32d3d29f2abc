"""
Media unit primitives.

Pure data containers only.
No behavior, no timers, no encoding logic.
"""

from __future__ import annotations
from dataclasses import dataclass


@dataclass(frozen=True)
class AudioChunk:
    """
    One sealed audio chunk, immutable once built.

    sequence_index:
        Monotonic per session, starting at 0, assigned at seal time in seal
        order. Gapless regardless of how many early seals were forced.

    question_number:
        Question active for the whole recording window, snapshotted at seal
        time (never at start).

    started_ms / ended_ms:
        Wall-clock bounds of the recording window.

    payload:
        Encoded audio container bytes.
    """
    sequence_index: int
    question_number: int
    started_ms: int
    ended_ms: int
    payload: bytes

    @property
    def size_bytes(self) -> int:
        return len(self.payload)

    @property
    def duration_ms(self) -> int:
        return self.ended_ms - self.started_ms


@dataclass(frozen=True)
class FrameSample:
    """
    One encoded still image from the video feed.

    sequence_index is monotonic and independent of audio chunk indices.
    Frames carry no question number; the backend correlates them by
    captured_ms.
    """
    sequence_index: int
    captured_ms: int
    payload: bytes

    @property
    def size_bytes(self) -> int:
        return len(self.payload)
