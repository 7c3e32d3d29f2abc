"""
Live transcript / emotion feed.

Inbound analysis arrives asynchronously and may land after the user has
moved on to another question. Entries are therefore attributed through the
chunk -> question map filled at seal time, never through the question that
is active on arrival.

chunk_number on inbound messages is the sequence index of the audio chunk
the analysis was computed from (the backend numbers audio messages in
arrival order, which equals send order).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from capture.frames import AudioChunk
from observability.logger import log_event, now_ms
from protocol.messages import EmotionReading, InboundMessage, Transcription


@dataclass(frozen=True)
class TranscriptEntry:
    text: str
    chunk_number: int
    question_number: int | None
    received_ms: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": "transcription",
            "text": self.text,
            "chunk_number": self.chunk_number,
            "question_number": self.question_number,
            "received_ms": self.received_ms,
        }


@dataclass(frozen=True)
class EmotionEntry:
    label: str
    score: float
    chunk_number: int
    question_number: int | None
    received_ms: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": "emotion",
            "label": self.label,
            "score": self.score,
            "chunk_number": self.chunk_number,
            "question_number": self.question_number,
            "received_ms": self.received_ms,
        }


FeedEntry = TranscriptEntry | EmotionEntry
FeedListener = Callable[[FeedEntry], None]


class LiveFeed:
    """
    Append-only, arrival-ordered buffers for display.

    The controller registers handle() with the channel and record_chunk()
    with the recorder; readers only ever see immutable entries.
    """

    def __init__(self, *, clock: Callable[[], int] = now_ms) -> None:
        self._clock = clock
        self._chunk_questions: dict[int, int] = {}
        self._transcripts: list[TranscriptEntry] = []
        self._emotions: list[EmotionEntry] = []
        self._listeners: list[FeedListener] = []

    @property
    def transcripts(self) -> tuple[TranscriptEntry, ...]:
        return tuple(self._transcripts)

    @property
    def emotions(self) -> tuple[EmotionEntry, ...]:
        return tuple(self._emotions)

    def question_for_chunk(self, chunk_number: int) -> int | None:
        return self._chunk_questions.get(chunk_number)

    def subscribe(self, listener: FeedListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # ------------------------------------------------------------------
    # Writers
    # ------------------------------------------------------------------

    def record_chunk(self, chunk: AudioChunk) -> None:
        self._chunk_questions[chunk.sequence_index] = chunk.question_number

    def handle(self, msg: InboundMessage) -> None:
        entry: FeedEntry
        if isinstance(msg, Transcription):
            entry = TranscriptEntry(
                text=msg.text,
                chunk_number=msg.chunk_number,
                question_number=self.question_for_chunk(msg.chunk_number),
                received_ms=self._clock(),
            )
            self._transcripts.append(entry)
        elif isinstance(msg, EmotionReading):
            entry = EmotionEntry(
                label=msg.label,
                score=msg.score,
                chunk_number=msg.chunk_number,
                question_number=self.question_for_chunk(msg.chunk_number),
                received_ms=self._clock(),
            )
            self._emotions.append(entry)
        else:
            return

        if entry.question_number is None:
            log_event({
                "event_type": "FEED_UNATTRIBUTED",
                "chunk_number": entry.chunk_number,
            })

        for listener in list(self._listeners):
            try:
                listener(entry)
            except Exception as e:  # pylint: disable=broad-exception-caught
                log_event({
                    "event_type": "FEED_LISTENER_ERROR",
                    "error": repr(e),
                })

    def clear(self) -> None:
        self._chunk_questions.clear()
        self._transcripts.clear()
        self._emotions.clear()
