"""
Frame sampler.

Fixed-cadence still capture from the live video source, independent of
audio chunk boundaries. Frames are tagged with their own sequence index and
capture time only.
"""

from __future__ import annotations

import asyncio
from typing import Callable

from capture.encoding import encode_frame_jpeg
from capture.frames import FrameSample
from capture.recorder import MessageSink
from constants import FRAME_INTERVAL_MS, FRAME_JPEG_QUALITY, FRAME_SEQUENCE_START, ms_to_seconds
from devices.base import VideoSource
from observability.logger import log_event, now_ms
from protocol.messages import encode_video_message


class FrameSampler:
    """
    Samples the video source every interval_ms.

    - First sample is taken synchronously in start().
    - A tick with no frame ready is skipped; it consumes no index and is
      not retried.
    - A tick whose read or encode raises is logged as FRAME_SAMPLE_FAILED
      and skipped the same way; sampling continues.
    """

    def __init__(
        self,
        *,
        source: VideoSource,
        channel: MessageSink,
        session_id: int,
        interval_ms: int = FRAME_INTERVAL_MS,
        quality: int = FRAME_JPEG_QUALITY,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        if interval_ms <= 0:
            raise ValueError("interval_ms must be > 0")

        self._source = source
        self._channel = channel
        self._session_id = session_id
        self._interval_ms = interval_ms
        self._quality = quality
        self._clock = clock

        self._next_sequence = FRAME_SEQUENCE_START
        self._task: asyncio.Task[None] | None = None
        self._running = False

        self.frames_skipped = 0

    @property
    def running(self) -> bool:
        return self._running

    @property
    def frames_sampled(self) -> int:
        return self._next_sequence - FRAME_SEQUENCE_START

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._sample_guarded()
        self._task = asyncio.create_task(self._tick_loop())

    def stop(self) -> None:
        """Stop ticking. Idempotent; no final frame is taken."""
        self._running = False
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()

    def sample_once(self) -> FrameSample | None:
        """Capture, encode and send one frame. Returns None on a skipped tick."""
        frame = self._source.read_frame()
        if frame is None:
            self.frames_skipped += 1
            return None

        try:
            payload = encode_frame_jpeg(frame, quality=self._quality)
        except ValueError as e:
            log_event({
                "event_type": "FRAME_ENCODE_FAILED",
                "session_id": self._session_id,
                "error": str(e),
            })
            return None

        sample = FrameSample(
            sequence_index=self._next_sequence,
            captured_ms=self._clock(),
            payload=payload,
        )
        self._next_sequence += 1

        sent = self._channel.send(encode_video_message(payload=sample.payload))
        log_event({
            "event_type": "FRAME_SAMPLED",
            "session_id": self._session_id,
            "sequence_index": sample.sequence_index,
            "size_bytes": sample.size_bytes,
            "sent": sent,
        })
        return sample

    async def _tick_loop(self) -> None:
        try:
            while self._running:
                await asyncio.sleep(ms_to_seconds(self._interval_ms))
                if not self._running:
                    return
                if self._source.ended:
                    log_event({"event_type": "FRAME_SOURCE_ENDED", "session_id": self._session_id})
                    self._running = False
                    return
                self._sample_guarded()
        except asyncio.CancelledError:
            return

    def _sample_guarded(self) -> None:
        try:
            self.sample_once()
        except Exception as e:  # pylint: disable=broad-exception-caught
            self.frames_skipped += 1
            log_event({
                "event_type": "FRAME_SAMPLE_FAILED",
                "session_id": self._session_id,
                "exception": type(e).__name__,
                "message": str(e),
            })
