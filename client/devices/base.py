"""
Media device capabilities.

The session controller owns the hardware stream. The recorder and the
sampler receive read-only track references through these narrow Protocols
and never reacquire a device.

This module contains:
- Narrow Protocols (capabilities, not implementations)
- MediaStream, the exactly-once release wrapper
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import numpy as np

from observability.logger import log_event


# ---------------------------------------------------------------------
# Track Protocols
# ---------------------------------------------------------------------

@runtime_checkable
class AudioTrack(Protocol):
    """
    Microphone track.

    begin_segment()/end_segment() bracket one chunk's recording window:
    samples delivered between the two calls are returned by end_segment().
    A disabled (muted) track contributes silence.
    """

    sample_rate_hz: int
    channels: int
    enabled: bool

    @property
    def ended(self) -> bool:
        """True once the device has gone away (revoked, unplugged, stopped)."""

    def begin_segment(self) -> None: ...
    def end_segment(self) -> np.ndarray: ...
    def stop(self) -> None: ...


@runtime_checkable
class VideoSource(Protocol):
    """
    Live camera feed.

    read_frame() returns the latest decoded RGB frame, or None when no frame
    is ready yet (or the source is disabled).
    """

    enabled: bool

    @property
    def ended(self) -> bool: ...

    def read_frame(self) -> np.ndarray | None: ...
    def stop(self) -> None: ...


# ---------------------------------------------------------------------
# Stream
# ---------------------------------------------------------------------

class MediaStream:
    """
    Camera + microphone pair acquired by the controller.

    release() stops every track exactly once; later calls are no-ops.
    """

    def __init__(self, *, audio: AudioTrack, video: VideoSource) -> None:
        self.audio = audio
        self.video = video
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            return
        self._released = True

        for kind, track in (("audio", self.audio), ("video", self.video)):
            try:
                track.stop()
            except Exception as e:  # pylint: disable=broad-exception-caught
                log_event({
                    "event_type": "TRACK_STOP_FAILED",
                    "kind": kind,
                    "error": repr(e),
                })

        log_event({"event_type": "MEDIA_RELEASED"})
