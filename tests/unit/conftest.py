# pylint: disable=missing-module-docstring,missing-function-docstring,missing-class-docstring

import json
from typing import Any, Callable

import numpy as np
import pytest

from observability import logger


# ---------------------------------------------------------------------
# Log capture
# ---------------------------------------------------------------------

@pytest.fixture
def captured_logs(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    """Every log_event record emitted during the test, decoded."""
    records: list[dict[str, Any]] = []

    def fake_print(line: str) -> None:
        records.append(json.loads(line))

    monkeypatch.setattr(logger, "_print", fake_print)
    return records


# ---------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------

class FakeClock:
    def __init__(self, start_ms: int = 0) -> None:
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------
# Devices
# ---------------------------------------------------------------------

class FakeAudioTrack:
    """
    Returns one sample block per segment so every chunk has content.

    fail_end_segments makes that many end_segment() calls raise first.
    """

    def __init__(self, *, fail_end_segments: int = 0, fail_begin: bool = False) -> None:
        self.sample_rate_hz = 16_000
        self.channels = 1
        self.enabled = True
        self.ended = False
        self.segments_begun = 0
        self.segments_ended = 0
        self.stopped = False
        self.fail_end_segments = fail_end_segments
        self.fail_begin = fail_begin

    def begin_segment(self) -> None:
        if self.fail_begin:
            raise RuntimeError("input overflow")
        self.segments_begun += 1

    def end_segment(self) -> np.ndarray:
        self.segments_ended += 1
        if self.fail_end_segments > 0:
            self.fail_end_segments -= 1
            raise RuntimeError("stream read failed")
        fill = 1000 if self.enabled else 0
        return np.full((160, 1), fill, dtype=np.int16)

    def stop(self) -> None:
        self.stopped = True
        self.ended = True


class FakeVideoSource:
    """Serves queued frames; a queued exception is raised by read_frame()."""

    def __init__(self, frames: list[np.ndarray | Exception | None] | None = None) -> None:
        self.enabled = True
        self.ended = False
        self.stopped = False
        self._frames = list(frames) if frames is not None else None

    def read_frame(self) -> np.ndarray | None:
        if not self.enabled:
            return None
        if self._frames is None:
            return np.zeros((4, 4, 3), dtype=np.uint8)
        if not self._frames:
            return None
        frame = self._frames.pop(0)
        if isinstance(frame, Exception):
            raise frame
        return frame

    def stop(self) -> None:
        self.stopped = True
        self.ended = True


@pytest.fixture
def audio_track() -> FakeAudioTrack:
    return FakeAudioTrack()


@pytest.fixture
def make_audio_track() -> Callable[..., FakeAudioTrack]:
    return FakeAudioTrack


@pytest.fixture
def video_source() -> FakeVideoSource:
    return FakeVideoSource()


# ---------------------------------------------------------------------
# Outbound sink
# ---------------------------------------------------------------------

class RecordingSink:
    """Stands in for SocketChannelManager.send()."""

    def __init__(self, *, accept: bool = True) -> None:
        self.accept = accept
        self.sent: list[dict[str, Any]] = []

    def send(self, message: dict[str, Any]) -> bool:
        if not self.accept:
            return False
        self.sent.append(message)
        return True

    def of_type(self, msg_type: str) -> list[dict[str, Any]]:
        return [m for m in self.sent if m["type"] == msg_type]


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def make_sink() -> Callable[..., RecordingSink]:
    return RecordingSink


@pytest.fixture
def make_video_source() -> Callable[..., FakeVideoSource]:
    return FakeVideoSource
