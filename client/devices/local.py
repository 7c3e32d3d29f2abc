"""
Local hardware devices: microphone via sounddevice, camera via OpenCV.

Threading model:
- PortAudio delivers audio blocks on a driver thread; blocks are handed to
  the event loop with call_soon_threadsafe before touching track state.
- OpenCV reads are blocking, so a reader thread keeps only the latest
  decoded frame (like a video element); read_frame() copies it.

Errors are mapped onto the client taxonomy:
- no such device          -> DeviceNotFound
- device refused to open  -> DeviceAccessDenied
"""

from __future__ import annotations

import asyncio
import threading
from typing import Any

import cv2
import numpy as np
import sounddevice as sd

from capture.encoding import join_blocks
from config import AppConfig
from constants import (
    AUDIO_CHANNELS,
    AUDIO_SAMPLE_DTYPE,
    AUDIO_SAMPLE_RATE_HZ,
    VIDEO_HEIGHT_IDEAL,
    VIDEO_WIDTH_IDEAL,
)
from devices.base import MediaStream
from observability.logger import log_event
from session.errors import DeviceAccessDenied, DeviceNotFound


# ---------------------------------------------------------------------
# Microphone
# ---------------------------------------------------------------------

class MicrophoneTrack:
    """sounddevice-backed AudioTrack."""

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        device: str | None = None,
        sample_rate_hz: int = AUDIO_SAMPLE_RATE_HZ,
        channels: int = AUDIO_CHANNELS,
    ) -> None:
        self.sample_rate_hz = sample_rate_hz
        self.channels = channels
        self.enabled = True

        self._loop = loop
        self._blocks: list[np.ndarray] = []
        self._segment_open = False
        self._ended = False

        self._stream = sd.InputStream(
            samplerate=sample_rate_hz,
            channels=channels,
            dtype=AUDIO_SAMPLE_DTYPE,
            device=device,
            callback=self._on_audio,
            finished_callback=self._on_finished,
        )

    @property
    def ended(self) -> bool:
        return self._ended

    def start(self) -> None:
        self._stream.start()

    # -- driver thread ------------------------------------------------

    def _on_audio(self, indata: np.ndarray, frames: int, time_info: Any, status: Any) -> None:
        # pylint: disable=unused-argument
        block = indata.copy()
        self._loop.call_soon_threadsafe(self._append, block)

    def _on_finished(self) -> None:
        self._loop.call_soon_threadsafe(self._mark_ended)

    # -- event loop ---------------------------------------------------

    def _append(self, block: np.ndarray) -> None:
        if not self._segment_open:
            return
        if not self.enabled:
            block = np.zeros_like(block)
        self._blocks.append(block)

    def _mark_ended(self) -> None:
        self._ended = True

    def begin_segment(self) -> None:
        self._blocks = []
        self._segment_open = True

    def end_segment(self) -> np.ndarray:
        self._segment_open = False
        blocks, self._blocks = self._blocks, []
        return join_blocks(blocks, channels=self.channels)

    def stop(self) -> None:
        self._segment_open = False
        self._ended = True
        self._stream.close(ignore_errors=True)


# ---------------------------------------------------------------------
# Camera
# ---------------------------------------------------------------------

class CameraSource:
    """OpenCV-backed VideoSource holding the latest decoded frame."""

    def __init__(
        self,
        *,
        index: int = 0,
        width: int = VIDEO_WIDTH_IDEAL,
        height: int = VIDEO_HEIGHT_IDEAL,
    ) -> None:
        self.enabled = True

        self._cap = cv2.VideoCapture(index)
        if not self._cap.isOpened():
            self._cap.release()
            raise DeviceNotFound(f"camera {index} could not be opened")

        self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)

        self._lock = threading.Lock()
        self._latest: np.ndarray | None = None
        self._running = True
        self._ended = False
        self._reader = threading.Thread(target=self._read_loop, name="camera-reader", daemon=True)
        self._reader.start()

    @property
    def ended(self) -> bool:
        return self._ended

    def _read_loop(self) -> None:
        while self._running:
            ok, frame = self._cap.read()
            if not ok:
                self._ended = True
                return
            rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
            with self._lock:
                self._latest = rgb

    def read_frame(self) -> np.ndarray | None:
        if not self.enabled or self._ended:
            return None
        with self._lock:
            return None if self._latest is None else self._latest.copy()

    def stop(self) -> None:
        self._running = False
        self._ended = True
        self._reader.join(timeout=1.0)
        self._cap.release()


# ---------------------------------------------------------------------
# Acquisition
# ---------------------------------------------------------------------

def _open_microphone(loop: asyncio.AbstractEventLoop, device: str | None) -> MicrophoneTrack:
    try:
        sd.query_devices(device, kind="input")
    except (ValueError, sd.PortAudioError) as e:
        raise DeviceNotFound(f"no usable microphone: {e}") from e

    try:
        track = MicrophoneTrack(loop=loop, device=device)
        track.start()
    except sd.PortAudioError as e:
        raise DeviceAccessDenied(f"microphone refused to open: {e}") from e
    return track


async def acquire_media(config: AppConfig) -> MediaStream:
    """
    Acquire microphone and camera.

    Raises:
        DeviceNotFound / DeviceAccessDenied. On failure nothing stays open.
    """
    loop = asyncio.get_running_loop()

    mic = await asyncio.to_thread(_open_microphone, loop, config.audio_device)
    try:
        camera = await asyncio.to_thread(CameraSource, index=config.video_device_index)
    except Exception:
        mic.stop()
        raise

    log_event({
        "event_type": "MEDIA_ACQUIRED",
        "audio_device": config.audio_device,
        "video_device_index": config.video_device_index,
        "sample_rate_hz": mic.sample_rate_hz,
    })
    return MediaStream(audio=mic, video=camera)
