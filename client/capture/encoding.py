"""
Payload encoders (pure).

- Audio: numpy sample buffer -> WAV container bytes via soundfile
- Video: RGB numpy frame -> JPEG bytes via Pillow

No IO beyond in-memory buffers, no timing, no state.
"""

from __future__ import annotations

import io

import numpy as np
import soundfile as sf
from PIL import Image

from constants import (
    AUDIO_CHANNELS,
    AUDIO_CHUNK_FORMAT,
    AUDIO_CHUNK_SUBTYPE,
    AUDIO_SAMPLE_DTYPE,
    AUDIO_SAMPLE_RATE_HZ,
    FRAME_JPEG_QUALITY,
)


def join_blocks(blocks: list[np.ndarray], *, channels: int = AUDIO_CHANNELS) -> np.ndarray:
    """
    Concatenate captured sample blocks into one (n_samples, channels) array.

    An empty block list yields a zero-length array of the right shape.
    """
    if not blocks:
        return np.zeros((0, channels), dtype=AUDIO_SAMPLE_DTYPE)

    shaped = [b.reshape(-1, channels) for b in blocks]
    return np.concatenate(shaped, axis=0).astype(AUDIO_SAMPLE_DTYPE, copy=False)


def encode_audio_chunk(
    samples: np.ndarray,
    *,
    sample_rate_hz: int = AUDIO_SAMPLE_RATE_HZ,
    channels: int = AUDIO_CHANNELS,
) -> bytes:
    """
    Encode PCM16 samples into a self-describing audio container.

    Args:
        samples:
            int16 array shaped (n,) or (n, channels).

    Raises:
        ValueError if the channel layout does not match `channels`.
    """
    if samples.ndim == 2 and samples.shape[1] != channels:
        raise ValueError(f"expected {channels} channel(s), got {samples.shape[1]}")

    buf = io.BytesIO()
    sf.write(
        buf,
        samples.reshape(-1, channels),
        sample_rate_hz,
        format=AUDIO_CHUNK_FORMAT,
        subtype=AUDIO_CHUNK_SUBTYPE,
    )
    return buf.getvalue()


def encode_frame_jpeg(frame: np.ndarray, *, quality: int = FRAME_JPEG_QUALITY) -> bytes:
    """
    Encode one RGB (h, w, 3) uint8 frame as JPEG.

    Raises:
        ValueError for frames that are not 3-channel images.
    """
    if frame.ndim != 3 or frame.shape[2] != 3:
        raise ValueError(f"expected (h, w, 3) RGB frame, got shape {frame.shape}")

    buf = io.BytesIO()
    Image.fromarray(frame.astype(np.uint8, copy=False)).save(
        buf, format="JPEG", quality=quality
    )
    return buf.getvalue()
