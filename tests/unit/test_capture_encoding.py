# pylint: disable=missing-module-docstring,missing-function-docstring

import io

import numpy as np
import pytest
import soundfile as sf
from PIL import Image

from capture.encoding import encode_audio_chunk, encode_frame_jpeg, join_blocks


def test_join_blocks_empty_yields_zero_length() -> None:
    samples = join_blocks([], channels=1)

    assert samples.shape == (0, 1)
    assert samples.dtype == np.int16


def test_join_blocks_preserves_order() -> None:
    a = np.array([[1], [2]], dtype=np.int16)
    b = np.array([3, 4, 5], dtype=np.int16)

    samples = join_blocks([a, b], channels=1)

    assert samples[:, 0].tolist() == [1, 2, 3, 4, 5]


def test_audio_chunk_is_readable_wav() -> None:
    samples = np.arange(1600, dtype=np.int16).reshape(-1, 1)

    payload = encode_audio_chunk(samples, sample_rate_hz=16_000, channels=1)

    assert payload[:4] == b"RIFF"
    data, rate = sf.read(io.BytesIO(payload), dtype="int16")
    assert rate == 16_000
    assert data.tolist() == samples[:, 0].tolist()


def test_audio_chunk_rejects_wrong_channel_layout() -> None:
    with pytest.raises(ValueError):
        encode_audio_chunk(np.zeros((10, 2), dtype=np.int16), channels=1)


def test_frame_encodes_as_jpeg() -> None:
    frame = np.full((8, 12, 3), 128, dtype=np.uint8)

    payload = encode_frame_jpeg(frame)

    assert payload[:2] == b"\xff\xd8"
    with Image.open(io.BytesIO(payload)) as img:
        assert img.size == (12, 8)
        assert img.format == "JPEG"


def test_frame_rejects_non_rgb() -> None:
    with pytest.raises(ValueError):
        encode_frame_jpeg(np.zeros((8, 8), dtype=np.uint8))
