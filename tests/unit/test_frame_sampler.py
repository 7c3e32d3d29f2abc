# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
from typing import Any

import numpy as np
import pytest

from capture.sampler import FrameSampler


def frame() -> np.ndarray:
    return np.full((6, 6, 3), 200, dtype=np.uint8)


def build(source: Any, sink: Any, clock: Any, interval_ms: int = 2_000) -> FrameSampler:
    return FrameSampler(
        source=source,
        channel=sink,
        session_id=3,
        interval_ms=interval_ms,
        clock=clock,
    )


@pytest.mark.asyncio
async def test_first_frame_captured_immediately_on_start(
    video_source: Any, sink: Any, clock: Any,
) -> None:
    sampler = build(video_source, sink, clock)
    sampler.start()
    try:
        video = sink.of_type("video")
        assert len(video) == 1
        assert "question_number" not in video[0]
        assert sampler.frames_sampled == 1
    finally:
        sampler.stop()


@pytest.mark.asyncio
async def test_ticks_at_interval(video_source: Any, sink: Any, clock: Any) -> None:
    sampler = build(video_source, sink, clock, interval_ms=20)
    sampler.start()
    await asyncio.sleep(0.07)
    sampler.stop()

    assert len(sink.of_type("video")) >= 2


@pytest.mark.asyncio
async def test_missing_frame_is_skipped_without_consuming_index(
    make_video_source: Any, make_sink: Any, clock: Any,
) -> None:
    source = make_video_source(frames=[None, frame(), None, frame()])
    sink = make_sink()
    sampler = build(source, sink, clock)

    samples = [sampler.sample_once() for _ in range(4)]

    assert samples[0] is None and samples[2] is None
    assert [s.sequence_index for s in samples if s is not None] == [0, 1]
    assert sampler.frames_skipped == 2
    assert len(sink.sent) == 2


@pytest.mark.asyncio
async def test_disabled_camera_yields_no_frames(video_source: Any, sink: Any, clock: Any) -> None:
    video_source.enabled = False
    sampler = build(video_source, sink, clock)
    sampler.start()
    sampler.stop()

    assert not sink.sent
    assert sampler.frames_sampled == 0


@pytest.mark.asyncio
async def test_stop_cancels_ticks(video_source: Any, sink: Any, clock: Any) -> None:
    sampler = build(video_source, sink, clock, interval_ms=10)
    sampler.start()
    sampler.stop()
    await asyncio.sleep(0.05)

    assert len(sink.sent) == 1
    assert not sampler.running


@pytest.mark.asyncio
async def test_frame_indices_independent_of_timestamps(
    video_source: Any, sink: Any, clock: Any,
) -> None:
    sampler = build(video_source, sink, clock)
    clock.advance(5_000)
    first = sampler.sample_once()
    clock.advance(5_000)
    second = sampler.sample_once()

    assert first is not None and second is not None
    assert (first.sequence_index, first.captured_ms) == (0, 5_000)
    assert (second.sequence_index, second.captured_ms) == (1, 10_000)


@pytest.mark.asyncio
async def test_read_failure_is_logged_and_sampling_continues(
    make_video_source: Any, make_sink: Any, clock: Any, captured_logs: list[dict[str, Any]],
) -> None:
    source = make_video_source(frames=[RuntimeError("camera unplugged"), frame()])
    sink = make_sink()
    sampler = build(source, sink, clock, interval_ms=10)

    sampler.start()
    assert sampler.running
    assert not sink.sent

    await asyncio.sleep(0.05)
    sampler.stop()

    assert len(sink.of_type("video")) == 1
    assert sampler.frames_sampled == 1
    failed = [r for r in captured_logs if r["event_type"] == "FRAME_SAMPLE_FAILED"]
    assert failed[0]["exception"] == "RuntimeError"
