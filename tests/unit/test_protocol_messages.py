# pylint: disable=missing-module-docstring,missing-function-docstring

import base64
import json
from datetime import datetime, timezone

import pytest

from protocol.messages import (
    EmotionReading,
    MalformedMessage,
    Transcription,
    UnknownMessage,
    decode_inbound,
    encode_audio_message,
    encode_session_complete,
    encode_video_message,
)


# ---------------------------------------------------------------------
# Client -> Server
# ---------------------------------------------------------------------

def test_audio_message_carries_question_number() -> None:
    msg = encode_audio_message(payload=b"RIFF....", question_number=3)

    assert msg["type"] == "audio"
    assert msg["question_number"] == 3
    assert base64.b64decode(msg["data"]) == b"RIFF...."
    json.dumps(msg)


def test_video_message_has_no_question_number() -> None:
    msg = encode_video_message(payload=b"\xff\xd8\xff")

    assert msg == {"type": "video", "data": base64.b64encode(b"\xff\xd8\xff").decode()}


def test_session_complete_message() -> None:
    at = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    msg = encode_session_complete(session_id=9, total_chunks=4, total_frames=20, at=at)

    assert msg == {
        "type": "session_complete",
        "session_id": 9,
        "timestamp": "2024-05-01T12:00:00+00:00",
        "total_chunks": 4,
        "total_frames": 20,
    }


# ---------------------------------------------------------------------
# Server -> Client
# ---------------------------------------------------------------------

def test_decode_transcription() -> None:
    raw = json.dumps({"type": "transcription", "data": "hello", "chunk_number": 2})

    assert decode_inbound(raw) == Transcription(text="hello", chunk_number=2)


def test_decode_emotion_from_bytes() -> None:
    raw = json.dumps({
        "type": "live_emotion_analysis",
        "data": {"label": "calm", "score": 1},
        "chunk_number": 0,
    }).encode()

    msg = decode_inbound(raw)

    assert msg == EmotionReading(label="calm", score=1.0, chunk_number=0)


def test_unknown_type_is_not_an_error() -> None:
    msg = decode_inbound(json.dumps({"type": "heartbeat", "n": 1}))

    assert isinstance(msg, UnknownMessage)
    assert msg.msg_type == "heartbeat"


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[1, 2]",
        json.dumps({"data": "no type"}),
        json.dumps({"type": "transcription", "data": 5, "chunk_number": 1}),
        json.dumps({"type": "transcription", "data": "x", "chunk_number": True}),
        json.dumps({"type": "live_emotion_analysis", "data": {"label": "x"}, "chunk_number": 1}),
    ],
)
def test_malformed_inbound_rejected(raw: str) -> None:
    with pytest.raises(MalformedMessage):
        decode_inbound(raw)
