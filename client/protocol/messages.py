"""
JSON message framing for the backend streaming socket.

Client -> Server:
    {"type": "audio", "data": <base64>, "question_number": <int>}
    {"type": "video", "data": <base64>}
    {"type": "session_complete", "session_id": <int>, "timestamp": <iso8601>,
     "total_chunks": <int>, "total_frames": <int>}

Server -> Client:
    {"type": "transcription", "data": <str>, "chunk_number": <int>}
    {"type": "live_emotion_analysis",
     "data": {"label": <str>, "score": <number>}, "chunk_number": <int>}

Any other inbound type decodes to UnknownMessage and is ignored upstream.

Media stays base64-in-JSON; switching to binary frames requires a matching
backend change.

Usage example:

    try:
        msg = decode_inbound(raw)
    except ProtocolError as e:
        log_event({"event_type": "INBOUND_DECODE_ERROR", "error": str(e)})
    else:
        if isinstance(msg, Transcription):
            ...
"""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Union

from constants import (
    MSG_AUDIO,
    MSG_LIVE_EMOTION,
    MSG_SESSION_COMPLETE,
    MSG_TRANSCRIPTION,
    MSG_VIDEO,
)


# -------------------------
# Exceptions
# -------------------------

class ProtocolError(Exception):
    """Base class for message framing errors."""


class MalformedMessage(ProtocolError):
    """
    Raised when an inbound message is not a JSON object with a string
    "type", or when a known type is missing required fields.
    """


# -------------------------
# Inbound message types
# -------------------------

@dataclass(frozen=True)
class Transcription:
    text: str
    chunk_number: int


@dataclass(frozen=True)
class EmotionReading:
    label: str
    score: float
    chunk_number: int


@dataclass(frozen=True)
class UnknownMessage:
    msg_type: str
    raw: dict[str, Any]


InboundMessage = Union[Transcription, EmotionReading, UnknownMessage]


# -------------------------
# Low-level helpers
# -------------------------

def _b64(payload: bytes) -> str:
    return base64.b64encode(payload).decode("ascii")


def _require_int(data: dict[str, Any], key: str) -> int:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise MalformedMessage(f"{data.get('type')}: {key!r} must be int, got {value!r}")
    return value


# -------------------------
# Client -> Server
# -------------------------

def encode_audio_message(*, payload: bytes, question_number: int) -> dict[str, Any]:
    """Audio chunk message. question_number is the seal-time snapshot."""
    return {
        "type": MSG_AUDIO,
        "data": _b64(payload),
        "question_number": question_number,
    }


def encode_video_message(*, payload: bytes) -> dict[str, Any]:
    """Video frame message. Frames carry no question tag."""
    return {
        "type": MSG_VIDEO,
        "data": _b64(payload),
    }


def encode_session_complete(
    *,
    session_id: int,
    total_chunks: int,
    total_frames: int,
    at: datetime | None = None,
) -> dict[str, Any]:
    """Final control message sent before the socket is closed on stop."""
    ts = at if at is not None else datetime.now(timezone.utc)
    return {
        "type": MSG_SESSION_COMPLETE,
        "session_id": session_id,
        "timestamp": ts.isoformat(),
        "total_chunks": total_chunks,
        "total_frames": total_frames,
    }


# -------------------------
# Server -> Client
# -------------------------

def decode_inbound(raw: str | bytes) -> InboundMessage:
    """
    Decode one inbound socket message.

    Raises:
        MalformedMessage for non-JSON payloads, non-object payloads, missing
        "type", or a known type with invalid fields.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MalformedMessage(f"inbound payload is not JSON: {e}") from e

    if not isinstance(data, dict):
        raise MalformedMessage(f"inbound payload must be an object, got {type(data).__name__}")

    msg_type = data.get("type")
    if not isinstance(msg_type, str):
        raise MalformedMessage(f"inbound payload has no string type: {msg_type!r}")

    if msg_type == MSG_TRANSCRIPTION:
        text = data.get("data")
        if not isinstance(text, str):
            raise MalformedMessage(f"transcription data must be str, got {text!r}")
        return Transcription(text=text, chunk_number=_require_int(data, "chunk_number"))

    if msg_type == MSG_LIVE_EMOTION:
        body = data.get("data")
        if not isinstance(body, dict):
            raise MalformedMessage(f"emotion data must be an object, got {body!r}")
        label = body.get("label")
        score = body.get("score")
        if not isinstance(label, str):
            raise MalformedMessage(f"emotion label must be str, got {label!r}")
        if isinstance(score, bool) or not isinstance(score, (int, float)):
            raise MalformedMessage(f"emotion score must be a number, got {score!r}")
        return EmotionReading(
            label=label,
            score=float(score),
            chunk_number=_require_int(data, "chunk_number"),
        )

    return UnknownMessage(msg_type=msg_type, raw=data)
