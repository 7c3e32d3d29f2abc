"""
CONSTANTS
---------
Single source of truth for all behavioral defaults of the streaming client.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Deployment overrides go through config.AppConfig, which defaults to these.
"""

from __future__ import annotations

from typing import Final

# =============================================================================
# Audio chunking
# =============================================================================

AUDIO_CHUNK_DURATION_MS: Final[int] = 10_000

AUDIO_SAMPLE_RATE_HZ: Final[int] = 16_000
AUDIO_CHANNELS: Final[int] = 1
AUDIO_SAMPLE_DTYPE: Final[str] = "int16"

# soundfile container/subtype for sealed chunks
AUDIO_CHUNK_FORMAT: Final[str] = "WAV"
AUDIO_CHUNK_SUBTYPE: Final[str] = "PCM_16"

CHUNK_SEQUENCE_START: Final[int] = 0

# =============================================================================
# Frame sampling
# =============================================================================

FRAME_INTERVAL_MS: Final[int] = 2_000
FRAME_JPEG_QUALITY: Final[int] = 85

FRAME_SEQUENCE_START: Final[int] = 0

VIDEO_WIDTH_IDEAL: Final[int] = 1280
VIDEO_HEIGHT_IDEAL: Final[int] = 720

# =============================================================================
# Channel / reconnection
# =============================================================================

API_BASE_URL_DEFAULT: Final[str] = "http://localhost:8000"
WS_PATH_TEMPLATE: Final[str] = "/sessions/ws/sessions/{session_id}"

RECONNECT_DELAY_MS: Final[int] = 3_000
CONNECT_TIMEOUT_MS: Final[int] = 10_000

# Outbound payloads are base64 inside JSON; allow large inbound analysis blobs
WS_MAX_MESSAGE_BYTES: Final[int] = 2**22

# =============================================================================
# Wire message types
# =============================================================================

MSG_AUDIO: Final[str] = "audio"
MSG_VIDEO: Final[str] = "video"
MSG_SESSION_COMPLETE: Final[str] = "session_complete"

MSG_TRANSCRIPTION: Final[str] = "transcription"
MSG_LIVE_EMOTION: Final[str] = "live_emotion_analysis"

# =============================================================================
# REST
# =============================================================================

REST_TIMEOUT_S: Final[float] = 10.0
SESSIONS_START_PATH: Final[str] = "/sessions/start"
SESSIONS_END_PATH_TEMPLATE: Final[str] = "/sessions/end/{session_id}"

# =============================================================================
# Interview flow
# =============================================================================

QUESTION_TIME_LIMIT_S: Final[int] = 90
FIRST_QUESTION_NUMBER: Final[int] = 1


# =============================================================================
# Helper Functions
# =============================================================================

def ms_to_seconds(duration_ms: int) -> float:
    """
    Convert milliseconds to seconds for asyncio sleeps.

    Non-positive input returns 0.0.
    """
    if duration_ms <= 0:
        return 0.0
    return duration_ms / 1000.0
