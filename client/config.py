"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide a typed, immutable config object

Non-responsibilities:
- No capture or channel logic
- No wire constants (see constants.py)
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from constants import (
    API_BASE_URL_DEFAULT,
    AUDIO_CHUNK_DURATION_MS,
    CONNECT_TIMEOUT_MS,
    FRAME_INTERVAL_MS,
    QUESTION_TIME_LIMIT_S,
    RECONNECT_DELAY_MS,
    WS_PATH_TEMPLATE,
)


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup and passed downward to the
    session controller, which hands the relevant values to the channel,
    recorder and sampler.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str = "dev"

    # ------------------------------------------------------------------
    # Backend
    # ------------------------------------------------------------------

    api_base_url: str = API_BASE_URL_DEFAULT
    access_token: str | None = None

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    audio_chunk_duration_ms: int = AUDIO_CHUNK_DURATION_MS
    frame_interval_ms: int = FRAME_INTERVAL_MS
    reconnect_delay_ms: int = RECONNECT_DELAY_MS
    connect_timeout_ms: int = CONNECT_TIMEOUT_MS

    # ------------------------------------------------------------------
    # Interview flow
    # ------------------------------------------------------------------

    question_time_limit_s: int = QUESTION_TIME_LIMIT_S

    # ------------------------------------------------------------------
    # Devices
    # ------------------------------------------------------------------

    audio_device: str | None = None
    video_device_index: int = 0

    def __post_init__(self) -> None:
        for name in (
            "audio_chunk_duration_ms",
            "frame_interval_ms",
            "reconnect_delay_ms",
            "connect_timeout_ms",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0")

        if not self.api_base_url.startswith(("http://", "https://")):
            raise ValueError(f"api_base_url must be http(s): {self.api_base_url!r}")

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    def ws_url(self, session_id: int) -> str:
        """
        Socket address for one interview session.

        http -> ws, https -> wss; host and any path prefix are preserved.
        """
        base = self.api_base_url.rstrip("/")
        if base.startswith("https://"):
            host = base[len("https://"):]
            scheme = "wss"
        else:
            host = base[len("http://"):]
            scheme = "ws"
        return f"{scheme}://{host}{WS_PATH_TEMPLATE.format(session_id=session_id)}"

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        Raises:
            ValueError if a numeric variable is malformed or out of range.
        """
        video_index = os.environ.get("VIDEO_DEVICE_INDEX", "0")
        return AppConfig(
            env=os.environ.get("ENV", "dev"),

            api_base_url=os.environ.get("API_BASE_URL", API_BASE_URL_DEFAULT),
            access_token=os.environ.get("ACCESS_TOKEN"),

            audio_chunk_duration_ms=int(
                os.environ.get("AUDIO_CHUNK_DURATION_MS", AUDIO_CHUNK_DURATION_MS)
            ),
            frame_interval_ms=int(os.environ.get("FRAME_INTERVAL_MS", FRAME_INTERVAL_MS)),
            reconnect_delay_ms=int(os.environ.get("RECONNECT_DELAY_MS", RECONNECT_DELAY_MS)),
            connect_timeout_ms=int(os.environ.get("CONNECT_TIMEOUT_MS", CONNECT_TIMEOUT_MS)),

            question_time_limit_s=int(
                os.environ.get("QUESTION_TIME_LIMIT_S", QUESTION_TIME_LIMIT_S)
            ),

            audio_device=os.environ.get("AUDIO_DEVICE") or None,
            video_device_index=int(video_index),
        )
