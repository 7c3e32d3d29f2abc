# pylint: disable=missing-module-docstring,missing-function-docstring,missing-class-docstring

from typing import Any

from fastapi.testclient import TestClient

from channel.manager import SocketChannelManager
from config import AppConfig
from devices.base import MediaStream
from server.app import create_app
from session.controller import SessionPageController
from session.errors import DeviceNotFound
from session.identity import SessionBinder


class FakeSessions:
    def __init__(self) -> None:
        self.created: list[tuple[int, int]] = []

    async def create_session(self, *, cv_id: int, prompt_id: int) -> int:
        self.created.append((cv_id, prompt_id))
        return 31

    async def end_session(self, session_id: int) -> None:
        pass

    async def aclose(self) -> None:
        pass


def build_client(*, acquire_error: Exception | None = None) -> tuple[TestClient, FakeSessions]:
    config = AppConfig()
    sessions = FakeSessions()

    async def acquire() -> MediaStream:
        if acquire_error is not None:
            raise acquire_error
        raise AssertionError("device acquisition not expected")

    controller = SessionPageController(
        config=config,
        binder=SessionBinder(),
        channel=SocketChannelManager(url_for=config.ws_url),
        sessions=sessions,  # type: ignore[arg-type]
        acquire_media=acquire,
    )
    app = create_app(config=config, sessions=sessions, controller=controller)  # type: ignore[arg-type]
    return TestClient(app), sessions


def test_health() -> None:
    client, _ = build_client()

    assert client.get("/health").json() == {"status": "ok"}


def test_status_starts_idle() -> None:
    client, _ = build_client()

    body: dict[str, Any] = client.get("/session/status").json()

    assert body["phase"] == "idle"
    assert body["session_id"] is None
    assert body["is_connected"] is False
    assert body["chunks_recorded"] == 0


def test_start_without_session_is_conflict() -> None:
    client, _ = build_client()

    resp = client.post("/session/start", json={"total_questions": 3})

    assert resp.status_code == 409
    assert resp.json()["error"] == "SessionNotReady"


def test_start_validates_question_count() -> None:
    client, _ = build_client()

    resp = client.post("/session/start", json={"session_id": 4, "total_questions": 0})

    assert resp.status_code == 422


def test_device_failure_is_service_unavailable() -> None:
    client, _ = build_client(acquire_error=DeviceNotFound("no camera"))

    resp = client.post("/session/preview")

    assert resp.status_code == 503
    assert resp.json() == {"detail": "no camera", "error": "DeviceNotFound"}
    assert client.get("/session/status").json()["phase"] == "failed"


def test_toggle_without_media_is_conflict() -> None:
    client, _ = build_client()

    assert client.post("/session/toggle/audio").status_code == 409
    assert client.post("/session/toggle/screen").status_code == 422


def test_create_session_returns_backend_id() -> None:
    client, sessions = build_client()

    resp = client.post("/session/create", json={"cv_id": 2, "prompt_id": 5})

    assert resp.json() == {"session_id": 31}
    assert sessions.created == [(2, 5)]


def test_next_outside_recording_is_ignored() -> None:
    client, _ = build_client()

    resp = client.post("/session/next")

    assert resp.status_code == 200
    assert resp.json()["phase"] == "idle"
