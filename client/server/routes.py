"""
Route registration for the local control API.

Responsibilities:
- Define HTTP and WebSocket endpoints
- Forward user actions to the session controller
- Push live feed entries to the UI
- Pull dependencies from app.state
"""

from __future__ import annotations

import asyncio
from typing import Any, Literal

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field

from backend_api.rest import SessionsClient
from observability.logger import log_event
from session.controller import SessionPageController
from session.feed import FeedEntry


class CreateSessionRequest(BaseModel):
    cv_id: int
    prompt_id: int


class StartSessionRequest(BaseModel):
    session_id: int | None = None
    total_questions: int = Field(ge=1)


def register_routes(app: FastAPI) -> None:
    """Register all routes on the FastAPI app."""

    def _controller() -> SessionPageController:
        return app.state.controller

    @app.get("/health")
    async def health() -> dict[str, str]:  # pyright: ignore[reportUnusedFunction]
        return {"status": "ok"}

    @app.get("/session/status")
    async def session_status() -> dict[str, Any]:  # pyright: ignore[reportUnusedFunction]
        return _controller().status.to_dict()

    @app.post("/session/create")
    async def session_create(  # pyright: ignore[reportUnusedFunction]
        body: CreateSessionRequest,
    ) -> dict[str, int]:
        sessions: SessionsClient = app.state.sessions
        session_id = await sessions.create_session(cv_id=body.cv_id, prompt_id=body.prompt_id)
        return {"session_id": session_id}

    @app.post("/session/preview")
    async def session_preview() -> dict[str, Any]:  # pyright: ignore[reportUnusedFunction]
        status = await _controller().preview()
        return status.to_dict()

    @app.post("/session/start")
    async def session_start(  # pyright: ignore[reportUnusedFunction]
        body: StartSessionRequest,
    ) -> dict[str, Any]:
        status = await _controller().start(
            session_id=body.session_id,
            total_questions=body.total_questions,
        )
        return status.to_dict()

    @app.post("/session/next")
    async def session_next() -> dict[str, Any]:  # pyright: ignore[reportUnusedFunction]
        status = await _controller().next_question()
        return status.to_dict()

    @app.post("/session/complete")
    async def session_complete() -> dict[str, Any]:  # pyright: ignore[reportUnusedFunction]
        status = await _controller().complete()
        return status.to_dict()

    @app.post("/session/toggle/{kind}")
    async def session_toggle(  # pyright: ignore[reportUnusedFunction]
        kind: Literal["audio", "video"],
    ) -> dict[str, Any]:
        controller = _controller()
        enabled = controller.toggle_audio() if kind == "audio" else controller.toggle_video()
        return {"kind": kind, "enabled": enabled}

    @app.websocket("/session/feed")
    async def session_feed(ws: WebSocket) -> None:  # pyright: ignore[reportUnusedFunction]
        """
        Push transcript / emotion entries as they arrive.

        Entries already received are replayed first, in arrival order.
        """
        await ws.accept()

        feed = _controller().feed
        outbound: asyncio.Queue[dict[str, Any]] = asyncio.Queue()

        def _enqueue(entry: FeedEntry) -> None:
            outbound.put_nowait(entry.to_dict())

        backlog = sorted(
            [*feed.transcripts, *feed.emotions],
            key=lambda entry: entry.received_ms,
        )
        for entry in backlog:
            outbound.put_nowait(entry.to_dict())
        unsubscribe = feed.subscribe(_enqueue)

        async def _pump() -> None:
            while True:
                await ws.send_json(await outbound.get())

        pump = asyncio.create_task(_pump())
        try:
            while True:
                msg = await ws.receive()
                if msg["type"] == "websocket.disconnect":
                    break

        except WebSocketDisconnect:
            pass

        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "FEED_WS_FATAL_ERROR",
                "exception": type(exc).__name__,
                "message": str(exc),
            })

        finally:
            unsubscribe()
            pump.cancel()
            await asyncio.gather(pump, return_exceptions=True)
