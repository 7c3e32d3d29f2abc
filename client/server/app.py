"""
FastAPI app factory.

Responsibilities:
- Create and configure FastAPI app
- Set up middleware
- Initialize shared resources (REST client, channel, controller)
- Map streaming errors to HTTP status codes
- Register routes
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend_api.rest import SessionsClient
from channel.manager import SocketChannelManager
from config import AppConfig
from observability.logger import log_event
from session.controller import SessionPageController
from session.errors import (
    APIError,
    ChannelError,
    CompletionFailed,
    DeviceError,
    InvalidSessionState,
    SessionNotReady,
    StreamingError,
)
from session.identity import SessionBinder

from server.routes import register_routes


_STATUS_BY_ERROR: tuple[tuple[type[StreamingError], int], ...] = (
    (SessionNotReady, 409),
    (InvalidSessionState, 409),
    (DeviceError, 503),
    (ChannelError, 503),
    (CompletionFailed, 502),
    (APIError, 502),
)


def create_app(
    *,
    config: AppConfig | None = None,
    sessions: SessionsClient | None = None,
    controller: SessionPageController | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Tests inject sessions / controller; production builds them from the
    environment. The device layer is imported only when no controller is
    injected, so the app can be built without audio hardware libraries.
    """
    config = config or AppConfig.load_from_env()
    sessions = sessions or SessionsClient(
        base_url=config.api_base_url,
        access_token=config.access_token,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await app.state.controller.teardown()
        await sessions.aclose()

    app = FastAPI(title="Interview Streaming Client", lifespan=lifespan)

    app.state.config = config
    app.state.sessions = sessions
    app.state.controller = controller or build_controller(config=config, sessions=sessions)

    # Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # tighten later
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StreamingError)
    async def streaming_error_handler(  # pyright: ignore[reportUnusedFunction]
        request: Request,
        exc: StreamingError,
    ) -> JSONResponse:
        status_code = 500
        for error_type, code in _STATUS_BY_ERROR:
            if isinstance(exc, error_type):
                status_code = code
                break

        log_event({
            "event_type": "HTTP_ERROR",
            "path": request.url.path,
            "exception": type(exc).__name__,
            "message": str(exc),
            "status_code": status_code,
        })
        return JSONResponse(
            status_code=status_code,
            content={"detail": str(exc), "error": type(exc).__name__},
        )

    # Routes
    register_routes(app)

    return app


def build_controller(*, config: AppConfig, sessions: SessionsClient) -> SessionPageController:
    """Wire a controller to the real devices and websocket transport."""
    from devices.local import acquire_media  # pylint: disable=import-outside-toplevel

    async def _acquire():
        return await acquire_media(config)

    return SessionPageController(
        config=config,
        binder=SessionBinder(),
        channel=SocketChannelManager(
            url_for=config.ws_url,
            reconnect_delay_ms=config.reconnect_delay_ms,
            connect_timeout_ms=config.connect_timeout_ms,
        ),
        sessions=sessions,
        acquire_media=_acquire,
    )
