"""
Backend sessions REST client.

Only the two session lifecycle calls the streaming client needs:
- POST /sessions/start            (preparation flow; returns session_id)
- POST /sessions/end/{session_id} (completion)

Error bodies follow the backend convention {"detail": ...}; anything else
falls back to "HTTP <status>".
"""

from __future__ import annotations

from typing import Any

import httpx

from constants import REST_TIMEOUT_S, SESSIONS_END_PATH_TEMPLATE, SESSIONS_START_PATH
from observability.logger import log_event
from session.errors import APIError


class SessionsClient:
    """
    Thin async wrapper over httpx.AsyncClient.

    The client is owned by this object unless one is injected (tests pass
    a client built on httpx.MockTransport).
    """

    def __init__(
        self,
        *,
        base_url: str,
        access_token: str | None = None,
        timeout_s: float = REST_TIMEOUT_S,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._access_token = access_token
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout_s)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._access_token:
            headers["Authorization"] = f"Bearer {self._access_token}"
        return headers

    async def _post(self, path: str, *, json: dict[str, Any] | None = None) -> Any:
        try:
            resp = await self._client.post(path, headers=self._headers(), json=json)
        except httpx.HTTPError as e:
            log_event({
                "event_type": "REST_REQUEST_FAILED",
                "path": path,
                "error": repr(e),
            })
            raise APIError(f"request to {path} failed: {e}") from e

        if resp.is_success:
            if not resp.content:
                return None
            try:
                return resp.json()
            except ValueError:
                return None

        raise _api_error(resp)

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def create_session(self, *, cv_id: int, prompt_id: int) -> int:
        """Create a backend session and return its id. Does not bind it."""
        body = await self._post(SESSIONS_START_PATH, json={"cv_id": cv_id, "prompt_id": prompt_id})

        session_id = body.get("session_id") if isinstance(body, dict) else None
        if isinstance(session_id, bool) or not isinstance(session_id, int):
            raise APIError("sessions/start returned no integer session_id", details=body)

        log_event({
            "event_type": "SESSION_CREATED",
            "session_id": session_id,
        })
        return session_id

    async def end_session(self, session_id: int) -> None:
        await self._post(SESSIONS_END_PATH_TEMPLATE.format(session_id=session_id))
        log_event({
            "event_type": "SESSION_ENDED",
            "session_id": session_id,
        })


def _api_error(resp: httpx.Response) -> APIError:
    try:
        details: Any = resp.json()
    except ValueError:
        details = None

    message = f"HTTP {resp.status_code}"
    if isinstance(details, dict):
        detail = details.get("detail") or details.get("message")
        if isinstance(detail, str) and detail:
            message = detail

    log_event({
        "event_type": "REST_ERROR_RESPONSE",
        "path": resp.request.url.path,
        "status_code": resp.status_code,
        "message": message,
    })
    return APIError(message, status_code=resp.status_code, details=details)
