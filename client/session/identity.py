"""
Session identity binder.

The backend issues one integer session id per interview attempt (via
POST /sessions/start, called by the preparation flow). The streaming core
only consumes it:

- it never creates a session,
- it treats the id as read-only once bound,
- it refuses to start any capture while no id is bound.
"""

from __future__ import annotations

from observability.logger import log_event
from session.errors import SessionNotReady


class SessionBinder:
    """
    Holds the backend session id for the lifetime of one interview.

    bind() is called by the session owner (controller / preparation flow);
    clear() is called on completion or abandonment.
    """

    def __init__(self, session_id: int | None = None) -> None:
        self._session_id: int | None = None
        if session_id is not None:
            self.bind(session_id)

    def get_session_id(self) -> int | None:
        return self._session_id

    def bind(self, session_id: int) -> None:
        """
        Bind the backend-issued id.

        Rebinding the same id is a no-op. Rebinding a different id while one
        is bound is refused: a fresh session needs a fresh binder.
        """
        if isinstance(session_id, bool) or not isinstance(session_id, int):
            raise TypeError(f"session_id must be int, got {type(session_id).__name__}")

        if self._session_id == session_id:
            return
        if self._session_id is not None:
            raise ValueError(
                f"session {self._session_id} already bound; cannot rebind to {session_id}"
            )

        self._session_id = session_id
        log_event({
            "event_type": "SESSION_BOUND",
            "session_id": session_id,
        })

    def require(self) -> int:
        """
        Return the bound id or raise SessionNotReady.

        Called first by every capture-starting operation, before any side
        effect.
        """
        if self._session_id is None:
            raise SessionNotReady(
                "No interview session id bound; start the interview from the preparation flow"
            )
        return self._session_id

    def clear(self) -> None:
        if self._session_id is None:
            return
        log_event({
            "event_type": "SESSION_CLEARED",
            "session_id": self._session_id,
        })
        self._session_id = None
