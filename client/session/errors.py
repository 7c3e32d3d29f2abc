"""
Error taxonomy for the streaming client.

Propagation rules:
- Device errors and start-time channel errors are raised to the caller of
  the controller operation so the UI can show a message.
- Steady-state channel failures are handled internally (reconnect) and only
  change the connection indicator.
- SendDropped is never raised past the channel; it is logged and counted.
"""

from __future__ import annotations


class StreamingError(Exception):
    """Base class for all streaming client errors."""


class SessionNotReady(StreamingError):
    """
    Raised when a capture-starting operation runs without a bound session id.

    Recovered by blocking the start. No device prompt and no socket open
    happen before this is raised.
    """


class InvalidSessionState(StreamingError):
    """
    Raised when a controller operation is not valid in the current state
    (e.g. starting a terminated session).
    """


# -------------------------
# Devices
# -------------------------

class DeviceError(StreamingError):
    """Base class for hardware acquisition failures."""


class DeviceAccessDenied(DeviceError):
    """Permission to use the camera or microphone was refused."""


class DeviceNotFound(DeviceError):
    """No usable camera or microphone is present."""


# -------------------------
# Channel
# -------------------------

class ChannelError(StreamingError):
    """Base class for socket failures."""


class ChannelConnectionError(ChannelError):
    """
    The socket failed to open or errored after opening.

    Non-fatal in steady state (a reconnect is scheduled). Fails the start
    operation when raised during start.
    """


class ConnectionTimeout(ChannelError):
    """The socket did not reach OPEN within the start-time wait."""


class SendDropped(ChannelError):
    """
    A media payload could not be written because the socket was not open.

    The unit is permanently lost; there is no client-side replay buffer.
    """


# -------------------------
# Backend REST
# -------------------------

class APIError(StreamingError):
    """
    Non-2xx response from the backend REST API.

    status_code and details carry the HTTP status and the decoded error body
    (or None when the body was not JSON).
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: object | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class CompletionFailed(StreamingError):
    """
    The backend rejected session completion.

    Local session state is kept so the user may retry.
    """
