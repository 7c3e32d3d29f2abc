"""
Connection state for the backend streaming socket.

Owned exclusively by SocketChannelManager. Transitions are driven by socket
lifecycle events; consumers only read it.
"""
from enum import Enum


class ConnectionState(str, Enum):
    """
    Socket lifecycle state.

    Separate from and independent of the session controller phase.
    """
    DISCONNECTED = "disconnected"   # No socket; a reconnect may be pending
    CONNECTING = "connecting"       # Handshake in flight
    OPEN = "open"                   # Socket usable for sends
    CLOSED = "closed"               # Closed on purpose; no reconnect
