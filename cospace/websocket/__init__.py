"""WebSocket module for real-time collaboration.

Message routing lives in ``cospace.websocket.handlers``; it is not
re-exported here because it depends on the sync coordinator, which in
turn uses the manager and presence hub below.
"""

from .manager import (
    ConnectionManager,
    MessageType,
    WebSocketConnection,
    content_room,
    manager,
)
from .presence import (
    PresenceHub,
    PresenceSession,
    SessionState,
    presence_hub,
)

__all__ = [
    # Manager
    "ConnectionManager",
    "MessageType",
    "WebSocketConnection",
    "content_room",
    "manager",
    # Presence
    "PresenceHub",
    "PresenceSession",
    "SessionState",
    "presence_hub",
]
