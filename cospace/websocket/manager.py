"""WebSocket connection manager with content rooms and Redis pub/sub.

This module provides WebSocket connection management with:
- One room per content item for targeted broadcasts
- Redis pub/sub for cross-worker message delivery
- Per-connection ids so a sender can be excluded from its own echo
- Graceful disconnect handling
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from fastapi import WebSocket

from ..config import settings
from ..services.redis_service import redis_service

logger = logging.getLogger(__name__)


class MessageType(str, Enum):
    """WebSocket message types."""

    # Connection events
    CONNECTED = "connected"
    ERROR = "error"

    # Presence events (ephemeral)
    PRESENCE = "presence"
    PRESENCE_REMOVED = "presence_removed"
    CURSOR_UPDATE = "cursor_update"

    # Content events
    OPERATION = "operation"
    CONTENT_UPDATE = "content_update"
    ACK = "ack"
    TITLE_UPDATE = "title_update"
    SAVE = "save"
    SAVED = "saved"

    # Reconnect catch-up
    CATCHUP_REQUEST = "catchup_request"
    SYNC_REQUEST = "sync_request"
    CATCHUP = "catchup"

    LEAVE = "leave"

    # Ping/pong for keepalive
    PING = "ping"
    PONG = "pong"


def content_room(content_id: UUID) -> str:
    """Room identifier for a content item."""
    return f"content:{content_id}"


@dataclass
class WebSocketConnection:
    """Represents a WebSocket connection with user context."""

    websocket: WebSocket
    user_id: UUID
    content_id: Optional[UUID] = None
    display_name: Optional[str] = None
    connection_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    connected_at: datetime = field(default_factory=datetime.utcnow)
    rooms: set[str] = field(default_factory=set)

    def __hash__(self) -> int:
        """Hash by connection id for set operations."""
        return hash(self.connection_id)

    def __eq__(self, other: object) -> bool:
        """Equality check by connection id."""
        if not isinstance(other, WebSocketConnection):
            return False
        return self.connection_id == other.connection_id


class ConnectionManager:
    """
    WebSocket connection manager with room-based support and Redis pub/sub.

    Features:
    - One room per content item
    - Redis pub/sub for cross-worker message delivery
    - Per-user connection limits
    - Graceful disconnect handling
    """

    # Redis pub/sub channel
    _BROADCAST_CHANNEL = "ws:broadcast"

    def __init__(self) -> None:
        """Initialize the connection manager."""
        # Map of room_id -> set of connections
        self._rooms: dict[str, set[WebSocketConnection]] = {}
        # Map of connection_id -> connection object
        self._connections: dict[str, WebSocketConnection] = {}
        # Map of user_id -> set of connections (for connection limits)
        self._user_connections: dict[UUID, set[WebSocketConnection]] = {}
        # Lock for room bookkeeping
        self._lock = asyncio.Lock()
        # Redis initialization flag
        self._redis_initialized = False

    async def initialize_redis(self) -> None:
        """Set up Redis pub/sub handlers for cross-worker messaging."""
        if self._redis_initialized:
            return

        await redis_service.subscribe(
            self._BROADCAST_CHANNEL,
            self._handle_redis_broadcast
        )
        self._redis_initialized = True
        logger.info("ConnectionManager Redis pub/sub initialized")

    async def _handle_redis_broadcast(self, data: dict) -> None:
        """
        Handle broadcast messages from Redis (from other workers).

        Args:
            data: Message containing room_id, message, and exclude_conn_id
        """
        room_id = data.get("room_id")
        message = data.get("message")
        exclude_conn_id = data.get("exclude_conn_id")

        if not room_id or not message:
            return

        # Send to LOCAL connections only (Redis already distributed to all workers)
        await self._send_local(room_id, message, exclude_conn_id)

    @property
    def total_connections(self) -> int:
        """Get total number of active connections."""
        return len(self._connections)

    @property
    def total_rooms(self) -> int:
        """Get total number of active rooms."""
        return len(self._rooms)

    def get_room_count(self, room_id: str) -> int:
        """Get number of connections in a room."""
        return len(self._rooms.get(room_id, set()))

    def get_user_connections_count(self, user_id: UUID) -> int:
        """Get number of connections for a user."""
        return len(self._user_connections.get(user_id, set()))

    async def connect(
        self,
        websocket: WebSocket,
        user_id: UUID,
        content_id: Optional[UUID] = None,
        display_name: Optional[str] = None,
    ) -> Optional[WebSocketConnection]:
        """
        Accept a WebSocket connection and register it.

        Args:
            websocket: The WebSocket instance
            user_id: The authenticated user's ID
            content_id: Content item the socket was opened for
            display_name: Name from the token, used for presence

        Returns:
            WebSocketConnection: The connection wrapper object, or None if rejected
        """
        current_connections = len(self._user_connections.get(user_id, set()))
        if current_connections >= settings.ws_max_connections_per_user:
            logger.warning(
                f"Connection limit reached for user {user_id}: "
                f"{current_connections}/{settings.ws_max_connections_per_user}"
            )
            await websocket.close(code=4029, reason="Too many connections")
            return None

        await websocket.accept()

        connection = WebSocketConnection(
            websocket=websocket,
            user_id=user_id,
            content_id=content_id,
            display_name=display_name,
        )

        async with self._lock:
            self._connections[connection.connection_id] = connection

            if user_id not in self._user_connections:
                self._user_connections[user_id] = set()
            self._user_connections[user_id].add(connection)

        logger.info(
            f"WebSocket connected: user={user_id}, connection={connection.connection_id}, "
            f"total_connections={self.total_connections}"
        )
        return connection

    async def disconnect(self, connection: WebSocketConnection) -> list[str]:
        """
        Unregister a connection and remove it from all rooms.

        Args:
            connection: The connection to drop

        Returns:
            Rooms that became empty
        """
        emptied: list[str] = []
        async with self._lock:
            if self._connections.pop(connection.connection_id, None) is None:
                return emptied

            if connection.user_id in self._user_connections:
                self._user_connections[connection.user_id].discard(connection)
                if not self._user_connections[connection.user_id]:
                    del self._user_connections[connection.user_id]

            for room_id in list(connection.rooms):
                if room_id in self._rooms:
                    self._rooms[room_id].discard(connection)
                    if not self._rooms[room_id]:
                        del self._rooms[room_id]
                        emptied.append(room_id)
            connection.rooms.clear()

        logger.info(
            f"WebSocket disconnected: user={connection.user_id}, "
            f"connection={connection.connection_id}, "
            f"total_connections={self.total_connections}"
        )
        return emptied

    async def join_room(self, connection: WebSocketConnection, room_id: str) -> None:
        """Add a connection to a room."""
        async with self._lock:
            if room_id not in self._rooms:
                self._rooms[room_id] = set()
            self._rooms[room_id].add(connection)
            connection.rooms.add(room_id)

        logger.debug(
            f"Connection {connection.connection_id} joined {room_id} "
            f"(room_size={self.get_room_count(room_id)})"
        )

    async def leave_room(self, connection: WebSocketConnection, room_id: str) -> None:
        """Remove a connection from a room."""
        async with self._lock:
            if room_id in self._rooms:
                self._rooms[room_id].discard(connection)
                if not self._rooms[room_id]:
                    del self._rooms[room_id]
            connection.rooms.discard(room_id)

        logger.debug(
            f"Connection {connection.connection_id} left {room_id} "
            f"(room_size={self.get_room_count(room_id)})"
        )

    async def send_personal(
        self,
        connection: WebSocketConnection,
        message: dict[str, Any],
    ) -> bool:
        """
        Send a message to a specific connection.

        Args:
            connection: The target connection
            message: The message to send

        Returns:
            bool: True if sent successfully, False otherwise
        """
        try:
            await connection.websocket.send_json(message)
            return True
        except Exception as e:
            logger.debug(f"Send to connection {connection.connection_id} failed: {e}")
            return False

    async def broadcast_to_room(
        self,
        room_id: str,
        message: dict[str, Any],
        exclude_connection_id: Optional[str] = None,
    ) -> int:
        """
        Broadcast a message to all connections in a room (across all workers).

        Uses Redis pub/sub to ensure all workers receive the broadcast.

        Args:
            room_id: The room to broadcast to
            message: The message to send
            exclude_connection_id: Optional connection to skip (usually the sender)

        Returns:
            int: Number of local recipients
        """
        if redis_service.is_connected:
            published = await redis_service.publish(
                self._BROADCAST_CHANNEL,
                {
                    "room_id": room_id,
                    "message": message,
                    "exclude_conn_id": exclude_connection_id,
                }
            )
            # Redis will deliver to all workers including this one via _handle_redis_broadcast
            if published:
                return len(self._rooms.get(room_id, []))

        # Fallback to local-only broadcast if Redis is not connected
        return await self._send_local(room_id, message, exclude_connection_id)

    async def _send_local(
        self,
        room_id: str,
        message: dict[str, Any],
        exclude_connection_id: Optional[str] = None,
    ) -> int:
        connections = [
            conn
            for conn in self._rooms.get(room_id, set()).copy()
            if conn.connection_id != exclude_connection_id
        ]
        if not connections:
            return 0

        tasks = [self.send_personal(conn, message) for conn in connections]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        success_count = sum(1 for r in results if r is True)
        logger.debug(
            f"Broadcast to room {room_id}: "
            f"{success_count}/{len(connections)} successful"
        )
        return success_count

    def get_room_users(self, room_id: str) -> list[UUID]:
        """
        Get list of user IDs in a room.

        Args:
            room_id: The room identifier

        Returns:
            list[UUID]: List of unique user IDs in the room
        """
        connections = self._rooms.get(room_id, set())
        return list(set(conn.user_id for conn in connections))

    def get_connection(self, connection_id: str) -> Optional[WebSocketConnection]:
        """Get a connection by its id."""
        return self._connections.get(connection_id)

    async def close_connection(
        self,
        connection_id: str,
        code: int = 1000,
        reason: str = "",
    ) -> bool:
        """
        Close a local connection's socket.

        Returns:
            True if the connection was found on this worker
        """
        connection = self._connections.get(connection_id)
        if connection is None:
            return False
        try:
            await connection.websocket.close(code=code, reason=reason)
        except Exception as e:
            logger.debug(f"Close of connection {connection_id} failed: {e}")
        return True


# Global singleton instance
manager = ConnectionManager()
