"""Presence tracking for collaborative content.

Every WebSocket connection on a content item owns one PresenceSession.
Sessions live in memory on the worker holding the socket; when Redis is
connected they are mirrored into a sorted set (heartbeats) and a hash
(session data) per content room so any worker can list presence.

Session lifecycle:
    connecting -> connected -> active <-> idle -> disconnected

A session that misses ``missed_heartbeats`` heartbeat intervals is
evicted. Every announced session produces exactly one presence_removed
broadcast, whether it leaves, disconnects or times out.

Stale Redis entries left by crashed workers are cleaned by the ARQ worker
(see cospace/worker.py).
"""

import asyncio
import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional
from uuid import UUID

from ..config import settings
from ..services.redis_service import redis_service
from .manager import ConnectionManager, MessageType, content_room, manager

logger = logging.getLogger(__name__)


class SessionState(str, enum.Enum):
    """Presence session states."""

    CONNECTING = "connecting"
    CONNECTED = "connected"
    ACTIVE = "active"
    IDLE = "idle"
    DISCONNECTED = "disconnected"


_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.CONNECTING: frozenset({SessionState.CONNECTED, SessionState.DISCONNECTED}),
    SessionState.CONNECTED: frozenset(
        {SessionState.ACTIVE, SessionState.IDLE, SessionState.DISCONNECTED}
    ),
    SessionState.ACTIVE: frozenset({SessionState.IDLE, SessionState.DISCONNECTED}),
    SessionState.IDLE: frozenset({SessionState.ACTIVE, SessionState.DISCONNECTED}),
    SessionState.DISCONNECTED: frozenset(),
}


@dataclass
class PresenceSession:
    """One user's live connection to one content item."""

    content_id: UUID
    user_id: UUID
    connection_id: str
    display_name: Optional[str] = None
    color: Optional[str] = None
    permission_level: Optional[str] = None
    cursor_position: Optional[int] = None
    selection: Optional[dict[str, int]] = None
    state: SessionState = SessionState.CONNECTING
    joined_at: float = field(default_factory=time.time)
    last_seen_at: float = field(default_factory=time.time)
    last_activity_at: float = field(default_factory=time.time)

    @property
    def is_active(self) -> bool:
        """Whether the session still counts as present."""
        return self.state != SessionState.DISCONNECTED

    @property
    def announced(self) -> bool:
        """Whether other participants have been told about this session."""
        return self.state not in (SessionState.CONNECTING, SessionState.DISCONNECTED)

    def transition(self, state: SessionState) -> bool:
        """
        Move to a new state if the lifecycle allows it.

        Returns:
            True if the state changed
        """
        if state == self.state:
            return False
        if state not in _TRANSITIONS[self.state]:
            logger.debug(
                f"Ignoring presence transition {self.state.value} -> {state.value} "
                f"for {self.connection_id}"
            )
            return False
        self.state = state
        return True

    def to_dict(self) -> dict[str, Any]:
        """Wire representation (camelCase)."""
        return {
            "contentId": str(self.content_id),
            "userId": str(self.user_id),
            "connectionId": self.connection_id,
            "name": self.display_name,
            "color": self.color,
            "permissionLevel": self.permission_level,
            "state": self.state.value,
            "isActive": self.is_active,
            "cursorPosition": self.cursor_position,
            "selection": self.selection,
            "joinedAt": self.joined_at,
            "lastSeenAt": self.last_seen_at,
        }


class PresenceHub:
    """
    In-memory presence registry with a background eviction sweep.

    Uses:
    - A per-connection session map on this worker
    - Redis sorted sets and hashes (when connected) for cross-worker listing
    - The connection manager for presence broadcasts
    """

    def __init__(
        self,
        broadcaster: Optional[ConnectionManager] = None,
        heartbeat_interval: Optional[float] = None,
        missed_heartbeats: Optional[int] = None,
        idle_after: Optional[float] = None,
    ) -> None:
        """Initialize the presence hub."""
        self.broadcaster = broadcaster or manager
        self.heartbeat_interval = heartbeat_interval or settings.heartbeat_interval
        self.missed_heartbeats = missed_heartbeats or settings.missed_heartbeats
        self.idle_after = idle_after or settings.presence_idle_after
        # Called after a session is evicted, e.g. to close its socket
        self.on_evicted: Optional[Callable[[PresenceSession], Awaitable[None]]] = None

        self._sessions: dict[str, PresenceSession] = {}
        self._by_content: dict[UUID, set[str]] = {}
        self._sweeper_task: Optional[asyncio.Task] = None
        # Created lazily to avoid binding to an event loop at import time
        self._lock: Optional[asyncio.Lock] = None

    def _get_lock(self) -> asyncio.Lock:
        """Get or create the asyncio lock (lazy initialization)."""
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    @property
    def timeout(self) -> float:
        """Seconds without a heartbeat before eviction."""
        return self.heartbeat_interval * self.missed_heartbeats

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def register(
        self,
        content_id: UUID,
        user_id: UUID,
        connection_id: str,
    ) -> PresenceSession:
        """
        Create the session for a new connection (state: connecting).

        A connection has at most one session; registering it again returns
        the existing one.
        """
        async with self._get_lock():
            existing = self._sessions.get(connection_id)
            if existing is not None:
                return existing

            session = PresenceSession(
                content_id=content_id,
                user_id=user_id,
                connection_id=connection_id,
            )
            self._sessions[connection_id] = session
            self._by_content.setdefault(content_id, set()).add(connection_id)

        logger.debug(f"Presence session {connection_id} registered on content {content_id}")
        return session

    async def announce(
        self,
        connection_id: str,
        display_name: Optional[str] = None,
        color: Optional[str] = None,
        permission_level: Optional[str] = None,
    ) -> Optional[PresenceSession]:
        """
        Record a client's presence message and broadcast it to the room.

        The first announcement moves the session to connected; later ones
        update the display fields.
        """
        session = self._sessions.get(connection_id)
        if session is None or not session.is_active:
            return None

        now = time.time()
        if display_name is not None:
            session.display_name = display_name
        if color is not None:
            session.color = color
        if permission_level is not None:
            session.permission_level = permission_level
        session.transition(SessionState.CONNECTED)
        session.last_seen_at = now

        await self._mirror(session)
        await self._broadcast_presence(session)
        return session

    async def heartbeat(self, connection_id: str, now: Optional[float] = None) -> bool:
        """
        Refresh a session's liveness.

        Returns:
            False if the session is unknown or already gone
        """
        session = self._sessions.get(connection_id)
        if session is None or not session.is_active:
            return False
        session.last_seen_at = now if now is not None else time.time()
        await self._mirror(session, with_data=False)
        return True

    async def touch(
        self,
        connection_id: str,
        cursor_position: Optional[int] = None,
        selection: Optional[dict[str, int]] = None,
        now: Optional[float] = None,
    ) -> Optional[PresenceSession]:
        """
        Record user activity (edit, cursor move) on a session.

        Counts as a heartbeat and wakes an idle session.
        """
        session = self._sessions.get(connection_id)
        if session is None or not session.is_active:
            return None

        now = now if now is not None else time.time()
        session.last_seen_at = now
        session.last_activity_at = now
        if cursor_position is not None:
            session.cursor_position = cursor_position
        if selection is not None:
            session.selection = selection

        was_idle = session.state == SessionState.IDLE
        session.transition(SessionState.ACTIVE)

        await self._mirror(session)
        if was_idle:
            await self._broadcast_presence(session)
        return session

    async def leave(self, connection_id: str, reason: str = "left") -> Optional[PresenceSession]:
        """
        End a session (explicit leave or socket close).

        Returns:
            The removed session, or None if it was already gone
        """
        return await self._remove(connection_id, reason)

    async def evict_stale(self, now: Optional[float] = None) -> list[PresenceSession]:
        """
        Evict sessions that missed too many heartbeats and mark quiet ones idle.

        Args:
            now: Current time (defaults to time.time())

        Returns:
            The evicted sessions
        """
        now = now if now is not None else time.time()
        cutoff = now - self.timeout

        stale = [
            session.connection_id
            for session in list(self._sessions.values())
            if session.last_seen_at < cutoff
        ]
        evicted = []
        for connection_id in stale:
            session = await self._remove(connection_id, "timeout", stale_before=cutoff)
            if session is not None:
                evicted.append(session)
                if self.on_evicted is not None:
                    try:
                        await self.on_evicted(session)
                    except Exception as e:
                        logger.warning(f"Eviction callback failed for {connection_id}: {e}")

        for session in list(self._sessions.values()):
            if (
                session.state in (SessionState.CONNECTED, SessionState.ACTIVE)
                and now - session.last_activity_at >= self.idle_after
                and session.transition(SessionState.IDLE)
            ):
                await self._mirror(session)
                await self._broadcast_presence(session)

        if evicted:
            logger.info(f"Evicted {len(evicted)} stale presence sessions")
        return evicted

    async def _remove(
        self,
        connection_id: str,
        reason: str,
        stale_before: Optional[float] = None,
    ) -> Optional[PresenceSession]:
        async with self._get_lock():
            session = self._sessions.get(connection_id)
            if session is None:
                return None
            # Heartbeat landed after the session was picked for eviction
            if stale_before is not None and session.last_seen_at >= stale_before:
                return None
            del self._sessions[connection_id]
            was_announced = session.announced
            session.transition(SessionState.DISCONNECTED)

            connections = self._by_content.get(session.content_id)
            if connections is not None:
                connections.discard(connection_id)
                if not connections:
                    del self._by_content[session.content_id]

        if redis_service.is_connected:
            try:
                await redis_service.presence_remove(
                    content_room(session.content_id),
                    connection_id,
                )
            except Exception as e:
                logger.error(f"Redis presence remove error: {e}")

        if was_announced:
            await self.broadcaster.broadcast_to_room(
                content_room(session.content_id),
                {
                    "type": MessageType.PRESENCE_REMOVED.value,
                    "userId": str(session.user_id),
                    "connectionId": connection_id,
                    "reason": reason,
                },
                exclude_connection_id=connection_id,
            )

        logger.info(
            f"Presence session {connection_id} of user {session.user_id} "
            f"removed from content {session.content_id} ({reason})"
        )
        return session

    # =========================================================================
    # Queries
    # =========================================================================

    def get_session(self, connection_id: str) -> Optional[PresenceSession]:
        """Get a local session by connection id."""
        return self._sessions.get(connection_id)

    def get_sessions(self, content_id: UUID) -> list[PresenceSession]:
        """List this worker's live sessions on a content item, oldest first."""
        sessions = [
            self._sessions[connection_id]
            for connection_id in self._by_content.get(content_id, set())
            if connection_id in self._sessions
        ]
        return sorted(sessions, key=lambda s: s.joined_at)

    async def get_presence(self, content_id: UUID) -> list[dict[str, Any]]:
        """
        List presence on a content item across all workers.

        Falls back to this worker's sessions when Redis is unavailable.
        """
        if redis_service.is_connected:
            try:
                return await redis_service.presence_get_room(
                    content_room(content_id),
                    since=time.time() - self.timeout,
                )
            except Exception as e:
                logger.error(f"Redis get_presence error: {e}")

        return [
            session.to_dict()
            for session in self.get_sessions(content_id)
            if session.announced
        ]

    def get_stats(self) -> dict[str, Any]:
        """Get presence hub statistics."""
        return {
            "backend": "redis" if redis_service.is_connected else "memory",
            "sessions": len(self._sessions),
            "contents": len(self._by_content),
            "sweeper_running": self.is_running,
        }

    # =========================================================================
    # Sweeper
    # =========================================================================

    @property
    def is_running(self) -> bool:
        """Whether the eviction sweeper is running."""
        return self._sweeper_task is not None and not self._sweeper_task.done()

    async def start(self) -> None:
        """Start the background eviction sweeper."""
        if self.is_running:
            return
        self._sweeper_task = asyncio.create_task(self._sweep_loop())
        logger.info(
            f"Presence sweeper started (timeout={self.timeout}s, "
            f"idle_after={self.idle_after}s)"
        )

    async def stop(self) -> None:
        """Stop the sweeper and drop every local session."""
        if self._sweeper_task is not None:
            self._sweeper_task.cancel()
            try:
                await self._sweeper_task
            except asyncio.CancelledError:
                pass
            self._sweeper_task = None

        for connection_id in list(self._sessions):
            await self._remove(connection_id, "shutdown")
        logger.info("Presence sweeper stopped")

    async def _sweep_loop(self) -> None:
        interval = max(1.0, self.heartbeat_interval / 2)
        while True:
            try:
                await asyncio.sleep(interval)
                await self.evict_stale()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Presence sweep error: {e}", exc_info=True)

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _broadcast_presence(self, session: PresenceSession) -> None:
        await self.broadcaster.broadcast_to_room(
            content_room(session.content_id),
            {"type": MessageType.PRESENCE.value, **session.to_dict()},
            exclude_connection_id=session.connection_id,
        )

    async def _mirror(self, session: PresenceSession, with_data: bool = True) -> None:
        """Copy a session's heartbeat (and data) to Redis when connected."""
        if not redis_service.is_connected or not session.announced:
            return
        try:
            await redis_service.presence_set(
                content_room(session.content_id),
                session.connection_id,
                session.last_seen_at,
                data=session.to_dict() if with_data else None,
            )
        except Exception as e:
            logger.error(f"Redis presence mirror error: {e}")


# Global singleton instance
presence_hub = PresenceHub()


# Export for use in other modules
__all__ = [
    "PresenceHub",
    "PresenceSession",
    "SessionState",
    "presence_hub",
]
