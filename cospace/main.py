"""FastAPI application entry point."""

import asyncio
import json
import logging
import traceback
from contextlib import asynccontextmanager
from typing import Optional
from uuid import UUID

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import TimeoutError as SQLAlchemyTimeoutError

from .config import settings
from .database import warmup_connection_pool
from .exceptions import (
    CollaborationError,
    ConnectionLost,
    Forbidden,
    InvalidGrant,
    InvalidOperation,
    NotFound,
    SequenceConflict,
    Timeout,
)
from .routers import comments_router, contents_router, permissions_router
from .schemas.messages import ConnectedMessage, ErrorMessage
from .services.auth_service import user_from_token
from .services.content_store import ContentStore
from .services.permission_service import PermissionService
from .services.redis_service import redis_service
from .services.sync_coordinator import coordinator
from .websocket import content_room, manager, presence_hub
from .websocket.handlers import route_incoming_message, send_catchup
from .websocket.presence import PresenceSession

# Configure logging to show errors
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Collaboration errors -> HTTP status for REST callers
ERROR_STATUS: dict[type[CollaborationError], int] = {
    NotFound: status.HTTP_404_NOT_FOUND,
    Forbidden: status.HTTP_403_FORBIDDEN,
    SequenceConflict: status.HTTP_409_CONFLICT,
    Timeout: status.HTTP_503_SERVICE_UNAVAILABLE,
    InvalidOperation: status.HTTP_422_UNPROCESSABLE_ENTITY,
    InvalidGrant: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ConnectionLost: status.HTTP_410_GONE,
}

# Close codes for the content WebSocket
WS_CLOSE_UNAUTHORIZED = 4001
WS_CLOSE_FORBIDDEN = 4003
WS_CLOSE_NOT_FOUND = 4004
WS_CLOSE_HEARTBEAT_TIMEOUT = 4008


async def close_evicted_connection(session: PresenceSession) -> None:
    """Close the socket of a presence session that stopped heartbeating."""
    await manager.close_connection(
        session.connection_id,
        code=WS_CLOSE_HEARTBEAT_TIMEOUT,
        reason="Heartbeat timeout",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown tasks."""
    # Startup
    logger.info("Warming up database connection pool...")
    await warmup_connection_pool()
    logger.info("Database connection pool ready")

    logger.info("Connecting to Redis...")
    try:
        await redis_service.connect()
        logger.info("Redis connected")

        logger.info("Initializing WebSocket manager with Redis...")
        await manager.initialize_redis()
        logger.info("WebSocket manager Redis initialized")

        logger.info("Starting Redis pub/sub listener...")
        await redis_service.start_listening()
        logger.info("Redis pub/sub listener started")
    except Exception as e:
        if settings.redis_required:
            logger.error(f"Redis connection failed and REDIS_REQUIRED=true: {e}")
            raise RuntimeError(
                f"Redis is required for multi-worker deployment but connection failed: {e}"
            )
        logger.warning(f"Redis connection failed, running in single-worker mode: {e}")

    logger.info("Starting presence hub...")
    presence_hub.on_evicted = close_evicted_connection
    await presence_hub.start()
    logger.info("Presence hub started")

    yield

    # Shutdown
    logger.info("Stopping presence hub...")
    await presence_hub.stop()
    logger.info("Presence hub stopped")

    logger.info("Disconnecting from Redis...")
    await redis_service.disconnect()
    logger.info("Redis disconnected")


# Create FastAPI application
app = FastAPI(
    title="Cospace API",
    description="Real-time collaborative content engine",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CollaborationError)
async def collaboration_error_handler(request: Request, exc: CollaborationError):
    """Map collaboration errors to HTTP responses."""
    status_code = next(
        (code for error_type, code in ERROR_STATUS.items() if isinstance(exc, error_type)),
        status.HTTP_400_BAD_REQUEST,
    )
    if isinstance(exc, SequenceConflict):
        logger.error(f"Sequence conflict on {request.method} {request.url}: {exc.message}")

    headers = None
    if exc.retryable:
        headers = {"Retry-After": str(max(1, int(settings.lock_timeout)))}
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, **exc.to_dict()},
        headers=headers,
    )


# Database pool exhaustion handler - return 503 so clients can retry
@app.exception_handler(SQLAlchemyTimeoutError)
async def db_pool_exhausted_handler(request: Request, exc: SQLAlchemyTimeoutError):
    """Handle database connection pool exhaustion with 503 Service Unavailable."""
    logger.warning(
        f"Database pool exhausted on {request.method} {request.url}: {exc}"
    )
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "detail": "Service temporarily unavailable. Please retry.",
            "retry_after": 5,
        },
        headers={"Retry-After": "5"},
    )


# Global exception handler to log errors
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Log all unhandled exceptions with full traceback."""
    logger.error(f"Unhandled exception on {request.method} {request.url}:")
    logger.error(f"Exception type: {type(exc).__name__}")
    logger.error(f"Exception message: {str(exc)}")
    logger.error(f"Traceback:\n{traceback.format_exc()}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


# Include API routers
app.include_router(contents_router)
app.include_router(permissions_router)
app.include_router(comments_router)


@app.get("/")
async def root():
    """Root endpoint - health check."""
    return {
        "status": "healthy",
        "service": "Cospace API",
        "version": "1.0.0",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint for monitoring."""
    redis_health = await redis_service.health_check()
    return {
        "status": "healthy",
        "redis": redis_health,
        "websocket": {
            "connections": manager.total_connections,
            "rooms": manager.total_rooms,
        },
        "presence": presence_hub.get_stats(),
        "collaboration": {
            "loaded_contents": coordinator.loaded_contents,
        },
    }


@app.websocket("/ws/contents/{content_id}")
async def content_websocket(
    websocket: WebSocket,
    content_id: UUID,
    token: Optional[str] = None,
    last_sequence: Optional[int] = None,
):
    """
    WebSocket endpoint for collaborating on one content item.

    Args:
        websocket: The WebSocket connection
        content_id: The content item to join
        token: JWT token for authentication (query parameter)
        last_sequence: Last sequence the client has seen; missed
            operations are sent right after the handshake

    Authentication is done via query parameter since WebSocket
    doesn't support custom headers in the initial handshake
    from browser clients.

    Usage:
        ws://localhost:8000/ws/contents/<id>?token=<jwt_token>&last_sequence=<n>
    """
    user = user_from_token(token)
    if user is None:
        logger.debug("WebSocket connection attempt with missing or invalid token")
        await websocket.close(code=WS_CLOSE_UNAUTHORIZED, reason="Invalid token")
        return
    user_id = user.id

    # Resolve role and current state before accepting
    try:
        async with coordinator.session_maker() as db:
            role = await PermissionService(db).get_role(content_id, user_id)
            title = (await ContentStore(db).get_item(content_id)).title
        snapshot = await coordinator.get_state(content_id, user_id)
    except NotFound:
        await websocket.close(code=WS_CLOSE_NOT_FOUND, reason="Content not found")
        return
    except Forbidden:
        await websocket.close(code=WS_CLOSE_FORBIDDEN, reason="Access denied")
        return

    connection = await manager.connect(
        websocket,
        user_id,
        content_id=content_id,
        display_name=user.name,
    )
    if connection is None:
        logger.warning(f"WebSocket connection rejected (limit) for user: {user_id}")
        return

    room_id = content_room(content_id)
    await presence_hub.register(content_id, user_id, connection.connection_id)
    await manager.join_room(connection, room_id)
    await presence_hub.announce(
        connection.connection_id,
        display_name=user.name,
        permission_level=role,
    )

    logger.info(
        f"WebSocket connection established: user={user_id}, content={content_id}, role={role}"
    )

    await manager.send_personal(
        connection,
        ConnectedMessage(
            connection_id=connection.connection_id,
            content_id=str(content_id),
            user_id=str(user_id),
            role=role,
            version=snapshot.version_number,
            last_sequence=snapshot.sequence,
            title=title,
            presence=await presence_hub.get_presence(content_id),
        ).dump(),
    )

    # Rate limiting state
    message_timestamps: list[float] = []
    receive_timeout = settings.heartbeat_interval * settings.missed_heartbeats

    async def server_ping_task():
        """Background task to send periodic pings."""
        try:
            while True:
                await asyncio.sleep(settings.heartbeat_interval)
                try:
                    await websocket.send_json({"type": "ping"})
                except Exception:
                    break  # Connection is dead, exit task
        except asyncio.CancelledError:
            pass

    ping_task = asyncio.create_task(server_ping_task())

    try:
        if last_sequence is not None:
            await send_catchup(connection, last_sequence, coordinator, manager)

        while True:
            # Receive with timeout to detect stale connections
            try:
                raw_message = await asyncio.wait_for(
                    websocket.receive_text(),
                    timeout=receive_timeout,
                )
            except asyncio.TimeoutError:
                logger.info(f"Connection timeout for user: {user_id}")
                break

            # Rate limiting check
            current_time = asyncio.get_event_loop().time()
            message_timestamps[:] = [
                t for t in message_timestamps
                if current_time - t < settings.ws_rate_limit_window
            ]
            if len(message_timestamps) >= settings.ws_rate_limit_messages:
                logger.warning(f"Rate limit exceeded for user {user_id}")
                await manager.send_personal(
                    connection,
                    ErrorMessage(
                        error="RATE_LIMIT",
                        message="Too many messages, slow down",
                        retryable=True,
                    ).dump(),
                )
                continue
            message_timestamps.append(current_time)

            # Validate message size
            if len(raw_message) > settings.ws_max_message_size:
                logger.warning(
                    f"Message too large from user {user_id}: "
                    f"{len(raw_message)} bytes (max: {settings.ws_max_message_size})"
                )
                await manager.send_personal(
                    connection,
                    ErrorMessage(
                        error="MESSAGE_TOO_LARGE",
                        message=f"Message exceeds maximum size of {settings.ws_max_message_size} bytes",
                    ).dump(),
                )
                continue

            # Parse JSON
            try:
                data = json.loads(raw_message)
            except json.JSONDecodeError:
                logger.warning(f"Invalid JSON from user {user_id}")
                await manager.send_personal(
                    connection,
                    ErrorMessage(error="INVALID_JSON", message="Invalid JSON format").dump(),
                )
                continue

            keep_open = await route_incoming_message(
                connection,
                data,
                sync=coordinator,
                connection_manager=manager,
                presence=presence_hub,
            )
            if not keep_open:
                await websocket.close(code=1000, reason="Left")
                break

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnect for user: {user_id}")
    except Exception as e:
        logger.error(f"WebSocket exception for user {user_id}: {e}")
    finally:
        ping_task.cancel()
        try:
            await ping_task
        except asyncio.CancelledError:
            pass
        await presence_hub.leave(connection.connection_id, reason="disconnected")
        for emptied in await manager.disconnect(connection):
            if emptied == room_id:
                coordinator.unload(content_id)
