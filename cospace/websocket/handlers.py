"""WebSocket message handlers for content rooms.

Each incoming message is parsed into one variant of the client message
union and dispatched to exactly one handler. Collaboration errors are
reported back to the sender as ``error`` messages; the socket stays open,
except after ConnectionLost: a heartbeat for a presence session that was
already evicted tells the client to reconnect and closes the socket.
"""

import logging
from typing import Any, Optional

from pydantic import ValidationError

from ..exceptions import CollaborationError, ConnectionLost, SequenceConflict
from ..models.operation import OperationType
from ..schemas.messages import (
    AckMessage,
    CatchupMessage,
    CatchupRequestMessage,
    CursorUpdateMessage,
    ErrorMessage,
    LeaveMessage,
    OperationMessage,
    PingMessage,
    PongMessage,
    PongReply,
    PresenceMessage,
    SavedMessage,
    SaveMessage,
    TitleUpdateMessage,
    parse_client_message,
)
from ..schemas.operation import OperationDraft, OperationResponse
from ..services.sync_coordinator import SyncCoordinator, coordinator
from .manager import ConnectionManager, WebSocketConnection, manager
from .presence import PresenceHub, presence_hub

logger = logging.getLogger(__name__)


async def send_error(
    mgr: ConnectionManager,
    connection: WebSocketConnection,
    error: str,
    message: str,
    retryable: bool = False,
) -> None:
    """Send an error message to one connection."""
    await mgr.send_personal(
        connection,
        ErrorMessage(error=error, message=message, retryable=retryable).dump(),
    )


async def send_catchup(
    connection: WebSocketConnection,
    last_sequence: int,
    sync: Optional[SyncCoordinator] = None,
    connection_manager: Optional[ConnectionManager] = None,
) -> int:
    """
    Send every operation after last_sequence, one page per message.

    Returns:
        The highest sequence sent (last_sequence if nothing was missed)
    """
    sync = sync or coordinator
    mgr = connection_manager or manager

    while True:
        page = await sync.catch_up(connection.content_id, connection.user_id, last_sequence)
        await mgr.send_personal(
            connection,
            CatchupMessage(
                operations=[OperationResponse.model_validate(op) for op in page.operations],
                last_sequence=page.last_sequence,
                has_more=page.has_more,
            ).dump(),
        )
        last_sequence = page.last_sequence
        if not page.has_more:
            return last_sequence


async def handle_presence(
    connection: WebSocketConnection,
    message: PresenceMessage,
    presence: PresenceHub,
) -> None:
    """Record the sender's display name and color and tell the room."""
    if message.user_id and message.user_id != str(connection.user_id):
        logger.debug(
            f"Ignoring userId {message.user_id} in presence from {connection.user_id}"
        )
    await presence.announce(
        connection.connection_id,
        display_name=message.name or connection.display_name,
        color=message.color,
    )


async def handle_operation(
    connection: WebSocketConnection,
    message: OperationMessage,
    sync: SyncCoordinator,
    mgr: ConnectionManager,
) -> None:
    """Submit an edit; the sender gets an ack, everyone else the operation."""
    operation = await sync.submit_operation(
        connection.content_id,
        connection.user_id,
        message.op,
        connection_id=connection.connection_id,
    )
    if operation.applied_sequence is not None:
        await mgr.send_personal(
            connection,
            AckMessage(op=OperationResponse.model_validate(operation)).dump(),
        )


async def handle_cursor_update(
    connection: WebSocketConnection,
    message: CursorUpdateMessage,
    sync: SyncCoordinator,
) -> None:
    """Relay a caret or selection move as an ephemeral operation."""
    if message.selection is not None and message.selection.end != message.selection.start:
        start = min(message.selection.start, message.selection.end)
        draft = OperationDraft(
            type=OperationType.SELECTION,
            position=start,
            length=abs(message.selection.end - message.selection.start),
        )
    else:
        draft = OperationDraft(type=OperationType.CURSOR, position=message.position)
    await sync.submit_operation(
        connection.content_id,
        connection.user_id,
        draft,
        connection_id=connection.connection_id,
    )


async def handle_title_update(
    connection: WebSocketConnection,
    message: TitleUpdateMessage,
    sync: SyncCoordinator,
) -> None:
    """Rename the content item."""
    await sync.update_title(
        connection.content_id,
        connection.user_id,
        message.title,
        connection_id=connection.connection_id,
    )


async def handle_save(
    connection: WebSocketConnection,
    sync: SyncCoordinator,
    mgr: ConnectionManager,
) -> None:
    """Checkpoint now and confirm the resulting version."""
    version = await sync.save(connection.content_id, connection.user_id)
    await mgr.send_personal(
        connection,
        SavedMessage(version=version.version_number, sequence=version.sequence).dump(),
    )


async def route_incoming_message(
    connection: WebSocketConnection,
    data: Any,
    sync: Optional[SyncCoordinator] = None,
    connection_manager: Optional[ConnectionManager] = None,
    presence: Optional[PresenceHub] = None,
) -> bool:
    """
    Route an incoming WebSocket message to its handler.

    Args:
        connection: The connection that sent the message
        data: The decoded JSON message
        sync: Optional custom coordinator (defaults to global)
        connection_manager: Optional custom manager (defaults to global)
        presence: Optional custom presence hub (defaults to global)

    Returns:
        False when the client asked to leave and the socket should close
    """
    sync = sync or coordinator
    mgr = connection_manager or manager
    presence = presence or presence_hub

    try:
        message = parse_client_message(data)
    except ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        detail = first.get("msg", "Invalid message")
        logger.info(f"Rejected message from user {connection.user_id}: {detail}")
        await send_error(mgr, connection, "INVALID_MESSAGE", detail)
        return True

    logger.debug(f"Routing message: user={connection.user_id}, type={message.type}")

    try:
        if isinstance(message, PresenceMessage):
            await handle_presence(connection, message, presence)

        elif isinstance(message, OperationMessage):
            await handle_operation(connection, message, sync, mgr)

        elif isinstance(message, CursorUpdateMessage):
            await handle_cursor_update(connection, message, sync)

        elif isinstance(message, TitleUpdateMessage):
            await handle_title_update(connection, message, sync)

        elif isinstance(message, CatchupRequestMessage):
            await send_catchup(connection, message.last_sequence, sync, mgr)

        elif isinstance(message, SaveMessage):
            await handle_save(connection, sync, mgr)

        elif isinstance(message, (PingMessage, PongMessage)):
            if not await presence.heartbeat(connection.connection_id):
                raise ConnectionLost(
                    f"Presence session {connection.connection_id} expired, reconnect"
                )
            if isinstance(message, PingMessage):
                await mgr.send_personal(connection, PongReply().dump())

        elif isinstance(message, LeaveMessage):
            await presence.leave(connection.connection_id)
            return False

    except ConnectionLost as e:
        logger.info(f"Heartbeat from user {connection.user_id} after eviction: {e.message}")
        await mgr.send_personal(connection, ErrorMessage(**e.to_dict()).dump())
        return False
    except SequenceConflict as e:
        logger.error(f"Sequence conflict for user {connection.user_id}: {e.message}")
        await mgr.send_personal(connection, ErrorMessage(**e.to_dict()).dump())
    except CollaborationError as e:
        logger.info(
            f"{message.type} from user {connection.user_id} rejected: "
            f"{e.code} {e.message}"
        )
        await mgr.send_personal(connection, ErrorMessage(**e.to_dict()).dump())

    return True
