"""Sync coordinator: ordered, durable application of edit operations.

For each content item the coordinator keeps an in-memory materialized
state guarded by an asyncio.Lock. Submitting an operation:

1. checks the caller's role (edit, or view for cursor/selection)
2. waits for the content's lock (Timeout after settings.lock_timeout)
3. validates the operation against the current payload
4. stamps the next sequence number and appends it to the log
5. checkpoints a new version every settings.checkpoint_interval operations
6. commits, then swaps in the new materialized state
7. releases the lock and broadcasts the operation to the room

Operations on different content items never wait on each other. Cursor
and selection operations skip steps 2-6: they are relayed to the room
and recorded on the sender's presence session only.

The lock is per process. Running several workers against one database is
safe (the log's compare-and-set raises SequenceConflict instead of
reordering history) but concurrent writers on different workers will see
those conflicts, so route a content item's sockets to one worker.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import settings
from ..database import async_session_maker
from ..exceptions import InvalidOperation, SequenceConflict, Timeout
from ..models.collaborative_content import CollaborativeContent
from ..models.content_version import ContentVersion
from ..models.operation import Operation, OperationType
from ..schemas.messages import CursorBroadcast, OperationBroadcast, TitleBroadcast
from ..schemas.operation import OperationDraft, OperationResponse
from ..websocket.manager import ConnectionManager, content_room, manager
from ..websocket.presence import PresenceHub, presence_hub
from .content_store import ContentSnapshot, ContentStore
from .operation_log import OperationLog
from .permission_service import ContentAction, PermissionService
from .transform import Edit, apply_edit, validate_edit

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MaterializedContent:
    """Immutable view of a content item's live state."""

    payload: str
    sequence: int
    version_number: int
    checkpoint_sequence: int

    def to_snapshot(self, content_id: UUID) -> ContentSnapshot:
        return ContentSnapshot(
            content_id=content_id,
            payload=self.payload,
            version_number=self.version_number,
            sequence=self.sequence,
        )


@dataclass
class ContentState:
    """Per-content lock plus the last committed materialized state."""

    content_id: UUID
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    current: Optional[MaterializedContent] = None
    # Writers holding or waiting for the lock
    in_flight: int = 0
    last_used: float = field(default_factory=time.monotonic)

    @property
    def idle(self) -> bool:
        return self.in_flight == 0 and not self.lock.locked()


@dataclass(frozen=True)
class CatchUp:
    """Result of a catch-up request."""

    operations: list[Operation]
    last_sequence: int
    has_more: bool


class SyncCoordinator:
    """
    Serializes writes per content item and fans accepted operations out.

    Every public method opens its own database session and commits before
    broadcasting, so subscribers never see an operation that could still
    roll back.
    """

    def __init__(
        self,
        session_maker: Optional[async_sessionmaker] = None,
        broadcaster: Optional[ConnectionManager] = None,
        presence: Optional[PresenceHub] = None,
        checkpoint_interval: Optional[int] = None,
        lock_timeout: Optional[float] = None,
        max_loaded_contents: Optional[int] = None,
    ) -> None:
        """
        Initialize the coordinator.

        Args:
            session_maker: Factory for database sessions (defaults to the app's)
            broadcaster: Connection manager used for room broadcasts
            presence: Presence hub notified of user activity
            checkpoint_interval: Operations between automatic snapshots
            lock_timeout: Seconds to wait for a content item's lock
            max_loaded_contents: Cached states kept before idle ones are dropped
        """
        self.session_maker = session_maker or async_session_maker
        self.broadcaster = broadcaster or manager
        self.presence = presence or presence_hub
        self.checkpoint_interval = checkpoint_interval or settings.checkpoint_interval
        self.lock_timeout = lock_timeout if lock_timeout is not None else settings.lock_timeout
        self.max_loaded_contents = max_loaded_contents or settings.max_loaded_contents
        self._states: dict[UUID, ContentState] = {}

    # =========================================================================
    # State registry
    # =========================================================================

    def _state(self, content_id: UUID) -> ContentState:
        """Get or create the state holder (atomic: no await in between)."""
        state = self._states.get(content_id)
        if state is None:
            self._evict_idle(room_for=1)
            state = ContentState(content_id=content_id)
            self._states[content_id] = state
        return state

    def _evict_idle(self, room_for: int = 0) -> None:
        """Drop least recently used idle states beyond max_loaded_contents."""
        excess = len(self._states) + room_for - self.max_loaded_contents
        if excess <= 0:
            return
        idle = sorted(
            (state for state in self._states.values() if state.idle),
            key=lambda state: state.last_used,
        )
        for state in idle[:excess]:
            del self._states[state.content_id]
        logger.debug(f"Evicted {min(excess, len(idle))} idle content states")

    @asynccontextmanager
    async def _exclusive(self, state: ContentState) -> AsyncIterator[None]:
        """Hold a content item's lock, counting the caller as in flight while it waits."""
        state.in_flight += 1
        try:
            await self._acquire(state)
            try:
                yield
            finally:
                state.lock.release()
        finally:
            state.in_flight -= 1
            state.last_used = time.monotonic()

    async def _acquire(self, state: ContentState) -> None:
        try:
            await asyncio.wait_for(state.lock.acquire(), timeout=self.lock_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"Lock timeout after {self.lock_timeout}s on content {state.content_id}"
            )
            raise Timeout(
                f"Content {state.content_id} is busy, retry shortly"
            ) from None

    async def _load(self, db: AsyncSession, state: ContentState) -> MaterializedContent:
        """Materialize the content from the store if not already cached."""
        if state.current is None:
            store = ContentStore(db)
            snapshot = await store.get_content(state.content_id)
            latest = await store.latest_version(state.content_id)
            state.current = MaterializedContent(
                payload=snapshot.payload,
                sequence=snapshot.sequence,
                version_number=snapshot.version_number,
                checkpoint_sequence=latest.sequence,
            )
            logger.debug(
                f"Loaded content {state.content_id} at sequence {snapshot.sequence}"
            )
        return state.current

    def unload(self, content_id: UUID) -> bool:
        """
        Drop a content item's cached state if no writer holds or awaits its lock.

        Returns:
            True if the state was dropped
        """
        state = self._states.get(content_id)
        if state is None or not state.idle:
            return False
        del self._states[content_id]
        return True

    @property
    def loaded_contents(self) -> int:
        """Number of content items with cached state."""
        return len(self._states)

    # =========================================================================
    # Writes
    # =========================================================================

    async def submit_operation(
        self,
        content_id: UUID,
        user_id: UUID,
        draft: OperationDraft,
        connection_id: Optional[str] = None,
    ) -> Operation:
        """
        Apply, log and broadcast one operation.

        Args:
            content_id: Target content item
            user_id: Submitting user
            draft: The operation as sent by the client
            connection_id: Sender's connection, excluded from the broadcast

        Returns:
            The accepted Operation (transient, with no sequence, for
            cursor and selection updates)

        Raises:
            Forbidden, NotFound, InvalidOperation, Timeout, SequenceConflict
        """
        op_type = OperationType(draft.type)
        required = ContentAction.VIEW if op_type.is_ephemeral else ContentAction.EDIT
        async with self.session_maker() as db:
            await PermissionService(db).require(content_id, user_id, required)

        edit = Edit.from_draft(draft, user_id)
        if op_type.is_ephemeral:
            return await self._relay_ephemeral(content_id, user_id, draft, edit, connection_id)

        operations = await self._commit_edits(
            content_id,
            user_id,
            lambda current: [edit],
            base_version=draft.version,
        )
        await self._broadcast_operations(content_id, user_id, operations, connection_id)
        if connection_id is not None:
            await self.presence.touch(connection_id)
        return operations[0]

    async def _commit_edits(
        self,
        content_id: UUID,
        user_id: UUID,
        build: Callable[[MaterializedContent], list[Edit]],
        base_version: Optional[int] = None,
        force_checkpoint: bool = False,
    ) -> list[Operation]:
        """
        Append edits atomically under the content's lock.

        ``build`` receives the current state and returns the edits to apply,
        so callers can derive them from the live payload.
        """
        state = self._state(content_id)
        async with self._exclusive(state):
            async with self.session_maker() as db:
                try:
                    current = await self._load(db, state)
                    payload = current.payload
                    sequence = current.sequence
                    log = OperationLog(db)
                    operations = []

                    for edit in build(current):
                        payload = apply_edit(payload, edit)
                        sequence += 1
                        operation = Operation(
                            user_id=user_id,
                            op_type=edit.op_type.value,
                            position=edit.position,
                            length=edit.length or None,
                            text=edit.text or None,
                            version=base_version or current.version_number,
                            meta=edit.meta,
                        )
                        await log.append(content_id, operation, sequence)
                        operations.append(operation)

                    version_number = current.version_number
                    checkpoint_sequence = current.checkpoint_sequence
                    due = sequence - checkpoint_sequence >= self.checkpoint_interval
                    if sequence > checkpoint_sequence and (due or force_checkpoint):
                        await ContentStore(db).checkpoint(
                            content_id,
                            payload,
                            version_number + 1,
                            sequence,
                            user_id,
                        )
                        version_number += 1
                        checkpoint_sequence = sequence

                    await db.commit()
                except SequenceConflict:
                    await db.rollback()
                    # Another writer moved the log: reload on next use
                    state.current = None
                    raise

            state.current = MaterializedContent(
                payload=payload,
                sequence=sequence,
                version_number=version_number,
                checkpoint_sequence=checkpoint_sequence,
            )

        if operations:
            logger.debug(
                f"Content {content_id}: applied {len(operations)} operations "
                f"up to sequence {sequence}"
            )
        return operations

    async def _relay_ephemeral(
        self,
        content_id: UUID,
        user_id: UUID,
        draft: OperationDraft,
        edit: Edit,
        connection_id: Optional[str],
    ) -> Operation:
        """Validate and broadcast a cursor or selection update without logging it."""
        current = self._state(content_id).current
        if current is not None:
            validate_edit(current.payload, edit)
        elif edit.length < 0 or (edit.position is not None and edit.position < 0):
            raise InvalidOperation("Cursor position and length must not be negative")

        operation = Operation(
            content_id=content_id,
            user_id=user_id,
            op_type=edit.op_type.value,
            position=edit.position,
            length=edit.length,
            text=None,
            version=draft.version or (current.version_number if current else 0),
            applied_sequence=None,
            meta=edit.meta,
        )

        selection = None
        if edit.op_type == OperationType.SELECTION and edit.position is not None:
            selection = {"start": edit.position, "end": edit.position + edit.length}
        if connection_id is not None:
            await self.presence.touch(
                connection_id,
                cursor_position=edit.position,
                selection=selection,
            )

        await self.broadcaster.broadcast_to_room(
            content_room(content_id),
            CursorBroadcast(
                user_id=str(user_id),
                connection_id=connection_id,
                position=edit.position,
                selection=selection,
                meta=edit.meta,
            ).dump(),
            exclude_connection_id=connection_id,
        )
        return operation

    async def save(self, content_id: UUID, user_id: UUID) -> ContentVersion:
        """
        Checkpoint the current payload now.

        Returns the latest version unchanged when nothing was applied since
        the last checkpoint.
        """
        async with self.session_maker() as db:
            await PermissionService(db).require(content_id, user_id, ContentAction.EDIT)

        state = self._state(content_id)
        async with self._exclusive(state):
            async with self.session_maker() as db:
                current = await self._load(db, state)
                store = ContentStore(db)
                if current.sequence == current.checkpoint_sequence:
                    return await store.latest_version(content_id)
                try:
                    version = await store.checkpoint(
                        content_id,
                        current.payload,
                        current.version_number + 1,
                        current.sequence,
                        user_id,
                    )
                    await db.commit()
                except SequenceConflict:
                    await db.rollback()
                    state.current = None
                    raise
            state.current = MaterializedContent(
                payload=current.payload,
                sequence=current.sequence,
                version_number=version.version_number,
                checkpoint_sequence=version.sequence,
            )

        logger.info(f"Content {content_id} saved as version {version.version_number} by {user_id}")
        return version

    async def restore_version(
        self,
        content_id: UUID,
        user_id: UUID,
        version_number: int,
        connection_id: Optional[str] = None,
    ) -> list[Operation]:
        """
        Bring back the payload of an earlier version.

        History is never rewritten: the restore is logged as a delete of the
        current text followed by an insert of the old text, then
        checkpointed as a new version.
        """
        async with self.session_maker() as db:
            await PermissionService(db).require(content_id, user_id, ContentAction.EDIT)
            target = await ContentStore(db).get_content(content_id, at_version=version_number)

        def build(current: MaterializedContent) -> list[Edit]:
            if current.payload == target.payload:
                return []
            edits = []
            if current.payload:
                edits.append(Edit(OperationType.DELETE, position=0, length=len(current.payload)))
            if target.payload:
                edits.append(Edit(OperationType.INSERT, position=0, text=target.payload))
            return edits

        operations = await self._commit_edits(
            content_id,
            user_id,
            build,
            force_checkpoint=True,
        )
        await self._broadcast_operations(content_id, user_id, operations, connection_id)
        logger.info(
            f"Content {content_id} restored to version {version_number} by {user_id}"
        )
        return operations

    async def update_title(
        self,
        content_id: UUID,
        user_id: UUID,
        title: str,
        connection_id: Optional[str] = None,
    ) -> CollaborativeContent:
        """Rename a content item and tell the room."""
        async with self.session_maker() as db:
            await PermissionService(db).require(content_id, user_id, ContentAction.EDIT)
            content = await ContentStore(db).update_title(content_id, title)
            await db.commit()

        await self.broadcaster.broadcast_to_room(
            content_room(content_id),
            TitleBroadcast(user_id=str(user_id), title=title).dump(),
            exclude_connection_id=connection_id,
        )
        return content

    async def archive(self, content_id: UUID, user_id: UUID) -> CollaborativeContent:
        """Archive a content item (owner only) and drop its cached state."""
        async with self.session_maker() as db:
            await PermissionService(db).require(
                content_id, user_id, ContentAction.MANAGE_ACCESS
            )
            content = await ContentStore(db).archive_content(content_id)
            await db.commit()
        self._states.pop(content_id, None)
        return content

    # =========================================================================
    # Reads
    # =========================================================================

    async def catch_up(
        self,
        content_id: UUID,
        user_id: UUID,
        last_sequence: int,
        limit: Optional[int] = None,
    ) -> CatchUp:
        """
        Get operations a reconnecting client missed, in sequence order.

        Repeated calls with the same last_sequence return the same page.
        """
        page_size = limit or settings.catchup_page_size
        async with self.session_maker() as db:
            await PermissionService(db).require(content_id, user_id, ContentAction.VIEW)
            await ContentStore(db).get_item(content_id)
            operations = await OperationLog(db).since(
                content_id,
                max(last_sequence, 0),
                limit=page_size + 1,
            )

        has_more = len(operations) > page_size
        operations = operations[:page_size]
        return CatchUp(
            operations=operations,
            last_sequence=operations[-1].applied_sequence if operations else last_sequence,
            has_more=has_more,
        )

    async def get_state(self, content_id: UUID, user_id: UUID) -> ContentSnapshot:
        """Current payload, version and sequence of a content item."""
        async with self.session_maker() as db:
            await PermissionService(db).require(content_id, user_id, ContentAction.VIEW)
            current = self._state(content_id).current
            if current is not None:
                return current.to_snapshot(content_id)
            return await ContentStore(db).get_content(content_id)

    async def get_content(
        self,
        content_id: UUID,
        user_id: UUID,
        at_version: Optional[int] = None,
    ) -> ContentSnapshot:
        """Payload at a recorded version, or the live state when omitted."""
        if at_version is None:
            return await self.get_state(content_id, user_id)
        async with self.session_maker() as db:
            await PermissionService(db).require(content_id, user_id, ContentAction.VIEW)
            return await ContentStore(db).get_content(content_id, at_version=at_version)

    # =========================================================================
    # Broadcast
    # =========================================================================

    async def _broadcast_operations(
        self,
        content_id: UUID,
        user_id: UUID,
        operations: list[Operation],
        connection_id: Optional[str],
    ) -> None:
        room_id = content_room(content_id)
        for operation in operations:
            await self.broadcaster.broadcast_to_room(
                room_id,
                OperationBroadcast(
                    user_id=str(user_id),
                    op=OperationResponse.model_validate(operation),
                ).dump(),
                exclude_connection_id=connection_id,
            )


# Global singleton instance
coordinator = SyncCoordinator()


def get_coordinator() -> SyncCoordinator:
    """FastAPI dependency for the sync coordinator."""
    return coordinator
