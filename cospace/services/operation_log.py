"""Append-only operation log.

Sequence numbers are assigned by the sync coordinator inside its
per-content critical section. The log double-checks them with a
conditional UPDATE on the content row (compare-and-set on
``last_sequence``) backed by the unique (content_id, applied_sequence)
constraint, so a second writer can never reorder or overwrite history.
"""

import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..exceptions import SequenceConflict
from ..models.collaborative_content import CollaborativeContent
from ..models.operation import Operation

logger = logging.getLogger(__name__)


class OperationLog:
    """Ordered storage of accepted operations per content item."""

    def __init__(self, db: AsyncSession):
        """
        Initialize the OperationLog.

        Args:
            db: SQLAlchemy async database session
        """
        self.db = db

    async def append(
        self,
        content_id: UUID,
        operation: Operation,
        expected_sequence: int,
    ) -> int:
        """
        Append a stamped operation.

        The caller owns the transaction: nothing is committed here, and on
        SequenceConflict the caller must roll back.

        Args:
            content_id: The content item's ID
            operation: Unsaved Operation row
            expected_sequence: Sequence assigned by the coordinator

        Returns:
            The applied sequence

        Raises:
            SequenceConflict: If the content's last sequence is not
                expected_sequence - 1 or the sequence is already taken
        """
        result = await self.db.execute(
            update(CollaborativeContent)
            .where(
                CollaborativeContent.id == content_id,
                CollaborativeContent.last_sequence == expected_sequence - 1,
            )
            .values(last_sequence=expected_sequence, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.error(
                f"Sequence conflict on content {content_id}: "
                f"expected to append {expected_sequence}"
            )
            raise SequenceConflict(
                f"Sequence {expected_sequence} does not follow the last applied "
                f"sequence of content {content_id}"
            )

        operation.content_id = content_id
        operation.applied_sequence = expected_sequence
        self.db.add(operation)
        try:
            await self.db.flush()
        except IntegrityError as e:
            logger.error(f"Duplicate sequence {expected_sequence} on content {content_id}: {e}")
            raise SequenceConflict(
                f"Sequence {expected_sequence} already assigned on content {content_id}"
            ) from e

        return expected_sequence

    async def since(
        self,
        content_id: UUID,
        from_sequence: int,
        limit: Optional[int] = None,
    ) -> list[Operation]:
        """
        Get operations with applied_sequence > from_sequence, ascending.

        Safe to call repeatedly with the same from_sequence.

        Args:
            content_id: The content item's ID
            from_sequence: Last sequence the caller has seen
            limit: Optional page size

        Returns:
            List of operations in sequence order
        """
        query = (
            select(Operation)
            .where(
                Operation.content_id == content_id,
                Operation.applied_sequence > from_sequence,
            )
            .order_by(Operation.applied_sequence.asc())
        )
        if limit is not None:
            query = query.limit(limit)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def between(
        self,
        content_id: UUID,
        after_sequence: int,
        up_to_sequence: int,
    ) -> list[Operation]:
        """Get operations in (after_sequence, up_to_sequence], ascending."""
        result = await self.db.execute(
            select(Operation)
            .where(
                Operation.content_id == content_id,
                Operation.applied_sequence > after_sequence,
                Operation.applied_sequence <= up_to_sequence,
            )
            .order_by(Operation.applied_sequence.asc())
        )
        return list(result.scalars().all())

    async def last_sequence(self, content_id: UUID) -> int:
        """Get the highest applied sequence for a content item (0 if none)."""
        result = await self.db.execute(
            select(CollaborativeContent.last_sequence).where(
                CollaborativeContent.id == content_id
            )
        )
        return result.scalar_one_or_none() or 0
