"""Operation SQLAlchemy model: the append-only edit log."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid

from ..database import Base


class OperationType(str, enum.Enum):
    """Atomic edit actions."""

    INSERT = "insert"
    DELETE = "delete"
    FORMAT = "format"
    CURSOR = "cursor"
    SELECTION = "selection"

    @property
    def is_ephemeral(self) -> bool:
        """Cursor and selection updates are broadcast but never logged."""
        return self in (OperationType.CURSOR, OperationType.SELECTION)

    @property
    def mutates_payload(self) -> bool:
        """Only inserts and deletes change the materialized text."""
        return self in (OperationType.INSERT, OperationType.DELETE)


class Operation(Base):
    """
    Accepted edit operation.

    Attributes:
        id: Unique identifier (UUID)
        content_id: FK to the edited CollaborativeContent
        user_id: ID of the submitting user
        op_type: One of OperationType (only insert, delete and format are stored)
        position: Character offset
        length: Number of characters affected (delete, format)
        text: Inserted text
        version: Content version the client generated the operation against
        applied_sequence: Server-assigned, gapless, strictly increasing per content
        meta: Free-form attributes (format marks)
        created_at: Timestamp when the operation was accepted
    """

    __tablename__ = "Operations"
    __allow_unmapped__ = True
    __table_args__ = (
        UniqueConstraint("content_id", "applied_sequence", name="uq_operations_sequence"),
    )

    id = Column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        nullable=False,
    )

    content_id = Column(
        Uuid,
        ForeignKey("CollaborativeContents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    user_id = Column(
        Uuid,
        nullable=False,
    )

    op_type = Column(
        "type",
        String(20),
        nullable=False,
    )

    position = Column(
        Integer,
        nullable=True,
    )

    length = Column(
        Integer,
        nullable=True,
    )

    text = Column(
        Text,
        nullable=True,
    )

    version = Column(
        Integer,
        nullable=False,
    )

    applied_sequence = Column(
        Integer,
        nullable=False,
    )

    meta = Column(
        JSON,
        nullable=True,
    )

    created_at = Column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        """String representation of Operation."""
        return (
            f"<Operation(content_id={self.content_id}, seq={self.applied_sequence}, "
            f"type={self.op_type}, position={self.position})>"
        )
