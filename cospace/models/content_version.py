"""ContentVersion SQLAlchemy model.

Immutable snapshots (checkpoints). Version numbers form a gapless
sequence per content item starting at 1. Every version keeps a diff
against its predecessor; only every full_snapshot_interval-th one keeps
the whole payload.
"""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Text, UniqueConstraint, Uuid

from ..database import Base


class ContentVersion(Base):
    """
    Point-in-time snapshot of a content item.

    Attributes:
        id: Unique identifier (UUID)
        content_id: FK to the parent CollaborativeContent
        version_number: Gapless, strictly increasing per content item
        sequence: The applied_sequence of the last operation folded into the snapshot
        diff: JSON opcodes turning the previous snapshot into this one (null for version 1)
        content_data: Full payload, null on diff-only versions
        created_by: ID of the user whose operation or save triggered the checkpoint
        created_at: Timestamp when the snapshot was taken
    """

    __tablename__ = "ContentVersions"
    __allow_unmapped__ = True
    __table_args__ = (
        UniqueConstraint("content_id", "version_number", name="uq_content_versions_number"),
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

    version_number = Column(
        Integer,
        nullable=False,
    )

    sequence = Column(
        Integer,
        nullable=False,
        default=0,
    )

    diff = Column(
        Text,
        nullable=True,
    )

    content_data = Column(
        Text,
        nullable=True,
    )

    created_by = Column(
        Uuid,
        nullable=False,
    )

    created_at = Column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        """String representation of ContentVersion."""
        return (
            f"<ContentVersion(content_id={self.content_id}, "
            f"version={self.version_number}, sequence={self.sequence})>"
        )
