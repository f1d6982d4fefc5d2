"""ContentComment SQLAlchemy model: threaded, anchored discussion."""

import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Text, Uuid

from ..database import Base


class ContentComment(Base):
    """
    Comment on a content item, optionally anchored to a text range.

    Attributes:
        id: Unique identifier (UUID)
        content_id: FK to the CollaborativeContent
        user_id: Comment author
        body: Comment text
        position: Anchor {"version", "sequence", "offset", "length"} or null
        resolved: Whether the thread is resolved
        parent_id: Parent comment for replies (same content item only)
        created_at: Timestamp when the comment was created
        updated_at: Timestamp when the comment was last edited
    """

    __tablename__ = "ContentComments"
    __allow_unmapped__ = True

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

    body = Column(
        Text,
        nullable=False,
    )

    position = Column(
        JSON,
        nullable=True,
    )

    resolved = Column(
        Boolean,
        nullable=False,
        default=False,
    )

    parent_id = Column(
        Uuid,
        ForeignKey("ContentComments.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )

    created_at = Column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )

    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        """String representation of ContentComment."""
        return f"<ContentComment(id={self.id}, content_id={self.content_id}, parent_id={self.parent_id})>"
