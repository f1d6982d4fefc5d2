"""CollaborativeContent SQLAlchemy model.

A content item is the unit of collaborative editing. Its text payload is
never stored on the row itself: it is materialized from the latest
ContentVersion snapshot plus the operations logged after it.
"""

import enum
import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import relationship

from ..database import Base

if TYPE_CHECKING:
    from .collaborative_space import CollaborativeSpace


class ContentType(str, enum.Enum):
    """Kinds of collaboratively edited content."""

    TEXT = "text"
    HTML = "html"
    CODE = "code"
    IMAGE = "image"
    VIDEO = "video"
    WHITEBOARD = "whiteboard"


# Payload of version 1 when the creator does not provide one
DEFAULT_PAYLOADS = {
    ContentType.TEXT: "",
    ContentType.HTML: "",
    ContentType.CODE: "",
    ContentType.IMAGE: "{}",
    ContentType.VIDEO: "{}",
    ContentType.WHITEBOARD: "[]",
}


class CollaborativeContent(Base):
    """
    Collaboratively edited content item.

    Attributes:
        id: Unique identifier (UUID)
        space_id: FK to the owning CollaborativeSpace
        content_type: One of ContentType
        title: Optional display title (changed through title updates)
        current_version: Highest ContentVersion number recorded for this item
        last_sequence: Highest applied_sequence accepted into the operation log
        metadata_json: Free-form settings (canvas size, language, ...)
        created_by: ID of the creator
        archived_at: Soft delete timestamp (null = active)
        created_at: Timestamp when the item was created
        updated_at: Timestamp of the last accepted operation
    """

    __tablename__ = "CollaborativeContents"
    __allow_unmapped__ = True

    id = Column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        nullable=False,
    )

    space_id = Column(
        Uuid,
        ForeignKey("CollaborativeSpaces.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    content_type = Column(
        String(50),
        nullable=False,
        default=ContentType.TEXT.value,
    )

    title = Column(
        String(255),
        nullable=True,
    )

    current_version = Column(
        Integer,
        nullable=False,
        default=1,
    )

    # Guarded by a conditional UPDATE in the operation log
    last_sequence = Column(
        Integer,
        nullable=False,
        default=0,
    )

    metadata_json = Column(
        "metadata",
        JSON,
        nullable=True,
    )

    created_by = Column(
        Uuid,
        nullable=False,
    )

    archived_at = Column(
        DateTime,
        nullable=True,
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

    space = relationship(
        "CollaborativeSpace",
        back_populates="contents",
        lazy="raise",
    )

    @property
    def is_archived(self) -> bool:
        """Whether the item has been soft deleted."""
        return self.archived_at is not None

    def __repr__(self) -> str:
        """String representation of CollaborativeContent."""
        return (
            f"<CollaborativeContent(id={self.id}, type={self.content_type}, "
            f"version={self.current_version}, sequence={self.last_sequence})>"
        )
