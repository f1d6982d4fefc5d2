"""CollaborativeSpace SQLAlchemy model.

A space groups the content items that members of a channel edit together
(a document, a whiteboard, a code scratchpad...).
"""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Column, DateTime, String, Text, Uuid
from sqlalchemy.orm import relationship

from ..database import Base

if TYPE_CHECKING:
    from .collaborative_content import CollaborativeContent


class CollaborativeSpace(Base):
    """
    Collaboration space owning one or more content items.

    Attributes:
        id: Unique identifier (UUID)
        title: Space title
        description: Optional description
        space_type: document, whiteboard, code, video or other
        created_by: ID of the user who created the space
        created_at: Timestamp when the space was created
        updated_at: Timestamp when the space was last updated
    """

    __tablename__ = "CollaborativeSpaces"
    __allow_unmapped__ = True

    id = Column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        nullable=False,
    )

    title = Column(
        String(255),
        nullable=False,
    )

    description = Column(
        Text,
        nullable=True,
    )

    space_type = Column(
        String(50),
        nullable=False,
        default="document",
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

    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    contents = relationship(
        "CollaborativeContent",
        back_populates="space",
        lazy="raise",
    )

    def __repr__(self) -> str:
        """String representation of CollaborativeSpace."""
        return f"<CollaborativeSpace(id={self.id}, title={self.title}, type={self.space_type})>"
