"""ContentPermission SQLAlchemy model: per-content role grants."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, String, UniqueConstraint, Uuid

from ..database import Base


class ContentRole(str, enum.Enum):
    """Roles in descending order of privilege."""

    OWNER = "owner"
    EDITOR = "editor"
    COMMENTER = "commenter"
    VIEWER = "viewer"


class ContentPermission(Base):
    """
    Role grant on a content item.

    A null user_id row applies to every user with access to the space; an
    exact (content_id, user_id) row always takes precedence over it.

    Attributes:
        id: Unique identifier (UUID)
        content_id: FK to the CollaborativeContent
        user_id: Grantee, or null for everyone
        role: One of ContentRole
        granted_by: ID of the user who made the grant
        created_at: Timestamp of the grant
    """

    __tablename__ = "ContentPermissions"
    __allow_unmapped__ = True
    __table_args__ = (
        UniqueConstraint("content_id", "user_id", name="uq_content_permissions_user"),
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
        nullable=True,
    )

    role = Column(
        String(20),
        nullable=False,
        default=ContentRole.VIEWER.value,
    )

    granted_by = Column(
        Uuid,
        nullable=False,
    )

    created_at = Column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        """String representation of ContentPermission."""
        return f"<ContentPermission(content_id={self.content_id}, user_id={self.user_id}, role={self.role})>"
