"""Permission service: per-content role checks and grant management.

Permission Model:
- Owner: view, comment, edit, manage access
- Editor: view, comment, edit
- Commenter: view, comment
- Viewer: view

Resolution order:
- An exact (content_id, user_id) grant wins
- Otherwise the content's "everyone" grant (user_id NULL) applies
- Otherwise access is denied

Checks are pure reads. Resolved roles are cached for a few seconds (see
role_cache_service) and invalidated when grants on this instance change.
"""

import enum
import logging
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy import delete, exists, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..exceptions import Forbidden, InvalidGrant, NotFound
from ..models.collaborative_content import CollaborativeContent
from ..models.content_permission import ContentPermission, ContentRole
from .role_cache_service import (
    get_cached_role,
    invalidate_content_roles,
    set_cached_role,
)

logger = logging.getLogger(__name__)


class ContentAction(str, enum.Enum):
    """Actions gated by content roles."""

    VIEW = "view"
    COMMENT = "comment"
    EDIT = "edit"
    MANAGE_ACCESS = "manage_access"


ROLE_ACTIONS: dict[ContentRole, frozenset[ContentAction]] = {
    ContentRole.OWNER: frozenset(ContentAction),
    ContentRole.EDITOR: frozenset(
        {ContentAction.VIEW, ContentAction.COMMENT, ContentAction.EDIT}
    ),
    ContentRole.COMMENTER: frozenset({ContentAction.VIEW, ContentAction.COMMENT}),
    ContentRole.VIEWER: frozenset({ContentAction.VIEW}),
}


def role_allows(role: Optional[str], action: ContentAction) -> bool:
    """Check the role→action matrix."""
    if not role:
        return False
    return ContentAction(action) in ROLE_ACTIONS[ContentRole(role)]


class PermissionService:
    """
    Service class for content permission checks and grants.

    Every mutating request must call authorize/require again; nothing is
    remembered across requests beyond the short-lived role cache.
    """

    def __init__(self, db: AsyncSession):
        """
        Initialize the PermissionService.

        Args:
            db: SQLAlchemy async database session
        """
        self.db = db

    async def content_exists(self, content_id: UUID) -> bool:
        """Check whether a content item exists (archived or not)."""
        result = await self.db.execute(
            select(exists().where(CollaborativeContent.id == content_id))
        )
        return result.scalar() or False

    async def get_role(
        self,
        content_id: UUID,
        user_id: UUID,
    ) -> Optional[str]:
        """
        Resolve a user's effective role on a content item.

        Args:
            content_id: The content item's ID
            user_id: The user's ID

        Returns:
            The role string or None if the user has no access

        Raises:
            NotFound: If the content item does not exist
        """
        cached = get_cached_role(content_id, user_id)
        if cached is not None:
            return cached or None

        result = await self.db.execute(
            select(ContentPermission).where(
                ContentPermission.content_id == content_id,
                or_(
                    ContentPermission.user_id == user_id,
                    ContentPermission.user_id.is_(None),
                ),
            )
        )
        grants = result.scalars().all()

        role = None
        exact = next((g for g in grants if g.user_id == user_id), None)
        if exact is not None:
            role = exact.role
        else:
            everyone = next((g for g in grants if g.user_id is None), None)
            if everyone is not None:
                role = everyone.role

        if role is None and not await self.content_exists(content_id):
            raise NotFound(f"Content {content_id} not found")

        set_cached_role(content_id, user_id, role)
        return role

    async def authorize(
        self,
        content_id: UUID,
        user_id: UUID,
        action: ContentAction,
    ) -> bool:
        """
        Check whether a user may perform an action on a content item.

        Args:
            content_id: The content item's ID
            user_id: The user's ID
            action: The requested action

        Returns:
            True if allowed
        """
        role = await self.get_role(content_id, user_id)
        return role_allows(role, action)

    async def require(
        self,
        content_id: UUID,
        user_id: UUID,
        action: ContentAction,
    ) -> str:
        """
        Like authorize, but raise on denial.

        Returns:
            The user's role

        Raises:
            Forbidden: If the action is not allowed
            NotFound: If the content item does not exist
        """
        role = await self.get_role(content_id, user_id)
        if not role_allows(role, action):
            logger.info(
                f"Denied {ContentAction(action).value} on content {content_id} "
                f"for user {user_id} (role={role or 'none'})"
            )
            raise Forbidden(
                f"You do not have permission to {ContentAction(action).value.replace('_', ' ')} "
                f"this content"
            )
        return role

    async def list_permissions(self, content_id: UUID) -> list[ContentPermission]:
        """List grants on a content item, the "everyone" grant first."""
        if not await self.content_exists(content_id):
            raise NotFound(f"Content {content_id} not found")
        result = await self.db.execute(
            select(ContentPermission)
            .where(ContentPermission.content_id == content_id)
            .order_by(ContentPermission.created_at.asc())
        )
        grants = list(result.scalars().all())
        return sorted(grants, key=lambda g: g.user_id is not None)

    async def set_permissions(
        self,
        content_id: UUID,
        grants: Iterable[tuple[Optional[UUID], ContentRole]],
        granted_by: UUID,
    ) -> list[ContentPermission]:
        """
        Replace every grant on a content item.

        Args:
            content_id: The content item's ID
            grants: (user_id or None, role) pairs
            granted_by: The user making the change (needs manage_access)

        Returns:
            The new grants

        Raises:
            Forbidden: If granted_by cannot manage access
            InvalidGrant: On duplicate grantees or when no owner would remain
        """
        await self.require(content_id, granted_by, ContentAction.MANAGE_ACCESS)

        grants = [(user_id, ContentRole(role)) for user_id, role in grants]
        grantees = [user_id for user_id, _ in grants]
        if len(set(grantees)) != len(grantees):
            raise InvalidGrant("Each user may only appear once in a permission set")
        if not any(role == ContentRole.OWNER and user_id is not None for user_id, role in grants):
            raise InvalidGrant("At least one user must keep the owner role")

        await self.db.execute(
            delete(ContentPermission).where(ContentPermission.content_id == content_id)
        )
        rows = [
            ContentPermission(
                content_id=content_id,
                user_id=user_id,
                role=role.value,
                granted_by=granted_by,
            )
            for user_id, role in grants
        ]
        self.db.add_all(rows)
        await self.db.flush()
        invalidate_content_roles(content_id)

        logger.info(f"Permissions on content {content_id} replaced by {granted_by} ({len(rows)} grants)")
        return rows

    async def grant(
        self,
        content_id: UUID,
        user_id: Optional[UUID],
        role: ContentRole,
        granted_by: UUID,
    ) -> ContentPermission:
        """
        Create or change a single grant.

        Raises:
            Forbidden: If granted_by cannot manage access
        """
        await self.require(content_id, granted_by, ContentAction.MANAGE_ACCESS)
        role = ContentRole(role)

        condition = (
            ContentPermission.user_id.is_(None)
            if user_id is None
            else ContentPermission.user_id == user_id
        )
        result = await self.db.execute(
            select(ContentPermission).where(
                ContentPermission.content_id == content_id,
                condition,
            )
        )
        permission = result.scalar_one_or_none()

        if permission is None:
            permission = ContentPermission(
                content_id=content_id,
                user_id=user_id,
                role=role.value,
                granted_by=granted_by,
            )
            self.db.add(permission)
        else:
            if permission.role == ContentRole.OWNER.value and role != ContentRole.OWNER:
                await self._ensure_other_owner(content_id, user_id)
            permission.role = role.value
            permission.granted_by = granted_by

        await self.db.flush()
        invalidate_content_roles(content_id)
        return permission

    async def revoke(
        self,
        content_id: UUID,
        user_id: Optional[UUID],
        revoked_by: UUID,
    ) -> bool:
        """
        Remove a single grant.

        Returns:
            True if a grant was removed
        """
        await self.require(content_id, revoked_by, ContentAction.MANAGE_ACCESS)

        condition = (
            ContentPermission.user_id.is_(None)
            if user_id is None
            else ContentPermission.user_id == user_id
        )
        result = await self.db.execute(
            select(ContentPermission).where(
                ContentPermission.content_id == content_id,
                condition,
            )
        )
        permission = result.scalar_one_or_none()
        if permission is None:
            return False
        if permission.role == ContentRole.OWNER.value:
            await self._ensure_other_owner(content_id, user_id)

        await self.db.delete(permission)
        await self.db.flush()
        invalidate_content_roles(content_id)
        return True

    async def _ensure_other_owner(self, content_id: UUID, user_id: Optional[UUID]) -> None:
        """Refuse changes that would leave a content item without an owner."""
        result = await self.db.execute(
            select(
                exists().where(
                    ContentPermission.content_id == content_id,
                    ContentPermission.role == ContentRole.OWNER.value,
                    ContentPermission.user_id.is_not(None),
                    ContentPermission.user_id != user_id,
                )
            )
        )
        if not result.scalar():
            raise InvalidGrant("At least one user must keep the owner role")


def get_permission_service(db: AsyncSession) -> PermissionService:
    """
    Factory function to create a PermissionService instance.

    Args:
        db: SQLAlchemy async database session

    Returns:
        PermissionService instance
    """
    return PermissionService(db)
