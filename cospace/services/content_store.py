"""Content store: content items, version snapshots and materialization.

The current payload of a content item is the latest ContentVersion
snapshot with every later logged operation replayed on top of it.
Snapshots are immutable; checkpointing an already recorded version
number is a no-op.

Version 1 and every full_snapshot_interval-th version after it keep the
whole payload. The versions in between keep only a diff against their
predecessor and are rebuilt from the nearest full snapshot below them.
"""

import difflib
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..exceptions import Forbidden, InvalidSpace, NotFound, SequenceConflict
from ..models.collaborative_content import DEFAULT_PAYLOADS, CollaborativeContent, ContentType
from ..models.collaborative_space import CollaborativeSpace
from ..models.content_permission import ContentPermission, ContentRole
from ..models.content_version import ContentVersion
from .operation_log import OperationLog
from .transform import Edit, replay

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContentSnapshot:
    """Materialized payload of a content item at a version/sequence."""

    content_id: UUID
    payload: str
    version_number: int
    sequence: int


def compute_diff(previous: str, current: str) -> str:
    """
    Encode the changes between two snapshots as JSON opcodes.

    Each entry is [tag, start, end, replacement] against the previous
    snapshot, with tag one of replace, delete, insert.
    """
    matcher = difflib.SequenceMatcher(None, previous, current, autojunk=False)
    opcodes = [
        [tag, i1, i2, current[j1:j2]]
        for tag, i1, i2, j1, j2 in matcher.get_opcodes()
        if tag != "equal"
    ]
    return json.dumps(opcodes)


def apply_diff(previous: str, diff: str) -> str:
    """Rebuild a snapshot from its predecessor and its stored diff."""
    result = []
    cursor = 0
    for _tag, start, end, replacement in json.loads(diff):
        result.append(previous[cursor:start])
        result.append(replacement)
        cursor = end
    result.append(previous[cursor:])
    return "".join(result)


class ContentStore:
    """Durable CRUD for spaces, content items and their snapshots."""

    def __init__(self, db: AsyncSession, full_snapshot_interval: Optional[int] = None):
        """
        Initialize the ContentStore.

        Args:
            db: SQLAlchemy async database session
            full_snapshot_interval: Versions between full payload snapshots
        """
        self.db = db
        self.full_snapshot_interval = max(
            full_snapshot_interval or settings.full_snapshot_interval, 1
        )

    # =========================================================================
    # Spaces
    # =========================================================================

    async def create_space(
        self,
        title: str,
        space_type: str,
        created_by: UUID,
        description: Optional[str] = None,
    ) -> CollaborativeSpace:
        """Create a collaboration space."""
        space = CollaborativeSpace(
            title=title,
            space_type=space_type,
            description=description,
            created_by=created_by,
        )
        self.db.add(space)
        await self.db.flush()
        logger.info(f"Space {space.id} created by {created_by}")
        return space

    async def get_space(self, space_id: UUID) -> Optional[CollaborativeSpace]:
        """Get a space by ID."""
        result = await self.db.execute(
            select(CollaborativeSpace).where(CollaborativeSpace.id == space_id)
        )
        return result.scalar_one_or_none()

    def _granted_space_ids(self, user_id: UUID):
        return (
            select(CollaborativeContent.space_id)
            .join(ContentPermission, ContentPermission.content_id == CollaborativeContent.id)
            .where(
                ContentPermission.user_id == user_id,
                CollaborativeContent.archived_at.is_(None),
            )
        )

    async def list_spaces(self, user_id: UUID) -> list[CollaborativeSpace]:
        """Spaces the user created or holds a grant in, newest first."""
        result = await self.db.execute(
            select(CollaborativeSpace)
            .where(
                or_(
                    CollaborativeSpace.created_by == user_id,
                    CollaborativeSpace.id.in_(self._granted_space_ids(user_id)),
                )
            )
            .order_by(CollaborativeSpace.created_at.desc())
        )
        return list(result.scalars().all())

    async def require_space(self, space_id: UUID, user_id: UUID) -> CollaborativeSpace:
        """
        Get a space the user may see.

        Raises:
            NotFound: If the space does not exist
            Forbidden: If the user neither created it nor holds a grant in it
        """
        space = await self.get_space(space_id)
        if space is None:
            raise NotFound(f"Space {space_id} not found")
        if space.created_by == user_id:
            return space

        result = await self.db.execute(
            self._granted_space_ids(user_id)
            .where(CollaborativeContent.space_id == space_id)
            .limit(1)
        )
        if result.scalar_one_or_none() is None:
            raise Forbidden(f"No access to space {space_id}")
        return space

    async def list_contents(self, space_id: UUID, user_id: UUID) -> list[CollaborativeContent]:
        """
        List the live content items of a space the user holds a grant on.

        Raises:
            NotFound, Forbidden: As for require_space
        """
        await self.require_space(space_id, user_id)
        result = await self.db.execute(
            select(CollaborativeContent)
            .join(ContentPermission, ContentPermission.content_id == CollaborativeContent.id)
            .where(
                CollaborativeContent.space_id == space_id,
                CollaborativeContent.archived_at.is_(None),
                ContentPermission.user_id == user_id,
            )
            .order_by(CollaborativeContent.created_at)
        )
        return list(result.scalars().all())

    # =========================================================================
    # Content items
    # =========================================================================

    async def create_content(
        self,
        space_id: UUID,
        content_type: ContentType,
        creator: UUID,
        title: Optional[str] = None,
        initial_payload: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> CollaborativeContent:
        """
        Create a content item at version 1.

        Writes the version 1 snapshot (default payload for the content type
        unless one is given) and grants the creator the owner role.

        Raises:
            InvalidSpace: If the space does not exist
        """
        space = await self.get_space(space_id)
        if space is None:
            raise InvalidSpace(f"Space {space_id} not found")

        content_type = ContentType(content_type)
        payload = initial_payload if initial_payload is not None else DEFAULT_PAYLOADS[content_type]

        content = CollaborativeContent(
            space_id=space_id,
            content_type=content_type.value,
            title=title,
            current_version=1,
            last_sequence=0,
            metadata_json=metadata,
            created_by=creator,
        )
        self.db.add(content)
        await self.db.flush()

        self.db.add(
            ContentVersion(
                content_id=content.id,
                version_number=1,
                sequence=0,
                diff=None,
                content_data=payload,
                created_by=creator,
            )
        )
        self.db.add(
            ContentPermission(
                content_id=content.id,
                user_id=creator,
                role=ContentRole.OWNER.value,
                granted_by=creator,
            )
        )
        await self.db.flush()

        logger.info(f"Content {content.id} ({content_type.value}) created in space {space_id}")
        return content

    async def get_item(
        self,
        content_id: UUID,
        include_archived: bool = False,
    ) -> CollaborativeContent:
        """
        Get a content item row.

        Raises:
            NotFound: If the item does not exist or is archived
        """
        result = await self.db.execute(
            select(CollaborativeContent).where(CollaborativeContent.id == content_id)
        )
        content = result.scalar_one_or_none()
        if content is None or (content.is_archived and not include_archived):
            raise NotFound(f"Content {content_id} not found")
        return content

    async def get_version(self, content_id: UUID, version_number: int) -> ContentVersion:
        """
        Get one snapshot.

        Raises:
            NotFound: If the version does not exist
        """
        result = await self.db.execute(
            select(ContentVersion).where(
                ContentVersion.content_id == content_id,
                ContentVersion.version_number == version_number,
            )
        )
        version = result.scalar_one_or_none()
        if version is None:
            raise NotFound(f"Version {version_number} of content {content_id} not found")
        return version

    async def latest_version(self, content_id: UUID) -> ContentVersion:
        """Get the most recent snapshot of a content item."""
        result = await self.db.execute(
            select(ContentVersion)
            .where(ContentVersion.content_id == content_id)
            .order_by(ContentVersion.version_number.desc())
            .limit(1)
        )
        version = result.scalar_one_or_none()
        if version is None:
            raise NotFound(f"Content {content_id} has no versions")
        return version

    async def get_content(
        self,
        content_id: UUID,
        at_version: Optional[int] = None,
    ) -> ContentSnapshot:
        """
        Get the payload of a content item.

        Args:
            content_id: The content item's ID
            at_version: A recorded version number; current state when omitted

        Returns:
            ContentSnapshot with payload, version number and covered sequence

        Raises:
            NotFound: If the content or the requested version does not exist
        """
        content = await self.get_item(content_id)

        if at_version is not None:
            version = await self.get_version(content_id, at_version)
            return ContentSnapshot(
                content_id=content_id,
                payload=await self.version_payload(version),
                version_number=version.version_number,
                sequence=version.sequence,
            )

        version = await self.latest_version(content_id)
        operations = await OperationLog(self.db).since(content_id, version.sequence)
        payload = replay(
            await self.version_payload(version),
            (Edit.from_operation(op) for op in operations),
        )
        sequence = operations[-1].applied_sequence if operations else version.sequence

        return ContentSnapshot(
            content_id=content_id,
            payload=payload,
            version_number=content.current_version,
            sequence=sequence,
        )

    async def version_payload(self, version: ContentVersion) -> str:
        """
        Rebuild the payload a version recorded.

        Applies the stored diffs on top of the nearest full snapshot at or
        below the version.
        """
        if version.content_data is not None:
            return version.content_data

        result = await self.db.execute(
            select(ContentVersion)
            .where(
                ContentVersion.content_id == version.content_id,
                ContentVersion.version_number < version.version_number,
                ContentVersion.content_data.is_not(None),
            )
            .order_by(ContentVersion.version_number.desc())
            .limit(1)
        )
        base = result.scalar_one_or_none()
        if base is None:
            raise NotFound(
                f"No full snapshot below version {version.version_number} "
                f"of content {version.content_id}"
            )

        result = await self.db.execute(
            select(ContentVersion)
            .where(
                ContentVersion.content_id == version.content_id,
                ContentVersion.version_number > base.version_number,
                ContentVersion.version_number <= version.version_number,
            )
            .order_by(ContentVersion.version_number)
        )
        payload = base.content_data
        for step in result.scalars():
            payload = apply_diff(payload, step.diff or "[]")
        return payload

    def stores_full_snapshot(self, version_number: int) -> bool:
        """Whether a version keeps its whole payload rather than a diff."""
        return (version_number - 1) % self.full_snapshot_interval == 0

    async def checkpoint(
        self,
        content_id: UUID,
        payload: str,
        version_number: int,
        sequence: int,
        created_by: UUID,
    ) -> ContentVersion:
        """
        Persist a new snapshot.

        Idempotent: if version_number is already recorded the existing
        snapshot is returned unchanged.

        Raises:
            SequenceConflict: If version_number skips ahead of the next
                expected version
        """
        result = await self.db.execute(
            select(ContentVersion).where(
                ContentVersion.content_id == content_id,
                ContentVersion.version_number == version_number,
            )
        )
        existing = result.scalar_one_or_none()
        if existing is not None:
            logger.debug(f"Version {version_number} of content {content_id} already checkpointed")
            return existing

        content = await self.get_item(content_id, include_archived=True)
        if version_number != content.current_version + 1:
            raise SequenceConflict(
                f"Checkpoint {version_number} does not follow version "
                f"{content.current_version} of content {content_id}"
            )

        previous = await self.get_version(content_id, content.current_version)
        version = ContentVersion(
            content_id=content_id,
            version_number=version_number,
            sequence=sequence,
            diff=compute_diff(await self.version_payload(previous), payload),
            content_data=payload if self.stores_full_snapshot(version_number) else None,
            created_by=created_by,
        )
        self.db.add(version)
        content.current_version = version_number
        await self.db.flush()

        logger.info(
            f"Checkpointed content {content_id} at version {version_number} "
            f"(sequence {sequence})"
        )
        return version

    async def list_versions(self, content_id: UUID) -> list[ContentVersion]:
        """List snapshots of a content item, newest first."""
        await self.get_item(content_id)
        result = await self.db.execute(
            select(ContentVersion)
            .where(ContentVersion.content_id == content_id)
            .order_by(ContentVersion.version_number.desc())
        )
        return list(result.scalars().all())

    async def update_title(self, content_id: UUID, title: str) -> CollaborativeContent:
        """Rename a content item."""
        content = await self.get_item(content_id)
        content.title = title
        await self.db.flush()
        return content

    async def archive_content(self, content_id: UUID) -> CollaborativeContent:
        """
        Soft delete a content item.

        Comments, permissions and history are kept.
        """
        content = await self.get_item(content_id)
        content.archived_at = datetime.utcnow()
        await self.db.flush()
        logger.info(f"Content {content_id} archived")
        return content
