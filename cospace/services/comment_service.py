"""Comment service for threaded, anchored comments on content items.

Provides business logic for:
- Creating comments and replies (commenter role or better)
- Editing, deleting and resolving comments
- Listing comments as threads
- Remapping text anchors through later operations

An anchor records the text range a comment points at together with the
log sequence it was taken at. Reading a comment replays every later
operation over the range; if the whole range has been deleted the
anchor is reported as orphaned.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..exceptions import Forbidden, InvalidOperation, NotFound
from ..models.content_comment import ContentComment
from ..schemas.comment import CommentAnchorIn, CommentCreate, CommentUpdate
from .content_store import ContentStore
from .operation_log import OperationLog
from .permission_service import ContentAction, PermissionService, role_allows
from .transform import Edit, transform_range

logger = logging.getLogger(__name__)

ANCHORED = "anchored"
ORPHANED = "orphaned"


# ============================================================================
# Anchors
# ============================================================================


async def build_anchor(
    db: AsyncSession,
    content_id: UUID,
    anchor: CommentAnchorIn,
) -> Dict[str, int]:
    """
    Validate a client anchor and stamp it with version and sequence.

    The range is checked against the current payload when the client
    anchored at the latest sequence; older anchors are only checked for
    sign since their payload is no longer materialized.

    Raises:
        InvalidOperation: On a negative range or a sequence from the future
    """
    store = ContentStore(db)
    content = await store.get_item(content_id)

    if anchor.offset < 0 or anchor.length < 0:
        raise InvalidOperation("Comment anchor offset and length must not be negative")

    sequence = anchor.sequence if anchor.sequence is not None else content.last_sequence
    if sequence > content.last_sequence:
        raise InvalidOperation(
            f"Anchor sequence {sequence} is ahead of content sequence {content.last_sequence}"
        )

    if sequence == content.last_sequence:
        snapshot = await store.get_content(content_id)
        if anchor.offset + anchor.length > len(snapshot.payload):
            raise InvalidOperation(
                f"Anchor range {anchor.offset}+{anchor.length} outside content "
                f"of length {len(snapshot.payload)}"
            )

    return {
        "version": content.current_version,
        "sequence": sequence,
        "offset": anchor.offset,
        "length": anchor.length,
    }


async def resolve_anchor(
    db: AsyncSession,
    comment: ContentComment,
    up_to_sequence: Optional[int] = None,
) -> Optional[Dict[str, Any]]:
    """
    Map a comment's stored anchor onto the current text.

    Args:
        db: Database session
        comment: The comment
        up_to_sequence: Map through operations up to this sequence
            (defaults to the content's latest)

    Returns:
        {"offset", "length", "sequence", "status"} or None for a comment
        without an anchor
    """
    position = comment.position
    if not position:
        return None

    log = OperationLog(db)
    if up_to_sequence is None:
        up_to_sequence = await log.last_sequence(comment.content_id)

    offset, length = position["offset"], position["length"]
    operations = await log.between(comment.content_id, position["sequence"], up_to_sequence)
    for operation in operations:
        mapped = transform_range(offset, length, Edit.from_operation(operation))
        if mapped is None:
            return {
                "offset": None,
                "length": None,
                "sequence": operation.applied_sequence,
                "status": ORPHANED,
            }
        offset, length = mapped

    return {
        "offset": offset,
        "length": length,
        "sequence": up_to_sequence,
        "status": ANCHORED,
    }


# ============================================================================
# Comment CRUD Operations
# ============================================================================


async def create_comment(
    db: AsyncSession,
    content_id: UUID,
    author_id: UUID,
    comment_data: CommentCreate,
) -> ContentComment:
    """
    Create a comment or a reply.

    Args:
        db: Database session
        content_id: Content item to comment on
        author_id: ID of the comment author
        comment_data: Comment creation data

    Returns:
        The created comment

    Raises:
        Forbidden: If the author cannot comment
        InvalidOperation: If the parent is on another content item or the
            anchor is invalid
    """
    await PermissionService(db).require(content_id, author_id, ContentAction.COMMENT)

    if comment_data.parent_id is not None:
        result = await db.execute(
            select(ContentComment.id).where(
                ContentComment.id == comment_data.parent_id,
                ContentComment.content_id == content_id,
            )
        )
        if result.scalar_one_or_none() is None:
            raise InvalidOperation("Invalid parent comment")

    position = None
    if comment_data.position is not None:
        position = await build_anchor(db, content_id, comment_data.position)

    comment = ContentComment(
        content_id=content_id,
        user_id=author_id,
        body=comment_data.body,
        position=position,
        parent_id=comment_data.parent_id,
        resolved=False,
        created_at=datetime.utcnow(),
        updated_at=datetime.utcnow(),
    )
    db.add(comment)
    await db.flush()

    logger.info(f"Comment {comment.id} added to content {content_id} by {author_id}")
    return comment


async def get_comment(
    db: AsyncSession,
    content_id: UUID,
    comment_id: UUID,
) -> ContentComment:
    """
    Get a comment on a content item.

    Raises:
        NotFound: If the comment does not exist on this content item
    """
    result = await db.execute(
        select(ContentComment).where(
            ContentComment.id == comment_id,
            ContentComment.content_id == content_id,
        )
    )
    comment = result.scalar_one_or_none()
    if comment is None:
        raise NotFound(f"Comment {comment_id} not found")
    return comment


async def update_comment(
    db: AsyncSession,
    content_id: UUID,
    comment_id: UUID,
    user_id: UUID,
    comment_data: CommentUpdate,
) -> ContentComment:
    """
    Edit a comment's text. Only the author or an owner may edit.

    Raises:
        NotFound: If the comment does not exist
        Forbidden: If the user is neither author nor owner
    """
    permissions = PermissionService(db)
    role = await permissions.require(content_id, user_id, ContentAction.VIEW)
    comment = await get_comment(db, content_id, comment_id)

    if comment.user_id != user_id and not role_allows(role, ContentAction.MANAGE_ACCESS):
        raise Forbidden("You do not have permission to update this comment")

    comment.body = comment_data.body
    comment.updated_at = datetime.utcnow()
    await db.flush()
    return comment


async def delete_comment(
    db: AsyncSession,
    content_id: UUID,
    comment_id: UUID,
    user_id: UUID,
) -> None:
    """
    Delete a comment and its replies. Author or owner only.

    Raises:
        NotFound: If the comment does not exist
        Forbidden: If the user is neither author nor owner
    """
    permissions = PermissionService(db)
    role = await permissions.require(content_id, user_id, ContentAction.VIEW)
    comment = await get_comment(db, content_id, comment_id)

    if comment.user_id != user_id and not role_allows(role, ContentAction.MANAGE_ACCESS):
        raise Forbidden("You do not have permission to delete this comment")

    # Replies first, breadth-first down the thread
    doomed = [comment]
    frontier = [comment.id]
    while frontier:
        result = await db.execute(
            select(ContentComment).where(ContentComment.parent_id.in_(frontier))
        )
        replies = result.scalars().all()
        doomed.extend(replies)
        frontier = [reply.id for reply in replies]
    for row in reversed(doomed):
        await db.delete(row)
    await db.flush()

    logger.info(f"Comment {comment_id} deleted from content {content_id} by {user_id}")


async def set_resolved(
    db: AsyncSession,
    content_id: UUID,
    comment_id: UUID,
    user_id: UUID,
    resolved: bool,
) -> ContentComment:
    """
    Resolve or reopen a comment thread.

    Allowed for the comment's author and anyone who can edit the content.

    Raises:
        NotFound: If the comment does not exist
        Forbidden: If the user is neither author nor editor
    """
    permissions = PermissionService(db)
    role = await permissions.require(content_id, user_id, ContentAction.VIEW)
    comment = await get_comment(db, content_id, comment_id)

    if comment.user_id != user_id and not role_allows(role, ContentAction.EDIT):
        raise Forbidden("You do not have permission to resolve/unresolve this comment")

    comment.resolved = resolved
    comment.updated_at = datetime.utcnow()
    await db.flush()
    return comment


async def list_comments(
    db: AsyncSession,
    content_id: UUID,
    user_id: UUID,
    include_resolved: bool = True,
) -> List[Dict[str, Any]]:
    """
    List a content item's comments as threads, oldest first.

    Args:
        db: Database session
        content_id: Content item
        user_id: Requesting user (needs view)
        include_resolved: Whether resolved threads are returned

    Returns:
        Top-level comment dicts with a "replies" list each
    """
    await PermissionService(db).require(content_id, user_id, ContentAction.VIEW)
    await ContentStore(db).get_item(content_id)

    result = await db.execute(
        select(ContentComment)
        .where(ContentComment.content_id == content_id)
        .order_by(ContentComment.created_at.asc())
    )
    comments = result.scalars().all()
    last_sequence = await OperationLog(db).last_sequence(content_id)

    threads: List[Dict[str, Any]] = []
    by_id: Dict[UUID, Dict[str, Any]] = {}
    for comment in comments:
        anchor = await resolve_anchor(db, comment, up_to_sequence=last_sequence)
        data = build_comment_response(comment, anchor)
        by_id[comment.id] = data
        if comment.parent_id is None:
            threads.append(data)

    for comment in comments:
        if comment.parent_id is not None and comment.parent_id in by_id:
            by_id[comment.parent_id]["replies"].append(by_id[comment.id])

    if not include_resolved:
        threads = [t for t in threads if not t["resolved"]]
    return threads


# ============================================================================
# Response Building
# ============================================================================


def build_comment_response(
    comment: ContentComment,
    anchor: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Build a comment response dictionary.

    Args:
        comment: ContentComment model instance
        anchor: Resolved anchor (see resolve_anchor)

    Returns:
        Dictionary matching CommentResponse schema
    """
    return {
        "id": comment.id,
        "content_id": comment.content_id,
        "user_id": comment.user_id,
        "body": comment.body,
        "position": comment.position,
        "anchor": anchor,
        "resolved": comment.resolved,
        "parent_id": comment.parent_id,
        "created_at": comment.created_at,
        "updated_at": comment.updated_at,
        "replies": [],
    }
