"""Comments API endpoints.

Provides endpoints for threaded, optionally anchored comments on content
items. All endpoints require authentication; role checks happen in the
comment service and surface as 403/404 through the app's error handlers.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..schemas.comment import CommentCreate, CommentResponse, CommentUpdate
from ..services.auth_service import CurrentUser, get_current_user
from ..services.comment_service import (
    build_comment_response,
    create_comment,
    delete_comment,
    list_comments,
    resolve_anchor,
    set_resolved,
    update_comment,
)

router = APIRouter(tags=["Comments"])


@router.get(
    "/api/contents/{content_id}/comments",
    response_model=list[CommentResponse],
    summary="List comments",
    description="List comment threads on a content item, oldest first.",
    responses={
        200: {"description": "Comments retrieved successfully"},
        401: {"description": "Not authenticated"},
        403: {"description": "Access denied"},
        404: {"description": "Content not found"},
    },
)
async def list_comments_endpoint(
    content_id: UUID,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
    include_resolved: bool = Query(True, description="Include resolved threads"),
) -> list[CommentResponse]:
    """
    Get comment threads for a content item.

    Anchors are mapped onto the current text; anchors whose text was
    deleted are reported as orphaned.
    """
    threads = await list_comments(
        db,
        content_id,
        current_user.id,
        include_resolved=include_resolved,
    )
    return [CommentResponse(**thread) for thread in threads]


@router.post(
    "/api/contents/{content_id}/comments",
    response_model=CommentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a comment",
    description="Comment on a content item or reply to a comment. Requires commenter role.",
    responses={
        201: {"description": "Comment created successfully"},
        401: {"description": "Not authenticated"},
        403: {"description": "Access denied"},
        404: {"description": "Content not found"},
        422: {"description": "Invalid anchor or parent"},
    },
)
async def create_comment_endpoint(
    content_id: UUID,
    comment_data: CommentCreate,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> CommentResponse:
    """Create a new comment."""
    comment = await create_comment(db, content_id, current_user.id, comment_data)
    anchor = await resolve_anchor(db, comment)
    return CommentResponse(**build_comment_response(comment, anchor))


@router.patch(
    "/api/contents/{content_id}/comments/{comment_id}",
    response_model=CommentResponse,
    summary="Update a comment",
    description="Edit a comment's text. Only the author or an owner can update.",
    responses={
        200: {"description": "Comment updated successfully"},
        401: {"description": "Not authenticated"},
        403: {"description": "Access denied"},
        404: {"description": "Comment not found"},
    },
)
async def update_comment_endpoint(
    content_id: UUID,
    comment_id: UUID,
    comment_data: CommentUpdate,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> CommentResponse:
    """Update a comment."""
    comment = await update_comment(db, content_id, comment_id, current_user.id, comment_data)
    anchor = await resolve_anchor(db, comment)
    return CommentResponse(**build_comment_response(comment, anchor))


@router.delete(
    "/api/contents/{content_id}/comments/{comment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a comment",
    description="Delete a comment and its replies. Only the author or an owner can delete.",
    responses={
        204: {"description": "Comment deleted successfully"},
        401: {"description": "Not authenticated"},
        403: {"description": "Access denied"},
        404: {"description": "Comment not found"},
    },
)
async def delete_comment_endpoint(
    content_id: UUID,
    comment_id: UUID,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> None:
    """Delete a comment."""
    await delete_comment(db, content_id, comment_id, current_user.id)


@router.post(
    "/api/contents/{content_id}/comments/{comment_id}/resolve",
    response_model=CommentResponse,
    summary="Resolve a comment",
    responses={
        200: {"description": "Comment resolved"},
        403: {"description": "Access denied"},
        404: {"description": "Comment not found"},
    },
)
async def resolve_comment_endpoint(
    content_id: UUID,
    comment_id: UUID,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> CommentResponse:
    """Mark a comment thread as resolved."""
    comment = await set_resolved(db, content_id, comment_id, current_user.id, True)
    return CommentResponse(**build_comment_response(comment, await resolve_anchor(db, comment)))


@router.post(
    "/api/contents/{content_id}/comments/{comment_id}/unresolve",
    response_model=CommentResponse,
    summary="Reopen a comment",
    responses={
        200: {"description": "Comment reopened"},
        403: {"description": "Access denied"},
        404: {"description": "Comment not found"},
    },
)
async def unresolve_comment_endpoint(
    content_id: UUID,
    comment_id: UUID,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> CommentResponse:
    """Reopen a resolved comment thread."""
    comment = await set_resolved(db, content_id, comment_id, current_user.id, False)
    return CommentResponse(**build_comment_response(comment, await resolve_anchor(db, comment)))
