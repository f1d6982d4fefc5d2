"""Content API endpoints.

Provides endpoints for spaces, content items, their operation log and
version history. Writes that touch a content item's payload go through
the sync coordinator so REST and WebSocket clients share one ordering.
"""

import logging
from typing import Annotated, Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..database import get_db
from ..schemas.content import (
    ContentCreate,
    ContentResponse,
    ContentStateResponse,
    RestoreRequest,
    SpaceCreate,
    SpaceResponse,
    VersionResponse,
)
from ..schemas.operation import OperationDraft, OperationPage, OperationResponse
from ..services.auth_service import CurrentUser, get_current_user
from ..services.content_store import ContentStore
from ..services.permission_service import ContentAction, PermissionService
from ..services.sync_coordinator import SyncCoordinator, get_coordinator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Contents"])


# ============================================================================
# Spaces
# ============================================================================


@router.post(
    "/api/spaces",
    response_model=SpaceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a space",
    description="Create a collaboration space that groups content items.",
    responses={
        201: {"description": "Space created successfully"},
        401: {"description": "Not authenticated"},
    },
)
async def create_space(
    space_data: SpaceCreate,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> SpaceResponse:
    """Create a new space owned by the current user."""
    space = await ContentStore(db).create_space(
        title=space_data.title,
        space_type=space_data.space_type,
        created_by=current_user.id,
        description=space_data.description,
    )
    await db.commit()
    await db.refresh(space)
    return SpaceResponse.model_validate(space)


@router.get(
    "/api/spaces",
    response_model=list[SpaceResponse],
    summary="List spaces",
    description="List spaces the current user created or holds a grant in.",
)
async def list_spaces(
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> list[SpaceResponse]:
    spaces = await ContentStore(db).list_spaces(current_user.id)
    return [SpaceResponse.model_validate(space) for space in spaces]


@router.get(
    "/api/spaces/{space_id}",
    response_model=SpaceResponse,
    summary="Get a space",
    responses={
        200: {"description": "Space retrieved successfully"},
        403: {"description": "Access denied"},
        404: {"description": "Space not found"},
    },
)
async def get_space(
    space_id: UUID,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> SpaceResponse:
    space = await ContentStore(db).require_space(space_id, current_user.id)
    return SpaceResponse.model_validate(space)


@router.get(
    "/api/spaces/{space_id}/contents",
    response_model=list[ContentResponse],
    summary="List content items in a space",
    description="List the live content items of a space that the current user can open.",
    responses={
        200: {"description": "Content items retrieved successfully"},
        403: {"description": "Access denied"},
        404: {"description": "Space not found"},
    },
)
async def list_space_contents(
    space_id: UUID,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> list[ContentResponse]:
    contents = await ContentStore(db).list_contents(space_id, current_user.id)
    return [ContentResponse.model_validate(content) for content in contents]


@router.post(
    "/api/spaces/{space_id}/contents",
    response_model=ContentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a content item",
    description="Create a content item at version 1. The creator becomes its owner.",
    responses={
        201: {"description": "Content created successfully"},
        401: {"description": "Not authenticated"},
        404: {"description": "Space not found"},
    },
)
async def create_content(
    space_id: UUID,
    content_data: ContentCreate,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> ContentResponse:
    """Create a new content item in a space."""
    content = await ContentStore(db).create_content(
        space_id=space_id,
        content_type=content_data.content_type,
        creator=current_user.id,
        title=content_data.title,
        initial_payload=content_data.initial_payload,
        metadata=content_data.metadata,
    )
    await db.commit()
    await db.refresh(content)
    return ContentResponse.model_validate(content)


# ============================================================================
# Content items
# ============================================================================


@router.get(
    "/api/contents/{content_id}",
    response_model=ContentStateResponse,
    summary="Get content",
    description="Get the current payload, or the payload of a recorded version.",
    responses={
        200: {"description": "Content retrieved successfully"},
        401: {"description": "Not authenticated"},
        403: {"description": "Access denied"},
        404: {"description": "Content or version not found"},
    },
)
async def get_content(
    content_id: UUID,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    sync: SyncCoordinator = Depends(get_coordinator),
    version: Optional[int] = Query(None, ge=1, description="Recorded version number"),
) -> ContentStateResponse:
    """Get a content item's payload."""
    snapshot = await sync.get_content(content_id, current_user.id, at_version=version)
    return ContentStateResponse.model_validate(snapshot)


@router.delete(
    "/api/contents/{content_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Archive content",
    description="Archive a content item. Only owners can archive; history is kept.",
    responses={
        204: {"description": "Content archived"},
        401: {"description": "Not authenticated"},
        403: {"description": "Access denied"},
        404: {"description": "Content not found"},
    },
)
async def archive_content(
    content_id: UUID,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    sync: SyncCoordinator = Depends(get_coordinator),
) -> None:
    """Archive a content item."""
    await sync.archive(content_id, current_user.id)


# ============================================================================
# Operations
# ============================================================================


@router.get(
    "/api/contents/{content_id}/operations",
    response_model=OperationPage,
    response_model_by_alias=True,
    summary="List operations",
    description="Get logged operations after a sequence number, in order.",
    responses={
        200: {"description": "Operations retrieved successfully"},
        401: {"description": "Not authenticated"},
        403: {"description": "Access denied"},
        404: {"description": "Content not found"},
    },
)
async def list_operations(
    content_id: UUID,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    sync: SyncCoordinator = Depends(get_coordinator),
    since: int = Query(0, ge=0, description="Return operations after this sequence"),
    limit: int = Query(
        settings.catchup_page_size,
        ge=1,
        le=settings.catchup_page_size,
        description="Maximum operations to return",
    ),
) -> OperationPage:
    """Get one page of the operation log."""
    page = await sync.catch_up(content_id, current_user.id, since, limit=limit)
    return OperationPage(
        operations=[OperationResponse.model_validate(op) for op in page.operations],
        last_sequence=page.last_sequence,
        has_more=page.has_more,
    )


@router.post(
    "/api/contents/{content_id}/operations",
    response_model=OperationResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_201_CREATED,
    summary="Submit an operation",
    description=(
        "Apply an operation and broadcast it to connected clients. "
        "Cursor and selection operations are relayed but not logged."
    ),
    responses={
        201: {"description": "Operation accepted"},
        401: {"description": "Not authenticated"},
        403: {"description": "Access denied"},
        404: {"description": "Content not found"},
        409: {"description": "Sequence conflict"},
        422: {"description": "Invalid operation"},
        503: {"description": "Content busy, retry later"},
    },
)
async def submit_operation(
    content_id: UUID,
    draft: OperationDraft,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    sync: SyncCoordinator = Depends(get_coordinator),
) -> OperationResponse:
    """Submit one operation."""
    operation = await sync.submit_operation(content_id, current_user.id, draft)
    return OperationResponse.model_validate(operation)


# ============================================================================
# Versions
# ============================================================================


@router.post(
    "/api/contents/{content_id}/save",
    response_model=VersionResponse,
    summary="Save a version",
    description="Checkpoint the current payload as a new version.",
    responses={
        200: {"description": "Version saved (or latest version if unchanged)"},
        401: {"description": "Not authenticated"},
        403: {"description": "Access denied"},
        404: {"description": "Content not found"},
        503: {"description": "Content busy, retry later"},
    },
)
async def save_content(
    content_id: UUID,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    sync: SyncCoordinator = Depends(get_coordinator),
) -> VersionResponse:
    """Save the current state."""
    version = await sync.save(content_id, current_user.id)
    return VersionResponse.model_validate(version)


@router.get(
    "/api/contents/{content_id}/versions",
    response_model=list[VersionResponse],
    summary="List versions",
    description="List recorded versions, newest first.",
    responses={
        200: {"description": "Versions retrieved successfully"},
        401: {"description": "Not authenticated"},
        403: {"description": "Access denied"},
        404: {"description": "Content not found"},
    },
)
async def list_versions(
    content_id: UUID,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> list[VersionResponse]:
    """Get the version history of a content item."""
    await PermissionService(db).require(content_id, current_user.id, ContentAction.VIEW)
    versions = await ContentStore(db).list_versions(content_id)
    return [VersionResponse.model_validate(v) for v in versions]


@router.post(
    "/api/contents/{content_id}/restore",
    response_model=ContentStateResponse,
    summary="Restore a version",
    description=(
        "Bring back the payload of an earlier version. The restore is "
        "logged as ordinary operations and saved as a new version."
    ),
    responses={
        200: {"description": "Version restored"},
        401: {"description": "Not authenticated"},
        403: {"description": "Access denied"},
        404: {"description": "Content or version not found"},
        503: {"description": "Content busy, retry later"},
    },
)
async def restore_version(
    content_id: UUID,
    restore_data: RestoreRequest,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    sync: SyncCoordinator = Depends(get_coordinator),
) -> ContentStateResponse:
    """Restore an earlier version and return the new state."""
    await sync.restore_version(content_id, current_user.id, restore_data.version_number)
    snapshot = await sync.get_state(content_id, current_user.id)
    return ContentStateResponse.model_validate(snapshot)


# ============================================================================
# Presence
# ============================================================================


@router.get(
    "/api/contents/{content_id}/presence",
    response_model=list[dict[str, Any]],
    summary="List present users",
    description="List users currently connected to a content item.",
    responses={
        200: {"description": "Presence retrieved successfully"},
        401: {"description": "Not authenticated"},
        403: {"description": "Access denied"},
        404: {"description": "Content not found"},
    },
)
async def get_presence(
    content_id: UUID,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
    sync: SyncCoordinator = Depends(get_coordinator),
) -> list[dict[str, Any]]:
    """Get presence for a content item."""
    await PermissionService(db).require(content_id, current_user.id, ContentAction.VIEW)
    return await sync.presence.get_presence(content_id)
