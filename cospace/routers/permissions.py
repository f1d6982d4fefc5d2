"""Content permission endpoints.

Owners replace the full grant set in one request; any user can ask for
their own effective role.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..schemas.permission import PermissionResponse, PermissionSetRequest, RoleResponse
from ..services.auth_service import CurrentUser, get_current_user
from ..services.permission_service import ContentAction, PermissionService, role_allows

router = APIRouter(tags=["Permissions"])


@router.get(
    "/api/contents/{content_id}/permissions",
    response_model=list[PermissionResponse],
    summary="List permissions",
    description="List grants on a content item. Only owners can list grants.",
    responses={
        200: {"description": "Permissions retrieved successfully"},
        401: {"description": "Not authenticated"},
        403: {"description": "Access denied"},
        404: {"description": "Content not found"},
    },
)
async def list_permissions(
    content_id: UUID,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> list[PermissionResponse]:
    """Get every grant on a content item."""
    service = PermissionService(db)
    await service.require(content_id, current_user.id, ContentAction.MANAGE_ACCESS)
    grants = await service.list_permissions(content_id)
    return [PermissionResponse.model_validate(g) for g in grants]


@router.put(
    "/api/contents/{content_id}/permissions",
    response_model=list[PermissionResponse],
    summary="Replace permissions",
    description=(
        "Replace every grant on a content item. The new set must keep at "
        "least one owner. Takes effect for open sockets within seconds."
    ),
    responses={
        200: {"description": "Permissions replaced"},
        401: {"description": "Not authenticated"},
        403: {"description": "Access denied"},
        404: {"description": "Content not found"},
        422: {"description": "Invalid permission set"},
    },
)
async def set_permissions(
    content_id: UUID,
    permission_data: PermissionSetRequest,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> list[PermissionResponse]:
    """Replace the permission set."""
    grants = await PermissionService(db).set_permissions(
        content_id,
        [(grant.user_id, grant.role) for grant in permission_data.grants],
        granted_by=current_user.id,
    )
    await db.commit()
    for grant in grants:
        await db.refresh(grant)
    return [PermissionResponse.model_validate(g) for g in grants]


@router.get(
    "/api/contents/{content_id}/role",
    response_model=RoleResponse,
    summary="Get my role",
    description="Get the current user's effective role and what it allows.",
    responses={
        200: {"description": "Role retrieved successfully"},
        401: {"description": "Not authenticated"},
        404: {"description": "Content not found"},
    },
)
async def get_my_role(
    content_id: UUID,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> RoleResponse:
    """Get the caller's role."""
    role = await PermissionService(db).get_role(content_id, current_user.id)
    return RoleResponse(
        content_id=content_id,
        role=role,
        can_view=role_allows(role, ContentAction.VIEW),
        can_comment=role_allows(role, ContentAction.COMMENT),
        can_edit=role_allows(role, ContentAction.EDIT),
        can_manage_access=role_allows(role, ContentAction.MANAGE_ACCESS),
    )
