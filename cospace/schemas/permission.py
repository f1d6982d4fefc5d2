"""Pydantic schemas for content permissions."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from ..models.content_permission import ContentRole


class PermissionGrant(BaseModel):
    """A single grant in a permission set."""

    user_id: Optional[UUID] = Field(
        None,
        description="Grantee (null = everyone with access to the space)",
    )
    role: ContentRole = Field(..., description="owner, editor, commenter or viewer")


class PermissionSetRequest(BaseModel):
    """Replace every grant on a content item."""

    grants: list[PermissionGrant] = Field(
        ...,
        min_length=1,
        description="Complete new permission set (must keep an owner)",
    )


class PermissionResponse(BaseModel):
    """Schema for a stored grant."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    content_id: UUID
    user_id: Optional[UUID] = None
    role: ContentRole
    granted_by: UUID
    created_at: datetime


class RoleResponse(BaseModel):
    """The caller's effective role on a content item."""

    content_id: UUID
    role: Optional[ContentRole] = None
    can_view: bool
    can_comment: bool
    can_edit: bool
    can_manage_access: bool
