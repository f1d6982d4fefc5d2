"""Pydantic schemas package for request/response validation."""

from .comment import (
    CommentAnchorIn,
    CommentAnchorOut,
    CommentCreate,
    CommentResponse,
    CommentUpdate,
)
from .content import (
    ContentCreate,
    ContentResponse,
    ContentStateResponse,
    RestoreRequest,
    SpaceCreate,
    SpaceResponse,
    VersionResponse,
)
from .operation import (
    OperationDraft,
    OperationPage,
    OperationResponse,
)
from .permission import (
    PermissionGrant,
    PermissionResponse,
    PermissionSetRequest,
    RoleResponse,
)

__all__ = [
    # Comment schemas
    "CommentAnchorIn",
    "CommentAnchorOut",
    "CommentCreate",
    "CommentResponse",
    "CommentUpdate",
    # Content schemas
    "ContentCreate",
    "ContentResponse",
    "ContentStateResponse",
    "RestoreRequest",
    "SpaceCreate",
    "SpaceResponse",
    "VersionResponse",
    # Operation schemas
    "OperationDraft",
    "OperationPage",
    "OperationResponse",
    # Permission schemas
    "PermissionGrant",
    "PermissionResponse",
    "PermissionSetRequest",
    "RoleResponse",
]
