"""Pydantic schemas for content comments."""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class CommentAnchorIn(BaseModel):
    """Text range a new comment points at."""

    offset: int = Field(..., description="Start offset in the content text")
    length: int = Field(0, description="Number of characters covered")
    sequence: Optional[int] = Field(
        None,
        description="Log sequence the client saw when anchoring (defaults to latest)",
    )


class CommentAnchorOut(BaseModel):
    """Anchor mapped onto the current text."""

    offset: Optional[int] = Field(None, description="Current start offset (null when orphaned)")
    length: Optional[int] = Field(None, description="Current length (null when orphaned)")
    sequence: int = Field(..., description="Sequence the anchor was mapped up to")
    status: str = Field(..., description="anchored or orphaned")


class CommentCreate(BaseModel):
    """Schema for creating a new comment."""

    body: str = Field(
        ...,
        min_length=1,
        max_length=2000,
        description="Comment text",
    )
    position: Optional[CommentAnchorIn] = Field(
        None,
        description="Optional text anchor",
    )
    parent_id: Optional[UUID] = Field(
        None,
        description="Parent comment for replies (same content item)",
    )


class CommentUpdate(BaseModel):
    """Schema for updating a comment."""

    body: str = Field(
        ...,
        min_length=1,
        max_length=2000,
        description="New comment text",
    )


class CommentResponse(BaseModel):
    """Schema for comment response, with replies nested."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(..., description="Unique comment identifier")
    content_id: UUID = Field(..., description="Commented content item")
    user_id: UUID = Field(..., description="Comment author")
    body: str = Field(..., description="Comment text")
    position: Optional[Dict[str, Any]] = Field(
        None,
        description="Anchor as recorded: version, sequence, offset, length",
    )
    anchor: Optional[CommentAnchorOut] = Field(
        None,
        description="Anchor mapped onto the current text",
    )
    resolved: bool = Field(False, description="Whether the thread is resolved")
    parent_id: Optional[UUID] = Field(None, description="Parent comment ID")
    created_at: datetime = Field(..., description="When the comment was created")
    updated_at: datetime = Field(..., description="When the comment was last edited")
    replies: List["CommentResponse"] = Field(default_factory=list)


CommentResponse.model_rebuild()
