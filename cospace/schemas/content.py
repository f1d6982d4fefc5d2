"""Pydantic schemas for spaces, content items and versions."""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from ..models.collaborative_content import ContentType


class SpaceCreate(BaseModel):
    """Schema for creating a collaboration space."""

    title: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="Space title",
        examples=["Design Review"],
    )
    description: Optional[str] = Field(None, max_length=5000)
    space_type: str = Field(
        "document",
        pattern="^(document|whiteboard|code|video|other)$",
        description="Kind of space: document, whiteboard, code, video or other",
    )


class SpaceResponse(BaseModel):
    """Schema for space response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    description: Optional[str] = None
    space_type: str
    created_by: UUID
    created_at: datetime
    updated_at: datetime


class ContentCreate(BaseModel):
    """Schema for creating a content item."""

    content_type: ContentType = Field(..., description="Kind of content")
    title: Optional[str] = Field(None, max_length=255, description="Content title")
    initial_payload: Optional[str] = Field(
        None,
        description="Version 1 payload (defaults to an empty document of the type)",
    )
    metadata: Optional[dict[str, Any]] = Field(None, description="Free-form attributes")


class ContentResponse(BaseModel):
    """Schema for a content item without its payload."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: UUID
    space_id: UUID
    content_type: ContentType
    title: Optional[str] = None
    current_version: int
    last_sequence: int
    metadata: Optional[dict[str, Any]] = Field(
        None,
        validation_alias=AliasChoices("metadata_json", "metadata"),
    )
    created_by: UUID
    archived_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class ContentStateResponse(BaseModel):
    """Materialized payload of a content item."""

    model_config = ConfigDict(from_attributes=True)

    content_id: UUID
    payload: str
    version_number: int = Field(..., description="Latest checkpoint at or below this state")
    sequence: int = Field(..., description="Last operation included in the payload")


class VersionResponse(BaseModel):
    """Schema for a version entry (payload omitted)."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    content_id: UUID
    version_number: int
    sequence: int = Field(..., description="Last operation covered by this snapshot")
    diff: Optional[str] = Field(None, description="JSON opcodes against the previous version")
    created_by: UUID
    created_at: datetime


class RestoreRequest(BaseModel):
    """Schema for restoring an earlier version."""

    version_number: int = Field(..., ge=1, description="Version to bring back")
