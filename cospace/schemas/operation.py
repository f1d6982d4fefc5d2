"""Pydantic schemas for edit operations.

Operations are protocol objects shared by the WebSocket and REST
surfaces, so they use camelCase keys on the wire (snake_case names are
accepted too).
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..models.operation import OperationType


class OperationDraft(BaseModel):
    """An operation as submitted by a client, before sequencing.

    Range checks happen against the live payload in the coordinator, so
    only types are validated here.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    type: OperationType = Field(..., description="insert, delete, format, cursor or selection")
    position: Optional[int] = Field(None, description="Character offset")
    length: Optional[int] = Field(None, description="Characters affected (delete, format, selection)")
    text: Optional[str] = Field(None, max_length=65536, description="Inserted text")
    version: Optional[int] = Field(
        None,
        description="Content version the client generated the operation against",
    )
    meta: Optional[dict[str, Any]] = Field(None, description="Format marks or cursor attributes")


class OperationResponse(BaseModel):
    """An accepted (or relayed ephemeral) operation."""

    model_config = ConfigDict(
        from_attributes=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    id: Optional[UUID] = Field(None, description="Operation ID (null for ephemeral operations)")
    content_id: UUID = Field(..., description="Edited content item")
    user_id: UUID = Field(..., description="Submitting user")
    op_type: OperationType = Field(
        ...,
        validation_alias=AliasChoices("op_type", "type", "opType"),
        serialization_alias="type",
    )
    position: Optional[int] = None
    length: Optional[int] = None
    text: Optional[str] = None
    version: int = Field(..., description="Client base version")
    applied_sequence: Optional[int] = Field(
        None,
        description="Server-assigned order (null for cursor/selection)",
    )
    meta: Optional[dict[str, Any]] = None
    created_at: Optional[datetime] = None


class OperationPage(BaseModel):
    """A page of the operation log, used for catch-up."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    operations: list[OperationResponse] = Field(default_factory=list)
    last_sequence: int = Field(..., description="Highest sequence included (or the requested one)")
    has_more: bool = Field(False, description="Whether another page is available")
