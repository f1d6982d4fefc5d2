"""WebSocket message schemas.

Every message is a JSON object tagged by ``type`` with camelCase keys.
Client messages are parsed into one of the variants of ClientMessage;
an unknown ``type`` fails validation instead of being silently ignored.

Legacy names are still accepted: ``content_update`` (with an ``op``) for
``operation`` and ``sync_request`` for ``catchup_request``.
"""

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator
from pydantic.alias_generators import to_camel

from .operation import OperationDraft, OperationResponse


class WireModel(BaseModel):
    """Base for wire messages: camelCase aliases, unknown keys ignored."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def dump(self) -> dict[str, Any]:
        """Serialize for send_json."""
        return self.model_dump(mode="json", by_alias=True)


class SelectionRange(WireModel):
    """Selected text range."""

    start: int
    end: int


# ============================================================================
# Client -> server
# ============================================================================


class PresenceMessage(WireModel):
    """Announce or update the sender's presence."""

    type: Literal["presence"]
    user_id: Optional[str] = None
    name: Optional[str] = Field(None, max_length=255)
    color: Optional[str] = Field(None, max_length=32)


class OperationMessage(WireModel):
    """Submit an edit operation."""

    type: Literal["operation", "content_update"]
    user_id: Optional[str] = None
    op: Optional[OperationDraft] = None
    # Whole-payload replacement from old clients, always rejected
    content: Optional[str] = None

    @model_validator(mode="after")
    def require_op(self) -> "OperationMessage":
        """Only structured operations are accepted."""
        if self.op is None:
            if self.content is not None:
                raise ValueError(
                    "Whole-content updates are not supported, send an operation"
                )
            raise ValueError("op is required")
        return self


class CursorUpdateMessage(WireModel):
    """Move the sender's caret or selection."""

    type: Literal["cursor_update"]
    position: Optional[int] = None
    selection: Optional[SelectionRange] = None


class TitleUpdateMessage(WireModel):
    """Rename the content item."""

    type: Literal["title_update"]
    title: str = Field(..., min_length=1, max_length=255)


class CatchupRequestMessage(WireModel):
    """Ask for operations missed since a sequence."""

    type: Literal["catchup_request", "sync_request"]
    last_sequence: int = Field(0, ge=0)


class SaveMessage(WireModel):
    """Explicit save (checkpoint) signal."""

    type: Literal["save"]


class PingMessage(WireModel):
    """Client heartbeat."""

    type: Literal["ping"]


class PongMessage(WireModel):
    """Reply to a server ping."""

    type: Literal["pong"]


class LeaveMessage(WireModel):
    """Leave the content room."""

    type: Literal["leave"]


ClientMessage = Annotated[
    Union[
        PresenceMessage,
        OperationMessage,
        CursorUpdateMessage,
        TitleUpdateMessage,
        CatchupRequestMessage,
        SaveMessage,
        PingMessage,
        PongMessage,
        LeaveMessage,
    ],
    Field(discriminator="type"),
]

client_message_adapter: TypeAdapter = TypeAdapter(ClientMessage)


def parse_client_message(data: Any):
    """
    Parse a decoded JSON message into its variant.

    Raises:
        pydantic.ValidationError: On an unknown type or malformed fields
    """
    return client_message_adapter.validate_python(data)


# ============================================================================
# Server -> client
# ============================================================================


class ConnectedMessage(WireModel):
    """Handshake completed."""

    type: Literal["connected"] = "connected"
    connection_id: str
    content_id: str
    user_id: str
    role: str
    version: int
    last_sequence: int
    title: Optional[str] = None
    presence: list[dict[str, Any]] = Field(default_factory=list)


class OperationBroadcast(WireModel):
    """An accepted operation, sent to everyone but its sender."""

    type: Literal["operation"] = "operation"
    user_id: str
    op: OperationResponse


class CursorBroadcast(WireModel):
    """Another participant's caret or selection moved."""

    type: Literal["cursor_update"] = "cursor_update"
    user_id: str
    connection_id: Optional[str] = None
    position: Optional[int] = None
    selection: Optional[SelectionRange] = None
    meta: Optional[dict[str, Any]] = None


class TitleBroadcast(WireModel):
    """The content item was renamed."""

    type: Literal["title_update"] = "title_update"
    user_id: str
    title: str


class AckMessage(WireModel):
    """Confirms an accepted operation to its sender."""

    type: Literal["ack"] = "ack"
    op: OperationResponse


class CatchupMessage(WireModel):
    """Missed operations, in sequence order."""

    type: Literal["catchup"] = "catchup"
    operations: list[OperationResponse] = Field(default_factory=list)
    last_sequence: int
    has_more: bool = False


class SavedMessage(WireModel):
    """Confirms a save."""

    type: Literal["saved"] = "saved"
    version: int
    sequence: int


class PongReply(WireModel):
    """Reply to a client ping."""

    type: Literal["pong"] = "pong"


class ErrorMessage(WireModel):
    """A rejected request. The socket stays open."""

    type: Literal["error"] = "error"
    error: str
    message: str
    retryable: bool = False
