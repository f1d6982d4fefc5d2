"""Error taxonomy for the collaboration engine.

Every error carries a stable machine-readable ``code`` (sent to WebSocket
clients and REST callers) and a ``retryable`` flag telling clients whether
resubmitting the same request may succeed.
"""

from typing import Optional


class CollaborationError(Exception):
    """Base class for all collaboration engine errors."""

    code = "COLLABORATION_ERROR"
    retryable = False

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_dict(self) -> dict:
        """Serialize for an ``error`` WebSocket message or JSON response body."""
        return {
            "error": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }


class NotFound(CollaborationError):
    """Unknown (or archived) content item, version or comment."""

    code = "NOT_FOUND"


class InvalidSpace(NotFound):
    """Content creation referenced an unknown collaboration space."""

    code = "INVALID_SPACE"


class Forbidden(CollaborationError):
    """The user's role does not allow the requested action."""

    code = "FORBIDDEN"


class SequenceConflict(CollaborationError):
    """A sequence number was assigned twice or out of order.

    Indicates a bug or a second writer for the same content item, never a
    normal user error.
    """

    code = "SEQUENCE_CONFLICT"


class Timeout(CollaborationError):
    """The per-content write lock could not be acquired in time."""

    code = "TIMEOUT"
    retryable = True


class InvalidOperation(CollaborationError):
    """Malformed operation: bad type, negative length, position out of range."""

    code = "INVALID_OPERATION"


class ConnectionLost(CollaborationError):
    """A presence session was dropped."""

    code = "CONNECTION_LOST"


class InvalidGrant(CollaborationError):
    """A permission change would leave the content in an invalid state."""

    code = "INVALID_GRANT"
