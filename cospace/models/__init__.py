"""SQLAlchemy ORM models package."""

from .collaborative_content import DEFAULT_PAYLOADS, CollaborativeContent, ContentType
from .collaborative_space import CollaborativeSpace
from .content_comment import ContentComment
from .content_permission import ContentPermission, ContentRole
from .content_version import ContentVersion
from .operation import Operation, OperationType

__all__ = [
    "CollaborativeContent",
    "CollaborativeSpace",
    "ContentComment",
    "ContentPermission",
    "ContentRole",
    "ContentType",
    "ContentVersion",
    "DEFAULT_PAYLOADS",
    "Operation",
    "OperationType",
]
