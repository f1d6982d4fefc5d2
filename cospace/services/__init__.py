"""Business logic services.

The sync coordinator is not re-exported here: it depends on the websocket
package, which itself imports the Redis service from this package.
Import it from ``cospace.services.sync_coordinator``.
"""

from .auth_service import (
    CurrentUser,
    create_access_token,
    decode_access_token,
    get_current_user,
)
from .content_store import (
    ContentSnapshot,
    ContentStore,
)
from .operation_log import OperationLog
from .permission_service import (
    ContentAction,
    PermissionService,
    get_permission_service,
    role_allows,
)
from .redis_service import (
    RedisService,
    redis_service,
)
from .role_cache_service import (
    clear_role_cache,
    get_cache_stats,
    invalidate_content_roles,
)

__all__ = [
    # Auth
    "CurrentUser",
    "create_access_token",
    "decode_access_token",
    "get_current_user",
    # Content store
    "ContentSnapshot",
    "ContentStore",
    # Operation log
    "OperationLog",
    # Permissions
    "ContentAction",
    "PermissionService",
    "get_permission_service",
    "role_allows",
    # Redis
    "RedisService",
    "redis_service",
    # Role cache
    "clear_role_cache",
    "get_cache_stats",
    "invalidate_content_roles",
]
