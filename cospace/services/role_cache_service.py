"""In-memory cache for resolved content roles.

Role resolution runs on every mutating request, so results are cached per
(content, user) for a few seconds. Grant changes on this instance
invalidate the content's entries immediately; other instances see them
once the TTL expires.

Cache Strategy:
- Content role cache: settings.permission_cache_ttl TTL, max 10,000 entries
- Denials (no role) are cached too
"""

import time
from typing import Dict, Optional, Tuple
from uuid import UUID

from ..config import settings

_MAX_SIZE = 10000  # Maximum entries

# Marker for a cached "no role" result
NO_ROLE = ""

# Cache storage: "content_id:user_id" -> (role or NO_ROLE, expiry_timestamp)
_role_cache: Dict[str, Tuple[str, float]] = {}


def _key(content_id: UUID, user_id: UUID) -> str:
    return f"{content_id}:{user_id}"


def get_cached_role(content_id: UUID, user_id: UUID) -> Optional[str]:
    """
    Get a resolved role from cache if present and not expired.

    Args:
        content_id: The content item's UUID
        user_id: The user's UUID

    Returns:
        Role string, NO_ROLE for a cached denial, or None on a cache miss
    """
    key = _key(content_id, user_id)
    cached = _role_cache.get(key)
    if cached and cached[1] > time.time():
        return cached[0]
    # Remove expired entry
    if cached:
        _role_cache.pop(key, None)
    return None


def set_cached_role(content_id: UUID, user_id: UUID, role: Optional[str]) -> None:
    """
    Store a resolved role (or a denial) in cache.

    Args:
        content_id: The content item's UUID
        user_id: The user's UUID
        role: Resolved role, or None when the user has no role
    """
    if settings.permission_cache_ttl <= 0:
        return
    if len(_role_cache) >= _MAX_SIZE:
        _evict_oldest()

    _role_cache[_key(content_id, user_id)] = (
        role or NO_ROLE,
        time.time() + settings.permission_cache_ttl,
    )


def invalidate_content_roles(content_id: UUID) -> None:
    """
    Remove every cached role for a content item.

    Args:
        content_id: The content item's UUID
    """
    prefix = f"{content_id}:"
    for key in [k for k in _role_cache if k.startswith(prefix)]:
        _role_cache.pop(key, None)


def clear_role_cache() -> None:
    """Clear the entire role cache. Used for testing."""
    _role_cache.clear()


def get_cache_stats() -> dict:
    """Get cache statistics for monitoring."""
    now = time.time()
    return {
        "content_roles": {
            "size": len(_role_cache),
            "valid": sum(1 for _, expiry in _role_cache.values() if expiry > now),
            "max_size": _MAX_SIZE,
            "ttl_seconds": settings.permission_cache_ttl,
        },
    }


def _evict_oldest() -> None:
    """Evict the 10% of entries closest to expiry."""
    if not _role_cache:
        return
    evict_count = max(1, len(_role_cache) // 10)
    oldest = sorted(_role_cache.items(), key=lambda item: item[1][1])[:evict_count]
    for key, _ in oldest:
        _role_cache.pop(key, None)
