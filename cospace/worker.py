"""
ARQ Worker Configuration

Background job processing with Redis-backed task queue.
Purges presence entries that API workers mirrored to Redis but never
removed (for example after a crash).

Run with:
    arq cospace.worker.WorkerSettings
"""

import logging
import time
from typing import Any

from arq import cron
from arq.connections import RedisSettings

from .config import settings
from .services.redis_service import redis_service

logger = logging.getLogger(__name__)

PRESENCE_PREFIX = "presence:"


# Parse Redis URL into components for ARQ
# Format: redis://host:port/db or redis://:password@host:port/db
def parse_redis_url(url: str) -> RedisSettings:
    """Parse Redis URL into ARQ RedisSettings."""
    from urllib.parse import urlparse

    parsed = urlparse(url)
    return RedisSettings(
        host=parsed.hostname or "localhost",
        port=parsed.port or 6379,
        password=parsed.password,
        database=int(parsed.path.lstrip("/") or 0),
    )


# =============================================================================
# Presence Cleanup Jobs
# =============================================================================


async def cleanup_stale_presence(ctx: dict[str, Any]) -> dict[str, int]:
    """
    Remove presence entries without a heartbeat for settings.presence_timeout.

    Returns:
        dict with count of removed entries
    """
    cutoff = time.time() - settings.presence_timeout
    total_removed = 0

    if not redis_service.is_connected:
        logger.debug("Redis not connected, skipping presence cleanup")
        return {"removed": 0}

    try:
        keys = await redis_service.scan_keys(f"{PRESENCE_PREFIX}*")
        for key in keys:
            room_id = key[len(PRESENCE_PREFIX):]
            removed = await redis_service.presence_cleanup(room_id, cutoff)
            if removed > 0:
                logger.debug(f"Cleaned {removed} stale entries from room {room_id}")
                total_removed += removed
    except Exception as e:
        logger.error(f"Redis presence cleanup error: {e}")

    if total_removed:
        logger.info(f"Presence cleanup removed {total_removed} stale sessions")
    return {"removed": total_removed}


# =============================================================================
# Startup/Shutdown Hooks
# =============================================================================

async def startup(ctx: dict[str, Any]) -> None:
    """Initialize resources when worker starts."""
    logger.info("ARQ worker starting up...")

    try:
        await redis_service.connect()
        logger.info("Redis connected for ARQ worker")
    except Exception as e:
        logger.warning(f"Redis connection failed in ARQ worker: {e}")


async def shutdown(ctx: dict[str, Any]) -> None:
    """Cleanup resources when worker stops."""
    logger.info("ARQ worker shutting down...")

    await redis_service.disconnect()
    logger.info("Redis disconnected")


# =============================================================================
# Schedule Parsing
# =============================================================================

def parse_schedule_set(value: str) -> set[int]:
    """
    Parse a comma-separated string of integers into a set.

    Examples:
        "0,30" -> {0, 30}
        "0,15,30,45" -> {0, 15, 30, 45}
    """
    return {int(x.strip()) for x in value.split(",") if x.strip()}


def get_presence_cleanup_seconds() -> set[int]:
    """Get presence cleanup seconds from settings."""
    return parse_schedule_set(settings.arq_presence_cleanup_seconds)


# =============================================================================
# Worker Settings
# =============================================================================

class WorkerSettings:
    """ARQ worker configuration."""

    # Redis connection
    redis_settings = parse_redis_url(settings.redis_url)

    # Job functions that can be called via arq.enqueue_job()
    functions = [
        cleanup_stale_presence,
    ]

    # ARQ_PRESENCE_CLEANUP_SECONDS: comma-separated seconds (default "0,30" = every 30s)
    cron_jobs = [
        cron(cleanup_stale_presence, second=get_presence_cleanup_seconds()),
    ]

    # Lifecycle hooks
    on_startup = startup
    on_shutdown = shutdown

    # Worker behavior
    max_jobs = 10  # Max concurrent jobs
    job_timeout = 300  # 5 minutes max per job
    keep_result = 3600  # Keep results for 1 hour

    # Health check
    health_check_interval = 30
