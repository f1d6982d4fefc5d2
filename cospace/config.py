"""Configuration management using pydantic-settings."""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database settings
    db_server: str = "localhost"
    db_name: str = "cospace"
    db_user: str = "cospace"
    db_password: str = ""
    db_port: int = 5432
    # Full async URL, overrides the db_* parts (e.g. sqlite+aiosqlite:///./cospace.db)
    db_url: Optional[str] = None
    db_pool_size: int = 20
    db_max_overflow: int = 40
    sql_echo: bool = False

    # JWT settings (tokens are issued by the identity service)
    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"
    jwt_expiration_minutes: int = 1440

    # Server settings
    host: str = "0.0.0.0"
    port: int = 8000

    # WebSocket settings (DDoS protection)
    ws_max_connections_per_user: int = 20
    ws_max_message_size: int = 65536  # 64KB max message size
    ws_rate_limit_messages: int = 200  # Max messages per window
    ws_rate_limit_window: int = 10  # Window in seconds

    # Redis settings (for WebSocket pub/sub and presence mirroring)
    redis_url: str = "redis://localhost:6379/0"
    redis_max_connections: int = 50
    redis_socket_timeout: float = 5.0
    redis_retry_on_timeout: bool = True
    redis_required: bool = False  # Set True for multi-worker deployment

    # Collaboration engine
    # Logged operations between automatic snapshots
    checkpoint_interval: int = 50
    # Every Nth version stores the full payload, the others only a diff
    full_snapshot_interval: int = 10
    # Max seconds to wait for a content item's write lock
    lock_timeout: float = 5.0
    # Presence heartbeat, sessions are evicted after missed_heartbeats intervals
    heartbeat_interval: int = 30
    missed_heartbeats: int = 2
    presence_idle_after: int = 120
    # Role lookups are cached briefly since grants can change
    permission_cache_ttl: float = 5.0
    # Max operations per catch-up page
    catchup_page_size: int = 1000
    # Materialized content items cached per process; idle ones beyond this are dropped
    max_loaded_contents: int = 1000

    # Presence cleanup job: runs at these seconds within each minute (comma-separated)
    # Default "0,30" = every 30 seconds (at :00 and :30 of each minute)
    arq_presence_cleanup_seconds: str = "0,30"

    @property
    def database_url(self) -> str:
        """Build PostgreSQL async connection string."""
        if self.db_url:
            return self.db_url
        from urllib.parse import quote_plus
        return (
            f"postgresql+asyncpg://{self.db_user}:{quote_plus(self.db_password)}"
            f"@{self.db_server}:{self.db_port}/{self.db_name}"
        )

    @property
    def sync_database_url(self) -> str:
        """Build PostgreSQL sync connection string for Alembic."""
        if self.db_url:
            return self.db_url.replace("+asyncpg", "+psycopg2").replace("+aiosqlite", "")
        from urllib.parse import quote_plus
        return (
            f"postgresql+psycopg2://{self.db_user}:{quote_plus(self.db_password)}"
            f"@{self.db_server}:{self.db_port}/{self.db_name}"
        )

    @property
    def presence_timeout(self) -> int:
        """Seconds without a heartbeat before a presence session is evicted."""
        return self.heartbeat_interval * self.missed_heartbeats


# Global settings instance
settings = Settings()
