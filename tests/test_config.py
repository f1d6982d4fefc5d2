"""Tests for settings and database helpers."""

from cospace.config import Settings
from cospace.database import is_sqlite


class TestSettings:
    """Tests for derived settings."""

    def test_postgres_urls_from_parts(self):
        config = Settings(_env_file=None, db_server="db", db_user="svc", db_password="p@ss")
        assert config.database_url == "postgresql+asyncpg://svc:p%40ss@db:5432/cospace"
        assert config.sync_database_url.startswith("postgresql+psycopg2://svc:")

    def test_url_override(self):
        config = Settings(_env_file=None, db_url="sqlite+aiosqlite:///./cospace.db")
        assert config.database_url == "sqlite+aiosqlite:///./cospace.db"
        assert config.sync_database_url == "sqlite:///./cospace.db"

    def test_presence_timeout(self):
        config = Settings(_env_file=None, heartbeat_interval=10, missed_heartbeats=3)
        assert config.presence_timeout == 30


class TestIsSqlite:
    def test_detects_backend(self):
        assert is_sqlite("sqlite+aiosqlite:///tmp/x.db")
        assert not is_sqlite("postgresql+asyncpg://u:p@localhost/db")
