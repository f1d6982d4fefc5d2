"""Shared pytest fixtures for backend tests."""

import os
import sys
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

# Add cospace to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from cospace.database import Base, build_engine, get_db
from cospace.main import app
from cospace.models import CollaborativeContent, CollaborativeSpace, ContentRole
from cospace.services.auth_service import create_access_token
from cospace.services.content_store import ContentStore
from cospace.services.permission_service import PermissionService
from cospace.services.role_cache_service import clear_role_cache
from cospace.services.sync_coordinator import SyncCoordinator, get_coordinator
from cospace.websocket.presence import PresenceHub

# One SQLite file per test: coordinator and request sessions use separate connections
SQLALCHEMY_DATABASE_URL = "sqlite+aiosqlite:///{path}"


@pytest.fixture(autouse=True)
def reset_role_cache():
    """Role lookups must not leak between tests."""
    clear_role_cache()
    yield
    clear_role_cache()


@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path):
    """Create a test database engine with SQLite."""
    # No pool, foreign keys on
    engine = build_engine(SQLALCHEMY_DATABASE_URL.format(path=tmp_path / "cospace.db"))

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_maker(engine) -> async_sessionmaker:
    """Session factory bound to the test engine."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_maker() as session:
        yield session


@pytest.fixture
def broadcaster() -> MagicMock:
    """Connection manager stand-in that records broadcasts."""
    mock = MagicMock()
    mock.broadcast_to_room = AsyncMock(return_value=1)
    mock.send_personal = AsyncMock(return_value=True)
    return mock


@pytest.fixture
def presence(broadcaster) -> PresenceHub:
    """Presence hub wired to the recording broadcaster."""
    return PresenceHub(
        broadcaster=broadcaster,
        heartbeat_interval=30,
        missed_heartbeats=2,
        idle_after=120,
    )


@pytest.fixture
def sync(session_maker, broadcaster, presence) -> SyncCoordinator:
    """Sync coordinator on the test database."""
    return SyncCoordinator(
        session_maker=session_maker,
        broadcaster=broadcaster,
        presence=presence,
        checkpoint_interval=50,
        lock_timeout=1.0,
    )


@pytest_asyncio.fixture
async def client(session_maker, sync) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with database and coordinator overrides."""
    async def override_get_db():
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_coordinator] = lambda: sync

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client

    app.dependency_overrides.clear()


# ============================================================================
# Users
# ============================================================================


@pytest.fixture
def owner_id() -> UUID:
    return uuid4()


@pytest.fixture
def editor_id() -> UUID:
    return uuid4()


@pytest.fixture
def viewer_id() -> UUID:
    return uuid4()


@pytest.fixture
def commenter_id() -> UUID:
    return uuid4()


def make_token(user_id: UUID, name: str = "Test User") -> str:
    """Create an access token the way the identity service would."""
    return create_access_token(
        data={"sub": str(user_id), "email": f"{user_id.hex[:8]}@example.com", "name": name}
    )


def auth_headers_for(user_id: UUID) -> dict:
    """Create authorization headers for a user."""
    return {"Authorization": f"Bearer {make_token(user_id)}"}


@pytest.fixture
def auth_headers(owner_id: UUID) -> dict:
    """Authorization headers for the content owner."""
    return auth_headers_for(owner_id)


@pytest.fixture
def editor_headers(editor_id: UUID) -> dict:
    return auth_headers_for(editor_id)


@pytest.fixture
def viewer_headers(viewer_id: UUID) -> dict:
    return auth_headers_for(viewer_id)


@pytest.fixture
def commenter_headers(commenter_id: UUID) -> dict:
    return auth_headers_for(commenter_id)


# ============================================================================
# Content
# ============================================================================


@pytest_asyncio.fixture
async def test_space(db_session: AsyncSession, owner_id: UUID) -> CollaborativeSpace:
    """Create a test space."""
    space = await ContentStore(db_session).create_space(
        title="Design Review",
        space_type="document",
        created_by=owner_id,
    )
    await db_session.commit()
    return space


@pytest_asyncio.fixture
async def test_content(
    db_session: AsyncSession,
    test_space: CollaborativeSpace,
    owner_id: UUID,
    editor_id: UUID,
    viewer_id: UUID,
    commenter_id: UUID,
) -> CollaborativeContent:
    """Create an empty text content item with one user per role."""
    content = await ContentStore(db_session).create_content(
        space_id=test_space.id,
        content_type="text",
        creator=owner_id,
        title="Notes",
    )
    permissions = PermissionService(db_session)
    await permissions.grant(content.id, editor_id, ContentRole.EDITOR, owner_id)
    await permissions.grant(content.id, viewer_id, ContentRole.VIEWER, owner_id)
    await permissions.grant(content.id, commenter_id, ContentRole.COMMENTER, owner_id)
    await db_session.commit()
    clear_role_cache()
    return content



@pytest_asyncio.fixture
async def other_content(
    db_session: AsyncSession,
    test_space: CollaborativeSpace,
    owner_id: UUID,
    editor_id: UUID,
) -> CollaborativeContent:
    """A second content item in the same space, editable by the editor."""
    content = await ContentStore(db_session).create_content(
        space_id=test_space.id,
        content_type="text",
        creator=owner_id,
        title="Agenda",
    )
    await PermissionService(db_session).grant(content.id, editor_id, ContentRole.EDITOR, owner_id)
    await db_session.commit()
    clear_role_cache()
    return content
