"""
Shared fixtures for the backend test suite.

Every test gets its own in-memory SQLite database. API tests talk to the
FastAPI app through httpx with the database and resolver dependencies
overridden.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-the-suite-0123456789")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.database.base import Base
from app.core.database.engine import get_db
from app.features.permissions import catalog, roles
from app.features.permissions.models import Permission, Role
from app.features.permissions.resolver import PermissionResolver, get_resolver
from app.features.users.auth import create_access_token
from app.features.users.models import ACCOUNT_STATUS_ACTIVE, User


# ==================== Database ====================

@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory database with all tables created."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def resolver():
    return PermissionResolver(overrides_enabled=True)


# ==================== Factories ====================

async def make_user(db: AsyncSession, username: str, account_status: str = ACCOUNT_STATUS_ACTIVE) -> User:
    user = User(username=username, email=f"{username}@example.com", account_status=account_status)
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


async def make_permission(db: AsyncSession, module: str, action: str, resource: str | None = None) -> Permission:
    return await catalog.create(db, module=module, action=action, resource=resource)


async def make_role(db: AsyncSession, name: str) -> Role:
    return await roles.create_role(db, name)


def auth_headers(user: User) -> dict:
    token = create_access_token(user.id, user.username, [], [])
    return {"Authorization": f"Bearer {token}"}


# ==================== API ====================

@pytest_asyncio.fixture
async def client(session_factory, resolver):
    """httpx client bound to the app with test database and resolver."""
    from app.main import app

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_resolver] = lambda: resolver

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
