# tests/conftest.py — Shared test fixtures
import os
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["ENVIRONMENT"] = "test"
os.environ["BCRYPT_ROUNDS"] = "4"

from models import Base, User, UserRole
from auth import AuthService
from database import get_db_session
from main import app

TEST_PASSWORD = "Passw0rd!"


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine):
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(db_engine):
    """HTTP test client with overridden DB dependency"""
    session_factory = async_sessionmaker(
        db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False,
    )

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_session] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def _make_user(db_session, username: str, first_name: str, last_name: str, active: bool = True) -> User:
    user = User(
        username=username,
        email=f"{username}@taskboard.io",
        password_hash=AuthService.hash_password(TEST_PASSWORD),
        first_name=first_name,
        last_name=last_name,
        role=UserRole.USER,
        is_active=active,
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def alice(db_session):
    """Task creator in most scenarios"""
    return await _make_user(db_session, "alice", "Alice", "Archer")


@pytest_asyncio.fixture
async def bob(db_session):
    """Usually the assignee"""
    return await _make_user(db_session, "bob", "Bob", "Baker")


@pytest_asyncio.fixture
async def carol(db_session):
    """Neither creator nor assignee"""
    return await _make_user(db_session, "carol", "Carol", "Cole")


@pytest.fixture
def auth_headers():
    """Build bearer headers for a user with the app's own token issuer"""
    def _headers(user: User, expires_delta: timedelta = None) -> dict:
        token = app.state.tokens.issue(user, expires_delta=expires_delta)
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest.fixture
def future_deadline():
    return (datetime.now(timezone.utc) + timedelta(days=7)).isoformat()
