# tests/conftest.py — Shared test fixtures
import os
import uuid

import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["SESSION_SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["ENVIRONMENT"] = "test"

from models import Base, Group, User, Board, BoardColumn, Task
from auth import AuthService, Caller
from database import get_db_session
from main import app


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
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def make_user(db_session, username: str, password: str = "Password123!", is_admin: bool = False, group=None) -> User:
    user = User(
        id=str(uuid.uuid4()),
        username=username,
        password_hash=AuthService.hash_password(password),
        is_admin=is_admin,
        group_id=group.id if group is not None else None,
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


async def make_group(db_session, name: str, permissions) -> Group:
    group = Group(id=str(uuid.uuid4()), name=name, permissions=list(permissions))
    db_session.add(group)
    await db_session.commit()
    await db_session.refresh(group)
    return group


@pytest_asyncio.fixture
async def admin_user(db_session):
    """Create an administrator"""
    return await make_user(db_session, "admin", "AdminPassword123!", is_admin=True)


@pytest_asyncio.fixture
async def editors(db_session):
    """Group holding every task and board permission"""
    return await make_group(
        db_session,
        "Editors",
        ["create_board", "edit_board", "create_task", "edit_task", "delete_task"],
    )


@pytest_asyncio.fixture
async def viewers(db_session):
    """Group with no permissions"""
    return await make_group(db_session, "Viewers", [])


@pytest_asyncio.fixture
async def test_user(db_session, editors):
    """Create a regular user in the Editors group"""
    return await make_user(db_session, "testuser", "TestPassword123!", group=editors)


@pytest_asyncio.fixture
async def viewer_user(db_session, viewers):
    return await make_user(db_session, "viewer", "ViewerPassword123!", group=viewers)


@pytest_asyncio.fixture
async def board(db_session, test_user):
    """Board owned by test_user with To Do / In Progress / Done columns"""
    b = Board(id=str(uuid.uuid4()), title="Sprint", owner_id=test_user.id)
    db_session.add(b)
    await db_session.flush()
    for position, title in enumerate(["To Do", "In Progress", "Done"]):
        db_session.add(BoardColumn(id=str(uuid.uuid4()), board_id=b.id, title=title, order=position))
    await db_session.commit()
    return b


async def board_columns(db_session, board_id: str):
    from sqlalchemy import select
    result = await db_session.execute(
        select(BoardColumn)
        .where(BoardColumn.board_id == board_id)
        .order_by(BoardColumn.order, BoardColumn.id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def make_task(db_session, column: BoardColumn, title: str, order: int = 0) -> Task:
    task = Task(id=str(uuid.uuid4()), column_id=column.id, title=title, order=order)
    db_session.add(task)
    await db_session.commit()
    await db_session.refresh(task)
    return task


def as_caller(user: User) -> Caller:
    return AuthService.caller_for(user)


def get_auth_headers(user: User) -> dict:
    """Generate auth headers for a user"""
    token, _ = AuthService.create_session_token(AuthService.caller_for(user))
    return {"Authorization": f"Bearer {token}"}
