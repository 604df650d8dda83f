"""
Shared test fixtures for the Maelink test suite.

Every test gets a fresh in-memory database (aiosqlite + StaticPool) and its
own application built with ``create_app(engine)``, so registry and sessions
never leak between tests.
"""

import os
import sys
from datetime import timedelta
from typing import Any, AsyncGenerator

import pytest

# Ensure project root is importable
ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

# Override environment BEFORE importing application modules
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["INVITE_REGENERATE_ON_USE"] = "false"

from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from maelink.core.security import generate_token, get_password_hash
from maelink.core.timeutils import utcnow
from maelink.db.base import Base
from maelink.main import create_app
from maelink.models.invite_code import InviteCode
from maelink.models.user import User

DEFAULT_PASSWORD = "hunter22"
SYSTEM_KEY = "s3cret-system-key"


class FakeSocket:
    """Stands in for a Starlette WebSocket; records frames and closes."""

    def __init__(self, fail: bool = False) -> None:
        self.sent: list[dict[str, Any]] = []
        self.closed_with: int | None = None
        self.fail = fail

    async def send_json(self, data: Any, mode: str = "text") -> None:
        if self.fail:
            raise RuntimeError("socket is gone")
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        if self.fail:
            raise RuntimeError("socket is gone")
        self.closed_with = code

    @property
    def last(self) -> dict[str, Any]:
        return self.sent[-1]


@pytest.fixture
async def engine(request, tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    if request.node.get_closest_marker("file_db"):
        # Concurrency tests need separate connections; StaticPool shares one
        # connection (and transaction) across every session.
        test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/test.db")
    else:
        test_engine = create_async_engine(
            "sqlite+aiosqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def app(engine: AsyncEngine) -> FastAPI:
    return create_app(engine)


@pytest.fixture
async def async_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Return a httpx AsyncClient wired to the app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
async def db_session(app: FastAPI) -> AsyncGenerator[AsyncSession, None]:
    """Return a raw database session for direct queries in tests."""
    async with app.state.session_factory() as session:
        yield session


@pytest.fixture
def registry(app: FastAPI):
    return app.state.registry


@pytest.fixture
def dispatcher(app: FastAPI):
    return app.state.dispatcher


@pytest.fixture
def scheduler(app: FastAPI):
    return app.state.scheduler


@pytest.fixture
def connect(registry):
    """Open an anonymous session on a fresh fake socket."""

    def _connect(fail: bool = False):
        sock = FakeSocket(fail=fail)
        return sock, registry.open(sock)

    return _connect


@pytest.fixture
def make_user(db_session: AsyncSession):
    async def _make_user(
        name: str,
        role: str = "user",
        password: str | None = DEFAULT_PASSWORD,
        **fields: Any,
    ) -> User:
        fields.setdefault("token", generate_token())
        fields.setdefault("expires_at", utcnow() + timedelta(days=3))
        user = User(
            name=name,
            display_name=fields.pop("display_name", name),
            pswd=get_password_hash(password) if password else None,
            role=role,
            **fields,
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _make_user


@pytest.fixture
def make_system_user(make_user):
    async def _make_system_user(name: str = "system", key: str | None = SYSTEM_KEY) -> User:
        return await make_user(
            name,
            role="sysadmin",
            password=None,
            token=None,
            expires_at=None,
            system_account=True,
            system_key=get_password_hash(key) if key else None,
        )

    return _make_system_user


@pytest.fixture
def make_code(db_session: AsyncSession):
    async def _make_code(value: str, expires_at=None) -> InviteCode:
        code = InviteCode(value=value, expires_at=expires_at)
        db_session.add(code)
        await db_session.commit()
        return code

    return _make_code


@pytest.fixture
def fetch_user(app: FastAPI):
    """Load a user through a fresh session so app-side changes are visible."""

    async def _fetch(user_id: int) -> User | None:
        async with app.state.session_factory() as session:
            result = await session.execute(select(User).where(User.id == user_id))
            return result.scalar_one_or_none()

    return _fetch


@pytest.fixture
def auth():
    def _auth(user: User) -> dict[str, str]:
        return {"token": user.token}

    return _auth
