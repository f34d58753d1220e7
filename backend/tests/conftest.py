"""
Shared pytest fixtures for portfolio backend tests.

Provides:
  - async SQLite file database (per-test isolation; several sessions may be
    open at once, as with counters and the scheduler)
  - FakeObjectStorage spy standing in for S3
  - the FastAPI app wired to both, and authenticated HTTP clients
"""
from __future__ import annotations

import os

# Settings are read at import time by the rate limiter and by portfolio.main
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-not-for-production-at-all")
os.environ.setdefault("ADMIN_PASSWORD", "TestAdmin@2024!")
os.environ.setdefault("RUN_MIGRATIONS_ON_STARTUP", "false")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("LOG_JSON", "false")

from collections.abc import AsyncGenerator, Awaitable, Callable  # noqa: E402
from datetime import timedelta  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import select  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine  # noqa: E402

from portfolio.config.settings import Settings  # noqa: E402
from portfolio.core.security import hash_password  # noqa: E402
from portfolio.db.base import Base  # noqa: E402
from portfolio.db.models.user import ADMIN_ROLE, Permission, Role, User  # noqa: E402
from portfolio.db.session import SessionFactory, build_session_factory, get_db  # noqa: E402
from portfolio.main import create_app  # noqa: E402
from portfolio.services.storage import StorageError, generate_key  # noqa: E402

TEST_PASSWORD = "Corr3ct-Horse-Battery"


# ─── Object storage spy ───────────────────────────────────────────────────────

class FakeObjectStorage:
    """
    In-memory ObjectStorage that records every call.

    ``next_key`` forces the key returned by the next ``put``; the ``fail_*``
    switches make the matching operation raise StorageError.
    """

    def __init__(self, bucket: str = "test-bucket") -> None:
        self.bucket = bucket
        self.objects: dict[str, bytes] = {}
        self.put_keys: list[str] = []
        self.deleted: list[str] = []
        self.presigned: list[tuple[str, timedelta]] = []
        self.next_key: str | None = None
        self.fail_put = False
        self.fail_presign = False
        self.fail_presign_keys: set[str] = set()
        self.fail_delete = False
        self._signatures = 0

    async def put(
        self,
        data: bytes,
        content_type: str,
        metadata: dict[str, str] | None = None,
        suffix: str = "",
    ) -> str:
        if self.fail_put:
            raise StorageError("put", None, "injected failure")
        key = self.next_key or generate_key(suffix)
        self.next_key = None
        self.objects[key] = data
        self.put_keys.append(key)
        return key

    async def delete(self, key: str) -> None:
        if self.fail_delete:
            raise StorageError("delete", key, "injected failure")
        self.objects.pop(key, None)
        self.deleted.append(key)

    async def presign_get(self, key: str, ttl: timedelta) -> str:
        if self.fail_presign or key in self.fail_presign_keys:
            raise StorageError("presign", key, "injected failure")
        self._signatures += 1
        self.presigned.append((key, ttl))
        return (
            f"https://storage.test/{self.bucket}/{key}"
            f"?X-Amz-Expires={int(ttl.total_seconds())}&sig={self._signatures}"
        )

    def public_url(self, key: str) -> str:
        return f"https://storage.test/{self.bucket}/{key}"


# ─── Settings & database ──────────────────────────────────────────────────────

@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        jwt_secret_key="test-secret-key-not-for-production-at-all",
        admin_password="TestAdmin@2024!",
        environment="testing",
        run_migrations_on_startup=False,
        scheduler_enabled=False,
        scheduler_interval_seconds=3600,
        rate_limit_enabled=False,
        cors_origins=["http://localhost:5173"],
        log_json=False,
        s3_bucket="test-bucket",
    )


@pytest_asyncio.fixture
async def db_engine(settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(
        settings.database_url,
        connect_args={"check_same_thread": False, "timeout": 15},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> SessionFactory:
    return build_session_factory(db_engine)


@pytest_asyncio.fixture
async def db_session(session_factory: SessionFactory) -> AsyncGenerator[AsyncSession, None]:
    """A session for arranging and inspecting state. Commit before going over HTTP."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def storage() -> FakeObjectStorage:
    return FakeObjectStorage()


# ─── Identity helpers ─────────────────────────────────────────────────────────

async def create_user(
    factory: SessionFactory,
    username: str,
    *,
    legacy_role: str = "user",
    role_id: str | None = None,
    is_active: bool = True,
    password: str = TEST_PASSWORD,
) -> str:
    """Insert a user in its own session and return its id."""
    async with factory() as db:
        user = User(
            username=username,
            email=f"{username}@example.com",
            password_hash=hash_password(password),
            role=legacy_role,
            role_id=role_id,
            is_active=is_active,
        )
        db.add(user)
        await db.commit()
        return user.id


async def create_role(
    factory: SessionFactory, name: str, codes: list[str] | None = None
) -> str:
    """Insert a role granting ``codes``, creating missing permissions on the way."""
    async with factory() as db:
        permissions = []
        for code in codes or []:
            resource, action = code.split(":")
            result = await db.execute(
                select(Permission).where(
                    Permission.resource == resource, Permission.action == action
                )
            )
            permission = result.scalar_one_or_none()
            if permission is None:
                permission = Permission(name=code, resource=resource, action=action)
                db.add(permission)
            permissions.append(permission)
        role = Role(name=name, description=name)
        role.permissions = permissions
        db.add(role)
        await db.commit()
        return role.id


@pytest.fixture
def make_user(session_factory: SessionFactory) -> Callable[..., Awaitable[str]]:
    async def _make(username: str, **kwargs) -> str:
        return await create_user(session_factory, username, **kwargs)

    return _make


@pytest.fixture
def make_role(session_factory: SessionFactory) -> Callable[..., Awaitable[str]]:
    async def _make(name: str, codes: list[str] | None = None) -> str:
        return await create_role(session_factory, name, codes)

    return _make


# ─── App & HTTP clients ───────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def app(settings: Settings, session_factory: SessionFactory, storage: FakeObjectStorage):
    """Create FastAPI test app with overridden DB dependency."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app_ = create_app(settings=settings, storage=storage, session_factory=session_factory)
    app_.dependency_overrides[get_db] = override_get_db
    yield app_
    await app_.state.counters.drain()
    await app_.state.scheduler.stop()


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Unauthenticated async HTTP client."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


LoginAs = Callable[[str], Awaitable[AsyncClient]]


@pytest_asyncio.fixture
async def login_as(app) -> AsyncGenerator[LoginAs, None]:
    """
    Factory returning a client authenticated as an existing user.

    Each call opens its own client so several identities can be used side
    by side in one test.
    """
    opened: list[AsyncClient] = []

    async def _login(username: str, password: str = TEST_PASSWORD) -> AsyncClient:
        c = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
        opened.append(c)
        resp = await c.post(
            "/api/v1/auth/login", json={"username": username, "password": password}
        )
        assert resp.status_code == 200, resp.text
        c.headers["Authorization"] = f"Bearer {resp.json()['access_token']}"
        return c

    yield _login
    for c in opened:
        await c.aclose()


@pytest_asyncio.fixture
async def admin_client(session_factory: SessionFactory, login_as: LoginAs) -> AsyncClient:
    """HTTP client authenticated as a legacy-role admin."""
    await create_user(session_factory, "testadmin", legacy_role=ADMIN_ROLE)
    return await login_as("testadmin")


@pytest_asyncio.fixture
async def user_client(session_factory: SessionFactory, login_as: LoginAs) -> AsyncClient:
    """HTTP client authenticated as a plain user with no assigned role."""
    await create_user(session_factory, "plainuser")
    return await login_as("plainuser")
