"""
Shared fixtures — in-memory SQLite for fast tests.

Every test gets a fresh database. The app's `get_session` dependency is
overridden so each request runs in its own transaction on that database.
"""

from __future__ import annotations

import os

os.environ.setdefault("TENANTRY_ENVIRONMENT", "test")
os.environ.setdefault("TENANTRY_DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("TENANTRY_RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("TENANTRY_LOG_FORMAT", "text")

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

import tenantry.models  # noqa: E402,F401
from tenantry.core.database import get_session  # noqa: E402
from tenantry.main import app  # noqa: E402

DEFAULT_PASSWORD = "Password123!"


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    """Session for service-level tests. Not shared with HTTP requests."""
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory):
    async def override_get_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session] = override_get_session
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def register_user(client):
    """Register a user over HTTP; returns user, access token, headers and refresh token."""

    async def _register(
        email: str,
        password: str = DEFAULT_PASSWORD,
        first_name: str = "Test",
        last_name: str = "User",
    ) -> dict:
        resp = await client.post(
            "/api/v1/auth/register",
            json={
                "email": email,
                "password": password,
                "first_name": first_name,
                "last_name": last_name,
            },
        )
        assert resp.status_code == 201, resp.text
        body = resp.json()
        return {
            "user": body["user"],
            "token": body["access_token"],
            "headers": {"Authorization": f"Bearer {body['access_token']}"},
            "refresh": resp.cookies.get("refreshToken"),
        }

    return _register


@pytest.fixture
def create_org(client):
    async def _create(headers: dict, name: str = "Acme", **extra) -> dict:
        resp = await client.post("/api/v1/orgs", json={"name": name, **extra}, headers=headers)
        assert resp.status_code == 201, resp.text
        return resp.json()

    return _create


@pytest.fixture
def add_member(client, register_user):
    """Invite `email` into `slug` with `role` as the admin, then accept as the new user."""

    async def _add(admin_headers: dict, slug: str, email: str, role: str) -> dict:
        member = await register_user(email)
        resp = await client.post(
            f"/api/v1/orgs/{slug}/invitations",
            json={"email": email, "role": role},
            headers=admin_headers,
        )
        assert resp.status_code == 201, resp.text
        token = resp.json()["token"]

        resp = await client.post(
            "/api/v1/orgs/accept-invitation",
            json={"token": token},
            headers=member["headers"],
        )
        assert resp.status_code == 200, resp.text
        member["membership"] = resp.json()["membership"]
        return member

    return _add
