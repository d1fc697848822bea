"""Test fixtures — a fresh users schema per test.

Learn: Testing pattern for async SQLAlchemy + FastAPI:

1. Each test gets its own engine and a freshly created schema. By default
   that's a throwaway SQLite file (aiosqlite); set LOCASSO_TEST_DATABASE_URL
   to run the same suite against Postgres.
2. Requests get their own session from the test session factory, just like
   production — so concurrent requests really use separate transactions.
3. The uniqueness constraint comes from the models, so the race tests
   exercise the same constraint the migration creates.
"""

import base64
import json
import os

import jwt
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from locasso.db.engine import get_db
from locasso.db.models import Base
from locasso.main import app

TEST_DB_URL = os.environ.get("LOCASSO_TEST_DATABASE_URL")

TOKEN_SECRET = "test-signing-key-not-verified-by-locasso"


def make_identity_token(**claims) -> str:
    """Signed JWT — Locasso decodes without verifying, any key works."""
    return jwt.encode(claims, TOKEN_SECRET, algorithm="HS256")


def make_client_principal(claims: dict, auth_typ: str = "apple") -> str:
    """Build an X-MS-CLIENT-PRINCIPAL header value."""
    blob = {
        "auth_typ": auth_typ,
        "claims": [{"typ": typ, "val": val} for typ, val in claims.items()],
        "name_typ": "name",
        "role_typ": "roles",
    }
    return base64.b64encode(json.dumps(blob).encode()).decode()


@pytest_asyncio.fixture()
async def db_engine(tmp_path):
    url = TEST_DB_URL or f"sqlite+aiosqlite:///{tmp_path / 'locasso-test.db'}"
    engine = create_async_engine(url, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        await engine.dispose()


@pytest_asyncio.fixture()
async def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture()
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture()
async def client(session_factory):
    """HTTP client with the app's get_db pointed at the test database."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
