"""Test fixtures.

Learn: two kinds of tests live here:

1. Push-channel tests (registry, SSE stream, client, auth) need nothing
   but the app. Each test gets a fresh ConnectionRegistry injected via
   dependency_overrides, so no state leaks between tests.
2. Inbox tests need Postgres. Each test gets its own engine +
   connection + transaction; the session uses
   join_transaction_mode="create_savepoint" so service-level commit()
   becomes a SAVEPOINT, and the outer transaction rolls back afterwards.
   When Postgres is not reachable those tests are skipped.
"""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

from placement.auth.jwt import create_access_token
from placement.config import settings
from placement.db.engine import get_db
from placement.db.models import Base
from placement.main import app
from placement.realtime.registry import ConnectionRegistry, get_registry


TEST_DB_URL = settings.database_url


def auth_headers(user_id: str, role: str) -> dict[str, str]:
    """Bearer header for a user of the given role."""
    return {"Authorization": f"Bearer {create_access_token(user_id, role)}"}


@pytest.fixture()
def headers():
    """Factory: headers(user_id, role) → Authorization header dict."""
    return auth_headers


@pytest.fixture()
def registry():
    """Fresh, isolated connection registry."""
    return ConnectionRegistry(queue_size=10)


@pytest_asyncio.fixture()
async def client(registry):
    """HTTP client with the registry overridden (no database)."""
    app.dependency_overrides[get_registry] = lambda: registry

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def db_session():
    """Per-test session with automatic rollback via savepoints.

    Tables are created inside the outer transaction, so a bare database
    works too and nothing survives the test.
    """
    engine = create_async_engine(TEST_DB_URL, echo=False)
    try:
        conn = await engine.connect()
    except (OSError, SQLAlchemyError) as e:
        await engine.dispose()
        pytest.skip(f"Postgres not available: {e}")

    trans = await conn.begin()
    await conn.run_sync(Base.metadata.create_all)
    session = AsyncSession(
        bind=conn,
        expire_on_commit=False,
        join_transaction_mode="create_savepoint",
    )
    try:
        yield session
    finally:
        await session.close()
        await trans.rollback()
        await conn.close()
        await engine.dispose()


@pytest_asyncio.fixture()
async def db_client(db_session, registry):
    """HTTP client with both the DB session and the registry overridden."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_registry] = lambda: registry

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
