"""Engine settings (needs Postgres)."""

import pytest
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from placement.db.engine import APPLICATION_NAME, engine


@pytest.mark.asyncio
async def test_connections_identify_the_service():
    """The shared database sees who holds each connection."""
    # Forget connections pooled under other tests' event loops
    await engine.dispose(close=False)
    try:
        async with engine.connect() as conn:
            name = (await conn.execute(text("SHOW application_name"))).scalar_one()
    except (OSError, SQLAlchemyError) as e:
        pytest.skip(f"Postgres not available: {e}")
    finally:
        await engine.dispose()

    assert name == APPLICATION_NAME


def test_pool_pings_before_use():
    assert engine.pool._pre_ping is True
