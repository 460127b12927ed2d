"""Async SQLAlchemy engine and session factory.

Learn: this service shares its PostgreSQL database with the account
service, so its connections identify themselves (`application_name`
shows up in pg_stat_activity) and the pool stays small. Sessions are
only ever held for the length of one inbox request; the SSE subscribe
route never checks one out, so open streams do not pin pool slots.
Creating the engine does not connect; the first query does.
"""

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from placement.config import settings

APPLICATION_NAME = "placement-notifications"

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_size=5,
    max_overflow=5,
    # Drop pooled connections the shared server closed while idle
    pool_pre_ping=True,
    connect_args={"server_settings": {"application_name": APPLICATION_NAME}},
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db():
    """FastAPI dependency: one inbox session per request."""
    async with async_session_factory() as session:
        yield session
