"""Role lookup against the platform's account tables.

Learn: logins issued by the account service carry only the user id, so
the role is established the way the rest of the platform does it: a
student is someone with a row in `students`, a company one in
`companies`, an admin one in `admins`. Those tables belong to the
account service; this module only reads them.

The lookup opens its own short session instead of taking the request's
get_db session, because the subscribe route must not hold a pooled
connection for the life of its stream.
"""

import uuid

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from placement.db.engine import async_session_factory

logger = structlog.get_logger()

ROLE_TABLES = {
    "student": "students",
    "company": "companies",
    "admin": "admins",
}


class AccountLookup:
    """Answers "does this user id belong to that role?"."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] = async_session_factory):
        self._session_factory = session_factory

    async def has_role(self, user_id: str, role: str) -> bool:
        table = ROLE_TABLES[role]
        async with self._session_factory() as session:
            result = await session.execute(
                text(f"SELECT 1 FROM {table} WHERE id = :id"),
                {"id": uuid.UUID(user_id)},
            )
            found = result.first() is not None
        if not found:
            logger.info("auth.role_not_found", user_id=user_id, role=role)
        return found


account_lookup = AccountLookup()


def get_account_lookup() -> AccountLookup:
    """FastAPI dependency — the account table lookup."""
    return account_lookup
