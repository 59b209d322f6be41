"""
Scoped transaction unit for ledger writes.

Separated from database.py so services can use it without creating
the asyncpg engine (tests bind sessions to SQLite).
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession


@asynccontextmanager
async def transactional(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    All-or-nothing unit of work on ``session``.

    Commits everything written inside the block, or rolls all of it back
    if the block raises.
    """
    try:
        yield session
        await session.commit()
    except BaseException:
        await session.rollback()
        raise
