from collections.abc import AsyncGenerator

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from src.database.engine import async_session
from src.exceptions import ConcurrencyConflictException


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields a database session.

    Commits when the request handler returns; a commit that loses a race
    against another transaction is reported as a retriable conflict.
    """
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except (StaleDataError, OperationalError) as exc:
            await session.rollback()
            raise ConcurrencyConflictException(
                "The record was modified concurrently; retry the request"
            ) from exc
        except Exception:
            await session.rollback()
            raise
