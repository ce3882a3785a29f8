from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from src.config import settings


def _serialize_sqlite_writers(async_engine: AsyncEngine) -> None:
    """Open every SQLite transaction with BEGIN IMMEDIATE.

    SQLite has no row locks, so ``SELECT ... FOR UPDATE`` is a no-op there;
    taking the write lock up front gives the sequence counter the same
    mutual exclusion a PostgreSQL row lock provides.
    """

    @event.listens_for(async_engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(async_engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(url: str, *, echo: bool = False) -> AsyncEngine:
    """Create the async engine for ``url`` with per-backend pool settings."""
    if url.startswith("sqlite"):
        async_engine = create_async_engine(url, echo=echo, connect_args={"timeout": 30})
        _serialize_sqlite_writers(async_engine)
        return async_engine

    return create_async_engine(
        url,
        pool_size=20,
        pool_pre_ping=True,
        pool_recycle=3600,
        max_overflow=5,
        echo=echo,
    )


engine = build_engine(settings.database_url, echo=settings.environment == "development")

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
