"""Async database engine and session management."""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from librarease.config import settings


engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_size=settings.db_pool_size,
    max_overflow=20,
    pool_pre_ping=True,
)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all models."""
    pass


NOTIFICATION_CHANNEL = "new_notification"

# One statement per entry: asyncpg prepares each separately.
_NOTIFY_TRIGGER_DDL = (
    f"""
    CREATE OR REPLACE FUNCTION notify_new_notification() RETURNS trigger AS $$
    BEGIN
        PERFORM pg_notify('{NOTIFICATION_CHANNEL}', row_to_json(NEW)::text);
        RETURN NEW;
    END;
    $$ LANGUAGE plpgsql
    """,
    "DROP TRIGGER IF EXISTS notification_insert_trigger ON notifications",
    """
    CREATE TRIGGER notification_insert_trigger
    AFTER INSERT ON notifications
    FOR EACH ROW EXECUTE FUNCTION notify_new_notification()
    """,
)


async def init_db():
    """Create all tables and the notification trigger. In production, use Alembic migrations instead."""
    import librarease.models  # noqa: F401  (register tables on Base.metadata)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        for statement in _NOTIFY_TRIGGER_DDL:
            await conn.execute(text(statement))


async def dispose_db():
    await engine.dispose()
