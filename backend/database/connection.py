from sqlalchemy.ext.asyncio import (
    create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy import text
import logging

from config import Settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def create_engine_from_settings(settings: Settings) -> AsyncEngine:
    """
    Create the async engine for the contact store.

    The engine owns the connection pool; callers dispose it at shutdown.
    """
    connect_args = {}
    if settings.DB_SSL:
        connect_args["ssl"] = "require"
    if settings.DB_STATEMENT_TIMEOUT_MS > 0:
        connect_args["server_settings"] = {
            "statement_timeout": str(settings.DB_STATEMENT_TIMEOUT_MS)
        }

    return create_async_engine(
        settings.get_database_url(),
        echo=False,
        pool_pre_ping=True,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        connect_args=connect_args
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Create async session factory bound to the engine"""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False
    )


async def init_db(engine: AsyncEngine) -> bool:
    """Verify the database connection and that the contacts table exists"""
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
            logger.info("PostgreSQL connection successful")

            result = await conn.execute(text("""
                SELECT table_name
                FROM information_schema.tables
                WHERE table_schema = 'public'
            """))
            tables = [row[0] for row in result.fetchall()]
            if "contacts" not in tables:
                logger.warning("contacts table not found - run migrations.py")

            return True
    except Exception as e:
        logger.error(f"Database initialization error: {e}")
        raise


async def check_db(engine: AsyncEngine) -> None:
    """Round-trip a trivial query; raises when the database is unreachable"""
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
