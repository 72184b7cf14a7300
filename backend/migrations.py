"""
Database migration script for Identity Reconciliation

Creates the link_precedence enum, the contacts table and its indexes.
Safe to run repeatedly.

Usage: python migrations.py [create|drop|check]
"""
import asyncio
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

# Load environment
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

from config import get_settings
from database import Base, create_engine_from_settings
import identity.models  # noqa: F401  registers ContactDB on Base

logger = logging.getLogger(__name__)


async def create_tables(engine: AsyncEngine) -> list:
    """Create every table defined on Base (checkfirst)"""
    logger.info("Creating contacts schema...")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    tables = await check_tables(engine)
    logger.info(f"Tables present: {tables}")
    return tables


async def drop_tables(engine: AsyncEngine) -> None:
    """Drop the contacts schema (use with caution!)"""
    logger.info("Dropping contacts schema...")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        logger.info("All tables dropped")


async def check_tables(engine: AsyncEngine) -> list:
    """Check which tables exist"""
    async with engine.begin() as conn:
        result = await conn.execute(text("""
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = 'public'
            ORDER BY table_name
        """))
        return [row[0] for row in result.fetchall()]


async def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    command = argv[0] if argv else "create"

    engine = create_engine_from_settings(get_settings())
    try:
        if command == "create":
            tables = await create_tables(engine)
            print(f"Created tables: {tables}")
        elif command == "drop":
            await drop_tables(engine)
        elif command == "check":
            tables = await check_tables(engine)
            print(f"Existing tables: {tables}")
        else:
            print(f"Unknown command: {command}")
            print("Usage: python migrations.py [create|drop|check]")
            return 1
    finally:
        await engine.dispose()

    return 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    sys.exit(asyncio.run(main()))
