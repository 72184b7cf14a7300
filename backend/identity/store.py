"""
Identity Reconciliation - Contact Store

Owns the session factory and hands out transaction-bound repositories.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import async_sessionmaker

from .errors import ConsistencyError, TransientStoreError
from .repository import ContactRepository

logger = logging.getLogger(__name__)

# serialization_failure, deadlock_detected, lock_not_available,
# query_canceled (statement_timeout), admin/crash shutdown
TRANSIENT_SQLSTATES = frozenset([
    "40001", "40P01", "55P03", "57014", "57P01", "57P02", "57P03",
])


def _sqlstate(exc: DBAPIError):
    orig = getattr(exc, "orig", None)
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def is_transient_error(exc: BaseException) -> bool:
    """True for database errors a caller can reasonably retry."""
    if isinstance(exc, (asyncio.TimeoutError, ConnectionError)):
        return True
    if not isinstance(exc, DBAPIError):
        return False
    if exc.connection_invalidated or isinstance(exc, OperationalError):
        return True

    sqlstate = _sqlstate(exc)
    if sqlstate is None:
        return False
    return sqlstate in TRANSIENT_SQLSTATES or sqlstate.startswith("08")


class ContactStore:
    """
    Transactional handle over the contacts table.

    Created once at process start from the engine's session factory.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[ContactRepository]:
        """
        Open a transaction and yield a repository bound to it.

        Commits when the block exits normally and rolls back on any
        exception, releasing every row lock and advisory lock taken.
        """
        async with self.session_factory() as session:
            try:
                async with session.begin():
                    yield ContactRepository(session)
            except IntegrityError as e:
                logger.error(f"Contact store integrity violation: {type(e.orig).__name__}")
                raise ConsistencyError("Contact store rejected a write") from e
            except (DBAPIError, asyncio.TimeoutError, ConnectionError) as e:
                if not is_transient_error(e):
                    raise
                logger.warning(f"Transient contact store failure, transaction rolled back: {type(e).__name__}")
                raise TransientStoreError("Contact store temporarily unavailable") from e
