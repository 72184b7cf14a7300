"""
Identity Reconciliation - Contact Repository

Row-level access to the contacts table. A repository is bound to one
AsyncSession inside one open transaction, so every call below runs in
that transaction's execution context.
"""

import hashlib
import logging
from typing import Iterable, List, Optional

from sqlalchemy import select, update, insert, or_, text, func
from sqlalchemy.ext.asyncio import AsyncSession, AsyncSessionTransaction

from .errors import ConsistencyError
from .models import ContactDB, Contact, LinkPrecedence, CONTACT_COLUMNS

logger = logging.getLogger(__name__)


def identity_lock_key(identity_key: str) -> int:
    """
    Map an identity key onto a signed 64-bit advisory lock id.

    Uses the first 8 bytes of the MD5 digest, read big-endian.
    """
    digest = hashlib.md5(identity_key.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big", signed=True)


def assert_valid_ids(ids: Iterable[int], context: str) -> None:
    for contact_id in ids:
        if isinstance(contact_id, bool) or not isinstance(contact_id, int) or contact_id <= 0:
            raise ConsistencyError(f"{context}: invalid id {contact_id!r}")


def _single_row(rows: list, context: str):
    if len(rows) != 1:
        raise ConsistencyError(f"{context}: expected exactly 1 row, got {len(rows)}")
    return rows[0]


class ContactRepository:
    """Contact store operations for a single transaction."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== READS ====================

    async def find_by_email_or_phone(
        self,
        email: Optional[str],
        phone_number: Optional[str]
    ) -> List[Contact]:
        """Rows matching the email OR the phone number. No filters, no query."""
        conditions = []
        if email is not None:
            conditions.append(ContactDB.email == email)
        if phone_number is not None:
            conditions.append(ContactDB.phone_number == phone_number)

        if not conditions:
            return []

        query = (
            select(*CONTACT_COLUMNS)
            .where(ContactDB.deleted_at.is_(None), or_(*conditions))
            .order_by(ContactDB.created_at, ContactDB.id)
        )
        result = await self.db.execute(query)
        return [Contact.from_row(row) for row in result.mappings().all()]

    async def find_cluster_by_primary_ids(self, primary_ids: List[int]) -> List[Contact]:
        """Every row that is one of the primaries or links to one of them."""
        if not primary_ids:
            return []

        assert_valid_ids(primary_ids, "find_cluster_by_primary_ids")

        query = (
            select(*CONTACT_COLUMNS)
            .where(
                ContactDB.deleted_at.is_(None),
                or_(
                    ContactDB.id.in_(primary_ids),
                    ContactDB.linked_id.in_(primary_ids)
                )
            )
            .order_by(ContactDB.created_at, ContactDB.id)
        )
        result = await self.db.execute(query)
        return [Contact.from_row(row) for row in result.mappings().all()]

    # ==================== WRITES ====================

    async def create_primary_contact(
        self,
        email: Optional[str],
        phone_number: Optional[str]
    ) -> Contact:
        query = (
            insert(ContactDB)
            .values(
                email=email,
                phone_number=phone_number,
                linked_id=None,
                link_precedence=LinkPrecedence.PRIMARY,
                created_at=func.clock_timestamp(),
                updated_at=func.clock_timestamp()
            )
            .returning(*CONTACT_COLUMNS)
        )
        result = await self.db.execute(query)
        return Contact.from_row(_single_row(result.mappings().all(), "create_primary_contact"))

    async def create_secondary_contact(
        self,
        email: Optional[str],
        phone_number: Optional[str],
        primary_id: int
    ) -> Contact:
        assert_valid_ids([primary_id], "create_secondary_contact")

        query = (
            insert(ContactDB)
            .values(
                email=email,
                phone_number=phone_number,
                linked_id=primary_id,
                link_precedence=LinkPrecedence.SECONDARY,
                created_at=func.clock_timestamp(),
                updated_at=func.clock_timestamp()
            )
            .returning(*CONTACT_COLUMNS)
        )
        result = await self.db.execute(query)
        return Contact.from_row(_single_row(result.mappings().all(), "create_secondary_contact"))

    async def demote_primary(self, primary_id: int, new_primary_id: int) -> None:
        """Turn a primary into a secondary of new_primary_id. Exactly one row must change."""
        assert_valid_ids([primary_id, new_primary_id], "demote_primary")
        if primary_id == new_primary_id:
            raise ConsistencyError(f"demote_primary: cannot link contact {primary_id} to itself")

        query = (
            update(ContactDB)
            .where(
                ContactDB.id == primary_id,
                ContactDB.link_precedence == LinkPrecedence.PRIMARY,
                ContactDB.deleted_at.is_(None)
            )
            .values(
                linked_id=new_primary_id,
                link_precedence=LinkPrecedence.SECONDARY,
                updated_at=func.clock_timestamp()
            )
        )
        result = await self.db.execute(query)

        if result.rowcount != 1:
            raise ConsistencyError(
                f"demote_primary: expected to update 1 row, got {result.rowcount}"
            )

    async def reattach_secondaries(self, old_primary_id: int, new_primary_id: int) -> int:
        """Point every dependent of old_primary_id at new_primary_id. Returns rows moved."""
        assert_valid_ids([old_primary_id, new_primary_id], "reattach_secondaries")

        query = (
            update(ContactDB)
            .where(ContactDB.linked_id == old_primary_id)
            .values(linked_id=new_primary_id, updated_at=func.clock_timestamp())
        )
        result = await self.db.execute(query)
        return result.rowcount

    # ==================== LOCKS ====================

    async def begin_savepoint(self) -> AsyncSessionTransaction:
        """
        Open a savepoint inside the current transaction.

        Rolling it back releases the row locks taken after it, while the
        advisory lock and earlier locks stay held.
        """
        return await self.db.begin_nested()

    async def lock_primaries(self, primary_ids: List[int]) -> List[int]:
        """
        Take row locks on the given primaries in ascending id order.

        Every transaction locks in the same global order, so two
        transactions with overlapping sets cannot deadlock on them.
        """
        if not primary_ids:
            return []

        assert_valid_ids(primary_ids, "lock_primaries")
        ordered = sorted(set(primary_ids))

        query = (
            select(ContactDB.id)
            .where(ContactDB.id.in_(ordered))
            .order_by(ContactDB.id)
            .with_for_update()
        )
        await self.db.execute(query)
        return ordered

    async def acquire_identity_lock(self, identity_key: str) -> None:
        """Transaction-scoped advisory lock; released at commit or rollback."""
        await self.db.execute(
            text("SELECT pg_advisory_xact_lock(:lock_key)"),
            {"lock_key": identity_lock_key(identity_key)}
        )
