"""
Shared fixtures for identity reconciliation tests.

InMemoryContactStore mirrors ContactStore's transaction contract:
- reads see committed rows plus the transaction's own writes
- writes become visible to others only on commit; an exception discards them
- row locks and advisory locks are asyncio locks held until transaction end
Every operation yields to the event loop so concurrent tasks interleave.
"""

import asyncio
import itertools
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest

from identity.errors import ConsistencyError
from identity.models import Contact, LinkPrecedence
from identity.repository import assert_valid_ids, identity_lock_key
from identity.service import ReconciliationService


BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


class InMemoryContactDatabase:
    """Committed state shared by every transaction."""

    def __init__(self):
        self.rows: Dict[int, Contact] = {}
        self.transactions = 0
        self._ids = itertools.count(1)
        self._ticks = itertools.count(1)
        self.row_locks: Dict[int, asyncio.Lock] = defaultdict(asyncio.Lock)
        self.advisory_locks: Dict[int, asyncio.Lock] = defaultdict(asyncio.Lock)

    def next_id(self) -> int:
        return next(self._ids)

    def now(self) -> datetime:
        return BASE_TIME + timedelta(milliseconds=next(self._ticks))

    def insert(
        self,
        email: Optional[str],
        phone_number: Optional[str],
        linked_id: Optional[int] = None,
        created_at: Optional[datetime] = None
    ) -> Contact:
        """Seed a committed row directly."""
        created_at = created_at or self.now()
        contact = Contact(
            id=self.next_id(),
            email=email,
            phone_number=phone_number,
            linked_id=linked_id,
            link_precedence=LinkPrecedence.PRIMARY if linked_id is None else LinkPrecedence.SECONDARY,
            created_at=created_at,
            updated_at=created_at,
        )
        self.rows[contact.id] = contact
        return contact

    def all_rows(self) -> List[Contact]:
        return sorted(self.rows.values(), key=lambda c: c.id)

    def primaries(self) -> List[Contact]:
        return [c for c in self.all_rows() if c.is_primary]

    def secondaries(self) -> List[Contact]:
        return [c for c in self.all_rows() if not c.is_primary]


class InMemoryContactRepository:
    """Same interface as ContactRepository, scoped to one fake transaction."""

    def __init__(self, database: InMemoryContactDatabase):
        self.database = database
        self.pending: Dict[int, Contact] = {}
        self.held: List[asyncio.Lock] = []
        self.locked_rows = set()
        self.locked_keys = set()

    def _visible(self) -> List[Contact]:
        rows = {**self.database.rows, **self.pending}
        return sorted(
            (c for c in rows.values() if c.deleted_at is None),
            key=lambda c: (c.created_at, c.id)
        )

    async def find_by_email_or_phone(self, email, phone_number) -> List[Contact]:
        if email is None and phone_number is None:
            return []
        await asyncio.sleep(0)
        return [
            c for c in self._visible()
            if (email is not None and c.email == email)
            or (phone_number is not None and c.phone_number == phone_number)
        ]

    async def find_cluster_by_primary_ids(self, primary_ids) -> List[Contact]:
        if not primary_ids:
            return []
        assert_valid_ids(primary_ids, "find_cluster_by_primary_ids")
        await asyncio.sleep(0)
        ids = set(primary_ids)
        return [c for c in self._visible() if c.id in ids or c.linked_id in ids]

    async def _insert(self, email, phone_number, linked_id) -> Contact:
        await asyncio.sleep(0)
        now = self.database.now()
        contact = Contact(
            id=self.database.next_id(),
            email=email,
            phone_number=phone_number,
            linked_id=linked_id,
            link_precedence=LinkPrecedence.PRIMARY if linked_id is None else LinkPrecedence.SECONDARY,
            created_at=now,
            updated_at=now,
        )
        self.pending[contact.id] = contact
        return contact

    async def create_primary_contact(self, email, phone_number) -> Contact:
        return await self._insert(email, phone_number, None)

    async def create_secondary_contact(self, email, phone_number, primary_id) -> Contact:
        assert_valid_ids([primary_id], "create_secondary_contact")
        return await self._insert(email, phone_number, primary_id)

    async def demote_primary(self, primary_id, new_primary_id) -> None:
        assert_valid_ids([primary_id, new_primary_id], "demote_primary")
        await asyncio.sleep(0)
        matches = [c for c in self._visible() if c.id == primary_id and c.is_primary]
        if len(matches) != 1:
            raise ConsistencyError(
                f"demote_primary: expected to update 1 row, got {len(matches)}"
            )
        self.pending[primary_id] = replace(
            matches[0],
            linked_id=new_primary_id,
            link_precedence=LinkPrecedence.SECONDARY,
            updated_at=self.database.now()
        )

    async def reattach_secondaries(self, old_primary_id, new_primary_id) -> int:
        assert_valid_ids([old_primary_id, new_primary_id], "reattach_secondaries")
        await asyncio.sleep(0)
        moved = 0
        for contact in self._visible():
            if contact.linked_id == old_primary_id:
                self.pending[contact.id] = replace(contact, linked_id=new_primary_id)
                moved += 1
        return moved

    async def begin_savepoint(self) -> "InMemorySavepoint":
        return InMemorySavepoint(self)

    async def lock_primaries(self, primary_ids) -> List[int]:
        if not primary_ids:
            return []
        assert_valid_ids(primary_ids, "lock_primaries")
        ordered = sorted(set(primary_ids))
        for contact_id in ordered:
            if contact_id in self.locked_rows:
                continue
            lock = self.database.row_locks[contact_id]
            await lock.acquire()
            self.held.append(lock)
            self.locked_rows.add(contact_id)
        return ordered

    async def acquire_identity_lock(self, identity_key: str) -> None:
        key = identity_lock_key(identity_key)
        if key in self.locked_keys:
            return
        lock = self.database.advisory_locks[key]
        await lock.acquire()
        self.held.append(lock)
        self.locked_keys.add(key)

    def commit(self) -> None:
        self.database.rows.update(self.pending)
        self.pending = {}

    def release(self) -> None:
        for lock in reversed(self.held):
            lock.release()
        self.held = []


class InMemorySavepoint:
    """Rollback discards writes and releases locks taken since it was opened."""

    def __init__(self, repository: InMemoryContactRepository):
        self.repository = repository
        self.held_mark = len(repository.held)
        self.locked_rows = set(repository.locked_rows)
        self.locked_keys = set(repository.locked_keys)
        self.pending = dict(repository.pending)

    async def commit(self) -> None:
        pass

    async def rollback(self) -> None:
        repository = self.repository
        for lock in reversed(repository.held[self.held_mark:]):
            lock.release()
        del repository.held[self.held_mark:]
        repository.locked_rows = self.locked_rows
        repository.locked_keys = self.locked_keys
        repository.pending = self.pending


class InMemoryContactStore:
    """Drop-in for ContactStore in tests."""

    def __init__(self, database: Optional[InMemoryContactDatabase] = None):
        self.database = database or InMemoryContactDatabase()

    @asynccontextmanager
    async def transaction(self):
        self.database.transactions += 1
        repository = InMemoryContactRepository(self.database)
        try:
            yield repository
            repository.commit()
        finally:
            repository.release()


@pytest.fixture
def database():
    return InMemoryContactDatabase()


@pytest.fixture
def store(database):
    return InMemoryContactStore(database)


@pytest.fixture
def service(store):
    return ReconciliationService(store)
