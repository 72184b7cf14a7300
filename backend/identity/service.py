"""
Identity Reconciliation - Service Layer

Reconciles an identity fragment (email and/or phone number) into the
contact graph inside a single transaction:

1. Advisory lock on the fragment's identity key
2. Seed lookup; no seeds -> create a primary and finish
3. Row locks on the seeds' primaries, ascending by id
4. Cluster expansion
5. Merge of surplus primaries into the earliest-created one
6. Secondary creation when the fragment carries new information
7. Response assembly from the final cluster state

Any exception rolls the whole transaction back.
"""

import asyncio
import logging
from typing import List, Optional, Union

from .errors import ConsistencyError, InvalidFragmentError
from .merge import MergeExecutor
from .models import Contact, IdentifyResult
from .repository import ContactRepository
from .resolver import ClusterResolver
from .store import ContactStore

logger = logging.getLogger(__name__)


def normalize_email(email: Optional[str]) -> Optional[str]:
    if email is None:
        return None
    value = email.strip().lower()
    return value or None


def normalize_phone(phone_number: Optional[Union[str, int]]) -> Optional[str]:
    if phone_number is None:
        return None
    value = str(phone_number).strip()
    return value or None


def build_identity_key(email: Optional[str], phone_number: Optional[str]) -> str:
    return f"{email or ''}#{phone_number or ''}"


def primary_first(values: List[str], primary_value: Optional[str]) -> List[str]:
    """Move primary_value to the front; everything else keeps its order."""
    if not primary_value:
        return list(values)
    return (
        [v for v in values if v == primary_value]
        + [v for v in values if v != primary_value]
    )


def needs_secondary(
    cluster: List[Contact],
    email: Optional[str],
    phone_number: Optional[str]
) -> bool:
    """True when the fragment holds an email or phone the cluster has not seen."""
    if email is not None and all(c.email != email for c in cluster):
        return True
    if phone_number is not None and all(c.phone_number != phone_number for c in cluster):
        return True
    return False


def build_result(canonical: Contact, cluster: List[Contact]) -> IdentifyResult:
    primary = next((c for c in cluster if c.id == canonical.id), canonical)

    emails = list(dict.fromkeys(c.email for c in cluster if c.email))
    phone_numbers = list(dict.fromkeys(c.phone_number for c in cluster if c.phone_number))

    return IdentifyResult(
        primary_contact_id=primary.id,
        emails=primary_first(emails, primary.email),
        phone_numbers=primary_first(phone_numbers, primary.phone_number),
        secondary_contact_ids=sorted(c.id for c in cluster if c.id != primary.id)
    )


class ReconciliationService:
    """
    Reconciliation Orchestrator - entry point of the identity engine.

    Ensures:
    - Exactly one primary per cluster, the earliest created
    - No duplicate primaries for identical concurrent fragments
    - No deadlocks between transactions locking overlapping clusters
    - Idempotence: a known fragment never creates rows
    """

    def __init__(self, store: ContactStore, step_delay_ms: int = 0):
        self.store = store
        self.step_delay_ms = step_delay_ms

    async def identify(
        self,
        email: Optional[str] = None,
        phone_number: Optional[Union[str, int]] = None
    ) -> IdentifyResult:
        """
        Resolve a fragment to its canonical contact.

        Args:
            email: Email address, normalized to trimmed lower case
            phone_number: Phone number, normalized to trimmed text

        Returns:
            IdentifyResult for the fragment's cluster after reconciliation

        Raises:
            InvalidFragmentError: Neither email nor phone number present
            ConsistencyError: A store mutation violated its row-count contract
            TransientStoreError: The store failed in a retryable way
        """
        email = normalize_email(email)
        phone_number = normalize_phone(phone_number)

        if email is None and phone_number is None:
            raise InvalidFragmentError("Either email or phoneNumber must be provided")

        async with self.store.transaction() as repository:
            return await self._reconcile(repository, email, phone_number)

    async def _reconcile(
        self,
        repository: ContactRepository,
        email: Optional[str],
        phone_number: Optional[str]
    ) -> IdentifyResult:
        resolver = ClusterResolver(repository)

        await repository.acquire_identity_lock(build_identity_key(email, phone_number))

        seeds = await resolver.resolve_seed(email, phone_number)
        await self._step_delay()

        if not seeds:
            primary = await repository.create_primary_contact(email, phone_number)
            logger.info(f"Created primary contact {primary.id}")
            return build_result(primary, [primary])

        cluster = await self._lock_cluster(
            repository, resolver, ClusterResolver.canonical_ids(seeds)
        )

        primaries = [c for c in cluster if c.is_primary]
        if not primaries:
            raise ConsistencyError(
                f"No primary contact among locked cluster of {len(cluster)} rows"
            )

        canonical = primaries[0]
        if len(primaries) > 1:
            outcome = await MergeExecutor(repository).merge(cluster)
            canonical = outcome.canonical
            logger.info(
                f"Merged {len(outcome.demoted_ids)} primary contacts into {canonical.id} "
                f"({outcome.reattached} dependents reattached)"
            )
            cluster = await resolver.expand_cluster([canonical.id])

        await self._step_delay()

        if needs_secondary(cluster, email, phone_number):
            secondary = await repository.create_secondary_contact(
                email, phone_number, canonical.id
            )
            logger.info(f"Created secondary contact {secondary.id} under primary {canonical.id}")
            cluster = await resolver.expand_cluster([canonical.id])

        return build_result(canonical, cluster)

    async def _lock_cluster(
        self,
        repository: ContactRepository,
        resolver: ClusterResolver,
        primary_ids: List[int]
    ) -> List[Contact]:
        """
        Lock the primaries and return their expanded cluster.

        A primary demoted by a transaction that committed while we waited
        for its lock shows up as a locked secondary. Its new primary may
        sort below ids already held, so the locks are dropped by rolling
        back to a savepoint and the enlarged set is locked again from
        scratch in ascending order.
        """
        primary_ids = list(primary_ids)

        while True:
            savepoint = await repository.begin_savepoint()
            locked = set(await repository.lock_primaries(primary_ids))
            cluster = await resolver.expand_cluster(primary_ids)

            moved = []
            for contact in cluster:
                if (
                    contact.id in locked
                    and not contact.is_primary
                    and contact.linked_id not in locked
                    and contact.linked_id not in moved
                ):
                    moved.append(contact.linked_id)

            if not moved:
                await savepoint.commit()
                return cluster

            await savepoint.rollback()
            logger.info(f"Locked contacts were merged concurrently, relocking with {moved}")
            primary_ids.extend(moved)

    async def _step_delay(self) -> None:
        if self.step_delay_ms > 0:
            await asyncio.sleep(self.step_delay_ms / 1000)
