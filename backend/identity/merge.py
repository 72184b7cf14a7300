"""
Identity Reconciliation - Merge Executor

Folds every extra primary of a cluster into the earliest-created one.
"""

import logging
from dataclasses import dataclass, field
from typing import List

from .errors import ConsistencyError
from .models import Contact
from .repository import ContactRepository

logger = logging.getLogger(__name__)


def select_canonical(primaries: List[Contact]) -> Contact:
    """Earliest created_at wins; lowest id breaks ties."""
    if not primaries:
        raise ConsistencyError("select_canonical: no primary contact in cluster")
    return min(primaries, key=lambda c: (c.created_at, c.id))


@dataclass
class MergeOutcome:
    canonical: Contact
    demoted_ids: List[int] = field(default_factory=list)
    reattached: int = 0


class MergeExecutor:
    """
    Demotes surplus primaries and reattaches their dependents.

    The caller must hold row locks on every primary in the cluster and
    must re-read the cluster afterwards; the snapshots passed in are
    stale once this returns.
    """

    def __init__(self, repository: ContactRepository):
        self.repository = repository

    async def merge(self, cluster: List[Contact]) -> MergeOutcome:
        primaries = [c for c in cluster if c.is_primary]
        canonical = select_canonical(primaries)
        outcome = MergeOutcome(canonical=canonical)

        for primary in primaries:
            if primary.id == canonical.id:
                continue

            await self.repository.demote_primary(primary.id, canonical.id)
            moved = await self.repository.reattach_secondaries(primary.id, canonical.id)

            outcome.demoted_ids.append(primary.id)
            outcome.reattached += moved
            logger.info(
                f"Merged primary contact {primary.id} into {canonical.id} "
                f"({moved} dependents reattached)"
            )

        return outcome
