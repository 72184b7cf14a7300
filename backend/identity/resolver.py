"""
Identity Reconciliation - Cluster Resolver

Finds the rows a fragment touches and expands them to whole clusters.
Reads only; callers take the locks.
"""

from typing import Iterable, List, Optional

from .models import Contact
from .repository import ContactRepository


class ClusterResolver:

    def __init__(self, repository: ContactRepository):
        self.repository = repository

    async def resolve_seed(
        self,
        email: Optional[str],
        phone_number: Optional[str]
    ) -> List[Contact]:
        """Rows sharing the email or the phone number of the fragment."""
        return await self.repository.find_by_email_or_phone(email, phone_number)

    async def expand_cluster(self, primary_ids: List[int]) -> List[Contact]:
        """Full membership of the named primaries' clusters."""
        return await self.repository.find_cluster_by_primary_ids(list(primary_ids))

    @staticmethod
    def canonical_ids(contacts: Iterable[Contact]) -> List[int]:
        """Distinct primary ids referenced by the contacts, in discovery order."""
        return list(dict.fromkeys(contact.primary_id for contact in contacts))
