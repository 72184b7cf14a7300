"""
Identity Reconciliation Module

Resolves partial identity fragments (email and/or phone number) into a
consistent graph of contacts.

Features:
- One canonical primary contact per cluster
- Automatic merging of clusters bridged by a fragment
- Secondary contacts for newly seen emails and phone numbers
- Safe under concurrent, overlapping requests
"""

from .models import ContactDB, Contact, IdentifyResult, LinkPrecedence
from .errors import IdentityError, InvalidFragmentError, ConsistencyError, TransientStoreError
from .repository import ContactRepository
from .store import ContactStore
from .resolver import ClusterResolver
from .merge import MergeExecutor, MergeOutcome
from .service import ReconciliationService

__all__ = [
    'ContactDB',
    'Contact',
    'IdentifyResult',
    'LinkPrecedence',
    'IdentityError',
    'InvalidFragmentError',
    'ConsistencyError',
    'TransientStoreError',
    'ContactRepository',
    'ContactStore',
    'ClusterResolver',
    'MergeExecutor',
    'MergeOutcome',
    'ReconciliationService',
]
