"""Unit of work: change tracking, bulk flush and conflict resolution.

This module provides:
- RevisionStore: last persisted revision per identity
- UnitOfWorkTracker: identity map, snapshots and lifecycle states
- BulkSynchronizer: one batched write per flush
- ConflictResolver: FAIL / FIRST_WRITE_WINS / LAST_WRITE_WINS / MANUAL
"""

from couchodm.uow.resolver import ConflictResolver
from couchodm.uow.revisions import RevisionStore
from couchodm.uow.synchronizer import BulkSynchronizer
from couchodm.uow.tracker import UnitOfWorkTracker, generate_identity

__all__ = [
    "RevisionStore",
    "UnitOfWorkTracker",
    "generate_identity",
    "BulkSynchronizer",
    "ConflictResolver",
]
