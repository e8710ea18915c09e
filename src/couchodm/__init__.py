"""couchodm - write-behind change tracking for CouchDB documents.

Entity changes are collected in a session, flushed to the store in one
batched ``_bulk_docs`` request and reconciled against revision conflicts
with a configurable policy.
"""

__version__ = "0.1.0"

from couchodm.core import (
    ConflictPolicy,
    LifecycleState,
    ODMConfig,
    ODMError,
)
from couchodm.models import FlushReport
from couchodm.session import DocumentSession

__all__ = [
    "__version__",
    # Core enums
    "LifecycleState",
    "ConflictPolicy",
    # Config
    "ODMConfig",
    # Session
    "DocumentSession",
    "FlushReport",
    # Base exception
    "ODMError",
]
