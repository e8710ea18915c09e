"""couchodm data models."""
from couchodm.models.batch import (
    BatchOperation,
    BatchRequest,
    BatchResultEntry,
    ChangeEntry,
    RemoteDocument,
)
from couchodm.models.record import TrackedRecord
from couchodm.models.report import ConflictContext, FlushReport, ResolutionOutcome

__all__ = [
    # Batch models
    "ChangeEntry",
    "BatchOperation",
    "BatchRequest",
    "BatchResultEntry",
    "RemoteDocument",
    # Tracker models
    "TrackedRecord",
    # Report models
    "FlushReport",
    "ResolutionOutcome",
    "ConflictContext",
]
