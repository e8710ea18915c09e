"""Batched write data models.

These are the values exchanged between the synchronizer and a document
store: the change set entries computed from the tracker, the batched
request built from them, and the per-entity results the store returns.
"""

from dataclasses import dataclass, field
from typing import Any

from couchodm.core.constants import (
    CONFLICTS_FIELD,
    DELETED_FIELD,
    ID_FIELD,
    REV_FIELD,
    LifecycleState,
    OperationType,
    Outcome,
)
from couchodm.core.exceptions import StoreResponseError


@dataclass(frozen=True)
class ChangeEntry:
    """One tracked entity that needs a write on flush."""

    identity: str
    state: LifecycleState
    payload: dict[str, Any]
    expected_revision: str | None = None

    @property
    def operation(self) -> OperationType:
        """Get the write operation for this entry."""
        return OperationType.for_state(self.state)

    def to_operation(self) -> "BatchOperation":
        """Build the batched operation for this entry."""
        op = self.operation
        return BatchOperation(
            operation=op,
            identity=self.identity,
            fields={} if op == OperationType.DELETE else dict(self.payload),
            expected_revision=None if op == OperationType.CREATE else self.expected_revision,
        )


@dataclass(frozen=True)
class BatchOperation:
    """A single create, update or delete inside a batched request."""

    operation: OperationType
    identity: str
    fields: dict[str, Any] = field(default_factory=dict)
    expected_revision: str | None = None

    def to_document(self) -> dict[str, Any]:
        """Convert to a CouchDB bulk document."""
        doc: dict[str, Any] = {ID_FIELD: self.identity}
        if self.expected_revision:
            doc[REV_FIELD] = self.expected_revision
        if self.operation == OperationType.DELETE:
            doc[DELETED_FIELD] = True
        else:
            doc.update(self.fields)
        return doc


@dataclass(frozen=True)
class BatchRequest:
    """An ordered list of operations submitted as one network call."""

    operations: tuple[BatchOperation, ...]
    force: bool = False

    def __len__(self) -> int:
        return len(self.operations)

    @property
    def identities(self) -> list[str]:
        """Get identities in submission order."""
        return [op.identity for op in self.operations]

    def to_dict(self) -> dict[str, Any]:
        """Convert to a CouchDB ``_bulk_docs`` body."""
        return {
            "docs": [op.to_document() for op in self.operations],
            "all_or_nothing": self.force,
        }


@dataclass(frozen=True)
class BatchResultEntry:
    """The store's outcome for one submitted operation."""

    identity: str
    outcome: Outcome
    revision: str | None = None
    reason: str | None = None

    @classmethod
    def accepted(cls, identity: str, revision: str) -> "BatchResultEntry":
        return cls(identity=identity, outcome=Outcome.ACCEPTED, revision=revision)

    @classmethod
    def conflict(cls, identity: str, reason: str | None = None) -> "BatchResultEntry":
        return cls(identity=identity, outcome=Outcome.CONFLICT, reason=reason)

    @classmethod
    def rejected(cls, identity: str, reason: str) -> "BatchResultEntry":
        return cls(identity=identity, outcome=Outcome.REJECTED, reason=reason)

    @property
    def is_accepted(self) -> bool:
        return self.outcome == Outcome.ACCEPTED

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "identity": self.identity,
            "outcome": self.outcome.value,
            "revision": self.revision,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class RemoteDocument:
    """Current state of a document as read from the store."""

    identity: str
    revision: str
    fields: dict[str, Any]
    conflicts: tuple[str, ...] = ()

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "RemoteDocument":
        """Create from a raw CouchDB document."""
        fields = {
            k: v
            for k, v in doc.items()
            if k not in (ID_FIELD, REV_FIELD, DELETED_FIELD, CONFLICTS_FIELD)
        }
        return cls(
            identity=doc[ID_FIELD],
            revision=doc[REV_FIELD],
            fields=fields,
            conflicts=tuple(doc.get(CONFLICTS_FIELD, ())),
        )

    def to_document(self) -> dict[str, Any]:
        """Convert back to a raw CouchDB document."""
        doc = {ID_FIELD: self.identity, REV_FIELD: self.revision, **self.fields}
        if self.conflicts:
            doc[CONFLICTS_FIELD] = list(self.conflicts)
        return doc


def correlate_results(
    changes: list[ChangeEntry],
    results: list[BatchResultEntry],
) -> list[tuple[ChangeEntry, BatchResultEntry]]:
    """
    Pair each change entry with its result by position, checked by identity.

    Falls back to matching by identity when the store reordered rows.

    Raises:
        StoreResponseError: If the results do not cover every change exactly once
    """
    if len(results) != len(changes):
        raise StoreResponseError(
            f"Expected {len(changes)} result(s), got {len(results)}",
            operation="bulk_write",
        )

    if all(c.identity == r.identity for c, r in zip(changes, results)):
        return list(zip(changes, results))

    by_identity = {r.identity: r for r in results}
    if set(by_identity) != {c.identity for c in changes}:
        raise StoreResponseError(
            "Batched response identities do not match the request",
            operation="bulk_write",
        )
    return [(c, by_identity[c.identity]) for c in changes]
