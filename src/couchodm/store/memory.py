"""In-process document store with CouchDB revision semantics."""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from couchodm.core.constants import CONFLICT_ERROR, NOT_FOUND_ERROR, OperationType
from couchodm.core.exceptions import NetworkFailure
from couchodm.models.batch import (
    BatchOperation,
    BatchRequest,
    BatchResultEntry,
    RemoteDocument,
)
from couchodm.store.base import AsyncDocumentStore, DocumentStore


logger = logging.getLogger(__name__)

# Returns a rejection reason, or None to accept the operation
Validator = Callable[[BatchOperation, RemoteDocument | None], str | None]


@dataclass
class _StoredDocument:
    revision: str
    fields: dict[str, Any]
    deleted: bool = False
    conflicts: list[str] = field(default_factory=list)
    # Fields of each conflicting revision, keyed by revision
    leaves: dict[str, dict[str, Any]] = field(default_factory=dict)

    @property
    def generation(self) -> int:
        return int(self.revision.split("-", 1)[0])


def make_revision(generation: int, fields: dict[str, Any], previous: str | None) -> str:
    """Build a CouchDB style ``<generation>-<md5>`` revision token."""
    body = json.dumps(fields, sort_keys=True, default=str) + (previous or "")
    return f"{generation}-{hashlib.md5(body.encode('utf-8')).hexdigest()}"


class InMemoryDocumentStore(DocumentStore):
    """
    Document store kept in a dict.

    Implements the same optimistic concurrency contract as CouchDB:
    - creating an existing live document is a conflict
    - updating or deleting with a stale revision is a conflict
    - deleting a missing document is rejected as ``not_found``
    - with ``force`` every write is applied and the losing revision is
      kept in ``_conflicts`` for later resolution

    Every batched request is recorded in ``requests``.
    """

    def __init__(self, validator: Validator | None = None) -> None:
        self._docs: dict[str, _StoredDocument] = {}
        self._validator = validator
        self._fail_next: NetworkFailure | None = None
        self._fail_after_apply = False
        self.requests: list[BatchRequest] = []
        self.reads: list[str] = []

    @property
    def request_count(self) -> int:
        return len(self.requests)

    def fail_next_request(
        self,
        error: NetworkFailure | None = None,
        after_apply: bool = False,
    ) -> None:
        """
        Make the next ``bulk_write`` raise.

        Args:
            error: Error to raise, a generic NetworkFailure by default
            after_apply: Apply the writes first, then lose the response
        """
        self._fail_next = error or NetworkFailure(
            "Simulated network failure", operation="bulk_write"
        )
        self._fail_after_apply = after_apply

    # -------------------------------------------------------------------------
    # Store interface
    # -------------------------------------------------------------------------

    def bulk_write(self, request: BatchRequest) -> list[BatchResultEntry]:
        self.requests.append(request)

        failure, after_apply = self._fail_next, self._fail_after_apply
        self._fail_next, self._fail_after_apply = None, False
        if failure is not None and not after_apply:
            raise failure

        results = [self._apply(op, request.force) for op in request.operations]
        logger.debug(f"Applied batch of {len(request)} operation(s)")

        if failure is not None:
            raise failure
        return results

    def get(self, identity: str, revision: str | None = None) -> RemoteDocument | None:
        self.reads.append(identity)
        return self._remote(identity, revision)

    # -------------------------------------------------------------------------
    # Direct access, standing in for other clients of the same database
    # -------------------------------------------------------------------------

    def put(self, identity: str, fields: dict[str, Any]) -> str:
        """Write a document unconditionally and return its new revision."""
        return self._write(identity, self._docs.get(identity), fields)

    def delete(self, identity: str) -> None:
        """Delete a document unconditionally."""
        stored = self._docs.get(identity)
        if stored is None:
            return
        self._write(identity, stored, {}, deleted=True)

    def __len__(self) -> int:
        return sum(1 for d in self._docs.values() if not d.deleted)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _apply(self, op: BatchOperation, force: bool) -> BatchResultEntry:
        stored = self._docs.get(op.identity)
        live = stored is not None and not stored.deleted

        if op.operation == OperationType.DELETE and stored is None:
            return BatchResultEntry.rejected(op.identity, f"{NOT_FOUND_ERROR}: missing")

        if op.operation == OperationType.CREATE:
            stale = live
        else:
            stale = stored is None or op.expected_revision != stored.revision or not live

        if stale and not (force and stored is not None):
            return BatchResultEntry.conflict(
                op.identity, f"{CONFLICT_ERROR}: Document update conflict."
            )

        if self._validator is not None:
            current = self._remote(op.identity)
            reason = self._validator(op, current)
            if reason:
                return BatchResultEntry.rejected(op.identity, f"forbidden: {reason}")

        if stale and stored is not None and not stored.deleted:
            stored.conflicts.append(stored.revision)
            stored.leaves[stored.revision] = stored.fields

        revision = self._write(
            op.identity,
            stored,
            op.fields,
            deleted=op.operation == OperationType.DELETE,
        )
        return BatchResultEntry.accepted(op.identity, revision)

    def _remote(self, identity: str, revision: str | None = None) -> RemoteDocument | None:
        stored = self._docs.get(identity)
        if stored is None or stored.deleted:
            return None
        if revision is not None and revision != stored.revision:
            if revision not in stored.leaves:
                return None
            return RemoteDocument(
                identity=identity,
                revision=revision,
                fields=json.loads(json.dumps(stored.leaves[revision])),
            )
        return RemoteDocument(
            identity=identity,
            revision=stored.revision,
            fields=json.loads(json.dumps(stored.fields)),
            conflicts=tuple(stored.conflicts),
        )

    def _write(
        self,
        identity: str,
        stored: _StoredDocument | None,
        fields: dict[str, Any],
        deleted: bool = False,
    ) -> str:
        previous = stored.revision if stored else None
        generation = stored.generation + 1 if stored else 1
        revision = make_revision(generation, fields, previous)
        self._docs[identity] = _StoredDocument(
            revision=revision,
            fields={} if deleted else json.loads(json.dumps(fields, default=str)),
            deleted=deleted,
            conflicts=list(stored.conflicts) if stored and not deleted else [],
            leaves=dict(stored.leaves) if stored and not deleted else {},
        )
        return revision


class AsyncInMemoryDocumentStore(AsyncDocumentStore):
    """Awaitable wrapper around an ``InMemoryDocumentStore``."""

    def __init__(self, store: InMemoryDocumentStore | None = None) -> None:
        self.store = store if store is not None else InMemoryDocumentStore()

    async def bulk_write(self, request: BatchRequest) -> list[BatchResultEntry]:
        return self.store.bulk_write(request)

    async def get(self, identity: str, revision: str | None = None) -> RemoteDocument | None:
        return self.store.get(identity, revision)
