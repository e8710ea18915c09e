"""
Unit-of-work tracker for entity identity, snapshots and lifecycle.

This module provides the in-memory bookkeeping for one session:
- Identity assignment and the identity map
- Lifecycle transitions (NEW, MANAGED, DIRTY, REMOVED, DETACHED)
- Change set computation by snapshot comparison
- Application of per-entity batch results
"""

import logging
import uuid
from typing import Any, Callable, Iterator

from couchodm.core.constants import LifecycleState, Outcome
from couchodm.core.exceptions import (
    DuplicateIdentityError,
    InvalidStateTransitionError,
    UnknownEntityError,
)
from couchodm.models.batch import BatchResultEntry, ChangeEntry
from couchodm.models.record import TrackedRecord
from couchodm.serializer import DocumentSerializer
from couchodm.uow.revisions import RevisionStore


logger = logging.getLogger(__name__)


def generate_identity() -> str:
    """Generate a client-side document identity."""
    return uuid.uuid4().hex


class UnitOfWorkTracker:
    """
    Tracks entities registered with one session.

    The tracker:
    1. Assigns identities and keeps the identity map
    2. Records the last synchronized snapshot of every entity
    3. Drives the lifecycle state machine
    4. Computes the ordered change set for a flush
    5. Applies batch results once a full response is available

    It is owned by a single session and is not thread safe.
    """

    def __init__(
        self,
        serializer: DocumentSerializer | None = None,
        revisions: RevisionStore | None = None,
        id_generator: Callable[[], str] = generate_identity,
    ) -> None:
        """
        Initialize the tracker.

        Args:
            serializer: Converts entities to document bodies
            revisions: Revision store, a fresh one if omitted
            id_generator: Produces identities for entities registered without one
        """
        self._serializer = serializer or DocumentSerializer()
        self._revisions = revisions if revisions is not None else RevisionStore()
        self._id_generator = id_generator

        self._records: dict[str, TrackedRecord] = {}
        self._by_object: dict[int, str] = {}
        self._sequence = 0

    @property
    def revisions(self) -> RevisionStore:
        return self._revisions

    @property
    def serializer(self) -> DocumentSerializer:
        return self._serializer

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def register(
        self,
        entity: Any,
        identity: str | None = None,
        initial_revision: str | None = None,
        snapshot: dict[str, Any] | None = None,
    ) -> str:
        """
        Start tracking an entity.

        Args:
            entity: The entity object
            identity: Identity to use, generated if omitted
            initial_revision: Revision of an already persisted entity
            snapshot: Last synchronized document, defaults to the current state
                for entities registered with a revision

        Returns:
            The entity's identity

        Raises:
            DuplicateIdentityError: If the identity or entity is already tracked
        """
        if identity is None:
            identity = self._id_generator()

        if identity in self._records:
            raise DuplicateIdentityError(
                f"Identity already tracked: {identity}",
                identity=identity,
            )

        existing = self._by_object.get(id(entity))
        if existing is not None:
            raise DuplicateIdentityError(
                f"Entity already tracked as {existing}",
                identity=existing,
            )

        if initial_revision:
            state = LifecycleState.MANAGED
            if snapshot is None:
                snapshot = self._serializer.to_document(entity)
            self._revisions.set(identity, initial_revision)
        else:
            state = LifecycleState.NEW

        self._sequence += 1
        self._records[identity] = TrackedRecord(
            identity=identity,
            entity=entity,
            state=state,
            sequence=self._sequence,
            snapshot=snapshot,
        )
        self._by_object[id(entity)] = identity

        logger.debug(f"Registered {identity} as {state.value}")
        return identity

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def mark_dirty(self, identity: str) -> None:
        """
        Mark a managed entity as modified.

        No-op for NEW and DIRTY entities.

        Raises:
            UnknownEntityError: If the identity is not tracked
            InvalidStateTransitionError: If the entity is scheduled for removal
        """
        record = self.get_record(identity)

        if record.state == LifecycleState.MANAGED:
            record.state = LifecycleState.DIRTY
        elif record.state == LifecycleState.REMOVED:
            raise InvalidStateTransitionError(
                f"Cannot modify an entity scheduled for removal: {identity}",
                identity=identity,
                current_state=record.state.value,
            )

    def mark_removed(self, identity: str, maybe_stored: bool = False) -> None:
        """
        Schedule an entity for deletion.

        A NEW entity the store has never accepted has nothing to delete
        remotely and is purged immediately, unless ``maybe_stored`` says a
        create for it was submitted without an answer. Such an entity is
        kept as REMOVED, with the submitted document as its snapshot, so
        the next flush can find out whether there is a copy to delete.

        Args:
            identity: Tracked identity
            maybe_stored: A create for the entity may have been applied

        Raises:
            UnknownEntityError: If the identity is not tracked
        """
        record = self.get_record(identity)

        if record.state == LifecycleState.REMOVED:
            return

        if record.state == LifecycleState.NEW and not self._revisions.contains(identity):
            if not maybe_stored:
                self.purge(identity)
                logger.debug(f"Discarded unsaved entity {identity}")
                return
            record.snapshot = self._serializer.to_document(record.entity)
            logger.debug(f"Entity {identity} may be stored; keeping it for removal")

        record.state = LifecycleState.REMOVED

    def revive(self, identity: str) -> None:
        """
        Cancel a scheduled removal, leaving the entity DIRTY.

        Raises:
            UnknownEntityError: If the identity is not tracked
        """
        record = self.get_record(identity)
        if record.state == LifecycleState.REMOVED:
            record.state = LifecycleState.DIRTY

    def detach(self, identity: str) -> TrackedRecord:
        """
        Stop tracking an entity. DETACHED is terminal.

        Raises:
            UnknownEntityError: If the identity is not tracked
        """
        record = self.get_record(identity)
        self.purge(identity)
        record.state = LifecycleState.DETACHED
        return record

    def reload(self, identity: str, fields: dict[str, Any], revision: str) -> None:
        """
        Replace local state with the store's copy and mark MANAGED.

        Args:
            identity: Tracked identity
            fields: Remote document fields
            revision: Remote revision
        """
        record = self.get_record(identity)
        self._serializer.hydrate(record.entity, fields)
        record.snapshot = self._serializer.to_document(record.entity)
        record.state = LifecycleState.MANAGED
        self._revisions.set(identity, revision)

    def purge(self, identity: str) -> None:
        """Drop an identity and its revision from the tracker."""
        record = self._records.pop(identity, None)
        if record is not None:
            self._by_object.pop(id(record.entity), None)
        self._revisions.forget(identity)

    def clear(self) -> None:
        """Stop tracking everything."""
        for record in self._records.values():
            record.state = LifecycleState.DETACHED
        self._records.clear()
        self._by_object.clear()
        self._revisions.clear()

    # -------------------------------------------------------------------------
    # Change set
    # -------------------------------------------------------------------------

    def compute_change_set(self) -> list[ChangeEntry]:
        """
        Compute the writes needed to synchronize every tracked entity.

        MANAGED entities whose current document differs from their snapshot
        are reported as DIRTY. The tracker itself is not modified.

        Returns:
            Change entries in registration order
        """
        changes: list[ChangeEntry] = []

        for record in sorted(self._records.values(), key=lambda r: r.sequence):
            state = record.state
            if state == LifecycleState.REMOVED:
                payload = dict(record.snapshot or {})
            elif state.is_pending():
                payload = self._serializer.to_document(record.entity)
            elif state == LifecycleState.MANAGED:
                payload = self._serializer.to_document(record.entity)
                if payload == record.snapshot:
                    continue
                state = LifecycleState.DIRTY
            else:
                continue

            changes.append(
                ChangeEntry(
                    identity=record.identity,
                    state=state,
                    payload=payload,
                    expected_revision=self._revisions.get(record.identity),
                )
            )

        return changes

    def apply_result(
        self,
        entry: ChangeEntry,
        result: BatchResultEntry,
    ) -> BatchResultEntry | None:
        """
        Apply one store outcome to the tracker.

        ACCEPTED stores the new revision, makes the submitted payload the
        snapshot and resets the entity to MANAGED, or purges it after a
        delete. CONFLICT and REJECTED leave the lifecycle as it was before
        the flush and return the result for resolution.

        Args:
            entry: The change entry that was submitted
            result: The store's outcome for it

        Returns:
            The result if it needs resolution, otherwise None
        """
        record = self._records.get(entry.identity)
        if record is None:
            logger.warning(f"Result for untracked identity {entry.identity} ignored")
            return None

        if result.outcome != Outcome.ACCEPTED:
            if entry.state == LifecycleState.DIRTY and record.state == LifecycleState.MANAGED:
                record.state = LifecycleState.DIRTY
            return result

        if entry.state == LifecycleState.REMOVED:
            self.purge(entry.identity)
            return None

        self._revisions.set(entry.identity, result.revision)
        record.snapshot = dict(entry.payload)
        if record.state != LifecycleState.REMOVED:
            record.state = LifecycleState.MANAGED
        return None

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_record(self, identity: str) -> TrackedRecord:
        """
        Get the record for an identity.

        Raises:
            UnknownEntityError: If the identity is not tracked
        """
        record = self._records.get(identity)
        if record is None:
            raise UnknownEntityError(f"Entity not tracked: {identity}", identity=identity)
        return record

    def identity_of(self, entity: Any) -> str | None:
        """Get the identity of a tracked entity object."""
        return self._by_object.get(id(entity))

    def state_of(self, identity: str) -> LifecycleState:
        return self.get_record(identity).state

    def revision_of(self, identity: str) -> str | None:
        return self._revisions.get(identity)

    def contains(self, identity: str) -> bool:
        return identity in self._records

    def __contains__(self, identity: object) -> bool:
        return identity in self._records

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[TrackedRecord]:
        return iter(sorted(self._records.values(), key=lambda r: r.sequence))
