"""Document session: one unit of work with an explicit lifecycle.

A session is created per request, collects entity changes, flushes them
in one batched write and is closed. Sessions never share a tracker; the
store's revision tokens are the only coordination between them.

    with DocumentSession(store) as session:
        user = {"name": "ada"}
        session.persist(user)
        report = session.flush()
"""

import logging
from typing import Any

from couchodm.core.config import ODMConfig
from couchodm.core.constants import ConflictPolicy, LifecycleState
from couchodm.core.exceptions import (
    DocumentNotFoundError,
    SessionClosedError,
    UnknownEntityError,
)
from couchodm.models.batch import RemoteDocument
from couchodm.models.report import FlushReport
from couchodm.serializer import DocumentSerializer
from couchodm.store.base import AsyncDocumentStore, DocumentStore
from couchodm.uow.resolver import ConflictResolver, ManualCallback
from couchodm.uow.synchronizer import BulkSynchronizer
from couchodm.uow.tracker import UnitOfWorkTracker


logger = logging.getLogger(__name__)


class DocumentSession:
    """Tracks entities for one unit of work and flushes them to a store."""

    def __init__(
        self,
        store: DocumentStore | AsyncDocumentStore,
        config: ODMConfig | None = None,
        serializer: DocumentSerializer | None = None,
        conflict_callback: ManualCallback | None = None,
    ) -> None:
        """Initialize the session.

        Args:
            store: Document store, blocking or awaitable.
            config: Configuration, defaults if omitted.
            serializer: Entity serializer.
            conflict_callback: Callback for the MANUAL conflict policy.
        """
        self._config = config or ODMConfig()
        self._store = store
        self._tracker = UnitOfWorkTracker(serializer=serializer)
        self._resolver = ConflictResolver(
            self._tracker,
            store,
            callback=conflict_callback,
            default_policy=self._config.flush.conflict_policy,
            force=self._config.flush.force,
        )
        self._synchronizer = BulkSynchronizer(
            self._tracker,
            store,
            resolver=self._resolver,
            config=self._config.flush,
        )
        self._closed = False

    @property
    def tracker(self) -> UnitOfWorkTracker:
        return self._tracker

    @property
    def synchronizer(self) -> BulkSynchronizer:
        return self._synchronizer

    @property
    def closed(self) -> bool:
        return self._closed

    def set_conflict_callback(self, callback: ManualCallback | None) -> None:
        """Register the callback used by the MANUAL conflict policy."""
        self._resolver.set_callback(callback)

    # -------------------------------------------------------------------------
    # Entity operations
    # -------------------------------------------------------------------------

    def persist(self, entity: Any, identity: str | None = None) -> str:
        """Schedule a new entity for creation.

        Persisting an entity that is already tracked marks it dirty instead.

        Returns:
            The entity's identity.
        """
        self._check_open()
        existing = self._tracker.identity_of(entity)
        if existing is not None:
            self._tracker.mark_dirty(existing)
            return existing
        return self._tracker.register(entity, identity=identity)

    def merge(self, entity: Any, identity: str, revision: str) -> str:
        """Track an entity that was loaded elsewhere, as modified.

        Args:
            entity: The entity.
            identity: Its document identity.
            revision: The revision it was loaded at.

        Returns:
            The identity.
        """
        self._check_open()
        self._tracker.register(entity, identity=identity, initial_revision=revision, snapshot={})
        self._tracker.mark_dirty(identity)
        return identity

    def find(self, identity: str, factory: Any = dict) -> Any:
        """Load an entity by identity.

        Returns the tracked object if the identity is already in this session.

        Raises:
            DocumentNotFoundError: If the store has no such document.
        """
        self._check_open()
        if self._tracker.contains(identity):
            return self._tracker.get_record(identity).entity
        store = self._require_store(DocumentStore)
        return self._load(identity, store.get(identity), factory)

    async def afind(self, identity: str, factory: Any = dict) -> Any:
        """Awaitable ``find``."""
        self._check_open()
        if self._tracker.contains(identity):
            return self._tracker.get_record(identity).entity
        store = self._require_store(AsyncDocumentStore)
        return self._load(identity, await store.get(identity), factory)

    def remove(self, entity_or_identity: Any) -> None:
        """Schedule an entity for deletion."""
        self._check_open()
        identity = self._identity(entity_or_identity)
        self._tracker.mark_removed(
            identity, maybe_stored=identity in self._synchronizer.in_doubt
        )

    def mark_dirty(self, entity_or_identity: Any) -> None:
        """Flag an entity as modified."""
        self._check_open()
        self._tracker.mark_dirty(self._identity(entity_or_identity))

    def detach(self, entity_or_identity: Any) -> None:
        """Stop tracking an entity. Pending changes to it are dropped."""
        self._check_open()
        self._tracker.detach(self._identity(entity_or_identity))

    def contains(self, entity_or_identity: Any) -> bool:
        if isinstance(entity_or_identity, str):
            return self._tracker.contains(entity_or_identity)
        return self._tracker.identity_of(entity_or_identity) is not None

    def identity_of(self, entity: Any) -> str | None:
        return self._tracker.identity_of(entity)

    def state_of(self, entity_or_identity: Any) -> LifecycleState:
        return self._tracker.state_of(self._identity(entity_or_identity))

    def revision_of(self, entity_or_identity: Any) -> str | None:
        return self._tracker.revision_of(self._identity(entity_or_identity))

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def flush(self, policy: ConflictPolicy | str | None = None) -> FlushReport:
        """Write every pending change in one batched request."""
        self._check_open()
        return self._synchronizer.flush(policy)

    async def aflush(self, policy: ConflictPolicy | str | None = None) -> FlushReport:
        """Awaitable ``flush``."""
        self._check_open()
        return await self._synchronizer.aflush(policy)

    def clear(self) -> None:
        """Detach every entity. Pending changes are dropped."""
        self._check_open()
        self._tracker.clear()

    def close(self) -> None:
        """End the session. Unflushed changes are discarded."""
        if self._closed:
            return
        pending = len(self._tracker.compute_change_set())
        if pending:
            logger.warning(f"Closing session with {pending} unflushed change(s)")
        self._tracker.clear()
        self._closed = True

    def __enter__(self) -> "DocumentSession":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    async def __aenter__(self) -> "DocumentSession":
        return self

    async def __aexit__(self, *args: Any) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _load(self, identity: str, remote: RemoteDocument | None, factory: Any) -> Any:
        if remote is None:
            raise DocumentNotFoundError(f"Document not found: {identity}", identity=identity)
        entity = self._tracker.serializer.create(factory, remote.fields)
        self._tracker.register(
            entity,
            identity=identity,
            initial_revision=remote.revision,
            snapshot=self._tracker.serializer.to_document(entity),
        )
        return entity

    def _identity(self, entity_or_identity: Any) -> str:
        if isinstance(entity_or_identity, str):
            return entity_or_identity
        identity = self._tracker.identity_of(entity_or_identity)
        if identity is None:
            raise UnknownEntityError("Entity is not tracked by this session")
        return identity

    def _check_open(self) -> None:
        if self._closed:
            raise SessionClosedError("Session is closed")

    def _require_store(self, kind: type) -> Any:
        if not isinstance(self._store, kind):
            raise TypeError(
                f"{kind.__name__} required, session has {type(self._store).__name__}"
            )
        return self._store
