"""
Document store interface.

A store accepts one batched write and answers it with one result per
operation, in submission order, and can be queried by identity. Stores
report transport problems by raising ``NetworkFailure``; per-entity
conflicts and rejections are returned as results, never raised.
"""

from abc import ABC, abstractmethod

from couchodm.models.batch import BatchRequest, BatchResultEntry, RemoteDocument


class DocumentStore(ABC):
    """Blocking document store."""

    @abstractmethod
    def bulk_write(self, request: BatchRequest) -> list[BatchResultEntry]:
        """
        Submit every operation of ``request`` in one network call.

        Args:
            request: The batched write

        Returns:
            One result per operation, correlated by identity and position

        Raises:
            NetworkFailure: If the call did not complete
        """

    @abstractmethod
    def get(self, identity: str, revision: str | None = None) -> RemoteDocument | None:
        """
        Read the current document for an identity.

        Args:
            identity: Document identity
            revision: Read this revision instead of the winning one, used
                for the losing side of a conflict

        Returns:
            The document, or None if it does not exist or was deleted

        Raises:
            NetworkFailure: If the call did not complete
        """

    def close(self) -> None:
        """Release any held resources."""


class AsyncDocumentStore(ABC):
    """Awaitable document store."""

    @abstractmethod
    async def bulk_write(self, request: BatchRequest) -> list[BatchResultEntry]:
        """Awaitable form of ``DocumentStore.bulk_write``."""

    @abstractmethod
    async def get(self, identity: str, revision: str | None = None) -> RemoteDocument | None:
        """Awaitable form of ``DocumentStore.get``."""

    async def aclose(self) -> None:
        """Release any held resources."""
