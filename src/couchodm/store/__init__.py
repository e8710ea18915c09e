"""Document store adapters.

This module provides:
- DocumentStore / AsyncDocumentStore: the store contract
- InMemoryDocumentStore: CouchDB revision semantics in process
- CouchDBStore / AsyncCouchDBStore: httpx clients for a CouchDB server
"""

from couchodm.store.base import AsyncDocumentStore, DocumentStore
from couchodm.store.http import AsyncCouchDBStore, CouchDBStore, ServerInfo
from couchodm.store.memory import AsyncInMemoryDocumentStore, InMemoryDocumentStore

__all__ = [
    "DocumentStore",
    "AsyncDocumentStore",
    "InMemoryDocumentStore",
    "AsyncInMemoryDocumentStore",
    "CouchDBStore",
    "AsyncCouchDBStore",
    "ServerInfo",
]
