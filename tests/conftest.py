"""Pytest configuration and fixtures for couchodm tests."""

from dataclasses import dataclass, field
from pathlib import Path

import pytest

from couchodm.core.config import FlushConfig, ODMConfig
from couchodm.core.constants import ConflictPolicy
from couchodm.session import DocumentSession
from couchodm.store.memory import AsyncInMemoryDocumentStore, InMemoryDocumentStore
from couchodm.uow.tracker import UnitOfWorkTracker


@dataclass
class Article:
    """Sample entity used across tests."""

    title: str
    body: str = ""
    tags: list[str] = field(default_factory=list)


@pytest.fixture
def odm_root(tmp_path: Path) -> Path:
    """Create a .couchodm directory."""
    root = tmp_path / ".couchodm"
    root.mkdir()
    return root


@pytest.fixture
def config() -> ODMConfig:
    """Create default configuration."""
    return ODMConfig()


@pytest.fixture
def store() -> InMemoryDocumentStore:
    """Create an empty in-memory store."""
    return InMemoryDocumentStore()


@pytest.fixture
def async_store(store: InMemoryDocumentStore) -> AsyncInMemoryDocumentStore:
    """Awaitable view of the same store."""
    return AsyncInMemoryDocumentStore(store)


@pytest.fixture
def tracker() -> UnitOfWorkTracker:
    """Create a tracker with sequential identities."""
    counter = iter(range(1, 10_000))
    return UnitOfWorkTracker(id_generator=lambda: f"doc-{next(counter):04d}")


@pytest.fixture
def session(store: InMemoryDocumentStore) -> DocumentSession:
    """Create a session over the in-memory store."""
    s = DocumentSession(store)
    yield s
    s.close()


def make_config(
    policy: ConflictPolicy = ConflictPolicy.FAIL,
    force: bool = False,
    reconcile: bool = True,
) -> ODMConfig:
    """Build a config with flush settings."""
    return ODMConfig(
        flush=FlushConfig(force=force, conflict_policy=policy, reconcile_in_doubt=reconcile)
    )
