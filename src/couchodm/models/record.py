"""Tracked entity record owned by the unit-of-work tracker."""

from dataclasses import dataclass
from typing import Any

from couchodm.core.constants import LifecycleState


@dataclass
class TrackedRecord:
    """Identity, entity, last synchronized snapshot and lifecycle state."""

    identity: str
    entity: Any
    state: LifecycleState
    sequence: int
    snapshot: dict[str, Any] | None = None
