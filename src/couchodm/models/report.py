"""Flush and conflict resolution result models."""

from dataclasses import dataclass, field
from typing import Any

from couchodm.core.constants import LifecycleState, Outcome, ResolutionAction
from couchodm.core.exceptions import (
    ConflictError,
    ConflictResolutionError,
    FlushConflictsError,
    FlushRejectionsError,
    RejectedError,
)
from couchodm.models.batch import BatchResultEntry, ChangeEntry, RemoteDocument


@dataclass(frozen=True)
class ConflictContext:
    """Local and remote state handed to a manual conflict callback."""

    identity: str
    entity: Any
    local: dict[str, Any]
    local_state: LifecycleState
    remote: RemoteDocument | None
    # Revision a forced write replaced, when one is known
    overwritten: RemoteDocument | None = None

    @property
    def remote_deleted(self) -> bool:
        """Whether the remote document no longer exists."""
        return self.remote is None


@dataclass
class ResolutionOutcome:
    """What the resolver did for one conflicted entry."""

    identity: str
    action: ResolutionAction
    final_state: LifecycleState | None
    revision: str | None = None
    error: ConflictError | RejectedError | ConflictResolutionError | None = None

    @property
    def resolved(self) -> bool:
        """Whether the conflict no longer needs attention."""
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "identity": self.identity,
            "action": self.action.value,
            "final_state": self.final_state.value if self.final_state else None,
            "revision": self.revision,
            "error": str(self.error) if self.error else None,
        }


@dataclass
class FlushReport:
    """Aggregate result of one flush.

    Counts describe the store's response to the batched request. The
    ``resolutions`` list describes what the conflict resolver did
    afterwards.
    """

    accepted: int = 0
    conflicted: int = 0
    rejected: int = 0
    reconciled: int = 0
    conflicted_identities: list[str] = field(default_factory=list)
    rejections: list[BatchResultEntry] = field(default_factory=list)
    resolutions: list[ResolutionOutcome] = field(default_factory=list)
    requests: int = 0

    @property
    def submitted(self) -> int:
        """Number of operations in the batched request."""
        return self.accepted + self.conflicted + self.rejected

    @property
    def is_empty(self) -> bool:
        return self.submitted == 0 and self.reconciled == 0

    @property
    def unresolved(self) -> list[ResolutionOutcome]:
        """Resolutions that still carry an error."""
        return [r for r in self.resolutions if not r.resolved]

    @property
    def ok(self) -> bool:
        """True when nothing was rejected and every conflict is resolved."""
        return self.rejected == 0 and not self.unresolved

    def record(self, entry: ChangeEntry, result: BatchResultEntry) -> None:
        """Count one batch result."""
        if result.is_accepted:
            self.accepted += 1
        elif result.outcome == Outcome.CONFLICT:
            self.conflicted += 1
            self.conflicted_identities.append(entry.identity)
        else:
            self.rejected += 1
            self.rejections.append(result)

    def raise_for_conflicts(self) -> None:
        """Raise if any conflict was left unresolved."""
        errors = [
            r.error
            for r in self.unresolved
            if isinstance(r.error, (ConflictError, ConflictResolutionError))
        ]
        if errors:
            raise FlushConflictsError(
                f"{len(errors)} conflict(s) left unresolved by flush",
                errors,
            )

    def raise_for_rejections(self) -> None:
        """Raise if the store rejected any write."""
        errors = [
            RejectedError(
                f"Write rejected for {r.identity}: {r.reason}",
                identity=r.identity,
                reason=r.reason,
            )
            for r in self.rejections
        ]
        errors.extend(
            r.error for r in self.unresolved if isinstance(r.error, RejectedError)
        )
        if errors:
            raise FlushRejectionsError(
                f"{len(errors)} write(s) rejected by the store",
                errors,
            )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "accepted": self.accepted,
            "conflicted": self.conflicted,
            "rejected": self.rejected,
            "reconciled": self.reconciled,
            "requests": self.requests,
            "conflicted_identities": list(self.conflicted_identities),
            "rejections": [r.to_dict() for r in self.rejections],
            "resolutions": [r.to_dict() for r in self.resolutions],
        }
