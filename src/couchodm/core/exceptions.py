"""couchodm custom exception hierarchy."""

from typing import Any


class ODMError(Exception):
    """Base exception for all couchodm errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({detail_str})"
        return self.message


class ConfigurationError(ODMError):
    """Raised when configuration is invalid or missing."""

    pass


# =============================================================================
# Unit of work misuse
# =============================================================================


class EntityError(ODMError):
    """Base exception for errors tied to one tracked identity."""

    def __init__(
        self,
        message: str,
        identity: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if identity:
            details["identity"] = identity
        super().__init__(message, details)
        self.identity = identity


class DuplicateIdentityError(EntityError):
    """Raised when an identity or entity is registered twice."""

    pass


class UnknownEntityError(EntityError):
    """Raised when an operation targets an untracked identity."""

    pass


class InvalidStateTransitionError(EntityError):
    """Raised when a lifecycle transition is not allowed."""

    def __init__(
        self,
        message: str,
        identity: str | None = None,
        current_state: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if current_state:
            details["current_state"] = current_state
        super().__init__(message, identity, details)
        self.current_state = current_state


class SessionClosedError(ODMError):
    """Raised when a closed session is used."""

    pass


class DocumentNotFoundError(EntityError):
    """Raised when a document does not exist in the store."""

    pass


# =============================================================================
# Store and flush
# =============================================================================


class NetworkFailure(ODMError):
    """Raised when a store operation fails in transit.

    No tracker state is mutated when this is raised, so the flush can be
    retried with the identical change set.
    """

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if operation:
            details["operation"] = operation
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message, details)
        self.operation = operation
        self.status_code = status_code


class StoreResponseError(NetworkFailure):
    """Raised when a batched response does not match its request."""

    pass


class ConflictError(EntityError):
    """A write was refused because its expected revision is stale."""

    def __init__(
        self,
        message: str,
        identity: str | None = None,
        expected_revision: str | None = None,
        remote_revision: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if expected_revision:
            details["expected_revision"] = expected_revision
        if remote_revision:
            details["remote_revision"] = remote_revision
        super().__init__(message, identity, details)
        self.expected_revision = expected_revision
        self.remote_revision = remote_revision


class RejectedError(EntityError):
    """A write was refused by the store for a reason other than a conflict."""

    def __init__(
        self,
        message: str,
        identity: str | None = None,
        reason: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if reason:
            details["reason"] = reason
        super().__init__(message, identity, details)
        self.reason = reason


class ConflictResolutionError(ODMError):
    """A conflict policy could not be applied.

    Raised when MANUAL has no callback. A callback that fails for one
    entry is reported through that entry's resolution outcome instead.
    """

    def __init__(
        self,
        message: str,
        identity: str | None = None,
        policy: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if identity:
            details["identity"] = identity
        if policy:
            details["policy"] = policy
        super().__init__(message, details)
        self.identity = identity
        self.policy = policy


class FlushConflictsError(ODMError):
    """Raised by a flush report when one or more conflicts are unresolved."""

    def __init__(
        self,
        message: str,
        errors: list[ConflictError | ConflictResolutionError],
    ) -> None:
        super().__init__(message, {"identities": [e.identity for e in errors]})
        self.errors = errors


class FlushRejectionsError(ODMError):
    """Raised by a flush report when one or more writes were rejected."""

    def __init__(self, message: str, errors: list[RejectedError]) -> None:
        super().__init__(message, {"identities": [e.identity for e in errors]})
        self.errors = errors
