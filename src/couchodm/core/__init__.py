"""Core configuration, constants and exceptions."""

from couchodm.core.config import FlushConfig, LoggingConfig, ODMConfig, StoreConfig
from couchodm.core.constants import (
    ConflictPolicy,
    LifecycleState,
    ManualChoice,
    OperationType,
    Outcome,
    ResolutionAction,
    ResolutionDecision,
)
from couchodm.core.exceptions import (
    ConfigurationError,
    ConflictError,
    ConflictResolutionError,
    DocumentNotFoundError,
    DuplicateIdentityError,
    FlushConflictsError,
    FlushRejectionsError,
    InvalidStateTransitionError,
    NetworkFailure,
    ODMError,
    RejectedError,
    SessionClosedError,
    StoreResponseError,
    UnknownEntityError,
)

__all__ = [
    # Config
    "ODMConfig",
    "StoreConfig",
    "FlushConfig",
    "LoggingConfig",
    # Enums
    "LifecycleState",
    "OperationType",
    "Outcome",
    "ConflictPolicy",
    "ResolutionAction",
    "ResolutionDecision",
    "ManualChoice",
    # Exceptions
    "ODMError",
    "ConfigurationError",
    "DuplicateIdentityError",
    "UnknownEntityError",
    "InvalidStateTransitionError",
    "SessionClosedError",
    "DocumentNotFoundError",
    "NetworkFailure",
    "StoreResponseError",
    "ConflictError",
    "RejectedError",
    "FlushConflictsError",
    "FlushRejectionsError",
    "ConflictResolutionError",
]
