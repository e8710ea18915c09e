"""couchodm constants, enumerations and default values."""

from enum import Enum
from pathlib import Path
from typing import Final


class LifecycleState(str, Enum):
    """Lifecycle state of a tracked entity."""

    NEW = "new"
    MANAGED = "managed"
    DIRTY = "dirty"
    REMOVED = "removed"
    DETACHED = "detached"

    @classmethod
    def pending_states(cls) -> tuple["LifecycleState", ...]:
        """Return states that require a write on flush."""
        return (cls.NEW, cls.DIRTY, cls.REMOVED)

    def is_pending(self) -> bool:
        """Check if this state requires a write on flush."""
        return self in self.pending_states()


class OperationType(str, Enum):
    """Per-entity operation inside a batched write."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"

    @classmethod
    def for_state(cls, state: LifecycleState) -> "OperationType":
        """Map a pending lifecycle state to the write it needs."""
        if state == LifecycleState.NEW:
            return cls.CREATE
        if state == LifecycleState.DIRTY:
            return cls.UPDATE
        if state == LifecycleState.REMOVED:
            return cls.DELETE
        raise ValueError(f"No write operation for state: {state.value}")


class Outcome(str, Enum):
    """Store-side outcome of one batched operation."""

    ACCEPTED = "accepted"
    CONFLICT = "conflict"
    REJECTED = "rejected"


class ConflictPolicy(str, Enum):
    """How conflicted entries are resolved after a flush."""

    FAIL = "fail"
    FIRST_WRITE_WINS = "first_write_wins"
    LAST_WRITE_WINS = "last_write_wins"
    MANUAL = "manual"


class ResolutionAction(str, Enum):
    """Action taken by the conflict resolver for one entry."""

    FAILED = "failed"
    RELOADED = "reloaded"
    RESUBMITTED = "resubmitted"
    RETRY_CONFLICTED = "retry_conflicted"
    RETRY_REJECTED = "retry_rejected"
    RETRY_INTERRUPTED = "retry_interrupted"
    PURGED = "purged"


class ResolutionDecision(str, Enum):
    """How the resolver plans to handle one conflicted entry before acting."""

    FAIL = "fail"
    RELOAD = "reload"
    PURGE = "purge"
    RESUBMIT = "resubmit"


class ManualChoice(str, Enum):
    """Return values a manual conflict callback may give besides a merged document."""

    KEEP_LOCAL = "keep_local"
    KEEP_REMOTE = "keep_remote"


# Directory structure
ODM_ROOT_DIR: Final[str] = ".couchodm"
CONFIG_FILE: Final[str] = "odm.config.json"

# Store defaults
DEFAULT_STORE_URL: Final[str] = "http://127.0.0.1:5984"
DEFAULT_DATABASE: Final[str] = "couchodm"
DEFAULT_TIMEOUT: Final[float] = 10.0

# Flush defaults
DEFAULT_FORCE: Final[bool] = False
DEFAULT_CONFLICT_POLICY: Final[ConflictPolicy] = ConflictPolicy.FAIL
DEFAULT_LOG_LEVEL: Final[str] = "warning"

# CouchDB document metadata keys
ID_FIELD: Final[str] = "_id"
REV_FIELD: Final[str] = "_rev"
DELETED_FIELD: Final[str] = "_deleted"
CONFLICTS_FIELD: Final[str] = "_conflicts"
RESERVED_FIELDS: Final[frozenset[str]] = frozenset(
    {ID_FIELD, REV_FIELD, DELETED_FIELD, CONFLICTS_FIELD}
)

# CouchDB bulk error codes
CONFLICT_ERROR: Final[str] = "conflict"
NOT_FOUND_ERROR: Final[str] = "not_found"


def get_odm_root(base_path: Path | None = None) -> Path:
    """Get the .couchodm directory path."""
    base = base_path or Path.cwd()
    return base / ODM_ROOT_DIR


def get_config_path(base_path: Path | None = None) -> Path:
    """Get the configuration file path."""
    return get_odm_root(base_path) / CONFIG_FILE
