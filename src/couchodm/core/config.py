"""couchodm configuration loading and validation."""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Self

from couchodm.core.constants import (
    DEFAULT_CONFLICT_POLICY,
    DEFAULT_DATABASE,
    DEFAULT_FORCE,
    DEFAULT_LOG_LEVEL,
    DEFAULT_STORE_URL,
    DEFAULT_TIMEOUT,
    ConflictPolicy,
    get_config_path,
)
from couchodm.core.exceptions import ConfigurationError


@dataclass(frozen=True)
class StoreConfig:
    """Document store connection configuration."""

    url: str = DEFAULT_STORE_URL
    database: str = DEFAULT_DATABASE
    timeout: float = DEFAULT_TIMEOUT
    username: str | None = None
    password: str | None = None

    @property
    def database_url(self) -> str:
        """Get the database URL without a trailing slash."""
        return f"{self.url.rstrip('/')}/{self.database}"


@dataclass(frozen=True)
class FlushConfig:
    """Bulk flush configuration.

    ``force`` False means every operation is checked against its expected
    revision and rejected individually on mismatch.
    """

    force: bool = DEFAULT_FORCE
    conflict_policy: ConflictPolicy = DEFAULT_CONFLICT_POLICY
    reconcile_in_doubt: bool = True

    def __post_init__(self) -> None:
        if not isinstance(self.conflict_policy, ConflictPolicy):
            object.__setattr__(
                self, "conflict_policy", ConflictPolicy(self.conflict_policy)
            )


@dataclass(frozen=True)
class LoggingConfig:
    """Logging configuration."""

    level: str = DEFAULT_LOG_LEVEL


@dataclass(frozen=True)
class ODMConfig:
    """Complete couchodm configuration."""

    version: str = "1.0"
    store: StoreConfig = field(default_factory=StoreConfig)
    flush: FlushConfig = field(default_factory=FlushConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Create config from dictionary."""
        return cls(
            version=data.get("version", "1.0"),
            store=StoreConfig(**data.get("store", {})),
            flush=FlushConfig(**data.get("flush", {})),
            logging=LoggingConfig(**data.get("logging", {})),
        )

    @classmethod
    def load(cls, base_path: Path | None = None) -> Self:
        """Load configuration from file or use defaults."""
        config_path = get_config_path(base_path)

        if not config_path.exists():
            return cls()

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return cls.from_dict(data)
        except json.JSONDecodeError as e:
            raise ConfigurationError(
                f"Invalid JSON in config file: {e}",
                details={"path": str(config_path)},
            ) from e
        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                f"Invalid configuration values: {e}",
                details={"path": str(config_path)},
            ) from e

    def to_dict(self) -> dict[str, Any]:
        """Convert config to dictionary."""
        return {
            "version": self.version,
            "store": {
                "url": self.store.url,
                "database": self.store.database,
                "timeout": self.store.timeout,
                "username": self.store.username,
                "password": self.store.password,
            },
            "flush": {
                "force": self.flush.force,
                "conflict_policy": self.flush.conflict_policy.value,
                "reconcile_in_doubt": self.flush.reconcile_in_doubt,
            },
            "logging": {
                "level": self.logging.level,
            },
        }

    def save(self, base_path: Path | None = None) -> Path:
        """Save configuration to file."""
        config_path = get_config_path(base_path)
        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)
        return config_path
