"""
InventoryConfig schema.

Frozen dataclasses for the runtime configuration.  YAML documents are parsed
into these types by the loader; every value is validated on construction so
an invalid configuration can never reach the kernel.
"""

from __future__ import annotations

from dataclasses import dataclass, field

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


def _require_positive(section: str, name: str, value: float) -> None:
    if value <= 0:
        raise ValueError(f"{section}.{name} must be positive, got {value!r}")


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection settings.  ``create_tables`` is for local tooling and tests."""

    url: str = "sqlite:///inventory.db"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800
    create_tables: bool = False

    def __post_init__(self) -> None:
        if not self.url:
            raise ValueError("database.url must not be empty")
        _require_positive("database", "pool_size", self.pool_size)
        if self.max_overflow < 0:
            raise ValueError("database.max_overflow must not be negative")
        _require_positive("database", "pool_timeout", self.pool_timeout)


@dataclass(frozen=True)
class LockingConfig:
    timeout_seconds: float = 5.0
    max_retries: int = 3
    backoff_seconds: float = 0.05

    def __post_init__(self) -> None:
        _require_positive("locking", "timeout_seconds", self.timeout_seconds)
        if self.max_retries < 0:
            raise ValueError("locking.max_retries must not be negative")
        if self.backoff_seconds < 0:
            raise ValueError("locking.backoff_seconds must not be negative")


@dataclass(frozen=True)
class ReservationConfig:
    default_ttl_seconds: float = 900.0
    max_ttl_seconds: float = 86400.0

    def __post_init__(self) -> None:
        _require_positive("reservations", "default_ttl_seconds", self.default_ttl_seconds)
        _require_positive("reservations", "max_ttl_seconds", self.max_ttl_seconds)
        if self.default_ttl_seconds > self.max_ttl_seconds:
            raise ValueError(
                "reservations.default_ttl_seconds must not exceed max_ttl_seconds"
            )


@dataclass(frozen=True)
class SweeperConfig:
    enabled: bool = True
    interval_seconds: float = 60.0
    batch_size: int = 100
    max_batches_per_tick: int = 10

    def __post_init__(self) -> None:
        _require_positive("sweeper", "interval_seconds", self.interval_seconds)
        _require_positive("sweeper", "batch_size", self.batch_size)
        _require_positive("sweeper", "max_batches_per_tick", self.max_batches_per_tick)


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"

    def __post_init__(self) -> None:
        if self.level.upper() not in _LOG_LEVELS:
            raise ValueError(f"logging.level must be one of {sorted(_LOG_LEVELS)}")


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InventoryConfig:
    """The complete runtime configuration."""

    config_id: str = "default"
    version: int = 1
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    locking: LockingConfig = field(default_factory=LockingConfig)
    reservations: ReservationConfig = field(default_factory=ReservationConfig)
    sweeper: SweeperConfig = field(default_factory=SweeperConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    checksum: str = ""
