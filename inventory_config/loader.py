"""
Configuration Loader (``inventory_config.loader``).

Responsibility
--------------
Loads a YAML file and parses it into the frozen ``inventory_config.schema``
dataclasses, then applies the supported environment overrides.  Runtime
callers use ``inventory_config.get_active_config()`` instead of this module.

Invariants enforced
-------------------
* Unknown sections or keys raise ``ValueError``; a typo never silently
  falls back to a default.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the parsed
  source document.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Wrong types or out-of-range values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields, replace
from pathlib import Path
from typing import Any, Mapping

import yaml

from inventory_config.schema import (
    DatabaseConfig,
    InventoryConfig,
    LockingConfig,
    LoggingConfig,
    ReservationConfig,
    SweeperConfig,
)

ENV_DATABASE_URL = "INVENTORY_DATABASE_URL"
ENV_LOG_LEVEL = "INVENTORY_LOG_LEVEL"

_SECTIONS: dict[str, type] = {
    "database": DatabaseConfig,
    "locking": LockingConfig,
    "reservations": ReservationConfig,
    "sweeper": SweeperConfig,
    "logging": LoggingConfig,
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top-level YAML value must be a mapping")
    return data


def _coerce(section: str, name: str, expected: Any, value: Any) -> Any:
    if expected is bool or expected == "bool":
        if not isinstance(value, bool):
            raise ValueError(f"{section}.{name} must be a boolean, got {value!r}")
        return value
    if expected in (int, "int"):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"{section}.{name} must be an integer, got {value!r}")
        return value
    if expected in (float, "float"):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"{section}.{name} must be a number, got {value!r}")
        return float(value)
    if expected in (str, "str"):
        if not isinstance(value, str):
            raise ValueError(f"{section}.{name} must be a string, got {value!r}")
        return value
    return value


def parse_section(name: str, data: Mapping[str, Any] | None) -> Any:
    """Parse one named section into its dataclass."""
    cls = _SECTIONS[name]
    data = data or {}
    if not isinstance(data, Mapping):
        raise ValueError(f"Section '{name}' must be a mapping")
    known = {f.name: f.type for f in fields(cls)}
    unknown = set(data) - set(known)
    if unknown:
        raise ValueError(f"Unknown keys in '{name}': {sorted(unknown)}")
    kwargs = {
        key: _coerce(name, key, known[key], value)
        for key, value in data.items()
    }
    return cls(**kwargs)


def parse_config(data: Mapping[str, Any]) -> InventoryConfig:
    """Parse a whole configuration document."""
    unknown = set(data) - set(_SECTIONS) - {"config_id", "version"}
    if unknown:
        raise ValueError(f"Unknown configuration sections: {sorted(unknown)}")
    version = data.get("version", 1)
    if isinstance(version, bool) or not isinstance(version, int):
        raise ValueError(f"version must be an integer, got {version!r}")
    return InventoryConfig(
        config_id=str(data.get("config_id", "default")),
        version=version,
        database=parse_section("database", data.get("database")),
        locking=parse_section("locking", data.get("locking")),
        reservations=parse_section("reservations", data.get("reservations")),
        sweeper=parse_section("sweeper", data.get("sweeper")),
        logging=parse_section("logging", data.get("logging")),
        checksum=compute_checksum(dict(data)),
    )


def apply_env_overrides(
    config: InventoryConfig,
    environ: Mapping[str, str],
) -> InventoryConfig:
    """Return ``config`` with the supported environment overrides applied."""
    database_url = environ.get(ENV_DATABASE_URL)
    if database_url:
        config = replace(config, database=replace(config.database, url=database_url))
    log_level = environ.get(ENV_LOG_LEVEL)
    if log_level:
        config = replace(config, logging=LoggingConfig(level=log_level.upper()))
    return config


def compute_checksum(data: dict[str, Any]) -> str:
    """Compute a deterministic SHA-256 checksum for a configuration document."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
