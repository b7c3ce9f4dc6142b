"""
Configuration Loader (``mfg_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the typed
``mfg_config.schema`` dataclasses.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* Negative tolerances and malformed permission patterns raise
  ``ValueError``.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from mfg_config.schema import (
    EngineConfig,
    InventoryPolicy,
    ProcurementPolicy,
    ProductionPolicy,
    RbacConfig,
    RoleDef,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _validate_pattern(pattern: str) -> str:
    if pattern == "*":
        return pattern
    if not pattern or "*" in pattern[:-1] or (pattern.endswith("*") and not pattern.endswith(".*")):
        raise ValueError(f"Malformed permission pattern: {pattern!r}")
    return pattern


def parse_rbac(data: dict[str, Any]) -> RbacConfig:
    roles = []
    for name, entry in (data.get("roles") or {}).items():
        entry = entry or {}
        roles.append(
            RoleDef(
                name=name,
                permissions=tuple(_validate_pattern(p) for p in entry.get("permissions", ())),
                description=entry.get("description", ""),
            )
        )
    return RbacConfig(roles=tuple(roles))


def parse_procurement(data: dict[str, Any]) -> ProcurementPolicy:
    tolerance = Decimal(str(data.get("over_receipt_tolerance_percent", "0")))
    if tolerance < 0:
        raise ValueError("over_receipt_tolerance_percent cannot be negative")
    return ProcurementPolicy(
        over_receipt_tolerance_percent=tolerance,
        default_currency=data.get("default_currency", "USD"),
    )


def parse_inventory(data: dict[str, Any]) -> InventoryPolicy:
    return InventoryPolicy(
        enforce_single_sku_bins=bool(data.get("enforce_single_sku_bins", True)),
        adjustment_reason_codes=tuple(data.get("adjustment_reason_codes", ())),
    )


def parse_production(data: dict[str, Any]) -> ProductionPolicy:
    return ProductionPolicy(
        default_backflush=bool(data.get("default_backflush", True)),
        auto_reserve_on_release=bool(data.get("auto_reserve_on_release", False)),
    )


def parse_engine_config(data: dict[str, Any]) -> EngineConfig:
    """
    Parse an ``EngineConfig`` from a dict.

    Preconditions:
        - ``data`` contains ``config_id``; other sections are optional.
    Raises:
        KeyError: if ``config_id`` is missing.
        ValueError: on malformed values.
    """
    return EngineConfig(
        config_id=data["config_id"],
        version=int(data.get("version", 1)),
        rbac=parse_rbac(data.get("rbac") or {}),
        procurement=parse_procurement(data.get("procurement") or {}),
        inventory=parse_inventory(data.get("inventory") or {}),
        production=parse_production(data.get("production") or {}),
        checksum=compute_checksum(data),
    )


def load_engine_config(path: Path) -> EngineConfig:
    """Load and parse one configuration file."""
    return parse_engine_config(load_yaml_file(Path(path)))


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization (deterministic)."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
