"""
mfg_config -- single public entrypoint for engine configuration.

Responsibility:
    ``get_active_config()`` is the only way services obtain configuration.
    It loads ``defaults.yaml`` shipped with the package, or a file the
    caller names, and returns a frozen ``EngineConfig``.

Audit relevance:
    Every call emits an ``MFG_CONFIG_TRACE`` log record with the config id,
    version and checksum, tying postings to the configuration that
    governed them.
"""

from __future__ import annotations

import logging
from pathlib import Path

from mfg_config.loader import load_engine_config
from mfg_config.schema import (
    EngineConfig,
    InventoryPolicy,
    ProcurementPolicy,
    ProductionPolicy,
    RbacConfig,
    RoleDef,
)

_logger = logging.getLogger("mfg_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(config_path: Path | None = None) -> EngineConfig:
    """Load the engine configuration (defaults unless config_path is given).

    Non-goals:
        - No caching; callers hold the returned config for their lifetime.
    """
    config = load_engine_config(config_path or DEFAULT_CONFIG_PATH)
    _logger.info(
        "MFG_CONFIG_TRACE",
        extra={
            "trace_type": "MFG_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "role_count": len(config.rbac.roles),
        },
    )
    return config


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "EngineConfig",
    "InventoryPolicy",
    "ProcurementPolicy",
    "ProductionPolicy",
    "RbacConfig",
    "RoleDef",
    "get_active_config",
]
