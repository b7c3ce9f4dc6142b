"""
Engine configuration schema.

The human-authored YAML (``defaults.yaml`` or an operator-supplied file) is
parsed by the loader into these frozen dataclasses.  Services receive an
``EngineConfig`` and read policy from it; nothing else reads configuration.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

# ---------------------------------------------------------------------------
# RBAC
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RoleDef:
    """A role and the permission patterns it grants.

    Patterns are exact permission names, ``*`` (everything) or a dotted
    prefix ending in ``.*`` (``procurement.*``).
    """

    name: str
    permissions: tuple[str, ...] = ()
    description: str = ""


@dataclass(frozen=True)
class RbacConfig:
    roles: tuple[RoleDef, ...] = ()

    def patterns_for(self, role: str) -> tuple[str, ...]:
        for r in self.roles:
            if r.name == role:
                return r.permissions
        return ()

    @property
    def role_names(self) -> tuple[str, ...]:
        return tuple(r.name for r in self.roles)


# ---------------------------------------------------------------------------
# Module policies
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProcurementPolicy:
    # Receipts may exceed the ordered quantity by this percentage.
    over_receipt_tolerance_percent: Decimal = Decimal("0")
    default_currency: str = "USD"


@dataclass(frozen=True)
class InventoryPolicy:
    enforce_single_sku_bins: bool = True
    adjustment_reason_codes: tuple[str, ...] = ()


@dataclass(frozen=True)
class ProductionPolicy:
    default_backflush: bool = True
    auto_reserve_on_release: bool = False


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EngineConfig:
    """Complete runtime configuration for the document engine."""

    config_id: str
    version: int
    rbac: RbacConfig = field(default_factory=RbacConfig)
    procurement: ProcurementPolicy = field(default_factory=ProcurementPolicy)
    inventory: InventoryPolicy = field(default_factory=InventoryPolicy)
    production: ProductionPolicy = field(default_factory=ProductionPolicy)
    checksum: str = ""
