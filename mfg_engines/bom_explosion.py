"""
Module: mfg_engines.bom_explosion
Responsibility:
    Expand a multi-level bill of materials into the leaf component
    quantities needed to build N units of an item, applying each line's
    scrap factor at its own level and summing components reached through
    more than one path.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The production service
    loads the active BOMs into plain ``BomComponent`` tuples and calls
    ``explode``; the result becomes the work order's component snapshot.

Invariants enforced:
    - Cycle detection: an item reachable from itself raises CyclicBomError
      naming the cycle; nothing is returned.
    - Per-level scrap: each line contributes
      ``quantity_per * (1 + scrap_factor)`` times its parent's requirement.
    - DAG sharing: a sub-assembly used by several parents is exploded once
      per call (memoized per-unit requirements) and its leaves summed.
    - Linearity: requirements for N units are N times the per-unit
      requirements.
    - Determinism: requirements are ordered by item id.

Failure modes:
    - BomMissingError if the root item has no BOM in ``boms``.
    - CyclicBomError on a cycle anywhere below the root.
    - ValidationError on build_quantity <= 0.

Usage:
    engine = BomExplosionEngine()
    result = engine.explode(
        item_id="FG",
        build_quantity=Decimal("10"),
        boms={
            "FG": [BomComponent("SUB", Decimal("2"), Decimal("0.05"))],
            "SUB": [BomComponent("RAW", Decimal("3"))],
        },
    )
    result.quantity_of("RAW")   # 10 * 2 * 1.05 * 3 = 63
"""

from __future__ import annotations

from collections.abc import Hashable, Mapping, Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from mfg_engines.tracer import traced_engine
from mfg_kernel.exceptions import BomMissingError, CyclicBomError, ValidationError
from mfg_kernel.logging_config import get_logger

logger = get_logger("engines.bom_explosion")

_QUANTUM = Decimal("0.000000001")
_ONE = Decimal("1")
_ZERO = Decimal("0")


@dataclass(frozen=True)
class BomComponent:
    """
    One BOM line as the engine sees it.

    Guarantees:
        - ``quantity_per`` is positive.
        - ``scrap_factor`` is a non-negative fraction (0.05 == 5%).
    """

    component_id: Hashable
    quantity_per: Decimal
    scrap_factor: Decimal = _ZERO
    backflush: bool = True

    def __post_init__(self) -> None:
        if self.quantity_per <= _ZERO:
            raise ValueError(f"quantity_per must be positive for {self.component_id}")
        if self.scrap_factor < _ZERO:
            raise ValueError(f"scrap_factor cannot be negative for {self.component_id}")

    @property
    def gross_quantity_per(self) -> Decimal:
        return self.quantity_per * (_ONE + self.scrap_factor)


@dataclass(frozen=True)
class ComponentRequirement:
    """
    Total need for one leaf component.

    ``backflush`` is True only when every path from the root to this
    component allows backflush; otherwise the whole quantity is issued
    manually.
    """

    item_id: Hashable
    quantity_per_unit: Decimal
    quantity: Decimal
    backflush: bool


@dataclass(frozen=True)
class ExplosionResult:
    item_id: Hashable
    build_quantity: Decimal
    requirements: tuple[ComponentRequirement, ...]

    def quantity_of(self, item_id: Hashable) -> Decimal:
        for req in self.requirements:
            if req.item_id == item_id:
                return req.quantity
        return _ZERO

    def as_dict(self) -> dict:
        return {req.item_id: req.quantity for req in self.requirements}


class _UnitNeed:
    __slots__ = ("quantity", "backflush")

    def __init__(self, quantity: Decimal, backflush: bool):
        self.quantity = quantity
        self.backflush = backflush


class BomExplosionEngine:
    """
    Multi-level BOM explosion.

    Contract:
        Pure function of its inputs.  No I/O, no database access.
    Non-goals:
        - Does not pick which BOM version is active; callers pass one BOM
          per item.
        - Does not check stock.
    """

    @traced_engine(
        "bom_explosion", "1.0",
        fingerprint_fields=("item_id", "build_quantity"),
        summarize=lambda r: {"requirement_count": len(r.requirements)},
    )
    def explode(
        self,
        *,
        item_id: Hashable,
        build_quantity: Decimal,
        boms: Mapping[Hashable, Sequence[BomComponent]],
    ) -> ExplosionResult:
        if build_quantity <= _ZERO:
            raise ValidationError(
                f"Build quantity must be positive, got {build_quantity}",
                ["build_quantity"],
            )
        if not boms.get(item_id):
            raise BomMissingError(str(item_id))

        memo: dict[Hashable, dict[Hashable, _UnitNeed]] = {}
        per_unit = self._unit_needs(item_id, boms, memo, [])

        requirements = tuple(
            ComponentRequirement(
                item_id=component,
                quantity_per_unit=need.quantity,
                quantity=(need.quantity * build_quantity).quantize(_QUANTUM, rounding=ROUND_HALF_UP),
                backflush=need.backflush,
            )
            for component, need in sorted(per_unit.items(), key=lambda kv: str(kv[0]))
        )

        logger.debug(
            "bom_exploded",
            extra={
                "item_id": str(item_id),
                "build_quantity": build_quantity,
                "component_count": len(requirements),
                "sub_assemblies": len(memo),
            },
        )
        return ExplosionResult(item_id=item_id, build_quantity=build_quantity, requirements=requirements)

    def find_cycle(self, boms: Mapping[Hashable, Sequence[BomComponent]]) -> list[str] | None:
        """Return one cycle path in the whole BOM graph, or None if acyclic."""
        memo: dict[Hashable, dict[Hashable, _UnitNeed]] = {}
        for parent in sorted(boms, key=str):
            try:
                self._unit_needs(parent, boms, memo, [])
            except CyclicBomError as exc:
                return exc.path
        return None

    def _unit_needs(
        self,
        item_id: Hashable,
        boms: Mapping[Hashable, Sequence[BomComponent]],
        memo: dict[Hashable, dict[Hashable, _UnitNeed]],
        path: list[Hashable],
    ) -> dict[Hashable, _UnitNeed]:
        """Leaf needs for ONE unit of item_id (depth-first, memoized)."""
        if item_id in memo:
            return memo[item_id]
        if item_id in path:
            cycle = path[path.index(item_id):] + [item_id]
            logger.warning("bom_cycle_detected", extra={"path": [str(p) for p in cycle]})
            raise CyclicBomError([str(p) for p in cycle])

        path.append(item_id)
        needs: dict[Hashable, _UnitNeed] = {}
        for line in boms.get(item_id, ()):
            factor = line.gross_quantity_per
            if boms.get(line.component_id):
                sub = self._unit_needs(line.component_id, boms, memo, path)
                for leaf, sub_need in sub.items():
                    self._accumulate(needs, leaf, factor * sub_need.quantity,
                                     line.backflush and sub_need.backflush)
            else:
                self._accumulate(needs, line.component_id, factor, line.backflush)
        path.pop()

        memo[item_id] = needs
        return needs

    @staticmethod
    def _accumulate(
        needs: dict[Hashable, _UnitNeed], leaf: Hashable, quantity: Decimal, backflush: bool,
    ) -> None:
        existing = needs.get(leaf)
        if existing is None:
            needs[leaf] = _UnitNeed(quantity, backflush)
        else:
            existing.quantity += quantity
            existing.backflush = existing.backflush and backflush
