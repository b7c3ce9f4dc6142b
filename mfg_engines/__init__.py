"""
Module: mfg_engines
Responsibility:
    Re-exports the pure calculation engines used by the module services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  May import kernel domain
    values, exceptions and logging.  MUST NOT import mfg_services or
    mfg_modules.

Invariants enforced:
    - Purity: engines never read the clock or the database.
    - Decimal-only arithmetic for quantities.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Every engine invocation is traced via ``@traced_engine`` (see
    ``mfg_engines.tracer``), emitting MFG_ENGINE_TRACE records.
"""

from mfg_engines.bin_selection import (
    BinCandidate,
    BinPick,
    BinSelectionEngine,
    PutawayCandidate,
)
from mfg_engines.bom_explosion import (
    BomComponent,
    BomExplosionEngine,
    ComponentRequirement,
    ExplosionResult,
)
from mfg_engines.tracer import compute_input_fingerprint, traced_engine

__all__ = [
    "BinCandidate",
    "BinPick",
    "BinSelectionEngine",
    "BomComponent",
    "BomExplosionEngine",
    "ComponentRequirement",
    "ExplosionResult",
    "PutawayCandidate",
    "compute_input_fingerprint",
    "traced_engine",
]
