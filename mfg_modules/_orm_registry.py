"""
Module ORM Registry (``mfg_modules._orm_registry``).

Responsibility
--------------
Ensure kernel and module ORM models are imported so that ``Base.metadata``
contains every table before ``create_tables()`` runs, and install the
append-only guards for module-owned snapshot tables.

Architecture position
---------------------
**Modules layer** -- utility.  Called lazily by
``mfg_kernel.db.engine.create_tables`` and by ``DocumentEngine``.
"""


def import_all_orm_models() -> None:
    """Import kernel models and every ``mfg_modules.*.orm`` module.

    Kernel tables first: module tables hold foreign keys to items,
    warehouses, bins and ledger entries.  Idempotent.
    """
    import mfg_kernel.models  # noqa: F401
    import mfg_kernel.services.sequence_service  # noqa: F401  # sequence_counters
    # fmt: off
    import mfg_modules.procurement.orm  # noqa: F401
    import mfg_modules.production.orm  # noqa: F401
    # fmt: on

    from mfg_kernel.db.immutability import protect_append_only
    from mfg_modules.production.orm import WorkOrderComponentModel

    protect_append_only(WorkOrderComponentModel)
