"""
Module: mfg_kernel.db.base
Responsibility: Declarative base for every ORM model in the engine: UUID
    primary keys, Decimal quantities as Numeric(38, 9), timezone-aware
    timestamps, deterministic constraint names, and the TrackedBase audit
    mixin used by master data and documents.
Architecture position: Kernel > DB.  Imports nothing from the rest of the
    package; models in the kernel and in mfg_modules import from here.

Invariants enforced:
    - Every row has a uuid4 primary key, stored as String(36).
    - Quantities and prices are Decimal, never float.
    - Constraints left unnamed in a model (primary keys, foreign keys,
      column-level unique flags) get the same generated name on SQLite
      and PostgreSQL.
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, DateTime, MetaData, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

NAMING_CONVENTION = {
    "ix": "ix_%(table_name)s_%(column_0_N_name)s",
    "uq": "uq_%(table_name)s_%(column_0_N_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class UUIDString(TypeDecorator):
    """UUID stored as String(36); binds UUID or str, loads UUID."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else PyUUID(value)


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=NAMING_CONVENTION)

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: DateTime(timezone=True),
        PyUUID: UUIDString(),
        # ledger seq and sequence counters
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """
    Who created and last changed a mutable row, and when.

    Items, warehouses, bins, BOMs and documents use this.  Append-only rows
    (ledger entries, work-order snapshot lines) derive from Base and record
    only their creator.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False,
    )
    created_by_id: Mapped[PyUUID] = mapped_column(nullable=False)
    updated_by_id: Mapped[PyUUID | None] = mapped_column(nullable=True)
