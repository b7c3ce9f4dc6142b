"""Database layer - engine, base classes, types, and immutability."""

from mfg_kernel.db.base import Base, TrackedBase, UUIDString
from mfg_kernel.db.engine import (
    build_engine,
    create_tables,
    drop_tables,
    make_session_factory,
    session_scope,
)

__all__ = [
    "build_engine",
    "create_tables",
    "drop_tables",
    "make_session_factory",
    "session_scope",
    "Base",
    "TrackedBase",
    "UUIDString",
]
