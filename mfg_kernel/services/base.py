"""
BaseService -- shared shape of the kernel services.

Kernel services (ledger, sequences, master data) work inside a session the
caller opened.  They ``flush()`` so that constraint violations and lock
waits surface at the call site, and leave ``commit()`` to the module
service that owns the business operation: a GRN, an issue, or a build with
its backflush entries commits once, or not at all.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from mfg_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """Flush-only service over ``ModelType``; never commits or rolls back."""

    def __init__(self, session: Session):
        self.session = session
