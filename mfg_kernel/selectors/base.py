"""
Module: mfg_kernel.selectors.base
Responsibility: Base for read-only stock queries.
Architecture position: Kernel > Selectors.  May import from db/ and models/.
    MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Selectors never add, delete, flush or commit, and never take row
      locks; locking reads belong to the ledger service and the allocator.
    - Results are frozen records, not ORM instances.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from mfg_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):

    def __init__(self, session: Session):
        self.session = session
