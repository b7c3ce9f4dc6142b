"""
SequenceService -- counters for ledger ``seq`` and document numbers.

Responsibility:
    Hands out the ledger's monotonic ``seq`` and the human-readable numbers
    on documents and vouchers (``RFQ-2024-0001``, ``PO-2024-0012``,
    ``MIN-2024-0003``).  Each sequence is one row in ``sequence_counters``
    that is locked (``SELECT ... FOR UPDATE``) while it is incremented.

Architecture position:
    Kernel > Services.  Flush-only; used by LedgerService and by every
    module service that numbers a document.

Invariants enforced:
    - Values come only from the locked counter row, never from max()+1 over
      a document table.
    - A value is consumed only if the caller commits; a rolled-back posting
      gives its number back.
    - Document counters are per prefix and calendar year
      (``"{prefix}-{year}"``), so numbering restarts at 0001 each January.

Failure modes:
    - ValueError for a prefix that is not 2-5 upper-case letters.
    - IntegrityError when two transactions create the same counter at once;
      the loser retries against the winner's row inside a savepoint.
"""

import re
from datetime import datetime

from sqlalchemy import String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from mfg_kernel.db.base import Base
from mfg_kernel.logging_config import get_logger

logger = get_logger("services.sequence")

_PREFIX = re.compile(r"^[A-Z]{2,5}$")


class SequenceCounter(Base):
    __tablename__ = "sequence_counters"

    # "stock_ledger_entry", "PO-2024", "GRN-2025", ...
    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    current_value: Mapped[int] = mapped_column(nullable=False, default=0)


class SequenceService:
    """Allocates sequence values inside the caller's transaction."""

    LEDGER_ENTRY = "stock_ledger_entry"

    def __init__(self, session: Session):
        self._session = session

    @staticmethod
    def counter_name(prefix: str, year: int) -> str:
        if not _PREFIX.match(prefix):
            raise ValueError(f"Document prefix must be 2-5 upper-case letters, got {prefix!r}")
        return f"{prefix}-{year}"

    def _locked(self, name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _create_first(self, name: str) -> SequenceCounter | None:
        """Insert a counter at 1; None if a concurrent transaction won the insert."""
        savepoint = self._session.begin_nested()
        counter = SequenceCounter(name=name, current_value=1)
        try:
            self._session.add(counter)
            self._session.flush()
        except IntegrityError:
            savepoint.rollback()
            logger.debug("sequence_counter_race_retry", extra={"sequence_name": name})
            return None
        savepoint.commit()
        return counter

    def next_value(self, sequence_name: str) -> int:
        """
        Increment and return a sequence, creating it at 1 on first use.

        The counter row stays locked until the caller's transaction ends, so
        concurrent postings on the same sequence queue behind each other.
        """
        counter = self._locked(sequence_name)
        if counter is None:
            created = self._create_first(sequence_name)
            if created is not None:
                value = created.current_value
                logger.debug("sequence_allocated", extra={"sequence_name": sequence_name, "value": value})
                return value
            counter = self._locked(sequence_name)
            if counter is None:
                raise RuntimeError(f"Sequence {sequence_name!r} vanished after a create race")

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def next_document_number(self, prefix: str, at: datetime) -> str:
        """``PREFIX-YYYY-NNNN``; values past 9999 keep all their digits."""
        name = self.counter_name(prefix, at.year)
        return f"{name}-{self.next_value(name):04d}"

    def current_value(self, sequence_name: str) -> int | None:
        """Last value handed out, or None for a sequence never used."""
        return self._session.execute(
            select(SequenceCounter.current_value).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
