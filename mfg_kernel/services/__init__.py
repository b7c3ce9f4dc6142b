"""Services for the manufacturing kernel (write side)."""

from mfg_kernel.services.ledger_service import LedgerService
from mfg_kernel.services.master_data_service import MasterDataService
from mfg_kernel.services.sequence_service import SequenceCounter, SequenceService

__all__ = [
    "LedgerService",
    "MasterDataService",
    "SequenceCounter",
    "SequenceService",
]
