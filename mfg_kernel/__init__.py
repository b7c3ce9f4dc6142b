"""
Manufacturing Kernel

Document workflow and inventory ledger core:
- Append-only, bin-level quantity ledger
- Row-locked postings that never drive stock negative
- Centrally enforced document status machines
- Structured logging and typed errors
"""

__version__ = "0.1.0"
