"""Read-only selectors for the manufacturing kernel."""

from mfg_kernel.selectors.stock_selector import StockDiscrepancy, StockSelector

__all__ = ["StockDiscrepancy", "StockSelector"]
