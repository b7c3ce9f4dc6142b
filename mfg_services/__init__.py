"""
Services layer shared by the document modules.

Import ``DocumentEngine`` from ``mfg_services.document_engine`` directly;
it depends on ``mfg_modules``, which in turn depends on this package.
"""

from mfg_services.rbac_authority import RbacAuthority, check_rbac, pattern_grants
from mfg_services.stock_allocator import StockAllocator
from mfg_services.workflow_executor import (
    GuardExecutor,
    WorkflowExecutor,
    default_guard_executor,
)

__all__ = [
    "RbacAuthority",
    "check_rbac",
    "pattern_grants",
    "StockAllocator",
    "GuardExecutor",
    "WorkflowExecutor",
    "default_guard_executor",
]
