"""
Fan-out operations.

Provides:
- Bounded concurrent fan-out primitive
- Write fan-out coordinator
- Per-backend reconciliation scheduler
"""

from .fanout import FanoutResult, fan_out
from .reconcile import ReconcileReport, ReconciliationScheduler
from .write import WriteCoordinator

__all__ = [
    "FanoutResult",
    "fan_out",
    "ReconcileReport",
    "ReconciliationScheduler",
    "WriteCoordinator",
]
