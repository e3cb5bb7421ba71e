"""Payment-to-voucher reconciliation.

Provider status reports (webhook pushes, active polls, stale sweeps) are
normalized by the status mapper and applied by the engine, which moves a
payment to its terminal status and issues at most one voucher for it.
"""

from .models import (
    CallbackEvent,
    ReconciliationOutcome,
    ReconciliationResult,
)
from .status_mapper import COMPLETED, FAILED, PENDING, map_status, is_terminal
from .engine import ReconciliationEngine

__all__ = [
    # Models
    "CallbackEvent",
    "ReconciliationOutcome",
    "ReconciliationResult",
    # Status mapping
    "COMPLETED",
    "FAILED",
    "PENDING",
    "map_status",
    "is_terminal",
    # Engine
    "ReconciliationEngine",
]
