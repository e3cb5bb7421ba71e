# voucher_shop package
__version__ = "0.1.0"

from .config import Settings, get_settings
from .database import (
    Voucher,
    PaymentRecord,
    PaymentStatus,
    init_db,
    close_db,
    get_db,
)
from .services import PaymentService

# Reconciliation exports
from .reconciliation import (
    CallbackEvent,
    ReconciliationEngine,
    ReconciliationOutcome,
    ReconciliationResult,
    map_status,
)
