"""Database module for voucher and payment persistence."""

from .models import (
    Base,
    Voucher,
    PaymentRecord,
    ProcessedCallback,
    TransactionHistory,
    PaymentStatus,
    RecordOrigin,
    TransactionAction,
)
from .session import (
    get_db,
    get_database_url,
    init_db,
    close_db,
    create_async_engine,
    create_tables,
    get_async_session_factory,
    get_db_context,
)
from .repository import (
    PaymentRecordRepository,
    VoucherRepository,
    ProcessedCallbackRepository,
    TransactionHistoryRepository,
)

__all__ = [
    # Models
    "Base",
    "Voucher",
    "PaymentRecord",
    "ProcessedCallback",
    "TransactionHistory",
    "PaymentStatus",
    "RecordOrigin",
    "TransactionAction",
    # Session management
    "get_db",
    "get_database_url",
    "init_db",
    "close_db",
    "create_async_engine",
    "create_tables",
    "get_async_session_factory",
    "get_db_context",
    # Repositories
    "PaymentRecordRepository",
    "VoucherRepository",
    "ProcessedCallbackRepository",
    "TransactionHistoryRepository",
]
