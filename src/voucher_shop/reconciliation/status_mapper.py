"""Normalize provider payment statuses to the canonical vocabulary."""

from typing import Dict, Optional

COMPLETED = "completed"
FAILED = "failed"
PENDING = "pending"

MTN_STATUSES: Dict[str, str] = {
    "successful": COMPLETED,
    "completed": COMPLETED,
    "success": COMPLETED,
    "failed": FAILED,
    "rejected": FAILED,
    "failure": FAILED,
    "expired": FAILED,
    "pending": PENDING,
    "timeout": PENDING,
    "pending_confirmation": PENDING,
}

AIRTEL_STATUSES: Dict[str, str] = {
    "TS": COMPLETED,
    "TF": FAILED,
    "TP": PENDING,
}


def map_status(provider_status: Optional[str], provider: Optional[str]) -> Optional[str]:
    """Map a raw provider status to completed, failed or pending.

    Unknown providers and unknown statuses are passed through unchanged.
    Never raises.
    """
    if not isinstance(provider_status, str) or not isinstance(provider, str):
        return provider_status

    network = provider.strip().lower()
    if network == "mtn":
        return MTN_STATUSES.get(provider_status.strip().lower(), provider_status)
    if network == "airtel":
        return AIRTEL_STATUSES.get(provider_status.strip().upper(), provider_status)
    return provider_status


def is_terminal(mapped_status: Optional[str]) -> bool:
    return mapped_status in (COMPLETED, FAILED)
